from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()

class Settings(BaseSettings):
    """Application settings"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database
    database_url: str = "sqlite:///./storyrunner.db"

    # LLM API ("openrouter", "openai" or "mock")
    llm_provider: str = "mock"
    llm_api_url: str = "https://openrouter.ai/api/v1/chat/completions"
    llm_api_key: str = ""
    llm_model_name: str = "openai/gpt-4o-mini"
    llm_temperature: float = 0.8
    llm_max_tokens: int = 1500
    llm_timeout: float = 120.0
    llm_fallback_to_mock: bool = False

    # Pricing defaults for new stories
    default_credits_per_chapter: int = 10
    default_estimated_chapter_count: int = 10

    # What happens to a debit when no chapter comes out of it:
    # "refund_on_failure" or "charge_on_attempt"
    charge_policy: str = "refund_on_failure"

    # Accounts
    admin_username: str = "admin"
    admin_password: str = "storyrunner123"
    admin_email: str = "admin@storyrunner.local"
    bcrypt_rounds: int = 12
    # Development only: username used when a request carries no credentials
    dev_fallback_username: str = ""

    # API settings
    cors_origins: List[str] = ["http://localhost:5173"]

    # Development settings
    debug: bool = False

    @property
    def refund_on_failure(self) -> bool:
        return self.charge_policy == "refund_on_failure"

# Create settings instance
settings = Settings()
