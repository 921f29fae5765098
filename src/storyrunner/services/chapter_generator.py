# --- services/chapter_generator.py ---

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import httpx

from ..core.config import settings
from ..core.errors import GenerationError
from ..utils.response_parsing import parse_chapter_response

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO,
                    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

PREVIOUS_CONTENT_CHARS = 500
MOCK_CHOICES = ["Investigate", "Wait and observe", "Ask for help", "Take a bold step"]

RESPONSE_FORMAT_INSTRUCTIONS = """Respond with a JSON object only:
{"title": "<chapter title>", "content": "<chapter text, 300-800 words>", "choices": ["<option 1>", "<option 2>", "<option 3, optional>", "<option 4, optional>"]}

Make sure the choices are meaningful and lead to different story paths."""


@dataclass
class GeneratedChapter:
    title: str
    content: str
    choices: List[str] = field(default_factory=list)
    raw_response: str = ""
    provider: str = "mock"


def build_first_chapter_prompt(story_title: str, author_name: Optional[str], description: Optional[str],
                               opening_beat: Optional[str]) -> str:
    return f"""Create the first chapter of "{story_title}" by {author_name or 'Unknown Author'}.

Story Description: {description or 'No description available'}

Opening Beat: {opening_beat or 'Begin wherever the story is most compelling.'}

Please create a compelling first chapter that:
1. Introduces the main character(s) and setting
2. Establishes the tone and atmosphere
3. Creates intrigue and hooks the reader
4. Ends with 2-4 meaningful choices for the reader

{RESPONSE_FORMAT_INSTRUCTIONS}"""


def build_next_chapter_prompt(story_title: str, previous_title: str, previous_content: str,
                              chosen_option: Optional[str], chapter_index: int) -> str:
    excerpt = (previous_content or "")[:PREVIOUS_CONTENT_CHARS]
    return f"""Continue the story "{story_title}" based on the reader's choice.

Previous Chapter: "{previous_title}"
Previous Chapter Content: {excerpt}...

Reader's Choice: {chosen_option or 'Continue the story'}

Please create Chapter {chapter_index} that:
1. Naturally follows from the reader's choice
2. Continues the narrative flow
3. Introduces new challenges or developments
4. Maintains consistency with the story's tone and characters
5. Ends with 2-4 meaningful choices for the reader

{RESPONSE_FORMAT_INSTRUCTIONS}"""


class ChapterGenerator:
    """
    Produces chapters from a composed system prompt and a per-chapter user prompt.

    Talks to any OpenAI-compatible chat-completions endpoint (OpenRouter by
    default). With provider "mock", or without an API key, it runs in
    degraded mode and returns deterministic text without any network call.
    """

    def __init__(self, provider: str = None, api_url: str = None, api_key: str = None, model: str = None,
                 temperature: float = None, max_tokens: int = None, timeout: float = None,
                 fallback_to_mock: bool = None):
        self.provider = (provider or settings.llm_provider).lower()
        self.api_url = api_url or settings.llm_api_url
        self.api_key = api_key if api_key is not None else settings.llm_api_key
        self.model = model or settings.llm_model_name
        self.temperature = settings.llm_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.llm_max_tokens
        self.timeout = timeout or settings.llm_timeout
        self.fallback_to_mock = settings.llm_fallback_to_mock if fallback_to_mock is None else fallback_to_mock

        if self.provider != "mock" and not self.api_key:
            logger.warning(f"No API key configured for provider '{self.provider}'. Using mock chapters.")

    @property
    def is_mock(self) -> bool:
        return self.provider == "mock" or not self.api_key

    def mock_chapter(self, chapter_index: int, story_title: str, chosen_option: Optional[str] = None) -> GeneratedChapter:
        """Deterministic stand-in used in degraded mode and in tests"""
        if chosen_option:
            content = (f"The story of {story_title} continues. You chose to {chosen_option.lower()}, "
                       f"and a new moment unfolds.")
        else:
            content = f"The adventure of {story_title} begins. A new moment unfolds."
        return GeneratedChapter(
            title=f"Chapter {chapter_index}: {story_title}",
            content=content,
            choices=list(MOCK_CHOICES),
            raw_response=content,
            provider="mock",
        )

    async def generate(self, system_prompt: str, user_prompt: str, chapter_index: int, story_title: str,
                       chosen_option: Optional[str] = None) -> GeneratedChapter:
        """
        Generate one chapter.

        Raises GenerationError on HTTP failures, network errors or an
        unusable reply, unless fallback to the mock is enabled.
        """
        if self.is_mock:
            return self.mock_chapter(chapter_index, story_title, chosen_option)
        try:
            return await self._generate_remote(system_prompt, user_prompt, chapter_index, story_title)
        except GenerationError:
            if not self.fallback_to_mock:
                raise
            logger.warning(f"Chapter generation failed; falling back to mock chapter {chapter_index}.")
            return self.mock_chapter(chapter_index, story_title, chosen_option)

    async def _generate_remote(self, system_prompt: str, user_prompt: str, chapter_index: int,
                               story_title: str) -> GeneratedChapter:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}"
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt}
            ],
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
            "max_tokens": self.max_tokens
        }

        logger.info(f"Generating chapter {chapter_index} of '{story_title}' using model: {self.model}")
        logger.debug(f"API Payload (excluding messages): { {k: v for k, v in payload.items() if k != 'messages'} }")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.api_url, headers=headers, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            error_body = e.response.text
            logger.error(f"HTTP error during chapter generation: {e.response.status_code} - {error_body[:500]}")
            raise GenerationError(f"Generation API error: {e.response.status_code}")
        except httpx.RequestError as e:
            logger.error(f"Request error during chapter generation: {e}")
            raise GenerationError("Generation API unreachable")
        except ValueError as e:
            logger.error(f"Generation API returned a non-JSON body: {e}")
            raise GenerationError("Generation API returned an invalid response")

        if not data.get("choices"):
            logger.error(f"No 'choices' field in API response from {self.model}. Response: {str(data)[:500]}")
            raise GenerationError("Generation API returned no choices")

        message_content = data["choices"][0].get("message", {}).get("content")
        if not message_content:
            logger.error(f"Empty 'content' in API response choice from {self.model}.")
            raise GenerationError("Generation API returned empty content")

        parsed = parse_chapter_response(message_content, chapter_index, story_title)
        if parsed is None:
            logger.error(f"Could not parse chapter from response: {message_content[:500]}")
            raise GenerationError("Generated chapter could not be parsed")

        logger.info(f"Generated chapter {chapter_index} ({len(parsed['content'])} chars, {len(parsed['choices'])} choices)")
        return GeneratedChapter(
            title=parsed["title"],
            content=parsed["content"],
            choices=parsed["choices"],
            raw_response=message_content,
            provider=self.provider,
        )

# --- END OF FILE services/chapter_generator.py ---
