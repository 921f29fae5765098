"""Shared fixtures: a throw-away SQLite database, a funded player and a story."""

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="storyrunner-tests-")

# Must be set before anything imports storyrunner.core.config
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["LLM_PROVIDER"] = "mock"
os.environ["LLM_API_KEY"] = ""
os.environ["LLM_FALLBACK_TO_MOCK"] = "false"
os.environ["CHARGE_POLICY"] = "refund_on_failure"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "admin-pass"
os.environ["DEV_FALLBACK_USERNAME"] = ""
os.environ["DEBUG"] = "false"

import pytest  # noqa: E402

from storyrunner.database.db_utils import create_user, reset_db  # noqa: E402
from storyrunner.services import story_catalog  # noqa: E402
from storyrunner.services.chapter_generator import ChapterGenerator  # noqa: E402
from storyrunner.services.session_manager import SessionManager  # noqa: E402

PLAYER_PASSWORD = "player-pass"

STORY_TEMPLATE = (
    "You narrate {{STORY_TITLE}} by {{AUTHOR_NAME}} in a {{TONE_STYLE}} tone, "
    "set in {{TIME_FLAVOR}} times ({{TIME_DESCRIPTION}}).\n"
    "Opening beats:\n{{OPENING_BEATS}}\n"
    "Rules:\n{{SAFETY_GUARDRAILS}}"
)


@pytest.fixture(autouse=True)
def fresh_database():
    reset_db()
    yield


@pytest.fixture
def player():
    return create_user("player", PLAYER_PASSWORD, email="player@example.com", wallet_balance=100)


@pytest.fixture
def other_player():
    return create_user("other", "other-pass", email="other@example.com", wallet_balance=100)


@pytest.fixture
def story():
    return story_catalog.create_story(
        "The Picture of Dorian Gray",
        STORY_TEMPLATE,
        author_name="Oscar Wilde",
        description="A portrait ages while its subject does not.",
        credits_per_chapter=10,
        opening_beats=["Basil finishes the portrait", "Lord Henry arrives"],
        guardrails=["No graphic violence"],
        characters=[{"id": "dorian", "name": "Dorian Gray", "summary": "", "hooks": []}],
        roles=[{"id": "lead", "label": "Lead"}],
        cast=[{"character_id": "dorian", "role_ids": ["lead"]}],
    )


@pytest.fixture
def manager():
    return SessionManager(ChapterGenerator(provider="mock"), refund_on_failure=True)
