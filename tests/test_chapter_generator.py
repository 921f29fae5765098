"""Tests for ChapterGenerator: mock mode and the chat-completions client."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from storyrunner.core.errors import GenerationError
from storyrunner.services.chapter_generator import (
    ChapterGenerator, build_first_chapter_prompt, build_next_chapter_prompt,
)


def _mock_response(body: dict, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.text = json.dumps(body)
    resp.json.return_value = body
    resp.raise_for_status = MagicMock(
        side_effect=None if status < 400 else httpx.HTTPStatusError(
            "", request=MagicMock(), response=resp
        )
    )
    return resp


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


CHAPTER_JSON = json.dumps({
    "title": "The Studio",
    "content": "Sunlight fell across the unfinished portrait.",
    "choices": ["Speak to Basil", "Study the painting", "Step into the garden"],
})


@pytest.fixture
def remote() -> ChapterGenerator:
    return ChapterGenerator(provider="openrouter", api_url="http://llm.test/v1/chat/completions",
                            api_key="secret", model="test-model", fallback_to_mock=False)


class TestMockGenerator:
    async def test_is_deterministic(self):
        generator = ChapterGenerator(provider="mock")
        first = await generator.generate("system", "user", 2, "Dracula", chosen_option="Open the door")
        second = await generator.generate("system", "user", 2, "Dracula", chosen_option="Open the door")
        assert first == second
        assert first.title == "Chapter 2: Dracula"
        assert "open the door" in first.content
        assert first.provider == "mock"
        assert 2 <= len(first.choices) <= 4

    async def test_missing_api_key_degrades_to_mock(self):
        generator = ChapterGenerator(provider="openrouter", api_key="")
        assert generator.is_mock
        mock_post = AsyncMock()
        with patch("httpx.AsyncClient.post", mock_post):
            chapter = await generator.generate("system", "user", 1, "Dracula")
        mock_post.assert_not_called()
        assert chapter.title == "Chapter 1: Dracula"


class TestRemoteGenerator:
    async def test_happy_path(self, remote):
        mock_post = AsyncMock(return_value=_mock_response(_completion(CHAPTER_JSON)))
        with patch("httpx.AsyncClient.post", mock_post):
            chapter = await remote.generate("system prompt", "user prompt", 1, "Dorian Gray")
        assert chapter.title == "The Studio"
        assert chapter.choices == ["Speak to Basil", "Study the painting", "Step into the garden"]
        assert chapter.raw_response == CHAPTER_JSON
        assert chapter.provider == "openrouter"

    async def test_payload(self, remote):
        mock_post = AsyncMock(return_value=_mock_response(_completion(CHAPTER_JSON)))
        with patch("httpx.AsyncClient.post", mock_post):
            await remote.generate("system prompt", "user prompt", 1, "Dorian Gray")
        assert mock_post.call_args[0][0] == "http://llm.test/v1/chat/completions"
        payload = mock_post.call_args.kwargs["json"]
        assert payload["model"] == "test-model"
        assert payload["response_format"] == {"type": "json_object"}
        assert payload["messages"] == [
            {"role": "system", "content": "system prompt"},
            {"role": "user", "content": "user prompt"},
        ]
        assert mock_post.call_args.kwargs["headers"]["Authorization"] == "Bearer secret"

    async def test_http_error_raises(self, remote):
        mock_post = AsyncMock(return_value=_mock_response({"error": "rate limited"}, status=429))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(GenerationError) as exc_info:
                await remote.generate("s", "u", 1, "Story")
        assert exc_info.value.status_code == 502
        assert exc_info.value.code == "SERVER_ERROR"

    async def test_network_error_raises(self, remote):
        mock_post = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(GenerationError):
                await remote.generate("s", "u", 1, "Story")

    async def test_missing_choices_raises(self, remote):
        mock_post = AsyncMock(return_value=_mock_response({"id": "x"}))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(GenerationError):
                await remote.generate("s", "u", 1, "Story")

    async def test_empty_content_raises(self, remote):
        mock_post = AsyncMock(return_value=_mock_response(_completion("")))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(GenerationError):
                await remote.generate("s", "u", 1, "Story")

    async def test_fallback_to_mock(self):
        generator = ChapterGenerator(provider="openrouter", api_url="http://llm.test", api_key="secret",
                                     fallback_to_mock=True)
        mock_post = AsyncMock(return_value=_mock_response({"error": "down"}, status=503))
        with patch("httpx.AsyncClient.post", mock_post):
            chapter = await generator.generate("s", "u", 3, "Story")
        assert chapter.provider == "mock"
        assert chapter.title == "Chapter 3: Story"


class TestPromptBuilders:
    def test_first_chapter_prompt(self):
        prompt = build_first_chapter_prompt("Dracula", None, "A count", "Arrival at the castle")
        assert 'first chapter of "Dracula" by Unknown Author' in prompt
        assert "Opening Beat: Arrival at the castle" in prompt

    def test_next_chapter_prompt_truncates_previous_content(self):
        content = "x" * 600
        prompt = build_next_chapter_prompt("Dracula", "Arrival", content, "Open the door", 2)
        assert "x" * 500 + "..." in prompt
        assert "x" * 501 not in prompt
        assert "Reader's Choice: Open the door" in prompt
        assert "Please create Chapter 2" in prompt
