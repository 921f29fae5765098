"""Tests for turning model replies into chapters."""

from storyrunner.utils.response_parsing import normalize_choices, parse_chapter_response, robust_json_load


def test_plain_json_reply():
    reply = '{"title": "The Portrait", "content": "Basil steps back.", "choices": ["Look closer", "Leave"]}'
    parsed = parse_chapter_response(reply, 1, "Dorian Gray")
    assert parsed == {"title": "The Portrait", "content": "Basil steps back.", "choices": ["Look closer", "Leave"]}


def test_fenced_json_reply():
    reply = 'Sure!\n```json\n{"title": "T", "content": "Text", "choices": ["A", "B", "C"]}\n```'
    parsed = parse_chapter_response(reply, 2, "Story")
    assert parsed["content"] == "Text"
    assert parsed["choices"] == ["A", "B", "C"]


def test_json_with_trailing_comma_and_chat_tokens():
    reply = '{"title": "T", "content": "Text", "choices": ["A", "B",]} <|end_header_id|>'
    parsed = parse_chapter_response(reply, 1, "Story")
    assert parsed["choices"] == ["A", "B"]


def test_text_sections_fallback():
    reply = (
        "TITLE: A Dark Night\n\n"
        "CONTENT: The wind howled over the moor.\n\n"
        "CHOICES:\n1. Follow the light\n2. Turn back\n3. Call out"
    )
    parsed = parse_chapter_response(reply, 3, "Story")
    assert parsed["title"] == "A Dark Night"
    assert parsed["content"] == "The wind howled over the moor."
    assert parsed["choices"] == ["Follow the light", "Turn back", "Call out"]


def test_missing_title_uses_chapter_default():
    parsed = parse_chapter_response('{"content": "Text", "choices": []}', 4, "Dracula")
    assert parsed["title"] == "Chapter 4: Dracula"


def test_empty_content_is_rejected():
    assert parse_chapter_response('{"title": "T", "content": "  ", "choices": ["A", "B"]}', 1, "S") is None
    assert parse_chapter_response("", 1, "S") is None


def test_choices_are_padded_to_two():
    assert normalize_choices(["Only one"]) == ["Only one", "Continue the story"]
    assert normalize_choices([]) == ["Continue the story", "Take a different approach"]
    assert normalize_choices(None) == ["Continue the story", "Take a different approach"]


def test_choices_are_capped_at_four():
    assert normalize_choices(["a", "b", "c", "d", "e"]) == ["a", "b", "c", "d"]


def test_choice_objects_and_blanks():
    assert normalize_choices([{"text": "Run"}, "  ", "Hide", "Hide"]) == ["Run", "Hide"]


def test_robust_json_load_gives_up_quietly():
    assert robust_json_load("not json at all") is None
