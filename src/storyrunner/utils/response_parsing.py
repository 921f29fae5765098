import json
import re
from json.decoder import JSONDecodeError
from typing import Any, Dict, List, Optional

DEFAULT_CHOICES = ["Continue the story", "Take a different approach"]
MIN_CHOICES = 2
MAX_CHOICES = 4


def strip_model_tags(text: str) -> str:
    """Remove chat-template tokens and stray XML-ish tags some models emit."""
    text = re.sub(r'<userStyle>.*?</userStyle>', '', text, flags=re.DOTALL)
    text = re.sub(r'<\|[^>]+\|>', '', text)
    return text.strip()


def clean_json_string(json_string: str) -> str:
    """Repair the usual LLM JSON mistakes: unquoted keys, single quotes, trailing commas."""
    json_string = re.sub(r'([{,])\s*([a-zA-Z0-9_]+)\s*:', r'\1"\2":', json_string)
    json_string = re.sub(r':\s*\'(.*?)\'', r':"\1"', json_string)
    json_string = re.sub(r',\s*([}\]])', r'\1', json_string)
    return json_string


def extract_json_block(text: str) -> Optional[str]:
    # Fenced ```json block first, then the outermost braces
    match = re.search(r'```(?:json)?\s*(\{[\s\S]*?\})\s*```', text)
    if match:
        return match.group(1).strip()
    start = text.find('{')
    end = text.rfind('}') + 1
    if start != -1 and end > start:
        return text[start:end]
    return None


def robust_json_load(json_string: str) -> Optional[Any]:
    """Parse JSON, retrying once on a cleaned copy. Returns None when both fail."""
    try:
        return json.loads(json_string)
    except JSONDecodeError:
        pass
    try:
        return json.loads(clean_json_string(json_string))
    except JSONDecodeError:
        return None


def parse_text_sections(text: str) -> Dict[str, Any]:
    """
    Fallback for replies in the plain layout::

        TITLE: ...
        CONTENT: ...
        CHOICES:
        1. ...
        2. ...
    """
    title_match = re.search(r'TITLE:\s*(.+?)(?:\n|$)', text, re.IGNORECASE)
    content_match = re.search(r'CONTENT:\s*([\s\S]+?)(?=CHOICES:|$)', text, re.IGNORECASE)
    choices_match = re.search(r'CHOICES:\s*([\s\S]+?)$', text, re.IGNORECASE)

    choices = []
    if choices_match:
        for line in choices_match.group(1).splitlines():
            item = re.match(r'^\s*\d+\.\s*(.+)$', line)
            if item:
                choices.append(item.group(1).strip())

    content = content_match.group(1).strip() if content_match else text
    if title_match and not content_match:
        # Drop the title line from a reply that only labels its title
        content = text[title_match.end():].strip()

    return {
        "title": title_match.group(1).strip() if title_match else None,
        "content": content,
        "choices": choices,
    }


def normalize_choices(choices: Any) -> List[str]:
    """2 to 4 non-empty strings, padded with the default continuations"""
    result = []
    for choice in choices if isinstance(choices, list) else []:
        if isinstance(choice, dict):
            choice = choice.get("text") or choice.get("label") or ""
        choice = str(choice).strip()
        if choice and choice not in result:
            result.append(choice)
    for default in DEFAULT_CHOICES:
        if len(result) >= MIN_CHOICES:
            break
        if default not in result:
            result.append(default)
    return result[:MAX_CHOICES]


def parse_chapter_response(text: str, chapter_index: int, story_title: str) -> Optional[Dict[str, Any]]:
    """
    Turn a model reply into ``{"title", "content", "choices"}``.

    JSON is tried first (fenced block, then braces); the TITLE/CONTENT/CHOICES
    layout is the fallback. Returns None when no usable content is found.
    """
    text = strip_model_tags(text or "")
    if not text:
        return None

    parsed = None
    block = extract_json_block(text)
    if block:
        data = robust_json_load(block)
        if isinstance(data, dict) and isinstance(data.get("content"), str):
            parsed = {
                "title": data.get("title"),
                "content": data["content"],
                "choices": data.get("choices"),
            }
    if parsed is None:
        parsed = parse_text_sections(text)

    content = (parsed["content"] or "").strip()
    if not content:
        return None
    title = str(parsed.get("title") or "").strip() or f"Chapter {chapter_index}: {story_title}"
    return {
        "title": title,
        "content": content,
        "choices": normalize_choices(parsed.get("choices")),
    }
