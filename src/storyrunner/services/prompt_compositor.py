# --- services/prompt_compositor.py ---

import logging
import re
from typing import Dict, List, Mapping, Optional

from ..core.errors import UnknownPlaceholderError

logger = logging.getLogger(__name__)

PLACEHOLDER_NAMES = (
    "TONE_STYLE",
    "TONE_STYLE_ID",
    "TONE_DESCRIPTION",
    "TIME_FLAVOR",
    "TIME_FLAVOR_ID",
    "TIME_DESCRIPTION",
    "STORY_TITLE",
    "AUTHOR_NAME",
    "STORY_DESCRIPTION",
    "OPENING_BEATS",
    "SAFETY_GUARDRAILS",
)

# Any {{...}} without nested braces counts as a token
PLACEHOLDER_PATTERN = re.compile(r"\{\{([^{}]+)\}\}")

NO_OPENING_BEATS = "No specific opening beats defined."
NO_GUARDRAILS = "No specific safety guardrails defined."
UNKNOWN_AUTHOR = "Unknown Author"


def find_placeholders(template: str) -> List[str]:
    """Token names in order of first appearance, without duplicates"""
    seen = []
    for name in PLACEHOLDER_PATTERN.findall(template or ""):
        if name not in seen:
            seen.append(name)
    return seen


def compose_prompt(template: str, replacements: Mapping[str, str], strict: bool = False) -> str:
    """
    Replaces every {{NAME}} occurrence for each key of ``replacements``.

    Lenient mode leaves unknown tokens in place. Strict mode raises
    UnknownPlaceholderError before substituting anything when the template
    holds a token the map does not cover. Substitution is a single pass,
    so a value containing {{...}} is never expanded again.
    """
    template = template or ""
    unknown = [name for name in find_placeholders(template) if name not in replacements]
    if unknown:
        if strict:
            raise UnknownPlaceholderError(unknown)
        logger.debug(f"Placeholders without a value are left unchanged: {unknown}")
    if not replacements:
        return template

    pattern = re.compile(r"\{\{(" + "|".join(re.escape(key) for key in replacements) + r")\}\}")
    return pattern.sub(lambda match: str(replacements[match.group(1)]), template)


def format_numbered_list(items: Optional[List[str]], empty_text: str) -> str:
    items = [str(item).strip() for item in (items or []) if str(item).strip()]
    if not items:
        return empty_text
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))


def build_replacements(story, tone, time) -> Dict[str, str]:
    """Replacement map for a story and the chosen flavor options"""
    return {
        "TONE_STYLE": tone.display_label,
        "TONE_STYLE_ID": tone.option_id,
        "TONE_DESCRIPTION": tone.description or "",
        "TIME_FLAVOR": time.display_label,
        "TIME_FLAVOR_ID": time.option_id,
        "TIME_DESCRIPTION": time.description or "",
        "STORY_TITLE": story.title,
        "AUTHOR_NAME": story.author_name or UNKNOWN_AUTHOR,
        "STORY_DESCRIPTION": story.description or "",
        "OPENING_BEATS": format_numbered_list(story.opening_beats, NO_OPENING_BEATS),
        "SAFETY_GUARDRAILS": format_numbered_list(story.guardrails, NO_GUARDRAILS),
    }

# --- END OF FILE services/prompt_compositor.py ---
