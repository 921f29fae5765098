# --- services/settings_store.py ---

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, select

from ..core.errors import BadRequestError
from ..database.db_utils import get_db
from ..models.database import FlavorOption, FLAVOR_TONE, FLAVOR_TIME

logger = logging.getLogger(__name__)

DEFAULT_TONE_STYLES = [
    {"id": "original", "displayLabel": "Original", "description": "Stay true to the original author's tone and style"},
    {"id": "drama", "displayLabel": "Drama", "description": "Emphasize emotional depth and character development"},
    {"id": "horror", "displayLabel": "Horror", "description": "Add suspense, fear, and supernatural elements"},
    {"id": "thriller", "displayLabel": "Thriller", "description": "Create tension, mystery, and fast-paced action"},
    {"id": "romance", "displayLabel": "Romance", "description": "Focus on relationships, love, and emotional connections"},
    {"id": "fantasy", "displayLabel": "Fantasy", "description": "Introduce magical elements and fantastical worlds"},
    {"id": "sci-fi", "displayLabel": "Sci-Fi", "description": "Add futuristic technology and scientific concepts"},
]

DEFAULT_TIME_FLAVORS = [
    {"id": "original", "displayLabel": "Original", "description": "Keep the story in its original time period"},
    {"id": "today", "displayLabel": "Today", "description": "Adapt the story to modern times with current technology and culture"},
    {"id": "nostalgic", "displayLabel": "Nostalgic", "description": "Set in a romanticized past with vintage charm"},
    {"id": "futuristic", "displayLabel": "Futuristic", "description": "Transport the story to a distant future with advanced technology"},
]


def option_to_dict(option: FlavorOption) -> Dict[str, Any]:
    return {"id": option.option_id, "displayLabel": option.display_label, "description": option.description}


def _options(kind: str, db=None) -> List[FlavorOption]:
    stmt = select(FlavorOption).where(FlavorOption.kind == kind).order_by(FlavorOption.position)
    if db is not None:
        return list(db.execute(stmt).scalars())
    with get_db() as db:
        return list(db.execute(stmt).scalars())


def _option(kind: str, option_id: str, db=None) -> Optional[FlavorOption]:
    stmt = select(FlavorOption).where(FlavorOption.kind == kind, FlavorOption.option_id == option_id)
    if db is not None:
        return db.execute(stmt).scalar_one_or_none()
    with get_db() as db:
        return db.execute(stmt).scalar_one_or_none()


def get_tone_styles(db=None) -> List[FlavorOption]:
    return _options(FLAVOR_TONE, db)


def get_time_flavors(db=None) -> List[FlavorOption]:
    return _options(FLAVOR_TIME, db)


def get_tone_style(tone_style_id: str, db=None) -> Optional[FlavorOption]:
    return _option(FLAVOR_TONE, tone_style_id, db)


def get_time_flavor(time_flavor_id: str, db=None) -> Optional[FlavorOption]:
    return _option(FLAVOR_TIME, time_flavor_id, db)


def is_valid_tone_style(tone_style_id: str) -> bool:
    return get_tone_style(tone_style_id) is not None


def is_valid_time_flavor(time_flavor_id: str) -> bool:
    return get_time_flavor(time_flavor_id) is not None


def validate_flavor_combination(tone_style_id: str, time_flavor_id: str) -> Tuple[bool, List[str]]:
    """Checks both ids at once so callers can report every problem together."""
    errors = []
    if not is_valid_tone_style(tone_style_id):
        errors.append(f"Invalid tone style: {tone_style_id}")
    if not is_valid_time_flavor(time_flavor_id):
        errors.append(f"Invalid time flavor: {time_flavor_id}")
    return not errors, errors


def _check_options(field: str, options: List[Dict[str, Any]]):
    if not isinstance(options, list) or not options:
        raise BadRequestError(f"{field} must be a non-empty list", field=field)
    seen = set()
    for option in options:
        option_id = str(option.get("id") or "").strip()
        label = str(option.get("displayLabel") or "").strip()
        if not option_id or not label:
            raise BadRequestError(f"Each entry in {field} must have id and displayLabel", field=field)
        if option_id in seen:
            raise BadRequestError(f"Duplicate id '{option_id}' in {field}", field=field)
        seen.add(option_id)


def _insert_options(db, kind: str, options: List[Dict[str, Any]]):
    for position, option in enumerate(options):
        db.add(FlavorOption(
            kind=kind,
            option_id=str(option["id"]).strip(),
            display_label=str(option["displayLabel"]).strip(),
            description=str(option.get("description") or "").strip(),
            position=position,
        ))


def replace_settings(tone_styles: List[Dict[str, Any]], time_flavors: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """Replaces the whole flavor catalog (admin).

    Existing sessions keep their ids and composed prompts; only new sessions
    are validated against the new catalog.
    """
    _check_options("tone_styles", tone_styles)
    _check_options("time_flavors", time_flavors)
    with get_db() as db:
        db.execute(delete(FlavorOption))
        _insert_options(db, FLAVOR_TONE, tone_styles)
        _insert_options(db, FLAVOR_TIME, time_flavors)
        db.commit()
    logger.info(f"Replaced story settings: {len(tone_styles)} tone styles, {len(time_flavors)} time flavors")
    return get_settings()


def get_settings() -> Dict[str, List[Dict[str, Any]]]:
    return {
        "tone_styles": [option_to_dict(o) for o in get_tone_styles()],
        "time_flavors": [option_to_dict(o) for o in get_time_flavors()],
    }


def seed_default_settings():
    """Insert the default catalog when it is empty"""
    with get_db() as db:
        if db.query(FlavorOption).count() > 0:
            return
        _insert_options(db, FLAVOR_TONE, DEFAULT_TONE_STYLES)
        _insert_options(db, FLAVOR_TIME, DEFAULT_TIME_FLAVORS)
        db.commit()
    logger.info("Seeded default tone styles and time flavors")

# --- END OF FILE services/settings_store.py ---
