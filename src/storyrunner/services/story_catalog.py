# --- services/story_catalog.py ---

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select, update

from ..core.config import settings
from ..core.errors import BadRequestError, ConflictError, NotFoundError, UnknownPlaceholderError
from ..database.db_utils import get_db
from ..models.database import Feedback, Story, StorySession
from .prompt_compositor import PLACEHOLDER_NAMES, find_placeholders

logger = logging.getLogger(__name__)

# Fields an admin may change through update_story
EDITABLE_FIELDS = {
    "title", "author_name", "headline", "description", "language", "is_active",
    "credits_per_chapter", "estimated_chapter_count", "story_prompt", "opening_beats",
    "guardrails", "characters", "roles", "cast", "default_tone_style_id", "default_time_flavor_id",
}


def slugify(value: str) -> str:
    """'The Picture of Dorian Gray!' -> 'the-picture-of-dorian-gray'"""
    slug = str(value or "").lower().strip()
    slug = re.sub(r"['\".,!?()+/]", "", slug)
    slug = slug.replace("&", " and ")
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    return re.sub(r"-+", "-", slug).strip("-")


def check_cast_consistency(characters: Optional[List[Dict[str, Any]]], roles: Optional[List[Dict[str, Any]]],
                           cast: Optional[List[Dict[str, Any]]]) -> Tuple[bool, Optional[str]]:
    character_ids = {c.get("id") for c in characters or []}
    role_ids = {r.get("id") for r in roles or []}
    for entry in cast or []:
        character_id = entry.get("character_id")
        if character_id not in character_ids:
            return False, f"Unknown character_id in cast: {character_id}"
        for role_id in entry.get("role_ids") or []:
            if role_id not in role_ids:
                return False, f"Unknown role_id in cast: {role_id}"
    return True, None


def _validate_fields(fields: Dict[str, Any]):
    if "title" in fields and not str(fields["title"] or "").strip():
        raise BadRequestError("Title is required", field="title")
    if "story_prompt" in fields and not str(fields["story_prompt"] or "").strip():
        raise BadRequestError("Story prompt is required", field="story_prompt")
    for field in ("credits_per_chapter", "estimated_chapter_count"):
        if field in fields:
            value = fields[field]
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise BadRequestError(f"{field} must be an integer >= 1", field=field)
    for field in ("opening_beats", "guardrails", "characters", "roles", "cast"):
        if field in fields and not isinstance(fields[field], list):
            raise BadRequestError(f"{field} must be a list", field=field)


def _check_cast(story: Story):
    ok, reason = check_cast_consistency(story.characters, story.roles, story.cast)
    if not ok:
        raise BadRequestError(reason, field="cast")


def create_story(title: str, story_prompt: str, story_id: Optional[str] = None, **fields: Any) -> Story:
    """Create a catalog entry; the id is the slug of ``story_id`` or of the title"""
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise BadRequestError(f"Unknown story fields: {', '.join(sorted(unknown))}")
    fields.update(title=title, story_prompt=story_prompt)
    fields.setdefault("credits_per_chapter", settings.default_credits_per_chapter)
    fields.setdefault("estimated_chapter_count", settings.default_estimated_chapter_count)
    _validate_fields(fields)

    slug = slugify(story_id or title)
    if not slug:
        raise BadRequestError("Story id cannot be derived from title", field="id")

    with get_db() as db:
        if db.get(Story, slug) is not None:
            raise BadRequestError(f"Story id already in use: {slug}", field="id")
        story = Story(id=slug, **fields)
        _check_cast(story)
        db.add(story)
        db.commit()
        logger.info(f"Created story '{slug}' ({title})")
        return story


def update_story(story_id: str, **fields: Any) -> Story:
    unknown = set(fields) - EDITABLE_FIELDS
    if unknown:
        raise BadRequestError(f"Unknown story fields: {', '.join(sorted(unknown))}")
    _validate_fields(fields)
    with get_db() as db:
        story = db.get(Story, story_id)
        if story is None:
            raise NotFoundError(f"Story {story_id} not found")
        for key, value in fields.items():
            setattr(story, key, value)
        _check_cast(story)
        db.commit()
        logger.info(f"Updated story '{story_id}': {sorted(fields)}")
        return story


def get_story(story_id: str, active_only: bool = False, db=None) -> Story:
    if db is None:
        with get_db() as db:
            return get_story(story_id, active_only, db)
    story = db.get(Story, story_id)
    if story is None or (active_only and not story.is_active):
        raise NotFoundError(f"Story {story_id} not found")
    return story


def list_stories(active_only: bool = True) -> List[Story]:
    with get_db() as db:
        stmt = select(Story).order_by(Story.title)
        if active_only:
            stmt = stmt.where(Story.is_active.is_(True))
        return list(db.execute(stmt).scalars())


def set_story_active(story_id: str, active: bool) -> Story:
    with get_db() as db:
        story = db.get(Story, story_id)
        if story is None:
            raise NotFoundError(f"Story {story_id} not found")
        story.is_active = bool(active)
        db.commit()
        logger.info(f"Story '{story_id}' is_active={story.is_active}")
        return story


def delete_story(story_id: str):
    """Delete a story; refused while any session references it (deactivate instead)"""
    with get_db() as db:
        story = db.get(Story, story_id)
        if story is None:
            raise NotFoundError(f"Story {story_id} not found")
        session_count = db.execute(
            select(func.count(StorySession.id)).where(StorySession.story_id == story_id)
        ).scalar_one()
        if session_count:
            logger.warning(f"Refusing to delete story '{story_id}': {session_count} sessions reference it")
            raise ConflictError(f"Story {story_id} has {session_count} sessions; deactivate it instead",
                                sessions=session_count)
        # Reviews belong to the story
        db.query(Feedback).filter(Feedback.story_id == story_id).delete()
        db.delete(story)
        db.commit()
        logger.info(f"Deleted story '{story_id}'")


def validate_story_template(template: str, strict: bool = True) -> List[str]:
    """
    Return the tokens of ``template`` that no story session can fill.

    In strict mode a non-empty result raises UnknownPlaceholderError instead.
    """
    unknown = [name for name in find_placeholders(template) if name not in PLACEHOLDER_NAMES]
    if unknown and strict:
        raise UnknownPlaceholderError(unknown)
    return unknown


def increment_played(story_id: str, db) -> None:
    db.execute(update(Story).where(Story.id == story_id).values(total_played=Story.total_played + 1))


def story_to_dict(story: Story, include_prompt: bool = False) -> Dict[str, Any]:
    data = {
        "id": story.id,
        "title": story.title,
        "authorName": story.author_name,
        "headline": story.headline,
        "description": story.description,
        "language": story.language,
        "isActive": story.is_active,
        "pricing": {
            "creditsPerChapter": story.credits_per_chapter,
            "estimatedChapterCount": story.estimated_chapter_count,
        },
        "defaultToneStyleId": story.default_tone_style_id,
        "defaultTimeFlavorId": story.default_time_flavor_id,
        "characters": story.characters,
        "roles": story.roles,
        "cast": story.cast,
        "stats": {
            "totalPlayed": story.total_played,
            "totalReviews": story.total_reviews,
            "avgRating": story.avg_rating,
        },
    }
    if include_prompt:
        data.update(
            storyPrompt=story.story_prompt,
            openingBeats=story.opening_beats,
            guardrails=story.guardrails,
            createdAt=story.created_at.isoformat() if story.created_at else None,
            updatedAt=story.updated_at.isoformat() if story.updated_at else None,
        )
    return data

# --- END OF FILE services/story_catalog.py ---
