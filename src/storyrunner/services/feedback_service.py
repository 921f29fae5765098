# --- services/feedback_service.py ---

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, or_, select

from ..core.errors import BadRequestError, NotFoundError
from ..database.db_utils import get_db
from ..models.database import Feedback, Story, User, FEEDBACK_STATUSES, utcnow

logger = logging.getLogger(__name__)

MAX_TEXT_LENGTH = 250
MAX_PAGE_SIZE = 50
DEFAULT_PAGE_SIZE = 20


def _recompute_story_stats(db, story: Story):
    """Review count and one-decimal average over visible reviews"""
    count, average = db.execute(
        select(func.count(Feedback.id), func.avg(Feedback.stars))
        .where(Feedback.story_id == story.id, Feedback.status == "visible")
    ).one()
    story.total_reviews = count
    story.avg_rating = round(float(average), 1) if average is not None else 0.0


def submit_feedback(user_id: str, story_id: str, stars: int, text: str = "") -> Tuple[Feedback, Story]:
    """Create or replace the user's review of an active story"""
    if isinstance(stars, bool) or not isinstance(stars, int) or not 1 <= stars <= 5:
        raise BadRequestError("Stars must be an integer from 1 to 5", field="stars")
    text = (text or "").strip()
    if len(text) > MAX_TEXT_LENGTH:
        raise BadRequestError(f"Text must be at most {MAX_TEXT_LENGTH} characters", field="text")

    with get_db() as db:
        story = db.get(Story, story_id)
        if story is None or not story.is_active:
            raise NotFoundError(f"Story {story_id} not found")
        if db.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found")

        feedback = db.execute(
            select(Feedback).where(Feedback.user_id == user_id, Feedback.story_id == story_id)
        ).scalar_one_or_none()
        if feedback is None:
            feedback = Feedback(user_id=user_id, story_id=story_id, stars=stars, text=text)
            db.add(feedback)
        else:
            feedback.stars = stars
            feedback.text = text
            feedback.updated_at = utcnow()
        db.flush()
        _recompute_story_stats(db, story)
        db.commit()
        logger.info(f"User {user_id} rated story '{story_id}' {stars} stars")
        return feedback, story


def _parse_cursor(cursor: str) -> Tuple[datetime, str]:
    """'<updated_at iso>|<feedback id>' as produced by list_story_feedbacks"""
    stamp, sep, feedback_id = (cursor or "").rpartition("|")
    try:
        if not sep or not feedback_id:
            raise ValueError(cursor)
        return datetime.fromisoformat(stamp), feedback_id
    except ValueError:
        raise BadRequestError(f"Invalid cursor: {cursor}", field="cursor")


def list_story_feedbacks(story_id: str, limit: int = DEFAULT_PAGE_SIZE,
                         before: Optional[str] = None) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """
    Visible reviews of an active story, newest first.

    Pages are keyed on (updated_at, id) so reviews sharing a timestamp are
    neither skipped nor repeated. The returned cursor is None on the last page.
    """
    if not isinstance(limit, int) or limit <= 0:
        limit = DEFAULT_PAGE_SIZE
    limit = min(limit, MAX_PAGE_SIZE)
    with get_db() as db:
        story = db.get(Story, story_id)
        if story is None or not story.is_active:
            raise NotFoundError(f"Story {story_id} not found")
        stmt = (
            select(Feedback, User.display_name)
            .join(User, User.id == Feedback.user_id)
            .where(Feedback.story_id == story_id, Feedback.status == "visible")
        )
        if before is not None:
            stamp, feedback_id = _parse_cursor(before)
            stmt = stmt.where(or_(Feedback.updated_at < stamp,
                                  and_(Feedback.updated_at == stamp, Feedback.id < feedback_id)))
        stmt = stmt.order_by(Feedback.updated_at.desc(), Feedback.id.desc()).limit(limit + 1)
        rows = db.execute(stmt).all()

    has_more = len(rows) > limit
    rows = rows[:limit]
    items = [
        {
            "displayName": display_name or "StoryRunner User",
            "stars": feedback.stars,
            "text": feedback.text,
            "date": feedback.updated_at.isoformat(),
        }
        for feedback, display_name in rows
    ]
    next_cursor = None
    if has_more:
        last = rows[-1][0]
        next_cursor = f"{last.updated_at.isoformat()}|{last.id}"
    return items, next_cursor


def list_feedbacks(status: Optional[str] = None, story_id: Optional[str] = None,
                   limit: int = 50, offset: int = 0) -> List[Feedback]:
    if status is not None and status not in FEEDBACK_STATUSES:
        raise BadRequestError(f"Unknown feedback status: {status}", field="status")
    with get_db() as db:
        stmt = select(Feedback)
        if status is not None:
            stmt = stmt.where(Feedback.status == status)
        if story_id is not None:
            stmt = stmt.where(Feedback.story_id == story_id)
        stmt = stmt.order_by(Feedback.updated_at.desc()).offset(offset).limit(limit)
        return list(db.execute(stmt).scalars())


def set_feedback_status(feedback_id: str, status: str) -> Feedback:
    """Moderate a review; story stats only count visible ones"""
    if status not in FEEDBACK_STATUSES:
        raise BadRequestError(f"Unknown feedback status: {status}", field="status")
    with get_db() as db:
        feedback = db.get(Feedback, feedback_id)
        if feedback is None:
            raise NotFoundError(f"Feedback {feedback_id} not found")
        feedback.status = status
        db.flush()
        _recompute_story_stats(db, db.get(Story, feedback.story_id))
        db.commit()
        logger.info(f"Feedback {feedback_id} status set to '{status}'")
        return feedback


def feedback_to_dict(feedback: Feedback) -> Dict[str, Any]:
    return {
        "id": feedback.id,
        "userId": feedback.user_id,
        "storyId": feedback.story_id,
        "stars": feedback.stars,
        "text": feedback.text,
        "status": feedback.status,
        "createdAt": feedback.created_at.isoformat() if feedback.created_at else None,
        "updatedAt": feedback.updated_at.isoformat() if feedback.updated_at else None,
    }

# --- END OF FILE services/feedback_service.py ---
