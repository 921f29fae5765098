# --- START OF FILE controllers/feedback_controller.py ---

from fastapi import APIRouter, Depends, Query
from typing import Optional
from pydantic import BaseModel, Field
import logging

from ....models.database import User
from ....services import feedback_service
from ..dependencies import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Feedbacks"])


class FeedbackRequest(BaseModel):
    storyId: str
    stars: int = Field(..., ge=1, le=5)
    text: Optional[str] = Field(default="", max_length=250)


@router.post("/feedbacks")
async def submit_feedback(request: FeedbackRequest, user: User = Depends(get_current_user)):
    feedback, story = feedback_service.submit_feedback(user.id, request.storyId, request.stars, request.text or "")
    return {
        "ok": True,
        "stats": {"totalReviews": story.total_reviews, "avgRating": story.avg_rating},
        "last": {
            "displayName": user.display_name or user.username,
            "stars": feedback.stars,
            "text": feedback.text,
            "date": feedback.updated_at.isoformat(),
        },
    }


@router.get("/stories/{story_id}/feedbacks")
async def list_story_feedbacks(story_id: str,
                               limit: int = Query(default=feedback_service.DEFAULT_PAGE_SIZE),
                               cursor: Optional[str] = Query(default=None, description="nextCursor of the previous page")):
    items, next_cursor = feedback_service.list_story_feedbacks(story_id, limit=limit, before=cursor)
    body = {"items": items}
    if next_cursor is not None:
        body["nextCursor"] = next_cursor
    return body

# --- END OF FILE controllers/feedback_controller.py ---
