# --- START OF FILE controllers/admin_controller.py ---

import logging
from fastapi import APIRouter, Depends, Response, status, Query
from typing import List, Dict, Any, Optional
from pydantic import BaseModel, Field
from datetime import datetime

from ....core.errors import BadRequestError, StoryRunnerError, ServerError
from ....database.db_utils import create_user, get_user, list_users
from ....models.database import User, TX_CREDIT, TX_DEBIT
from ....services import feedback_service, settings_store, story_catalog, wallet_ledger
from ....services.prompt_compositor import PLACEHOLDER_NAMES
from ....services.session_manager import SessionManager, session_to_dict, chapter_to_dict
from ..dependencies import get_current_admin_user, get_session_manager

logger = logging.getLogger(__name__)

# --- Pydantic Models ---

class CharacterModel(BaseModel):
    id: str
    name: str
    summary: str = ""
    hooks: List[str] = []

class RoleModel(BaseModel):
    id: str
    label: str

class CastEntryModel(BaseModel):
    character_id: str
    role_ids: List[str] = []

class StoryBase(BaseModel):
    author_name: Optional[str] = None
    headline: Optional[str] = None
    description: Optional[str] = None
    language: str = "en"
    is_active: bool = True
    credits_per_chapter: Optional[int] = Field(default=None, ge=1)
    estimated_chapter_count: Optional[int] = Field(default=None, ge=1)
    default_tone_style_id: Optional[str] = None
    default_time_flavor_id: Optional[str] = None
    opening_beats: List[str] = []
    guardrails: List[str] = []
    characters: List[CharacterModel] = []
    roles: List[RoleModel] = []
    cast: List[CastEntryModel] = []

class StoryCreateRequest(StoryBase):
    """Request to create a story; ``id`` defaults to the slug of the title"""
    id: Optional[str] = None
    title: str
    story_prompt: str

class StoryUpdateRequest(BaseModel):
    """Partial update; only the fields sent are changed"""
    title: Optional[str] = None
    story_prompt: Optional[str] = None
    author_name: Optional[str] = None
    headline: Optional[str] = None
    description: Optional[str] = None
    language: Optional[str] = None
    is_active: Optional[bool] = None
    credits_per_chapter: Optional[int] = Field(default=None, ge=1)
    estimated_chapter_count: Optional[int] = Field(default=None, ge=1)
    default_tone_style_id: Optional[str] = None
    default_time_flavor_id: Optional[str] = None
    opening_beats: Optional[List[str]] = None
    guardrails: Optional[List[str]] = None
    characters: Optional[List[CharacterModel]] = None
    roles: Optional[List[RoleModel]] = None
    cast: Optional[List[CastEntryModel]] = None

class StoryActiveRequest(BaseModel):
    is_active: bool

class TemplateValidationRequest(BaseModel):
    template: str
    strict: bool = False

class FlavorOptionModel(BaseModel):
    id: str = Field(..., min_length=1)
    displayLabel: str = Field(..., min_length=1)
    description: str = ""

class SettingsUpdateRequest(BaseModel):
    tone_styles: List[FlavorOptionModel]
    time_flavors: List[FlavorOptionModel]

class UserCreateRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    email: Optional[str] = None
    display_name: Optional[str] = None
    is_admin: bool = False

class WalletAdjustRequest(BaseModel):
    type: str = Field(..., description="'credit' or 'debit'")
    amount: int = Field(..., gt=0)
    note: str = ""

class FeedbackStatusRequest(BaseModel):
    status: str


def _user_to_dict(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "displayName": user.display_name,
        "isAdmin": user.is_admin,
        "walletBalance": user.wallet_balance,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
        "lastLogin": user.last_login.isoformat() if user.last_login else None,
    }


# --- Create Router ---
router = APIRouter(
    prefix="/admin", # Add prefix for all admin routes
    tags=["Admin"], # Group in Swagger UI
    dependencies=[Depends(get_current_admin_user)] # Apply auth to all routes in this router
)

# === Story Endpoints ===

@router.post("/stories", status_code=status.HTTP_201_CREATED)
async def admin_create_story(request: StoryCreateRequest):
    """Creates a story (admin only)"""
    logger.info(f"Received request to create story: {request.title}")
    fields = request.model_dump(exclude={"id", "title", "story_prompt"}, exclude_none=True)
    try:
        story = story_catalog.create_story(request.title, request.story_prompt, story_id=request.id, **fields)
        return story_catalog.story_to_dict(story, include_prompt=True)
    except StoryRunnerError:
        raise
    except Exception:
        logger.exception(f"Failed to create story: {request.title}")
        raise ServerError("Failed to create story")

@router.get("/stories")
async def admin_list_stories():
    """Lists every story, active or not (admin only)"""
    return [story_catalog.story_to_dict(s) for s in story_catalog.list_stories(active_only=False)]

@router.post("/stories/validate-template")
async def admin_validate_template(request: TemplateValidationRequest):
    """Reports placeholders no session can fill; strict mode answers 400 instead"""
    unknown = story_catalog.validate_story_template(request.template, strict=request.strict)
    return {"valid": not unknown, "unknown": unknown, "known": list(PLACEHOLDER_NAMES)}

@router.get("/stories/{story_id}")
async def admin_get_story(story_id: str):
    return story_catalog.story_to_dict(story_catalog.get_story(story_id), include_prompt=True)

@router.put("/stories/{story_id}")
async def admin_update_story(story_id: str, request: StoryUpdateRequest):
    fields = request.model_dump(exclude_unset=True)
    if not fields:
        raise BadRequestError("No fields to update")
    try:
        story = story_catalog.update_story(story_id, **fields)
        return story_catalog.story_to_dict(story, include_prompt=True)
    except StoryRunnerError:
        raise
    except Exception:
        logger.exception(f"Failed to update story {story_id}")
        raise ServerError("Failed to update story")

@router.put("/stories/{story_id}/active")
async def admin_set_story_active(story_id: str, request: StoryActiveRequest):
    story = story_catalog.set_story_active(story_id, request.is_active)
    return {"id": story.id, "isActive": story.is_active}

@router.delete("/stories/{story_id}", status_code=status.HTTP_204_NO_CONTENT)
async def admin_delete_story(story_id: str):
    """Deletes a story if no sessions depend on it (admin only)"""
    story_catalog.delete_story(story_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# === Settings Endpoints ===

@router.get("/settings")
async def admin_get_settings():
    return settings_store.get_settings()

@router.put("/settings")
async def admin_replace_settings(request: SettingsUpdateRequest):
    """Replaces the tone style and time flavor catalog (admin only)"""
    return settings_store.replace_settings(
        [o.model_dump() for o in request.tone_styles],
        [o.model_dump() for o in request.time_flavors],
    )


# === Session Endpoints ===

@router.get("/sessions")
async def admin_list_sessions(userId: Optional[str] = None, storyId: Optional[str] = None,
                              status_filter: Optional[str] = Query(default=None, alias="status"),
                              limit: int = Query(default=50, ge=1, le=100),
                              offset: int = Query(default=0, ge=0),
                              manager: SessionManager = Depends(get_session_manager)):
    items, total = manager.list_sessions(user_id=userId, story_id=storyId, status=status_filter,
                                         limit=limit, offset=offset)
    return {"items": [session_to_dict(s) for s in items], "total": total, "limit": limit, "offset": offset}

@router.get("/sessions/{session_id}")
async def admin_get_session(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    session = manager.get_session(session_id)
    data = session_to_dict(session)
    data["storyPrompt"] = session.story_prompt
    return data

@router.get("/sessions/{session_id}/chapters")
async def admin_get_session_chapters(session_id: str, manager: SessionManager = Depends(get_session_manager)):
    return {"items": [chapter_to_dict(c) for c in manager.get_chapters(session_id)]}


# === User Endpoints ===

@router.post("/users", status_code=status.HTTP_201_CREATED)
async def admin_create_user(request: UserCreateRequest):
    user = create_user(request.username, request.password, email=request.email,
                       is_admin=request.is_admin, display_name=request.display_name)
    return _user_to_dict(user)

@router.get("/users")
async def admin_list_users(limit: int = Query(default=50, ge=1, le=200), offset: int = Query(default=0, ge=0)):
    return {"items": [_user_to_dict(u) for u in list_users(limit=limit, offset=offset)]}

@router.post("/users/{user_id}/wallet")
async def admin_adjust_wallet(user_id: str, request: WalletAdjustRequest,
                              admin: User = Depends(get_current_admin_user)):
    """Manual credit or debit of a user's wallet, recorded with source 'admin'"""
    get_user(user_id)
    note = request.note or f"adjusted by {admin.username}"
    if request.type == TX_CREDIT:
        tx = wallet_ledger.credit(user_id, request.amount, source="admin", note=note)
    elif request.type == TX_DEBIT:
        tx = wallet_ledger.debit(user_id, request.amount, source="admin", note=note)
    else:
        raise BadRequestError("type must be 'credit' or 'debit'", field="type")
    logger.info(f"Admin {admin.username} {request.type} {request.amount} credits for user {user_id}")
    return {"ok": True, "balance": tx.balance_after, "transaction": tx.to_dict()}


# === Analytics Endpoints ===

@router.get("/analytics/wallet")
async def admin_wallet_analytics(start: Optional[datetime] = None, end: Optional[datetime] = None):
    if start is not None and end is not None and start > end:
        raise BadRequestError("start must not be after end", field="start")
    stats = wallet_ledger.transaction_stats(start=start, end=end)
    stats["range"] = {
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
    }
    return stats

@router.get("/analytics/flavors")
async def admin_flavor_analytics(manager: SessionManager = Depends(get_session_manager)):
    return manager.flavor_stats()


# === Feedback Endpoints ===

@router.get("/feedbacks")
async def admin_list_feedbacks(status_filter: Optional[str] = Query(default=None, alias="status"),
                               storyId: Optional[str] = None,
                               limit: int = Query(default=50, ge=1, le=200),
                               offset: int = Query(default=0, ge=0)):
    items = feedback_service.list_feedbacks(status=status_filter, story_id=storyId, limit=limit, offset=offset)
    return {"items": [feedback_service.feedback_to_dict(f) for f in items]}

@router.put("/feedbacks/{feedback_id}/status")
async def admin_set_feedback_status(feedback_id: str, request: FeedbackStatusRequest):
    feedback = feedback_service.set_feedback_status(feedback_id, request.status)
    return feedback_service.feedback_to_dict(feedback)

# --- END OF FILE controllers/admin_controller.py ---
