# --- START OF FILE controllers/story_controller.py ---

from fastapi import APIRouter, Depends, Query, Response, status
from typing import List, Dict, Any, Optional
from pydantic import BaseModel, Field
import logging

from ....core.errors import StoryRunnerError, ServerError
from ....database.db_utils import get_user
from ....models.database import User
from ....services import settings_store, story_catalog
from ....services.session_manager import SessionManager, session_to_dict, chapter_to_dict
from ..dependencies import get_current_user, get_session_manager

logger = logging.getLogger(__name__)

router = APIRouter()

# --- Pydantic Models ---

class StartSessionRequest(BaseModel):
    storyId: str
    toneStyleId: Optional[str] = None
    timeFlavorId: Optional[str] = None

class GenerateChapterRequest(BaseModel):
    sessionId: str

class AdvanceRequest(BaseModel):
    sessionId: str
    choice: Optional[str] = Field(default=None, max_length=500, description="Free-text or verbatim chosen option")
    choiceIndex: Optional[int] = Field(default=None, ge=0, description="Index into the previous chapter's choices")
    expectedChapter: Optional[int] = Field(default=None, ge=0, description="Chapter the client is looking at")

class CompleteSessionRequest(BaseModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    text: Optional[str] = Field(default=None, max_length=250)


def _chapter_response(chapter, balance: int) -> Dict[str, Any]:
    return {"chapter": chapter_to_dict(chapter), "walletBalance": balance}


# --- Catalog ---

@router.get("/settings", response_model=Dict[str, List[Dict[str, Any]]])
async def get_story_settings():
    """Tone styles and time flavors a player can choose from"""
    return settings_store.get_settings()


@router.get("/stories", response_model=List[Dict[str, Any]])
async def list_stories():
    try:
        return [story_catalog.story_to_dict(s) for s in story_catalog.list_stories(active_only=True)]
    except StoryRunnerError:
        raise
    except Exception:
        logger.exception("Failed to retrieve stories")
        raise ServerError("Failed to retrieve stories")


@router.get("/stories/{story_id}", response_model=Dict[str, Any])
async def get_story(story_id: str):
    story = story_catalog.get_story(story_id, active_only=True)
    return story_catalog.story_to_dict(story)


# --- Play ---

@router.post("/start", status_code=status.HTTP_201_CREATED)
async def start_session(request: StartSessionRequest, response: Response,
                        user: User = Depends(get_current_user),
                        manager: SessionManager = Depends(get_session_manager)):
    """Start a session (debits chapter 1) or resume the caller's active one"""
    try:
        session, resumed = manager.start(user.id, request.storyId, request.toneStyleId, request.timeFlavorId)
    except StoryRunnerError:
        raise
    except Exception:
        logger.exception(f"Failed to start story {request.storyId} for user {user.id}")
        raise ServerError("Failed to start story")
    if resumed:
        response.status_code = status.HTTP_200_OK
    return {
        "session": session_to_dict(session),
        "resumed": resumed,
        "walletBalance": get_user(user.id).wallet_balance,
    }


@router.post("/generate-chapter")
async def generate_first_chapter(request: GenerateChapterRequest,
                                 user: User = Depends(get_current_user),
                                 manager: SessionManager = Depends(get_session_manager)):
    try:
        chapter, balance = await manager.generate_first_chapter(user.id, request.sessionId)
        return _chapter_response(chapter, balance)
    except StoryRunnerError:
        raise
    except Exception:
        logger.exception(f"Unexpected error generating first chapter for session {request.sessionId}")
        raise ServerError("An unexpected server error occurred.")


@router.post("/advance")
async def advance_session(request: AdvanceRequest,
                          user: User = Depends(get_current_user),
                          manager: SessionManager = Depends(get_session_manager)):
    try:
        chapter, balance = await manager.advance(
            user.id,
            request.sessionId,
            choice=request.choice,
            choice_index=request.choiceIndex,
            expected_chapter=request.expectedChapter,
        )
        return _chapter_response(chapter, balance)
    except StoryRunnerError:
        raise
    except Exception:
        logger.exception(f"Unexpected error advancing session {request.sessionId}")
        raise ServerError("An unexpected server error occurred.")


@router.post("/session/{session_id}/complete")
async def complete_session(session_id: str, request: Optional[CompleteSessionRequest] = None,
                           user: User = Depends(get_current_user),
                           manager: SessionManager = Depends(get_session_manager)):
    request = request or CompleteSessionRequest()
    session = manager.complete(user.id, session_id, rating=request.rating, text=request.text)
    return {"session": session_to_dict(session)}


@router.post("/session/{session_id}/abandon")
async def abandon_session(session_id: str,
                          user: User = Depends(get_current_user),
                          manager: SessionManager = Depends(get_session_manager)):
    session = manager.abandon(user.id, session_id)
    return {"session": session_to_dict(session)}


@router.get("/session/{session_id}")
async def get_session(session_id: str,
                      user: User = Depends(get_current_user),
                      manager: SessionManager = Depends(get_session_manager)):
    return {"session": session_to_dict(manager.get_session(session_id, user.id))}


@router.get("/session/{session_id}/chapters")
async def get_session_chapters(session_id: str,
                               user: User = Depends(get_current_user),
                               manager: SessionManager = Depends(get_session_manager)):
    chapters = manager.get_chapters(session_id, user.id)
    return {"items": [chapter_to_dict(c) for c in chapters]}


@router.get("/sessions")
async def list_my_sessions(status_filter: Optional[str] = Query(default=None, alias="status"),
                           user: User = Depends(get_current_user),
                           manager: SessionManager = Depends(get_session_manager)):
    sessions = manager.list_user_sessions(user.id, status=status_filter)
    return {"items": [session_to_dict(s) for s in sessions]}

# --- END OF FILE controllers/story_controller.py ---
