# --- app/api/dependencies.py ---

import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from ...core.config import settings
from ...core.errors import ForbiddenError, UnauthenticatedError
from ...database.db_utils import authenticate_user, get_user_by_username
from ...models.database import User
from ...services.chapter_generator import ChapterGenerator
from ...services.session_manager import SessionManager

logger = logging.getLogger(__name__)

# Basic Auth; missing credentials are handled below so the dev fallback can apply
security = HTTPBasic(auto_error=False)

_session_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Process-wide SessionManager; tests override this dependency"""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager(ChapterGenerator())
    return _session_manager


def get_current_user(credentials: Optional[HTTPBasicCredentials] = Depends(security)) -> User:
    """
    Resolve the caller once per request.

    Services receive the resulting ``user.id`` explicitly and never look up
    identity themselves. Runs in the threadpool, bcrypt included.
    """
    if credentials is None:
        if settings.dev_fallback_username:
            user = get_user_by_username(settings.dev_fallback_username)
            if user is not None:
                logger.debug(f"No credentials; using development user '{user.username}'")
                return user
            logger.warning(f"Development fallback user '{settings.dev_fallback_username}' does not exist")
        raise UnauthenticatedError("Authentication required")

    user = authenticate_user(credentials.username, credentials.password)
    if user is None:
        raise UnauthenticatedError()
    return user


async def get_current_admin_user(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        logger.warning(f"Admin access denied for non-admin user: {user.username}")
        raise ForbiddenError("User does not have admin privileges")
    return user

# --- END OF FILE app/api/dependencies.py ---
