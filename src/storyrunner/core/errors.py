"""Error types raised by the services and rendered by the API.

Every error carries a machine-readable ``code`` and the HTTP status the API
answers with. Extra keyword arguments end up in the response body next to
the code, e.g. ``{"error": "INSUFFICIENT_CREDITS", "needed": 10, "balance": 4}``.
"""

from typing import Any, Dict, Iterable, Optional


class StoryRunnerError(Exception):
    code = "SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str = "", headers: Optional[Dict[str, str]] = None, **extra: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.headers = headers
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.code, "detail": self.message}
        body.update(self.extra)
        return body


class ServerError(StoryRunnerError):
    pass


class NotFoundError(StoryRunnerError):
    code = "NOT_FOUND"
    status_code = 404


class BadRequestError(StoryRunnerError):
    code = "BAD_REQUEST"
    status_code = 400

    def __init__(self, message: str = "", field: Optional[str] = None, **extra: Any):
        if field is not None:
            extra["field"] = field
        super().__init__(message, **extra)


class ConflictError(StoryRunnerError):
    code = "CONFLICT"
    status_code = 409


class InsufficientCreditsError(StoryRunnerError):
    code = "INSUFFICIENT_CREDITS"
    status_code = 402

    def __init__(self, needed: int, balance: int):
        super().__init__(f"Needed {needed} credits, balance is {balance}", needed=needed, balance=balance)


class SessionNotActiveError(StoryRunnerError):
    code = "SESSION_NOT_ACTIVE"
    status_code = 409

    def __init__(self, session_id: str, status: str):
        super().__init__(f"Session {session_id} is {status}", status=status)


class ChapterConflictError(StoryRunnerError):
    code = "CHAPTER_CONFLICT"
    status_code = 409

    def __init__(self, expected: int, actual: int):
        super().__init__(
            f"Chapter mismatch. Expected {expected}, session is at {actual}. Please refresh.",
            expected=expected,
            actual=actual,
        )


class AlreadyRefundedError(StoryRunnerError):
    code = "ALREADY_REFUNDED"
    status_code = 409


class NotRefundableError(StoryRunnerError):
    code = "NOT_REFUNDABLE"
    status_code = 400


class UnknownPlaceholderError(StoryRunnerError):
    code = "UNKNOWN_PLACEHOLDER"
    status_code = 400

    def __init__(self, tokens: Iterable[str]):
        tokens = list(tokens)
        super().__init__(f"Unknown placeholders: {', '.join(tokens)}", tokens=tokens)
        self.tokens = tokens


class UnauthenticatedError(StoryRunnerError):
    code = "UNAUTHENTICATED"
    status_code = 401

    def __init__(self, message: str = "Incorrect username or password"):
        super().__init__(message, headers={"WWW-Authenticate": "Basic"})


class ForbiddenError(StoryRunnerError):
    code = "FORBIDDEN"
    status_code = 403


class GenerationError(StoryRunnerError):
    # Upstream generation failures surface as SERVER_ERROR to clients
    code = "SERVER_ERROR"
    status_code = 502
