"""
Error taxonomy for the feed core and its HTTP mapping.

Every failure the core can report is a FeedError subclass carrying a
human-readable message, a machine-readable code and the HTTP status the API
layer answers with. Authorization and not-found failures are terminal for
the request and never retried.

PartialFailure is the odd one out: it describes a cascade step that failed
after the triggering request already completed, so it is logged and
recorded on the cleanup job, never returned to a client.
"""
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class FeedError(Exception):
    """Base class for all feed-core errors."""

    code = "FEED_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details:
            result["details"] = self.details
        return result


class InvalidCredentials(FeedError):
    code = "INVALID_CREDENTIALS"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Email or password is wrong"):
        super().__init__(message)


class InvalidToken(FeedError):
    code = "INVALID_TOKEN"
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message)


class TokenExpired(InvalidToken):
    code = "TOKEN_EXPIRED"

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message)


class Forbidden(FeedError):
    """Ownership or interaction-policy violation; ``reason`` says which."""

    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, reason: str):
        super().__init__(reason, details={"reason": reason})
        self.reason = reason


class NotFound(FeedError):
    """A missing entity, or a missing relation such as "not liked"."""

    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(FeedError):
    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT


class ValidationFailed(FeedError):
    code = "VALIDATION_FAILED"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, message: str, errors: Optional[list[dict[str, str]]] = None):
        super().__init__(message, details={"errors": errors} if errors else None)
        self.errors = errors or []


class PartialFailure(FeedError):
    code = "PARTIAL_FAILURE"

    def __init__(self, user_id: str, step: str, applied_steps: list[str], error: str):
        super().__init__(
            f"Cleanup for user {user_id} failed at step '{step}': {error}",
            details={
                "user_id": user_id,
                "step": step,
                "applied_steps": applied_steps,
            },
        )
        self.user_id = user_id
        self.step = step
        self.applied_steps = applied_steps


# ─────────────────────────── HTTP mapping ─────────────────────────────────

def register_error_handlers(app: FastAPI) -> None:
    """Register the global exception handlers on the FastAPI app."""

    @app.exception_handler(FeedError)
    async def feed_error_handler(request: Request, exc: FeedError):
        logger.info(
            "%s on %s %s: %s",
            exc.code, request.method, request.url.path, exc.message,
        )
        headers = None
        if exc.status_code == status.HTTP_401_UNAUTHORIZED:
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(
            status_code=exc.status_code, content=exc.to_dict(), headers=headers
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        failure = ValidationFailed(
            "Invalid request data",
            errors=[
                {
                    "field": ".".join(str(loc) for loc in e["loc"]),
                    "message": e["msg"],
                }
                for e in exc.errors()
            ],
        )
        logger.warning("Validation error on %s: %s", request.url.path, failure.errors)
        return JSONResponse(status_code=failure.status_code, content=failure.to_dict())

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception on %s: %s", request.url.path, exc, exc_info=True
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "An unexpected error occurred", "code": "INTERNAL_ERROR"},
        )
