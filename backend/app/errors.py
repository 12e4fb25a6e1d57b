"""Domain error taxonomy and the FastAPI handlers that render it.

Every failure that reaches a REST handler or a realtime event is one of the
classes below. REST responses use the shape::

    {"success": false, "message": "...", "errors": ["..."]}

and realtime failures are sent to the originating connection as an
``error`` (or ``auth_error``) frame carrying the same message.
"""
import logging
from typing import List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base class for expected, user-facing failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    message: str = "Request failed"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[str]] = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message
        self.errors = errors

    def to_body(self) -> dict:
        body = {"success": False, "message": self.message}
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(DomainError):
    """Malformed or missing input."""

    status_code = status.HTTP_400_BAD_REQUEST
    message = "Validation Error"


class AuthError(DomainError):
    """Bad credentials, or an invalid / expired token."""

    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Authentication failed"


class ForbiddenError(DomainError):
    """Caller is not allowed to act on the target (e.g. not an occupant)."""

    status_code = status.HTTP_403_FORBIDDEN
    message = "Forbidden"


class NotFoundError(DomainError):
    """Room, message or user is absent, inactive or soft-deleted."""

    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found"


class ConflictError(DomainError):
    """Duplicate username or room name, or a room at capacity."""

    status_code = status.HTTP_400_BAD_REQUEST
    message = "Conflict"


class RoomFullError(ConflictError):
    message = "Chatroom is full"


class InternalError(DomainError):
    """Store failure; the caller only sees a generic message."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Internal server error"


def _format_validation_errors(exc: RequestValidationError) -> List[str]:
    errors = []
    for err in exc.errors():
        # Drop the leading "body"/"query"/"path" marker from the location
        loc = [str(part) for part in err.get("loc", ())[1:]]
        prefix = ".".join(loc)
        errors.append(f"{prefix}: {err.get('msg')}" if prefix else str(err.get("msg")))
    return errors


def install_error_handlers(app: FastAPI) -> None:
    """Register handlers translating failures into the tagged response shape."""

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        body = ValidationError(errors=_format_validation_errors(exc)).to_body()
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("[API] Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=InternalError().to_body(),
        )
