"""
Panel error types and their HTTP translation.

Services raise these; routers let them propagate and the handlers registered
by register_exception_handlers() turn them into JSON bodies with a
``message`` field.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class PanelError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PanelError):
    """Missing required fields, empty selections, invalid enum values."""

    status_code = 400


class AuthenticationError(PanelError):
    status_code = 401


class PermissionDeniedError(PanelError):
    status_code = 403


class NotFoundError(PanelError):
    """Referenced client, playlist or stream does not exist."""

    status_code = 404


class ConflictError(PanelError):
    """Uniqueness violation (duplicate username or playlist name)."""

    status_code = 409


class TransientIOError(PanelError):
    """Network or file error during refresh or job processing."""

    status_code = 502


class PlaylistReadError(TransientIOError):
    """A playlist file could not be read."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to read M3U file {path}: {reason}")
        self.path = path
        self.reason = reason


class PlaylistFetchError(TransientIOError):
    """A remote playlist could not be fetched."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to fetch M3U playlist from {url}: {reason}")
        self.url = url
        self.reason = reason


class ParseError(PanelError):
    """Unusable M3U content.

    parse_m3u_content() reports this through ParseResult.error instead of
    raising; callers that need an exception call ParseResult.raise_for_error().
    """

    status_code = 400


def register_exception_handlers(app: FastAPI) -> None:
    """Map PanelError subclasses and unexpected errors to JSON responses."""

    @app.exception_handler(PanelError)
    async def panel_error_handler(request: Request, exc: PanelError):
        if exc.status_code >= 500:
            logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("[API] Unhandled error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"message": "Internal server error"})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"Invalid value for {field}: {first.get('msg')}" if field else first.get("msg")
        else:
            message = "Invalid request"
        return JSONResponse(status_code=400, content={"message": message})
