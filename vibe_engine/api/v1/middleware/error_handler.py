"""Global error-handling middleware.

Catches engine exceptions and translates them into structured JSON error
responses carrying the failure's :class:`ErrorKind`.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from vibe_engine.utils.exceptions import (
    ActorDisabledError,
    ApiKeyMissingError,
    BoardNotFoundError,
    InvalidBoardError,
    InvalidTransitionError,
    LLMError,
    ModelLoadError,
    NoProviderAvailableError,
    RequestCancelledError,
    RequestTimeoutError,
    StaleAttemptError,
    TaskNotFoundError,
    VibeError,
)
from vibe_engine.utils.logging import get_logger

logger = get_logger(__name__)

# Map exception types to HTTP status codes; subclasses inherit their parent's code.
_STATUS_MAP: dict[type, int] = {
    TaskNotFoundError: 404,
    BoardNotFoundError: 404,
    InvalidBoardError: 400,
    InvalidTransitionError: 409,
    StaleAttemptError: 409,
    ActorDisabledError: 409,
    ApiKeyMissingError: 503,
    NoProviderAvailableError: 503,
    ModelLoadError: 502,
    LLMError: 502,
    RequestTimeoutError: 504,
    RequestCancelledError: 409,
}


def status_for(exc: VibeError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_MAP:
            return _STATUS_MAP[cls]
    return 500


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware that wraps every request in a try/except and converts
    engine exceptions to JSON error responses.

    Unknown exceptions are logged and returned as HTTP 500.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await call_next(request)

        except VibeError as exc:
            status_code = status_for(exc)
            logger.warning(
                "handled_error",
                error_type=type(exc).__name__,
                kind=exc.kind.value,
                status_code=status_code,
                detail=str(exc),
                path=request.url.path,
            )
            return JSONResponse(
                status_code=status_code,
                content={
                    "error": type(exc).__name__,
                    "detail": str(exc),
                    "kind": exc.kind.value,
                },
            )

        except Exception as exc:
            logger.error(
                "unhandled_error",
                error_type=type(exc).__name__,
                detail=str(exc),
                path=request.url.path,
                exc_info=True,
            )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "InternalServerError",
                    "detail": "An unexpected error occurred.  Please try again later.",
                    "kind": "UNKNOWN",
                },
            )
