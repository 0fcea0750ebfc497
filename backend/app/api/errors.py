"""Maps engine errors to HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.errors import (
    ConflictError,
    DependencyUnavailableError,
    InvalidStateError,
    LostFoundError,
    MigrationFailureError,
    NotFoundError,
    PreconditionFailedError,
    RateLimitedError,
    TransientFailureError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[LostFoundError], int]] = [
    (NotFoundError, 404),
    (InvalidStateError, 422),
    (PreconditionFailedError, 422),
    (ConflictError, 409),
    (RateLimitedError, 429),
    (DependencyUnavailableError, 503),
    (TransientFailureError, 503),
    (MigrationFailureError, 500),
]


def status_for(error: LostFoundError) -> int:
    """HTTP status for an engine error (500 for anything unmapped)."""
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return code
    return 500


async def lost_found_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render engine errors as {"error": {"code", "message"}}."""
    assert isinstance(exc, LostFoundError)
    code = status_for(exc)
    headers: dict[str, str] = {}

    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(exc.retry_after_seconds)

    if code >= 500:
        logger.error(
            f"{request.method} {request.url.path} failed: {exc}",
            extra={"structured": {"code": exc.code, "status": code}},
        )
        # Internal details of a failed migration stay in the logs
        message = "Internal error" if isinstance(exc, MigrationFailureError) else str(exc)
    else:
        message = str(exc)

    return JSONResponse(
        status_code=code,
        content={"error": {"code": exc.code, "message": message}},
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LostFoundError, lost_found_error_handler)
