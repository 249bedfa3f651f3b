"""Error taxonomy and the FastAPI handlers that render it.

Every failure leaving the API has the shape::

    {"ok": false, "error": "<kind>", "detail": "<optional text>"}

Validation and auth errors are raised by the entry points themselves.
Upstream and unexpected errors are converted at the outermost boundary so
stack traces never reach the client.
"""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from buddy.core.logging import get_logger

logger = get_logger(__name__)


# ── Exceptions ──────────────────────────────────────────────────────


class ApiError(Exception):
    """Base class for errors that map onto an HTTP error body."""

    kind: str = "internal"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: str | None = None, *, kind: str | None = None) -> None:
        self.detail = detail
        if kind is not None:
            self.kind = kind
        super().__init__(detail or self.kind)

    def to_body(self) -> dict:
        body: dict = {"ok": False, "error": self.kind}
        if self.detail:
            body["detail"] = self.detail
        return body


class ValidationFailed(ApiError):
    kind = "validation"
    status_code = status.HTTP_400_BAD_REQUEST


class Unauthenticated(ApiError):
    kind = "unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED


class Forbidden(ApiError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class Conflict(ApiError):
    kind = "conflict"
    status_code = status.HTTP_409_CONFLICT


class UpstreamFailure(ApiError):
    """The completion provider answered with a non-success status or bad payload."""

    kind = "upstream_failure"


class ExtractionFailed(ApiError):
    """Structured extraction output was not JSON or did not match the schema."""

    kind = "extraction_failed"


class InternalError(ApiError):
    kind = "internal"


# ── Handlers ────────────────────────────────────────────────────────


async def _api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "request_failed",
            path=request.url.path,
            error=exc.kind,
            detail=exc.detail,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    detail = f"{loc}: {first.get('msg')}" if loc else first.get("msg")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ValidationFailed(detail).to_body(),
    )


async def _unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=InternalError().to_body(),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _api_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_handler)
