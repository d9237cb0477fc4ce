"""Global exception handlers for the FastAPI application.

Every error leaves the service as ``{error, detail, request_id}`` JSON.
Stack traces are logged server-side and never sent to the client.
"""

import logging
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.errors import (
    BuildFailedError,
    PipelineError,
    StageTimeoutError,
    format_error_response,
)

logger = logging.getLogger(__name__)


def _get_request_id(request: Request) -> str:
    """The ID set by :class:`RequestIDMiddleware`, or a fresh one for bare apps."""
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


# ------------------------------------------------------------------
# Individual exception handlers
# ------------------------------------------------------------------

async def global_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """Catch-all for any unhandled exception — returns 500."""
    request_id = _get_request_id(request)
    logger.error(
        "Unhandled exception on %s %s [request_id=%s]",
        request.method,
        request.url.path,
        request_id,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=format_error_response(
            error="Internal Server Error",
            detail="Internal server error",
            request_id=request_id,
        ),
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    request_id = _get_request_id(request)
    logger.warning(
        "HTTP %s on %s %s [request_id=%s]: %s",
        exc.status_code,
        request.method,
        request.url.path,
        request_id,
        exc.detail,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            error=str(exc.detail) if exc.detail else "Error",
            detail=str(exc.detail) if exc.detail else None,
            request_id=request_id,
        ),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request-body validation errors — returns 422 with pydantic's error list."""
    request_id = _get_request_id(request)
    errors = exc.errors()
    logger.warning(
        "Validation error on %s %s [request_id=%s]: %s",
        request.method,
        request.url.path,
        request_id,
        errors,
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=format_error_response(
            error="Validation failed",
            detail=jsonable_errors(errors),
            request_id=request_id,
        ),
    )


def jsonable_errors(errors: list) -> list:
    """Drop non-serialisable ``ctx`` / ``input`` values from pydantic errors."""
    return [
        {k: v for k, v in e.items() if k in ("type", "loc", "msg")}
        for e in errors
    ]


async def pipeline_error_handler(
    request: Request, exc: PipelineError
) -> JSONResponse:
    """Domain errors carry their own HTTP status."""
    request_id = _get_request_id(request)
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "%s on %s %s [request_id=%s]: %s",
        type(exc).__name__,
        request.method,
        request.url.path,
        request_id,
        exc,
    )
    content = format_error_response(
        error=type(exc).__name__,
        detail=str(exc),
        request_id=request_id,
    )
    if isinstance(exc, StageTimeoutError):
        content["stage"] = exc.stage
    if isinstance(exc, BuildFailedError):
        content["inspector_url"] = exc.inspector_url
        content["deployment_id"] = exc.deployment_id
    return JSONResponse(status_code=exc.status_code, content=content)


async def value_error_handler(
    request: Request, exc: ValueError
) -> JSONResponse:
    """Stray ``ValueError`` from a service is a bad request, not a crash."""
    request_id = _get_request_id(request)
    return JSONResponse(
        status_code=400,
        content=format_error_response(
            error="Bad Request", detail=str(exc), request_id=request_id,
        ),
    )


# ------------------------------------------------------------------
# Registration helper
# ------------------------------------------------------------------

def setup_exception_handlers(app: FastAPI) -> None:
    """Register all global exception handlers on *app*."""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(PipelineError, pipeline_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValueError, value_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, global_exception_handler)  # type: ignore[arg-type]
