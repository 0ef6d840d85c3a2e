"""
HTTP exception handlers for TaskHub.

Every error leaving the HTTP surface has the same body shape,
`{"error": {type, message, user_friendly, details, timestamp}}`.
"""

import traceback

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .error_types import ErrorMessages, ErrorType, create_standard_error_response
from .exceptions import TaskHubError
from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

_HTTP_STATUS_ERROR_TYPES = {
    401: ErrorType.UNAUTHENTICATED,
    403: ErrorType.AUTHORIZATION_DENIED,
    404: ErrorType.RESOURCE_NOT_FOUND,
    409: ErrorType.RESOURCE_CONFLICT,
    422: ErrorType.VALIDATION_FAILED,
    429: ErrorType.RATE_LIMIT_EXCEEDED,
    503: ErrorType.PERSISTENCE_UNAVAILABLE,
}


async def taskhub_exception_handler(request: Request, exc: TaskHubError) -> JSONResponse:
    """Render a TaskHubError with its own status code."""
    if not exc.context.request_id:
        exc.context.request_id = request.url.path

    details = dict(exc.details)
    if exc.retryable:
        details["retryable"] = True

    logger.info(
        "TaskHub exception handled",
        error_type=exc.error_type.value,
        path=request.url.path,
        method=request.method,
        status_code=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=create_standard_error_response(exc.error_type, exc.message, exc.user_friendly, details),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error_type = _HTTP_STATUS_ERROR_TYPES.get(exc.status_code, ErrorType.INTERNAL_ERROR)
    logger.warning("HTTP exception handled", status_code=exc.status_code, detail=exc.detail, path=request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=create_standard_error_response(error_type, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "Unhandled exception",
        original_type=type(exc).__name__,
        original_message=str(exc),
        path=request.url.path,
        method=request.method,
        traceback=traceback.format_exc(),
    )
    return JSONResponse(
        status_code=500,
        content=create_standard_error_response(
            ErrorType.INTERNAL_ERROR, "Internal server error", ErrorMessages.INTERNAL_ERROR
        ),
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TaskHubError, taskhub_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, general_exception_handler)
