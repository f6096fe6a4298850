"""Error Handlers — exception handlers installed on every Cako server.

Invariants:
    - A CakoError raised by a handler is rendered with its own envelope and status;
      the log record carries the request url and verb plus the error's entity and stage
    - Log level follows the error's severity (critical, error, warning, info)
    - Request parameters FastAPI cannot coerce → 400 VALIDATION_ERROR with one
      detail per field, naming the route that rejected them
    - Anything else → 500 INTERNAL_ERROR; the message never reaches the client

Design Decisions:
    - Installed when the Cako instance builds its server, so hooks and handlers
      always run with them in place
    - The route (url + verb) is taken from the request, not from the error, since
      handlers may raise errors built without a context
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cako.core.errors import CakoError, ErrorCategory, ErrorSeverity

logger = logging.getLogger(__name__)

_LOG_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CakoError, handle_cako_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)


def _route(request: Request) -> dict:
    return {"url": request.url.path, "verb": request.method.lower()}


async def handle_cako_error(request: Request, exc: CakoError) -> JSONResponse:
    extra = {**_route(request), "error_code": exc.code}
    if exc.context.entity:
        extra["entity"] = exc.context.entity
    if exc.context.stage:
        extra["stage"] = exc.context.stage
    logger.log(
        _LOG_LEVELS.get(exc.severity, logging.ERROR),
        f"{exc.code} on {request.method} {request.url.path}: {exc.message}",
        extra=extra,
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_response())


async def handle_validation_error(
    request: Request, exc: RequestValidationError,
) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(
        f"{request.method} {request.url.path} rejected {len(details)} field(s)",
        extra={**_route(request), "error_code": "VALIDATION_ERROR"},
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": f"Invalid request data for {request.method} {request.url.path}",
                "category": "validation",
                "severity": ErrorSeverity.WARNING.value,
                "details": details,
            },
        },
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}",
        extra={**_route(request), "error_code": "INTERNAL_ERROR"},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
                "category": ErrorCategory.INTERNAL.value,
                "severity": ErrorSeverity.CRITICAL.value,
            },
        },
    )
