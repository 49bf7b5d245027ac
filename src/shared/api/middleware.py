"""
Shared API Middleware
======================

Common middleware and exception handlers for the FastAPI application.

Every error leaves the API as ``{"kind": ..., "message": ...}``.
"""

import time
import uuid
from typing import Callable, Dict

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from src.config import settings
from src.core import ApplicationException
from src.shared.infrastructure.logging import correlation_id_var, get_logger

logger = get_logger(__name__)

# HTTP status per ApplicationException.kind; unknown kinds are server errors
STATUS_BY_KIND: Dict[str, int] = {
    "not_found": 404,
    "invalid_transition": 400,
    "validation_error": 400,
    "domain_error": 400,
    "collaborator_failure": 502,
}


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    The ID is taken from ``X-Correlation-ID`` (or generated), exposed on
    ``request.state``, attached to every log record of the request and
    echoed in the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs all requests and responses.

    Also reports the response time in ``X-Response-Time``.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000),
                },
            )
            raise

        response_time = time.perf_counter() - start_time
        response.headers["X-Response-Time"] = f"{response_time:.3f}s"
        logger.info(
            "Request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time_ms": int(response_time * 1000),
            },
        )
        return response


def _error(status_code: int, kind: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"kind": kind, "message": message})


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """Render application errors with the status mapped from their kind."""
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    log = logger.warning if status_code < 500 else logger.error
    log(
        "Request rejected",
        extra={
            "path": request.url.path,
            "method": request.method,
            "kind": exc.kind,
            "status_code": status_code,
            "error_message": exc.message,
            **{f"detail_{k}": v for k, v in exc.details.items()},
        },
    )
    if status_code >= 500:
        return _error(status_code, exc.kind, "Internal server error")
    return _error(status_code, exc.kind, exc.message)


async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies, parameters and headers are validation errors (400)."""
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return _error(400, "validation_error", "; ".join(parts) or "invalid request")


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Internal details only reach the client in development.
    """
    logger.error(
        "Unhandled exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc),
        },
        exc_info=exc,
    )
    is_dev = settings.environment == "development"
    return _error(500, "internal_error", str(exc) if is_dev else "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
