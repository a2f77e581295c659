from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import traceback
import logging
import sys
import json
from typing import Dict, Any, Optional
import hashlib
import time

from floodroute.errors import (
    FloodRouteError,
    InvalidFeatureVector,
    NetworkUnavailable,
    NoRouteFound,
    NoSafePointFound,
)

logger = logging.getLogger("floodroute.middleware.error_handler")

# Status codes for domain errors that reach the HTTP layer
DOMAIN_STATUS_CODES = (
    (NoRouteFound, status.HTTP_404_NOT_FOUND),
    (NoSafePointFound, status.HTTP_404_NOT_FOUND),
    (NetworkUnavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
    (InvalidFeatureVector, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


class ErrorDetail:
    """Standard error payload."""

    def __init__(
        self,
        status_code: int,
        message: str,
        error_type: str,
        error_id: Optional[str] = None,
        stack_trace: Optional[str] = None,
        details: Optional[Any] = None
    ):
        self.status_code = status_code
        self.message = message
        self.error_type = error_type
        self.error_id = error_id
        self.stack_trace = stack_trace
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        error_dict = {
            "status_code": self.status_code,
            "message": self.message,
            "error_type": self.error_type
        }

        if self.error_id:
            error_dict["error_id"] = self.error_id

        if self.stack_trace:
            error_dict["stack_trace"] = self.stack_trace

        if self.details:
            error_dict["details"] = self.details

        return error_dict


def _error_id(request: Request) -> str:
    return hashlib.md5(f"{time.time()}-{request.url.path}".encode()).hexdigest()[:8]


def format_stack_trace(stack_trace: str) -> str:
    """Indent a stack trace for the log."""
    return "\n".join(f"  │ {line}" for line in stack_trace.split('\n') if line.strip())


def _log_with_trace(message: str, stack_trace: str) -> None:
    logger.error(
        f"{message}\n╭─ Stack Trace ─────────────────────────╮\n"
        f"{format_stack_trace(stack_trace)}\n╰───────────────────────────────────────╯"
    )


def domain_status_code(exc: FloodRouteError) -> int:
    for error_class, code in DOMAIN_STATUS_CODES:
        if isinstance(exc, error_class):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def error_handler_middleware(request: Request, call_next):
    """
    Catch unhandled exceptions and answer with a JSON error payload.
    """
    error_id = _error_id(request)

    try:
        return await call_next(request)
    except Exception as exc:
        stack_trace = "".join(traceback.format_exception(*sys.exc_info()))
        _log_with_trace(
            f"❌ ERROR#{error_id}: {request.method} {request.url.path} - "
            f"{exc.__class__.__name__}: {exc}",
            stack_trace,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorDetail(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                message=str(exc),
                error_type=exc.__class__.__name__,
                error_id=error_id,
                stack_trace=stack_trace,
            ).to_dict()
        )


def setup_error_handlers(app):
    """
    Register exception handlers on the FastAPI application.
    """
    @app.exception_handler(FloodRouteError)
    async def floodroute_exception_handler(request, exc):
        error_id = _error_id(request)
        status_code = domain_status_code(exc)

        details = None
        stack_trace = None
        if isinstance(exc, InvalidFeatureVector):
            details = {"features": exc.features, "reason": exc.reason}
            stack_trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            _log_with_trace(f"❌ FEATURES#{error_id}: {request.method} {request.url.path} - {exc}", stack_trace)
        else:
            logger.warning(f"⚠️ {exc.__class__.__name__}#{error_id}: {request.method} {request.url.path} - {exc}")

        return JSONResponse(
            status_code=status_code,
            content=ErrorDetail(
                status_code=status_code,
                message=str(exc),
                error_type=exc.__class__.__name__,
                error_id=error_id,
                stack_trace=stack_trace,
                details=details,
            ).to_dict()
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request, exc):
        error_id = _error_id(request)
        logger.warning(f"⚠️ HTTP#{error_id}: {exc.status_code} - {exc.detail}")

        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorDetail(
                status_code=exc.status_code,
                message=str(exc.detail),
                error_type="http_exception",
                error_id=error_id,
            ).to_dict()
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request, exc):
        error_id = _error_id(request)
        validation_errors = exc.errors()
        logger.error(
            f"⚠️ VALID#{error_id}: validation error on {request.method} {request.url.path}\n"
            f"╭─ Validation Errors ──────────────────╮\n"
            f"  │ {json.dumps(validation_errors, indent=2, default=str)}\n"
            f"╰───────────────────────────────────────╯"
        )

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorDetail(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                message="Invalid request data",
                error_type="validation_error",
                error_id=error_id,
                details=json.loads(json.dumps(validation_errors, default=str)),
            ).to_dict()
        )
