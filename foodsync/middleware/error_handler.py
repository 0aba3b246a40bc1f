# foodsync/middleware/error_handler.py
# Error envelope shared by every non-2xx JSON response:
#   {"error": {"code": ..., "message": ..., "details": {"reason": ...}}}
# Sync-protocol 404 and 409 are not errors and bypass this module.

import traceback
import logging
from typing import Callable, Optional
from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware

from foodsync.utils.logger import log_exception

logger = logging.getLogger(__name__)


def create_error_response(
    error_code: str,
    message: str,
    status_code: int,
    details: Optional[dict] = None,
    request_id: Optional[str] = None,
    headers: Optional[dict] = None
) -> JSONResponse:
    """Build the error envelope."""
    error = {"code": error_code, "message": message}
    if details:
        error["details"] = details
    if request_id:
        error["request_id"] = request_id
    return JSONResponse(status_code=status_code, content={"error": error}, headers=headers)


class AppError(Exception):
    """Base application error with structured response."""

    error_code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.error_code
        self.status_code = status_code or self.status_code
        self.details = details or {}

    def headers(self) -> Optional[dict]:
        return None

    def to_response(self, request_id: Optional[str] = None) -> JSONResponse:
        return create_error_response(
            self.error_code, self.message, self.status_code, self.details, request_id, self.headers()
        )


class ValidationError(AppError):
    """Rejected request.

    ``reason`` is a short machine-checkable token (``invalid_share_token``,
    ``snapshot_too_large`` ...) carried in ``details.reason``.
    """

    error_code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str = "Validation failed", reason: str = "invalid_request", details: dict = None):
        super().__init__(message, details={"reason": reason, **(details or {})})
        self.reason = reason


class DatabaseError(AppError):
    """Snapshot storage unreachable."""

    error_code = "DATABASE_ERROR"
    status_code = 503

    def __init__(self, message: str = "Storage is temporarily unavailable", details: dict = None):
        super().__init__(message, details=details)


class RateLimitError(AppError):
    """Client throttled or temporarily blocked."""

    error_code = "RATE_LIMIT_EXCEEDED"
    status_code = 429

    def __init__(self, message: str = "Too many requests", retry_after: int = 60):
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after

    def headers(self) -> dict:
        return {"Retry-After": str(self.retry_after), "X-RateLimit-Remaining": "0"}


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Last line of defence: anything escaping the routers becomes a JSON 500."""

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID", str(id(request)))

        try:
            return await call_next(request)
        except AppError as e:
            logger.warning(
                f"AppError: {e.error_code} - {e.message}",
                extra={"request_id": request_id, "path": request.url.path}
            )
            return e.to_response(request_id)
        except Exception as e:
            log_exception(e, context=f"Unhandled error on {request.url.path}")
            details = {"type": type(e).__name__, "traceback": traceback.format_exc()} if self.debug else None
            return create_error_response(
                error_code="INTERNAL_ERROR",
                message="An internal error occurred. Please try again later.",
                status_code=500,
                details=details,
                request_id=request_id
            )


def setup_exception_handlers(app):
    """Register exception handlers on FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            log_exception(exc, context=f"{exc.error_code} on {request.url.path}")
        return exc.to_response()

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        # Malformed bodies are a 400 with a reason, same as service-level validation
        return ValidationError("Request body must be a JSON object", reason="invalid_body").to_response()

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        log_exception(exc, context=f"Database error on {request.url.path}")
        return DatabaseError().to_response()
