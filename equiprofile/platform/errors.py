"""
Consistent error handling for the EquiProfile API.

All API errors MUST use these standard error classes and shapes.
Stack traces are NEVER returned to clients.

Error codes double as the procedure-layer categories:
- 400: VALIDATION_ERROR
- 401: UNAUTHORIZED (no/invalid session)
- 402: PAYMENT_REQUIRED (trial or subscription lapsed)
- 403: FORBIDDEN (suspended, not admin, admin session expired)
- 404: NOT_FOUND
- 500: INTERNAL_ERROR / WEBHOOK_PROCESSING_FAILED
- 503: SERVICE_UNAVAILABLE / FEATURE_DISABLED
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

UNAUTHED_ERR_MSG = "Please login (10001)"
NOT_ADMIN_ERR_MSG = "You do not have required permission (10002)"


class AppError(Exception):
    """
    Base application error with consistent error shape.

    All custom errors should inherit from this class.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to API error response format."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(AppError):
    """Validation error (400)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class AuthenticationError(AppError):
    """Missing or invalid session (401)."""

    def __init__(self, message: str = UNAUTHED_ERR_MSG, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="UNAUTHORIZED",
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details,
        )


class PermissionDeniedError(AppError):
    """Permission denied (403)."""

    def __init__(self, message: str = NOT_ADMIN_ERR_MSG, details: Optional[dict[str, Any]] = None):
        super().__init__(
            code="FORBIDDEN",
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
        )


class NotFoundError(AppError):
    """Resource not found (404)."""

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
        )


class ServiceUnavailableError(AppError):
    """Service unavailable (503)."""

    def __init__(self, message: str = "Service temporarily unavailable", code: str = "SERVICE_UNAVAILABLE"):
        super().__init__(
            code=code,
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


class FeatureDisabledError(AppError):
    """Feature is disabled via configuration flag (503)."""

    def __init__(self, feature: str):
        super().__init__(
            code="FEATURE_DISABLED",
            message=f"{feature} is disabled",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for request tracing."""
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """
    Get correlation ID from request or generate new one.

    Checks X-Correlation-ID header first, then request state.
    """
    correlation_id = request.headers.get("X-Correlation-ID")
    if correlation_id:
        return correlation_id

    if hasattr(request.state, "correlation_id"):
        return request.state.correlation_id

    return generate_correlation_id()


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """
    Exception handler for AppError raised from routes and dependencies.

    Guards in the procedure chain raise AppError subclasses; this renders
    them in the standard envelope.
    """
    correlation_id = get_correlation_id(request)
    log = logger.warning if exc.status_code >= 500 else logger.info
    log(
        "Application error",
        extra={
            "correlation_id": correlation_id,
            "error_code": exc.code,
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method,
        }
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers={"X-Correlation-ID": correlation_id},
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Middleware that catches all exceptions and returns consistent error responses.

    IMPORTANT: Stack traces are NEVER returned to clients.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id

        try:
            response = await call_next(request)
            response.headers["X-Correlation-ID"] = correlation_id
            return response

        except AppError as e:
            logger.warning(
                "Application error",
                extra={
                    "correlation_id": correlation_id,
                    "error_code": e.code,
                    "status_code": e.status_code,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            return JSONResponse(
                status_code=e.status_code,
                content=e.to_dict(),
                headers={"X-Correlation-ID": correlation_id},
            )

        except Exception as e:
            # Full exception stays server-side
            logger.exception(
                "Unhandled exception",
                extra={
                    "correlation_id": correlation_id,
                    "error_type": type(e).__name__,
                    "path": request.url.path,
                    "method": request.method,
                }
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": {
                        "code": "INTERNAL_ERROR",
                        "message": "An unexpected error occurred",
                        "details": {"correlation_id": correlation_id},
                    }
                },
                headers={"X-Correlation-ID": correlation_id},
            )
