# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Error taxonomy and the FastAPI handlers that render it.

Every business failure is raised as a subclass of ``AccountServiceError``.
The class carries its HTTP status and a stable ``error_code`` so handlers
never have to map exceptions by hand.  Response body:

    {"error": "<ERROR_CODE>", "message": "...", "details": {...}}
"""

from typing import Any, Dict, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from core.logger import logger


class AccountServiceError(Exception):
    """Base class for every error surfaced to API clients."""

    error_code: str = "INTERNAL_ERROR"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "An error occurred"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }

    def headers(self) -> Optional[Dict[str, str]]:
        return None


# -- 400 ---------------------------------------------------------------------


class InvalidInputError(AccountServiceError):
    error_code = "VALIDATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class InvalidOrExpiredTokenError(AccountServiceError):
    """Reset token or one-time / TOTP code that does not check out."""

    error_code = "INVALID_OR_EXPIRED_TOKEN"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid or expired token"


# -- 401 ---------------------------------------------------------------------


class InvalidCredentialsError(AccountServiceError):
    error_code = "INVALID_CREDENTIALS"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid username or password"


class UnauthenticatedError(AccountServiceError):
    """
    No usable session token.  ``reason`` tells the client what to do:
    missing / malformed -> log in, expired -> log in again.
    """

    error_code = "UNAUTHENTICATED"
    status_code = status.HTTP_401_UNAUTHORIZED

    _MESSAGES = {
        "missing": "Authentication required",
        "malformed": "Token is malformed or invalid",
        "expired": "Token expired, please login again",
        "unknown_user": "User no longer exists",
    }

    def __init__(self, reason: str = "missing", message: Optional[str] = None):
        self.reason = reason
        super().__init__(
            message=message or self._MESSAGES.get(reason, "Authentication required"),
            details={"reason": reason},
        )


# -- 403 ---------------------------------------------------------------------


class StepUpRequiredError(AccountServiceError):
    error_code = "STEP_UP_REQUIRED"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "2FA verification required"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message=message, details={"requires2FA": True})


class NotPendingError(AccountServiceError):
    error_code = "NOT_PENDING"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "No 2FA verification pending"


class ForbiddenError(AccountServiceError):
    error_code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions"


# -- 404 / 409 ---------------------------------------------------------------


class NotFoundError(AccountServiceError):
    error_code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(AccountServiceError):
    error_code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


# -- 429 ---------------------------------------------------------------------


class RateLimitedError(AccountServiceError):
    error_code = "RATE_LIMITED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(self, retry_after: int):
        self.retry_after = max(int(retry_after), 1)
        super().__init__(
            message="Too many requests, try again later",
            details={"retry_after": self.retry_after},
        )

    def headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": str(self.retry_after)}


# -- 5xx ---------------------------------------------------------------------


class UpstreamFailureError(AccountServiceError):
    """Mail server, OAuth provider or another collaborator failed."""

    error_code = "UPSTREAM_FAILURE"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Upstream service failure"


# ---------------------------------------------------------------------------
# Handler registration
# ---------------------------------------------------------------------------


def register_exception_handlers(app) -> None:
    """Install the JSON renderers for the taxonomy above."""

    @app.exception_handler(AccountServiceError)
    async def _account_error_handler(request: Request, exc: AccountServiceError):
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "%s %s -> %s (%s)",
            request.method,
            request.url.path,
            exc.error_code,
            exc.message,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers=exc.headers(),
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(request: Request, exc: RequestValidationError):
        fields = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
            fields.append({"field": loc, "message": err.get("msg", "")})
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": InvalidInputError.error_code,
                "message": "Request validation failed",
                "details": {"fields": fields},
            },
        )

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": f"HTTP_{exc.status_code}",
                "message": exc.detail,
                "details": {},
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "INTERNAL_ERROR",
                "message": "Internal server error",
                "details": {},
            },
        )
