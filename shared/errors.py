"""
Unified error handling for the Voice Usage Dashboard.

Every service-layer failure is raised as a DashboardException subclass and
rendered by the registered FastAPI handler as a standard ErrorResponse.
Nothing in this taxonomy is retried by the service layer; retry is a
caller decision.

Usage:
    from shared.errors import (
        register_exception_handlers,
        ForbiddenError,
        ProviderError,
    )

    register_exception_handlers(app)

    if not is_admin(caller):
        raise ForbiddenError("Admin access required")
"""
from typing import Optional
from pydantic import BaseModel
from fastapi import Request
from fastapi.responses import JSONResponse
from enum import Enum
from datetime import datetime
import structlog

logger = structlog.get_logger()


class ErrorCode(str, Enum):
    """Error codes returned in the `code` field of error responses."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONVERSATION_NOT_FOUND = "CONVERSATION_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    CREDENTIAL_MISSING = "CREDENTIAL_MISSING"
    DECRYPTION_ERROR = "DECRYPTION_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    MAIL_DELIVERY_FAILED = "MAIL_DELIVERY_FAILED"


class ErrorResponse(BaseModel):
    """
    Standard error response body.

    Example response:
    {
        "error": true,
        "code": "CREDENTIAL_MISSING",
        "message": "No API key configured",
        "detail": "Add your ElevenLabs API key on the profile page",
        "request_id": null,
        "timestamp": "2025-12-01T10:30:00Z"
    }
    """
    error: bool = True
    code: str
    message: str
    detail: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: Optional[str] = None


class DashboardException(Exception):
    """
    Base exception class for the dashboard services.

    All custom exceptions inherit from this class.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status_code: int = 500,
        detail: Optional[str] = None
    ):
        self.code = code
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


# ==============================================================================
# Identity and authorization
# ==============================================================================

class UnauthenticatedError(DashboardException):
    """401 - No resolved identity."""
    def __init__(self, message: str = "Authentication required", detail: Optional[str] = None):
        super().__init__(ErrorCode.UNAUTHENTICATED, message, 401, detail)


# Raised by the identity backend when an email/password pair does not match.
AuthError = UnauthenticatedError


class ForbiddenError(DashboardException):
    """403 - Resolved identity lacks the admin capability."""
    def __init__(self, message: str = "Admin access required", detail: Optional[str] = None):
        super().__init__(ErrorCode.FORBIDDEN, message, 403, detail)


# ==============================================================================
# Records
# ==============================================================================

class NotFoundError(DashboardException):
    """404 - Requested record is absent."""
    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(ErrorCode.NOT_FOUND, message, 404, detail)


class ConversationNotFound(NotFoundError):
    """404 from the provider for a single conversation."""
    HINT = (
        "The conversation may have been deleted or you may not have "
        "permission to view it."
    )

    def __init__(self, conversation_id: str):
        super().__init__(f"Conversation not found: {conversation_id}", detail=self.HINT)
        self.code = ErrorCode.CONVERSATION_NOT_FOUND
        self.conversation_id = conversation_id


class ValidationError(DashboardException):
    """422 - Malformed input, e.g. a bad email address."""
    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(ErrorCode.VALIDATION_ERROR, message, 422, detail)


class ConflictError(DashboardException):
    """409 - Record already exists."""
    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(ErrorCode.CONFLICT, message, 409, detail)


# ==============================================================================
# Credentials and provider
# ==============================================================================

class CredentialMissing(DashboardException):
    """409 - No stored API key for an operation that needs one."""
    def __init__(self, owner_id: str, detail: Optional[str] = None):
        super().__init__(
            ErrorCode.CREDENTIAL_MISSING,
            "No ElevenLabs API key configured",
            409,
            detail or "Add an API key on the profile page before loading data",
        )
        self.owner_id = owner_id


class DecryptionError(DashboardException):
    """500 - Stored ciphertext could not be decrypted."""
    def __init__(self, message: str = "Stored API key could not be decrypted", detail: Optional[str] = None):
        super().__init__(ErrorCode.DECRYPTION_ERROR, message, 500, detail)


class ProviderError(DashboardException):
    """502 - ElevenLabs answered with a non-success status."""
    def __init__(self, status: int, message: Optional[str] = None, detail: Optional[str] = None):
        super().__init__(
            ErrorCode.PROVIDER_ERROR,
            message or f"Provider request failed with status {status}",
            502,
            detail,
        )
        self.status = status


class MailDeliveryError(DashboardException):
    """502 - The mail provider did not accept an account email."""
    def __init__(self, message: str = "Account email could not be sent", detail: Optional[str] = None):
        super().__init__(ErrorCode.MAIL_DELIVERY_FAILED, message, 502, detail)


# ==============================================================================
# Exception handlers
# ==============================================================================

async def dashboard_exception_handler(request: Request, exc: DashboardException) -> JSONResponse:
    """
    FastAPI exception handler for DashboardException and subclasses.

    Logs the error and returns a standardized ErrorResponse.
    """
    request_id = getattr(request.state, "request_id", None)
    code = exc.code.value if isinstance(exc.code, ErrorCode) else exc.code

    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "dashboard_exception",
        code=code,
        message=exc.message,
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        path=str(request.url.path)
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.code, exc.message, exc.detail, request_id),
        headers={"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None,
    )


def register_exception_handlers(app) -> None:
    """
    Register exception handlers with a FastAPI application.

    Usage:
        from shared.errors import register_exception_handlers

        app = FastAPI()
        register_exception_handlers(app)
    """
    app.add_exception_handler(DashboardException, dashboard_exception_handler)
    logger.info("dashboard_exception_handlers_registered")


def create_error_response(
    code: ErrorCode,
    message: str,
    detail: Optional[str] = None,
    request_id: Optional[str] = None
) -> dict:
    """Build an ErrorResponse dictionary without raising."""
    return ErrorResponse(
        code=code.value if isinstance(code, ErrorCode) else code,
        message=message,
        detail=detail,
        request_id=request_id,
        timestamp=datetime.utcnow().isoformat() + "Z"
    ).model_dump()
