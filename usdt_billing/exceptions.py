from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)

class BillingException(Exception):
    """Base exception for the billing service."""

    code = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

        # Log the exception for monitoring
        logger.warning(f"{self.__class__.__name__}: {message}", extra={"details": self.details})

class InsufficientCreditsError(BillingException):
    """Raised when user has insufficient credits for operation."""

    code = "insufficient_credits"

    def __init__(self, required: int, available: int, user_id: str = None, plan: str = None):
        label = "daily credits" if plan == "free" else "credits"
        message = f"Insufficient {label}. Required: {required}, Available: {available}"
        details = {
            "required_credits": required,
            "available_credits": available,
            "user_id": user_id
        }
        super().__init__(message, details)

class ValidationError(BillingException):
    """Raised when request input is malformed."""

    code = "invalid_argument"

    def __init__(self, field: str, reason: str):
        super().__init__(f"Invalid {field}: {reason}", {"field": field})

class AuthenticationError(BillingException):
    """Raised when authentication fails."""

    code = "unauthorized"

    def __init__(self, reason: str = "Authentication failed"):
        super().__init__(reason, {"auth_failure_reason": reason})

class TokenExpiredError(AuthenticationError):
    """Raised when JWT token has expired."""

    def __init__(self):
        super().__init__("Authentication token has expired")

class InvalidTokenError(AuthenticationError):
    """Raised when JWT token is invalid."""

    def __init__(self, reason: str = "Invalid token"):
        super().__init__(f"Invalid authentication token: {reason}")

class RateLimitExceeded(BillingException):
    """Raised when rate limit is exceeded."""

    code = "rate_limited"

    def __init__(self, limit: int, window: str, client_id: str = None):
        message = f"Rate limit exceeded: {limit} requests per {window}"
        details = {
            "limit": limit,
            "window": window,
            "client_id": client_id
        }
        super().__init__(message, details)

class DatabaseError(BillingException):
    """Raised when database operations fail."""

    code = "database_error"

    def __init__(self, operation: str, error: str):
        message = f"Database operation '{operation}' failed: {error}"
        details = {"operation": operation, "database_error": error}
        super().__init__(message, details)

class ConfigurationError(BillingException):
    """Raised when application configuration is invalid."""

    code = "configuration_error"

    def __init__(self, setting: str, reason: str):
        message = f"Configuration error for '{setting}': {reason}"
        details = {"setting": setting, "reason": reason}
        super().__init__(message, details)

class UpstreamError(BillingException):
    """Raised when a chain RPC or explorer API call fails."""

    code = "upstream_unavailable"

    def __init__(self, service: str, error: str, status_code: int = None):
        message = f"Upstream service '{service}' error: {error}"
        details = {
            "service": service,
            "error": error,
            "status_code": status_code
        }
        super().__init__(message, details)

# Exception to HTTP status code mapping
STATUS_CODES = {
    InsufficientCreditsError: status.HTTP_402_PAYMENT_REQUIRED,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
    TokenExpiredError: status.HTTP_401_UNAUTHORIZED,
    InvalidTokenError: status.HTTP_401_UNAUTHORIZED,
    RateLimitExceeded: status.HTTP_429_TOO_MANY_REQUESTS,
    DatabaseError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ConfigurationError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    UpstreamError: status.HTTP_502_BAD_GATEWAY,
}

def to_json_response(exc: BillingException) -> JSONResponse:
    """Convert a billing exception to a JSON error response with a machine-readable code."""
    status_code = STATUS_CODES.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.__class__.__name__,
            "code": exc.code,
            "message": exc.message,
            **exc.details
        }
    )

async def billing_exception_handler(request: Request, exc: BillingException) -> JSONResponse:
    return to_json_response(exc)

async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed bodies share the invalid_argument shape with service-level checks
    first = (exc.errors() or [{}])[0]
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body") or "body"
    return to_json_response(ValidationError(field, first.get("msg", "invalid value")))

async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Log unexpected exceptions
    logger.exception(f"Unexpected error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "InternalServerError",
            "message": "An unexpected error occurred"
        }
    )
