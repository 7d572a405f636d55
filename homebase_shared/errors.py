"""
Shared error handling for the Homebase API Security Gateway.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, ConfigDict
from fastapi.responses import JSONResponse


class ErrorResponse(BaseModel):
    """Standard error response body: a stable ``error`` string plus extras."""

    model_config = ConfigDict(extra="allow")

    error: str


class HomebaseException(Exception):
    """Base exception for Homebase services."""

    status_code: int = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.headers = headers or {}
        super().__init__(message)

    def public_details(self) -> Dict[str, Any]:
        """Fields safe to expose in the response body."""
        return {}

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(error=self.message, **self.public_details())

    def to_json_response(self) -> JSONResponse:
        """Render as an HTTP JSON response."""
        return JSONResponse(
            status_code=self.status_code,
            content=self.to_response().model_dump(),
            headers=self.headers or None,
        )


class ValidationError(HomebaseException):
    """Validation-related errors."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class MethodNotAllowedError(ValidationError):
    """Request method outside the route's allowed set."""

    status_code = 405

    def __init__(self, method: str, allowed_methods: Optional[list] = None):
        super().__init__("Method not allowed", {"method": method, "allowed_methods": allowed_methods or []})
        self.code = "METHOD_NOT_ALLOWED"
        if allowed_methods:
            self.headers = {"Allow": ", ".join(allowed_methods)}


class AuthenticationError(HomebaseException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(HomebaseException):
    """Authorization-related errors (CSRF failures, forbidden access)."""

    status_code = 403

    def __init__(self, message: str = "Forbidden", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class RateLimitError(HomebaseException):
    """Rate limiting errors. Recoverable after ``retry_after`` seconds."""

    status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: int = 1,
        headers: Optional[Dict[str, str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__("RATE_LIMIT_ERROR", message, details, headers)
        self.retry_after = retry_after

    def public_details(self) -> Dict[str, Any]:
        return {"retryAfter": self.retry_after}


class StoreUnavailable(HomebaseException):
    """Counter or log store unreachable. Resolved by failing open, never surfaced."""

    status_code = 503

    def __init__(self, store: str, message: str = "Store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_UNAVAILABLE", f"{store}: {message}", details)
        self.store = store


class ExternalServiceError(HomebaseException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class InternalError(HomebaseException):
    """Unexpected handler fault. The message never carries internal detail."""

    status_code = 500

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("INTERNAL_ERROR", "Internal server error", details)
