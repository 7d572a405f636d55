"""
Anti-forgery token protection for state-changing requests.
"""

from .tokens import (
    CSRF_HEADER,
    CSRFTokenService,
    CSRFValidation,
    TOKEN_INVALID_MESSAGE,
    TOKEN_REQUIRED_MESSAGE,
    requires_csrf_protection,
)

__all__ = [
    "CSRF_HEADER",
    "CSRFTokenService",
    "CSRFValidation",
    "TOKEN_INVALID_MESSAGE",
    "TOKEN_REQUIRED_MESSAGE",
    "requires_csrf_protection",
]
