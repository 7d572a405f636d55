"""
Domain utilities for the security service.

Holds the request pipeline that composes the rate limiter, the CSRF token
service, the security monitor and the authenticator.
"""

from .gateway import (
    ADMIN,
    ALL_METHODS,
    DEFAULT_ROUTE_CONFIG,
    PUBLIC,
    READ_ONLY,
    RouteSecurityConfig,
    SecurityGateway,
    get_client_ip,
)

__all__ = [
    "ADMIN",
    "ALL_METHODS",
    "DEFAULT_ROUTE_CONFIG",
    "PUBLIC",
    "READ_ONLY",
    "RouteSecurityConfig",
    "SecurityGateway",
    "get_client_ip",
]
