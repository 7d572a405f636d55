"""
Identity resolution for the security gateway.

The gateway only needs a stable subject identifier for the caller; the
identity provider itself lives elsewhere and is reached over HTTP.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx
from fastapi import Request

from homebase_shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from homebase_shared.errors import ExternalServiceError
from homebase_shared.logging import get_logger


@dataclass(frozen=True)
class Identity:
    """Resolved caller identity."""
    subject_id: str
    household_id: Optional[str] = None
    roles: List[str] = field(default_factory=list)
    claims: Dict[str, Any] = field(default_factory=dict)


class Authenticator(Protocol):
    """Resolves a request to an ``Identity``.

    Returns ``None`` when the request carries no valid credentials and raises
    ``ExternalServiceError`` when the identity provider cannot be consulted.
    """

    async def authenticate(self, request: Request) -> Optional[Identity]:
        ...


class AuthServiceAuthenticator:
    """Verifies bearer tokens with the identity service."""

    def __init__(self, auth_service_url: str, timeout: float = 5.0,
                 circuit_breaker: Optional[CircuitBreaker] = None):
        self.auth_service_url = auth_service_url.rstrip("/")
        self.timeout = timeout
        self.logger = get_logger("security.auth_client")
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=3,
            recovery_timeout=30.0,
            name="auth_service",
        )

    async def authenticate(self, request: Request) -> Optional[Identity]:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return None

        token = auth_header[7:].strip()
        if not token:
            return None

        result = await self.verify_token(token)
        if not result.get("valid"):
            self.logger.warning("Token validation failed", error=result.get("error"))
            return None

        user_info = result.get("user_info") or {}
        subject_id = user_info.get("user_id")
        if not subject_id:
            self.logger.warning("Identity service returned no subject")
            return None

        return Identity(
            subject_id=str(subject_id),
            household_id=user_info.get("household_id"),
            roles=list(user_info.get("roles", [])),
            claims=result.get("claims") or {},
        )

    async def verify_token(self, token: str) -> Dict[str, Any]:
        """Verify a bearer token with the identity service."""
        async def _verify_token():
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.auth_service_url}/auth/verify",
                    json={"token": token}
                )

            if response.status_code == 200:
                return response.json()
            if response.status_code in (400, 401, 403):
                return {"valid": False, "error": f"status {response.status_code}"}
            raise httpx.HTTPStatusError(
                f"Identity service error: {response.status_code}",
                request=response.request,
                response=response,
            )

        try:
            return await self.circuit_breaker.call(_verify_token)
        except CircuitBreakerOpenException as e:
            self.logger.error("Identity service circuit open", error=str(e))
            raise ExternalServiceError("auth_service", "Identity service unavailable", {"error": str(e)}) from e
        except (httpx.HTTPError, ValueError) as e:
            self.logger.error("Identity service HTTP error", error=str(e))
            raise ExternalServiceError("auth_service", "Identity service unavailable", {"http_error": str(e)}) from e
