"""
Unit tests for the identity service authenticator.
"""

import json

import httpx
import pytest
from fastapi import Request
from unittest.mock import AsyncMock, patch

from homebase_shared.circuit_breaker import CircuitBreaker
from homebase_shared.errors import ExternalServiceError
from service_security.app.adapters import AuthServiceAuthenticator, Identity


VERIFY_URL = "http://localhost:8010/auth/verify"


def _request(headers=None) -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({"type": "http", "method": "GET", "path": "/api/bills", "headers": raw_headers})


def _response(status_code: int, body=None) -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        content=json.dumps(body or {}),
        request=httpx.Request("POST", VERIFY_URL),
    )


class TestAuthServiceAuthenticator:
    """Test cases for AuthServiceAuthenticator."""

    @pytest.fixture
    def authenticator(self):
        return AuthServiceAuthenticator("http://localhost:8010/")

    @pytest.fixture
    def verified(self):
        return {
            "valid": True,
            "claims": {"sub": "user-123"},
            "user_info": {"user_id": "user-123", "household_id": "household-9", "roles": ["owner"]},
        }

    @pytest.mark.asyncio
    async def test_verify_token_success(self, authenticator, verified):
        with patch("httpx.AsyncClient") as mock_client:
            post = AsyncMock(return_value=_response(200, verified))
            mock_client.return_value.__aenter__.return_value.post = post

            result = await authenticator.verify_token("token-abc")

        assert result["valid"] is True
        post.assert_awaited_once_with(VERIFY_URL, json={"token": "token-abc"})

    @pytest.mark.asyncio
    async def test_verify_token_rejected(self, authenticator):
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(return_value=_response(401))

            result = await authenticator.verify_token("token-abc")

        assert result["valid"] is False

    @pytest.mark.asyncio
    async def test_verify_token_server_error(self, authenticator):
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(return_value=_response(503))

            with pytest.raises(ExternalServiceError):
                await authenticator.verify_token("token-abc")

    @pytest.mark.asyncio
    async def test_verify_token_network_error(self, authenticator):
        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value.post = AsyncMock(
                side_effect=httpx.ConnectError("connection refused")
            )

            with pytest.raises(ExternalServiceError) as exc_info:
                await authenticator.verify_token("token-abc")

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_open_circuit_raises(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=60.0, name="auth_test")
        authenticator = AuthServiceAuthenticator("http://localhost:8010", circuit_breaker=breaker)

        with patch("httpx.AsyncClient") as mock_client:
            post = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
            mock_client.return_value.__aenter__.return_value.post = post

            with pytest.raises(ExternalServiceError):
                await authenticator.verify_token("token-abc")
            with pytest.raises(ExternalServiceError):
                await authenticator.verify_token("token-abc")

        assert post.await_count == 1

    @pytest.mark.asyncio
    async def test_authenticate_maps_identity(self, authenticator, verified):
        with patch.object(authenticator, "verify_token", new_callable=AsyncMock, return_value=verified) as verify:
            identity = await authenticator.authenticate(_request({"Authorization": "Bearer token-abc"}))

        verify.assert_awaited_once_with("token-abc")
        assert identity == Identity(
            subject_id="user-123",
            household_id="household-9",
            roles=["owner"],
            claims={"sub": "user-123"},
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Basic abc"}, {"Authorization": "Bearer "}])
    async def test_authenticate_without_bearer(self, authenticator, headers):
        with patch.object(authenticator, "verify_token", new_callable=AsyncMock) as verify:
            assert await authenticator.authenticate(_request(headers)) is None

        verify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_authenticate_invalid_token(self, authenticator):
        with patch.object(authenticator, "verify_token", new_callable=AsyncMock, return_value={"valid": False}):
            assert await authenticator.authenticate(_request({"Authorization": "Bearer bad"})) is None

    @pytest.mark.asyncio
    async def test_authenticate_without_subject(self, authenticator):
        result = {"valid": True, "user_info": {}}
        with patch.object(authenticator, "verify_token", new_callable=AsyncMock, return_value=result):
            assert await authenticator.authenticate(_request({"Authorization": "Bearer abc"})) is None
