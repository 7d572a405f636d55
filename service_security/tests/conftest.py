"""
Shared fixtures for security service tests.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

import pytest
from fastapi import Request

from homebase_shared.metrics import MetricsCollector
from service_security.app.adapters.auth_client import Identity


TEST_SECRET = "test-csrf-secret"


class FixedClock:
    """Settable clock returning timezone-aware datetimes."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class StaticAuthenticator:
    """Maps bearer tokens to identities without calling out."""

    def __init__(self, identities: Optional[Dict[str, Identity]] = None):
        self.identities = identities or {}
        self.calls = 0

    async def authenticate(self, request: Request) -> Optional[Identity]:
        self.calls += 1
        header = request.headers.get("Authorization", "")
        if not header.startswith("Bearer "):
            return None
        return self.identities.get(header[7:])


@pytest.fixture
def metrics():
    return MetricsCollector("security-test")


@pytest.fixture
def fixed_clock():
    return FixedClock(datetime(2024, 3, 1, 12, 7, 30, tzinfo=timezone.utc))


@pytest.fixture
def authenticator():
    return StaticAuthenticator({
        "token-user-1": Identity(subject_id="user-1", household_id="household-1", roles=["member"]),
        "token-user-2": Identity(subject_id="user-2", household_id="household-1", roles=["member"]),
    })
