"""
Security gateway service for the Homebase API.
"""

from typing import Dict, Optional

from fastapi import APIRouter, Request

from homebase_shared.base_service import BaseService
from homebase_shared.config import SecuritySettings
from homebase_shared.errors import ValidationError

from .adapters.auth_client import Authenticator, AuthServiceAuthenticator, Identity
from .csrf import CSRFTokenService
from .domain.gateway import DEFAULT_ROUTE_CONFIG, READ_ONLY, RouteSecurityConfig, SecurityGateway
from .monitoring import SecurityEventType, SecurityMonitor, Severity
from .ratelimit import (
    CounterStore,
    InMemoryCounterStore,
    PostgresCounterStore,
    RateLimiter,
    RedisCounterStore,
    load_rate_limit_table,
)


MAX_EVENTS_LIMIT = 100
DEFAULT_EVENTS_LIMIT = 50

BILLS_ROUTE_CONFIG = RouteSecurityConfig(
    require_auth=DEFAULT_ROUTE_CONFIG.require_auth,
    require_csrf=DEFAULT_ROUTE_CONFIG.require_csrf,
    rate_limit_config="bills",
)


def build_counter_store(settings: SecuritySettings) -> CounterStore:
    """Pick the counter store backend named in settings."""
    if settings.rate_limit_backend == "redis":
        return RedisCounterStore(settings.redis_url)
    if settings.rate_limit_backend == "postgres":
        return PostgresCounterStore(settings.postgres_dsn)
    return InMemoryCounterStore()


class SecurityService(BaseService):
    """Security gateway service implementation."""

    def __init__(
        self,
        settings: Optional[SecuritySettings] = None,
        authenticator: Optional[Authenticator] = None,
        counter_store: Optional[CounterStore] = None,
    ):
        super().__init__(settings)

        self.rate_limit_table = load_rate_limit_table(self.config.rate_limits_file)
        self.rate_limiter = RateLimiter(
            counter_store or build_counter_store(self.config),
            store_timeout=self.config.rate_limit_store_timeout_seconds,
            metrics=self.metrics,
        )
        self.csrf_service = CSRFTokenService(
            self.config.csrf_secret.get_secret_value(),
            max_age_seconds=self.config.csrf_token_max_age_seconds,
            metrics=self.metrics,
        )
        self.monitor = SecurityMonitor(capacity=self.config.monitor_capacity, metrics=self.metrics)
        self.authenticator = authenticator or AuthServiceAuthenticator(
            self.config.auth_service_url,
            timeout=self.config.auth_timeout_seconds,
        )
        self.gateway = SecurityGateway(
            self.authenticator,
            self.rate_limiter,
            self.csrf_service,
            self.monitor,
            rate_limit_table=self.rate_limit_table,
            metrics=self.metrics,
        )

        @self.app.on_event("startup")
        async def _startup():
            await self.rate_limiter.start()

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.rate_limiter.close()
            self.logger.info("Security service stopped")

        self._setup_security_routes()
        self.logger.info(
            "Security service configured",
            rate_limit_backend=self.rate_limiter.store.backend_name,
            env=self.config.env,
        )

    def _setup_security_routes(self):
        """Set up routes served behind the security pipeline."""
        router = APIRouter()

        self.gateway.add_route(router, "/api/csrf-token", self.issue_csrf_token, READ_ONLY)
        self.gateway.add_route(router, "/api/security/events", self.list_security_events, READ_ONLY)
        self.gateway.add_route(router, "/api/security/metrics", self.security_metrics, READ_ONLY)
        self.gateway.add_route(router, "/api/bills", self.bills, BILLS_ROUTE_CONFIG)

        self.app.include_router(router)

    async def _check_dependencies(self) -> Dict[str, str]:
        store_breaker = self.rate_limiter.circuit_breaker
        return {"counter_store": "degraded" if store_breaker.is_open() else "ok"}

    async def issue_csrf_token(self, request: Request, identity: Identity):
        """Issue a CSRF token bound to the caller."""
        return self.csrf_service.issue(identity.subject_id)

    async def list_security_events(self, request: Request, identity: Identity):
        """Recent security events, optionally filtered by type or severity."""
        params = request.query_params
        try:
            limit = int(params.get("limit", DEFAULT_EVENTS_LIMIT))
        except ValueError:
            raise ValidationError("limit must be an integer", {"limit": params.get("limit")})
        if limit < 1:
            raise ValidationError("limit must be positive", {"limit": limit})
        limit = min(limit, MAX_EVENTS_LIMIT)

        event_type = params.get("type")
        severity = params.get("severity")
        try:
            if event_type:
                events = self.monitor.get_events_by_type(SecurityEventType(event_type), limit)
            elif severity:
                events = self.monitor.get_events_by_severity(Severity(severity), limit)
            else:
                events = self.monitor.get_recent_events(limit)
        except ValueError:
            raise ValidationError("Unknown event type or severity", {"type": event_type, "severity": severity})

        return {"events": [event.to_dict() for event in events], "count": len(events)}

    async def security_metrics(self, request: Request, identity: Identity):
        return self.monitor.get_security_metrics()

    async def bills(self, request: Request, identity: Identity):
        """Sample protected resource for the bills endpoint class."""
        payload = {
            "subject_id": identity.subject_id,
            "household_id": identity.household_id,
        }
        if request.method == "GET":
            payload["bills"] = []
            return payload

        body = await request.body()
        if body:
            try:
                payload["bill"] = await request.json()
            except ValueError:
                raise ValidationError("Request body must be JSON")
        payload["status"] = "accepted"
        return payload


def create_app():
    """Application factory for ``uvicorn --factory``."""
    return SecurityService().app


if __name__ == "__main__":
    service = SecurityService()
    service.run()
