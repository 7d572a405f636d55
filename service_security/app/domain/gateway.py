"""
Security gateway pipeline.

Every protected request runs through five stages, stopping at the first
failure: method check, authentication, rate limiting, CSRF validation,
handler dispatch. Rate limiting fails open on store trouble; every other
stage fails closed.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Tuple

from fastapi import APIRouter, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from homebase_shared.errors import (
    AuthenticationError,
    AuthorizationError,
    ExternalServiceError,
    HomebaseException,
    InternalError,
    MethodNotAllowedError,
    RateLimitError,
)
from homebase_shared.logging import bind_subject_context, get_logger
from homebase_shared.metrics import MetricsCollector

from ..adapters.auth_client import Authenticator, Identity
from ..csrf import CSRF_HEADER, CSRFTokenService
from ..monitoring import SecurityMonitor
from ..ratelimit import RateLimiter, RateLimitConfig, RateLimitResult, get_rate_limit_headers, resolve_rate_limit_config


ALL_METHODS: Tuple[str, ...] = ("GET", "POST", "PUT", "PATCH", "DELETE")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'none'; style-src 'none'; img-src 'none'; "
        "font-src 'none'; connect-src 'self'; frame-src 'none'; worker-src 'none';"
    ),
}

Handler = Callable[[Request, Optional[Identity]], Awaitable[Any]]


@dataclass(frozen=True)
class RouteSecurityConfig:
    """Per-route pipeline options."""
    require_auth: bool = True
    require_csrf: bool = True
    rate_limit_config: Optional[str] = "api"
    allowed_methods: Tuple[str, ...] = ALL_METHODS

    def __post_init__(self):
        object.__setattr__(self, "allowed_methods", tuple(m.upper() for m in self.allowed_methods))


DEFAULT_ROUTE_CONFIG = RouteSecurityConfig()
READ_ONLY = RouteSecurityConfig(require_auth=True, require_csrf=False, allowed_methods=("GET",))
PUBLIC = RouteSecurityConfig(require_auth=False, require_csrf=False, allowed_methods=("GET", "POST"))
ADMIN = RouteSecurityConfig(require_auth=True, require_csrf=True, allowed_methods=ALL_METHODS)


def get_client_ip(request: Request) -> str:
    """Extract the caller IP from standard headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    if request.client:
        return request.client.host
    return "unknown"


class SecurityGateway:
    """Runs protected handlers behind the security pipeline."""

    def __init__(
        self,
        authenticator: Authenticator,
        rate_limiter: RateLimiter,
        csrf_service: CSRFTokenService,
        monitor: SecurityMonitor,
        rate_limit_table: Optional[Mapping[str, RateLimitConfig]] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.authenticator = authenticator
        self.rate_limiter = rate_limiter
        self.csrf_service = csrf_service
        self.monitor = monitor
        self.rate_limit_table = rate_limit_table
        self.metrics = metrics
        self.logger = get_logger("security.gateway")

    async def handle(
        self,
        request: Request,
        handler: Handler,
        config: RouteSecurityConfig = DEFAULT_ROUTE_CONFIG,
    ) -> Response:
        """Run ``request`` through the pipeline and, if it passes, ``handler``."""
        try:
            self._check_method(request, config)
            identity = await self._authenticate(request, config)
            rate_result = await self._check_rate_limit(request, identity, config)
            self._check_csrf(request, identity, config)
        except HomebaseException as exc:
            return self._reject(exc)
        except Exception as e:
            self.logger.error(
                "API security error",
                path=request.url.path,
                method=request.method,
                error=str(e),
                exc_info=True,
            )
            if self.metrics:
                self.metrics.record_error(type(e).__name__)
            return self._reject(InternalError())

        response = await self._dispatch(request, handler, identity)
        if rate_result is not None and not rate_result.degraded:
            headers = get_rate_limit_headers(rate_result, self.rate_limiter.clock())
            headers.pop("Retry-After")
            response.headers.update(headers)
        return response

    def _check_method(self, request: Request, config: RouteSecurityConfig) -> None:
        if request.method.upper() not in config.allowed_methods:
            self.logger.warning("Method not allowed", method=request.method, path=request.url.path)
            raise MethodNotAllowedError(request.method, list(config.allowed_methods))

    async def _authenticate(self, request: Request, config: RouteSecurityConfig) -> Optional[Identity]:
        if not config.require_auth:
            return None

        client_ip = get_client_ip(request)
        user_agent = request.headers.get("User-Agent", "unknown")
        try:
            identity = await self.authenticator.authenticate(request)
        except (AuthenticationError, ExternalServiceError) as exc:
            self.monitor.log_authentication_failure(
                request.url.path, client_ip, user_agent, details={"reason": exc.message}
            )
            raise AuthenticationError("Unauthorized", details=exc.details) from exc

        if identity is None:
            self.monitor.log_unauthorized_access(request.url.path, client_ip, user_agent)
            raise AuthenticationError("Unauthorized")

        bind_subject_context(identity.subject_id, identity.household_id)
        return identity

    async def _check_rate_limit(
        self,
        request: Request,
        identity: Optional[Identity],
        config: RouteSecurityConfig,
    ) -> Optional[RateLimitResult]:
        if not config.rate_limit_config:
            return None

        client_ip = get_client_ip(request)
        subject_id = identity.subject_id if identity else f"ip:{client_ip}"
        limit_config = resolve_rate_limit_config(config.rate_limit_config, self.rate_limit_table)
        result = await self.rate_limiter.check_rate_limit(subject_id, limit_config)

        if not result.allowed:
            self.monitor.log_rate_limit_exceeded(
                subject_id, request.url.path, client_ip, request.headers.get("User-Agent", "unknown")
            )
            now = self.rate_limiter.clock()
            raise RateLimitError(
                retry_after=result.retry_after(now),
                headers=get_rate_limit_headers(result, now),
                details={"endpoint_class": limit_config.endpoint, "limit": result.limit},
            )
        return result

    def _check_csrf(self, request: Request, identity: Optional[Identity], config: RouteSecurityConfig) -> None:
        # Tokens are subject-bound, so anonymous callers have nothing to check.
        if not config.require_csrf or identity is None:
            return

        token = request.headers.get(CSRF_HEADER)
        validation = self.csrf_service.validate_request(request.method, token, identity.subject_id)
        if not validation.valid:
            self.monitor.log_csrf_failure(
                identity.subject_id,
                request.url.path,
                get_client_ip(request),
                request.headers.get("User-Agent", "unknown"),
            )
            raise AuthorizationError(validation.error)

    async def _dispatch(self, request: Request, handler: Handler, identity: Optional[Identity]) -> Response:
        try:
            result = await handler(request, identity)
        except HTTPException:
            raise
        except HomebaseException as exc:
            return self._reject(exc)
        except Exception as e:
            self.logger.error(
                "Unhandled handler error",
                path=request.url.path,
                method=request.method,
                subject_id=identity.subject_id if identity else None,
                error=str(e),
                exc_info=True,
            )
            if self.metrics:
                self.metrics.record_error(type(e).__name__)
            return self._reject(InternalError())

        response = result if isinstance(result, Response) else JSONResponse(content=jsonable_encoder(result))
        response.headers.update(SECURITY_HEADERS)
        return response

    def _reject(self, exc: HomebaseException) -> Response:
        if self.metrics:
            self.metrics.increment_counter("gateway_rejections_total", status_code=str(exc.status_code))
        response = exc.to_json_response()
        response.headers.update(SECURITY_HEADERS)
        return response

    def secured(self, config: RouteSecurityConfig = DEFAULT_ROUTE_CONFIG):
        """Adapt ``handler(request, identity)`` into a FastAPI endpoint."""
        def decorator(handler: Handler):
            async def endpoint(request: Request) -> Response:
                return await self.handle(request, handler, config)

            # No functools.wraps: FastAPI would read the handler's signature.
            endpoint.__name__ = getattr(handler, "__name__", type(handler).__name__)
            endpoint.__doc__ = handler.__doc__
            return endpoint
        return decorator

    def add_route(
        self,
        router: APIRouter,
        path: str,
        handler: Handler,
        config: RouteSecurityConfig = DEFAULT_ROUTE_CONFIG,
        **kwargs: Any,
    ) -> None:
        """Register ``handler`` for every method so disallowed ones reach the method check."""
        router.add_api_route(path, self.secured(config)(handler), methods=list(ALL_METHODS), **kwargs)
