"""
Fixed-window rate limiter for the security gateway.
"""

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from homebase_shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from homebase_shared.errors import StoreUnavailable
from homebase_shared.logging import get_logger
from homebase_shared.metrics import MetricsCollector

from .config import RateLimitConfig
from .stores import CounterStore, RateLimitKey


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def window_start_for(now: datetime, window_minutes: int) -> datetime:
    """Floor ``now`` to a multiple of ``window_minutes`` within its clock hour."""
    minute = (now.minute // window_minutes) * window_minutes
    return now.replace(minute=minute, second=0, microsecond=0)


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate limit check."""
    allowed: bool
    remaining: int
    reset_time: datetime
    limit: int
    degraded: bool = False

    def retry_after(self, now: datetime) -> int:
        """Whole seconds until the window resets, never less than one."""
        return max(1, math.ceil((self.reset_time - now).total_seconds()))


def get_rate_limit_headers(result: RateLimitResult, now: Optional[datetime] = None) -> Dict[str, str]:
    """Rate limit headers for API responses."""
    now = now or utc_now()
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.floor(result.reset_time.timestamp())),
        "Retry-After": str(result.retry_after(now)),
    }


class RateLimiter:
    """Per-subject, per-endpoint-class fixed-window request counter.

    Exactly ``max_requests`` requests per window are allowed. The counter
    store performs the check-and-increment atomically; this class only picks
    the window and turns store failures into fail-open decisions.
    """

    def __init__(
        self,
        store: CounterStore,
        store_timeout: float = 0.5,
        metrics: Optional[MetricsCollector] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.store_timeout = store_timeout
        self.metrics = metrics
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            name=f"counter_store_{store.backend_name}",
        )
        self.clock = clock
        self.logger = get_logger("security.rate_limiter")

    async def check_rate_limit(self, subject_id: str, config: RateLimitConfig) -> RateLimitResult:
        """Count one request for ``subject_id`` against ``config``."""
        now = self.clock()
        window_start = window_start_for(now, config.window_minutes)
        reset_time = window_start + timedelta(minutes=config.window_minutes)
        key = RateLimitKey(subject_id=subject_id, endpoint=config.endpoint, window_start=window_start)

        async def _increment():
            return await asyncio.wait_for(
                self.store.increment_if_below(key, config.max_requests, config.window_seconds),
                timeout=self.store_timeout,
            )

        try:
            snapshot = await self.circuit_breaker.call(_increment)
        except CircuitBreakerOpenException:
            return self._fail_open(subject_id, config, reset_time, "circuit breaker open")
        except asyncio.TimeoutError:
            return self._fail_open(subject_id, config, reset_time, "timeout")
        except Exception as e:
            return self._fail_open(subject_id, config, reset_time, str(e))

        if not snapshot.incremented:
            self.logger.warning(
                "Rate limit exceeded",
                subject_id=subject_id,
                endpoint=config.endpoint,
                current_count=snapshot.request_count,
                limit=config.max_requests,
            )
            self._record_decision(config, "rejected")
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_time=reset_time,
                limit=config.max_requests,
            )

        self._record_decision(config, "allowed")
        return RateLimitResult(
            allowed=True,
            remaining=max(0, config.max_requests - snapshot.request_count),
            reset_time=reset_time,
            limit=config.max_requests,
        )

    def _fail_open(self, subject_id: str, config: RateLimitConfig, reset_time: datetime, reason: str) -> RateLimitResult:
        self.logger.warning(
            "Rate limit store unavailable, allowing request",
            subject_id=subject_id,
            endpoint=config.endpoint,
            backend=self.store.backend_name,
            error=reason,
        )
        if self.metrics:
            self.metrics.increment_counter("rate_limit_store_failures_total", backend=self.store.backend_name)
        self._record_decision(config, "fail_open")
        return RateLimitResult(
            allowed=True,
            remaining=config.max_requests,
            reset_time=reset_time,
            limit=config.max_requests,
            degraded=True,
        )

    def _record_decision(self, config: RateLimitConfig, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(
                "rate_limit_decisions_total",
                endpoint_class=config.endpoint,
                outcome=outcome,
            )

    async def start(self) -> None:
        """Prepare the counter store. An unreachable store is retried on first use."""
        try:
            await self.store.start()
        except StoreUnavailable as e:
            self.logger.warning(
                "Counter store unavailable at startup",
                backend=self.store.backend_name,
                error=e.message,
            )

    async def close(self) -> None:
        await self.store.close()
