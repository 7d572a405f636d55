"""
Rate limiting package for the security gateway.

Holds the fixed-window limiter, its counter store backends, and the
per-endpoint-class configuration table.
"""

from .config import RateLimitConfig, DEFAULT_RATE_LIMITS, resolve_rate_limit_config, load_rate_limit_table
from .fixed_window import RateLimiter, RateLimitResult, get_rate_limit_headers, window_start_for
from .stores import (
    CounterStore,
    CounterSnapshot,
    InMemoryCounterStore,
    PostgresCounterStore,
    RateLimitKey,
    RedisCounterStore,
)

__all__ = [
    "RateLimitConfig",
    "DEFAULT_RATE_LIMITS",
    "resolve_rate_limit_config",
    "load_rate_limit_table",
    "RateLimiter",
    "RateLimitResult",
    "get_rate_limit_headers",
    "window_start_for",
    "CounterStore",
    "CounterSnapshot",
    "InMemoryCounterStore",
    "PostgresCounterStore",
    "RateLimitKey",
    "RedisCounterStore",
]
