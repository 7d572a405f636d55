"""
Counter stores for fixed-window rate limiting.

Every backend implements one operation, an atomic conditional increment:
the counter for a key is incremented only while it is below the limit. The
check and the increment happen in a single storage-side step so concurrent
requests for the same subject and window cannot lose updates.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

import asyncpg
import redis.asyncio as redis
from redis.exceptions import RedisError

from homebase_shared.errors import StoreUnavailable
from homebase_shared.logging import get_logger


@dataclass(frozen=True)
class RateLimitKey:
    """Composite counter key."""
    subject_id: str
    endpoint: str
    window_start: datetime

    @property
    def redis_key(self) -> str:
        return f"rate_limit:{self.subject_id}:{self.endpoint}:{int(self.window_start.timestamp())}"


@dataclass(frozen=True)
class CounterSnapshot:
    """Counter value after a conditional increment."""
    request_count: int
    incremented: bool


class CounterStore(ABC):
    """Interface for rate limit counter storage."""

    backend_name = "abstract"

    @abstractmethod
    async def increment_if_below(self, key: RateLimitKey, limit: int, ttl_seconds: int) -> CounterSnapshot:
        """Atomically increment the counter for ``key`` unless it is already at ``limit``."""

    async def start(self) -> None:
        """Prepare backend resources ahead of the first request."""

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryCounterStore(CounterStore):
    """Process-local store for development and tests.

    Holds at most ``max_keys`` counters. When full, expired counters go first,
    then the oldest-created ones.
    """

    backend_name = "memory"

    def __init__(self, max_keys: int = 10000, clock=time.monotonic):
        self._counters: Dict[RateLimitKey, Tuple[int, float]] = {}
        self._lock = asyncio.Lock()
        self._max_keys = max_keys
        self._clock = clock

    async def increment_if_below(self, key: RateLimitKey, limit: int, ttl_seconds: int) -> CounterSnapshot:
        async with self._lock:
            now = self._clock()
            count, expires_at = self._counters.get(key, (0, now + ttl_seconds))
            if expires_at <= now:
                count, expires_at = 0, now + ttl_seconds

            if count >= limit:
                return CounterSnapshot(request_count=count, incremented=False)

            if key not in self._counters and len(self._counters) >= self._max_keys:
                self._evict(now)
            self._counters[key] = (count + 1, expires_at)
            return CounterSnapshot(request_count=count + 1, incremented=True)

    def _evict(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._counters.items() if expires_at <= now]
        for key in expired:
            del self._counters[key]
        # Dicts keep insertion order, so the first keys are the oldest windows.
        while len(self._counters) >= self._max_keys:
            del self._counters[next(iter(self._counters))]

    def get_count(self, key: RateLimitKey) -> int:
        """Current count for ``key`` (0 when absent)."""
        return self._counters.get(key, (0, 0.0))[0]


# KEYS[1] = counter key, ARGV[1] = limit, ARGV[2] = ttl seconds
CONDITIONAL_INCR_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
    return {current, 0}
end
current = redis.call('INCR', KEYS[1])
if current == 1 then
    redis.call('EXPIRE', KEYS[1], ARGV[2])
end
return {current, 1}
"""


class RedisCounterStore(CounterStore):
    """Distributed counter store using a server-side Lua script."""

    backend_name = "redis"

    def __init__(self, redis_url: str, socket_timeout: float = 1.0):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.logger = get_logger("security.counter_store.redis")
        self._redis: Optional[redis.Redis] = None
        self._script = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                decode_responses=True,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
            )
            self._script = self._redis.register_script(CONDITIONAL_INCR_SCRIPT)
        return self._redis

    async def increment_if_below(self, key: RateLimitKey, limit: int, ttl_seconds: int) -> CounterSnapshot:
        try:
            await self._get_redis()
            current, incremented = await self._script(keys=[key.redis_key], args=[limit, ttl_seconds])
        except (RedisError, OSError) as e:
            raise StoreUnavailable("redis", str(e)) from e

        return CounterSnapshot(request_count=int(current), incremented=bool(int(incremented)))

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis counter store closed")


class PostgresCounterStore(CounterStore):
    """Counter store backed by the ``rate_limits`` table.

    The upsert only updates rows still below the limit, so the decision and
    the increment are one statement.
    """

    backend_name = "postgres"

    UPSERT_SQL = """
        INSERT INTO rate_limits (user_id, endpoint, window_start, request_count)
        VALUES ($1, $2, $3, 1)
        ON CONFLICT (user_id, endpoint, window_start)
        DO UPDATE SET request_count = rate_limits.request_count + 1
        WHERE rate_limits.request_count < $4
        RETURNING request_count
    """

    SELECT_SQL = """
        SELECT request_count FROM rate_limits
        WHERE user_id = $1 AND endpoint = $2 AND window_start = $3
    """

    def __init__(self, dsn: str, command_timeout: float = 5.0):
        self.dsn = dsn
        self.command_timeout = command_timeout
        self.logger = get_logger("security.counter_store.postgres")
        self.pool: Optional[asyncpg.Pool] = None
        self._start_lock = asyncio.Lock()

    async def start(self):
        """Create the pool and the counter table.

        The pool is only kept once the table exists; a failed or cancelled
        start leaves the store unstarted so the next call retries.
        """
        async with self._start_lock:
            if self.pool is not None:
                return

            try:
                pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=10,
                    command_timeout=self.command_timeout
                )
                try:
                    await self._create_tables(pool)
                except BaseException:
                    pool.terminate()
                    raise
            except (asyncpg.PostgresError, OSError) as e:
                self.logger.error("Failed to start PostgreSQL counter store", error=str(e))
                raise StoreUnavailable("postgres", str(e)) from e

            self.pool = pool
            self.logger.info("PostgreSQL counter store started")

    async def _create_tables(self, pool: asyncpg.Pool):
        async with pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS rate_limits (
                    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
                    user_id text NOT NULL,
                    endpoint text NOT NULL,
                    window_start timestamptz NOT NULL,
                    request_count integer NOT NULL DEFAULT 0 CHECK (request_count >= 0),
                    created_at timestamptz NOT NULL DEFAULT now(),
                    UNIQUE (user_id, endpoint, window_start)
                );
            """)

    async def increment_if_below(self, key: RateLimitKey, limit: int, ttl_seconds: int) -> CounterSnapshot:
        if self.pool is None:
            await self.start()

        args = (key.subject_id, key.endpoint, key.window_start)
        try:
            async with self.pool.acquire() as conn:
                count = await conn.fetchval(self.UPSERT_SQL, *args, limit)
                if count is not None:
                    return CounterSnapshot(request_count=count, incremented=True)
                count = await conn.fetchval(self.SELECT_SQL, *args)
        except (asyncpg.PostgresError, OSError) as e:
            raise StoreUnavailable("postgres", str(e)) from e

        return CounterSnapshot(request_count=count or limit, incremented=False)

    async def close(self) -> None:
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL counter store closed")
