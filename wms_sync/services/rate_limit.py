"""
Per-shop request budget for the Shopify Admin API.

Proactive side: a fixed-window counter (35 calls per 1s by default) shared through
Redis so every worker process draws from the same budget. Reactive side: inspect
X-Shopify-Shop-Api-Call-Limit and 429 responses after each call and back off.

The limiter fails open: if the counter store is down the request goes ahead.
"""
import asyncio
import logging
import os
import time
from typing import Awaitable, Callable, Optional

import httpx

from wms_sync.config import settings

logger = logging.getLogger(__name__)

CALL_LIMIT_HEADER = "X-Shopify-Shop-Api-Call-Limit"
KEY_PREFIX = "wms_ratelimit:"
NEAR_LIMIT_RATIO = 0.9
NEAR_LIMIT_PAUSE_SECONDS = 1.0
DEFAULT_RETRY_AFTER_SECONDS = 2.0

SleepFunc = Callable[[float], Awaitable[None]]


class MemoryCounterStore:
    """Process-local fixed windows. Used when REDIS_URL is not configured."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}

    async def hit(self, key: str, window: float) -> tuple[int, float]:
        now = self._clock()
        started, count = self._windows.get(key, (now, 0))
        if now - started >= window:
            started, count = now, 0
        count += 1
        self._windows[key] = (started, count)
        return count, max(0.0, window - (now - started))


class RedisCounterStore:
    """Fixed windows in Redis: INCR + PEXPIRE on the first hit of a window."""

    def __init__(self, client):
        self._client = client

    async def hit(self, key: str, window: float) -> tuple[int, float]:
        window_ms = int(window * 1000)
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.pttl(key)
            count, ttl = await pipe.execute()
        if ttl is None or ttl < 0:
            await self._client.pexpire(key, window_ms)
            ttl = window_ms
        return int(count), ttl / 1000.0


_default_store = None


def get_counter_store():
    """Lazy-init the shared counter store. Falls back to in-memory counters."""
    global _default_store
    if _default_store is not None:
        return _default_store

    if settings.REDIS_URL and not os.environ.get("TESTING"):
        try:
            import redis.asyncio as redis_asyncio

            client = redis_asyncio.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_connect_timeout=3,
                socket_timeout=2,
            )
            _default_store = RedisCounterStore(client)
            logger.info("Shopify rate limiter using Redis at %s", settings.REDIS_URL)
            return _default_store
        except Exception as e:
            logger.warning("Redis unavailable for rate limiting, using in-memory counters: %s", e)

    logger.info("Shopify rate limiter using in-memory counters (per process)")
    _default_store = MemoryCounterStore()
    return _default_store


def parse_call_limit(header: Optional[str]) -> Optional[tuple[int, int]]:
    """Parse '32/40' into (32, 40). Returns None for missing or malformed values."""
    if not header or "/" not in header:
        return None
    used, _, limit = header.partition("/")
    try:
        return int(used.strip()), int(limit.strip())
    except ValueError:
        return None


class RateLimiter:
    def __init__(
        self,
        store=None,
        limit: Optional[int] = None,
        window_seconds: Optional[float] = None,
        max_waits: Optional[int] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._store = store
        self.limit = limit if limit is not None else settings.SHOPIFY_RATE_LIMIT
        self.window_seconds = window_seconds if window_seconds is not None else settings.SHOPIFY_RATE_LIMIT_WINDOW_SECONDS
        self.max_waits = max_waits if max_waits is not None else settings.SHOPIFY_RATE_LIMIT_MAX_WAITS
        self._sleep = sleep

    @property
    def store(self):
        if self._store is None:
            self._store = get_counter_store()
        return self._store

    async def acquire(self, shop_domain: str) -> None:
        """
        Wait until the shop has budget in the current window.
        A starved caller sleeps (reset_in + 1)s and re-checks, at most max_waits times,
        then proceeds anyway.
        """
        key = f"{KEY_PREFIX}shopify:{shop_domain}"
        waits = 0
        while True:
            try:
                count, reset_in = await self.store.hit(key, self.window_seconds)
            except Exception as e:
                logger.warning("Rate limiter store error for %s, proceeding: %s", shop_domain, e)
                return
            if count <= self.limit:
                return
            if waits >= self.max_waits:
                logger.warning("Rate limit still exhausted for %s after %s waits, proceeding", shop_domain, waits)
                return
            waits += 1
            logger.info("Rate limit reached for %s, waiting %.2fs", shop_domain, reset_in + 1)
            await self._sleep(reset_in + 1)

    async def after_response(self, response: httpx.Response) -> None:
        """Back off when Shopify reports the bucket nearly full or throttles us."""
        usage = parse_call_limit(response.headers.get(CALL_LIMIT_HEADER))
        if usage:
            used, limit = usage
            if limit and used >= limit * NEAR_LIMIT_RATIO:
                logger.info("Shopify call limit at %s/%s, pausing", used, limit)
                await self._sleep(NEAR_LIMIT_PAUSE_SECONDS)

        if response.status_code == 429:
            retry_after = DEFAULT_RETRY_AFTER_SECONDS
            raw = response.headers.get("Retry-After")
            if raw:
                try:
                    retry_after = float(raw)
                except ValueError:
                    pass
            logger.warning("Shopify returned 429, sleeping %ss", retry_after)
            await self._sleep(retry_after)


_default_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    global _default_limiter
    if _default_limiter is None:
        _default_limiter = RateLimiter()
    return _default_limiter
