"""
Shared HTTP transport with timeouts and optional retries for the Shopify Admin API.
Writes are never retried here; callers pass max_retries=0 for non-idempotent requests.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRIES = 2
RETRY_BACKOFF_BASE = 1.0  # seconds


async def _sleep_backoff(attempt: int) -> None:
    if attempt <= 0:
        return
    delay = RETRY_BACKOFF_BASE * (2 ** (attempt - 1))
    await asyncio.sleep(min(delay, 10.0))


async def request_with_retry(
    method: str,
    url: str,
    *,
    session: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_retries: int = DEFAULT_RETRIES,
    retry_on: tuple[int, ...] = (502, 503, 504),
    before_attempt: Optional[Callable[[], Awaitable[None]]] = None,
    after_attempt: Optional[Callable[[httpx.Response], Awaitable[None]]] = None,
    **kwargs: Any,
) -> httpx.Response:
    """
    Perform HTTP request with timeout and optional retries for gateway/network errors.
    Uses the given session when provided, otherwise a short-lived AsyncClient per attempt.
    before_attempt runs ahead of every attempt, after_attempt after every response.
    """
    last_exc: Optional[Exception] = None
    resp: Optional[httpx.Response] = None
    for attempt in range(max_retries + 1):
        if before_attempt is not None:
            await before_attempt()
        try:
            if session is not None:
                resp = await session.request(method, url, timeout=timeout, **kwargs)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    resp = await client.request(method, url, **kwargs)
            if after_attempt is not None:
                await after_attempt(resp)
            if attempt < max_retries and resp.status_code in retry_on:
                logger.warning("HTTP %s %s returned %s, retrying", method, url, resp.status_code)
                await _sleep_backoff(attempt + 1)
                continue
            return resp
        except (httpx.ConnectError, httpx.ReadTimeout, httpx.ConnectTimeout) as e:
            last_exc = e
            if attempt < max_retries:
                logger.warning("HTTP %s %s attempt %s failed: %s", method, url, attempt + 1, e)
                await _sleep_backoff(attempt + 1)
            else:
                raise
    if last_exc:
        raise last_exc
    return resp  # type: ignore
