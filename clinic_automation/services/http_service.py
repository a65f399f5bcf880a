"""HTTP helpers with retry/backoff for outbound collaborator calls."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    retry_statuses: set[int] | None = None,
) -> httpx.Response:
    """Execute an HTTP request, retrying transport errors and retryable statuses.

    Bounded to max_attempts within one handler run; job-level retries are
    separate and use a fixed delay.
    """
    statuses = retry_statuses or DEFAULT_RETRY_STATUSES

    for attempt in range(max_attempts):
        is_last = attempt >= max_attempts - 1
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if is_last:
                raise
            logger.warning("HTTP request failed, retrying", exc_info=exc)
            await _sleep_backoff(attempt, base_delay, max_delay)
            continue

        if response.status_code in statuses and not is_last:
            logger.warning("HTTP request returned %s, retrying", response.status_code)
            await _sleep_backoff(attempt, base_delay, max_delay)
            continue

        return response

    return response


async def _sleep_backoff(attempt: int, base_delay: float, max_delay: float) -> None:
    delay = min(max_delay, base_delay * (2**attempt))
    if delay:
        delay = delay + random.uniform(0, delay / 2)
        await asyncio.sleep(delay)
