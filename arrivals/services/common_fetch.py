# arrivals/services/common_fetch.py
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")
SleepFn = Callable[[float], Awaitable[None]]

log = logging.getLogger("common_fetch")


def backoff_delays(retries: int, base_delay: float) -> list[float]:
    """Exact doubling: base, 2*base, 4*base, ..."""
    return [base_delay * (2**i) for i in range(max(0, retries))]


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int = 3,
    base_delay: float = 0.1,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: SleepFn | None = None,
    label: str = "operation",
) -> T:
    """Run ``fn`` once plus up to ``retries`` more times on ``retry_on`` errors.

    The last error is re-raised once the retries are exhausted. Errors outside
    ``retry_on`` propagate immediately.
    """
    sleep = sleep or asyncio.sleep
    delays = backoff_delays(retries, base_delay)

    attempt = 0
    while True:
        try:
            return await fn()
        except retry_on as e:
            if attempt >= len(delays):
                raise
            delay = delays[attempt]
            attempt += 1
            log.info(
                "%s attempt %s failed (%s), retrying in %.0fms", label, attempt, e, delay * 1000
            )
            await sleep(delay)
