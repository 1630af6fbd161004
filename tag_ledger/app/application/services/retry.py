from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 2.0,
    timeout: float | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: SleepFn = asyncio.sleep,
    description: str = "call",
) -> T:
    """
    Await fn() up to `attempts` times.

    Each attempt is bounded by `timeout` (a hung RPC counts as a failed
    attempt). Between attempts sleeps base_delay * attempt_number. The last
    failure is re-raised.
    """
    if attempts <= 0:
        raise ValueError("attempts must be positive")

    for attempt in range(1, attempts + 1):
        try:
            if timeout is None:
                return await fn()
            return await asyncio.wait_for(fn(), timeout=timeout)
        except retry_on as exc:
            if attempt == attempts:
                logger.warning(
                    "%s failed after %s attempts: %r",
                    description,
                    attempts,
                    exc,
                )
                raise
            delay = base_delay * attempt
            logger.warning(
                "Retry %s/%s for %s failed: %r (next attempt in %.1fs)",
                attempt,
                attempts,
                description,
                exc,
                delay,
            )
            await sleep(delay)

    raise AssertionError("unreachable")


@dataclass(frozen=True)
class RetryPolicy:
    """Bundles retry settings so services don't thread four arguments around."""

    attempts: int = 3
    base_delay: float = 2.0
    timeout: float | None = 30.0
    sleep: SleepFn = field(default=asyncio.sleep, compare=False)

    async def run(self, fn: Callable[[], Awaitable[T]], *, description: str = "call") -> T:
        return await with_retry(
            fn,
            attempts=self.attempts,
            base_delay=self.base_delay,
            timeout=self.timeout,
            sleep=self.sleep,
            description=description,
        )
