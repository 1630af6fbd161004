from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from types import TracebackType

from tag_ledger.app.domain.errors import BalanceBusyError
from tag_ledger.app.domain.ports.out import DistributedLock


logger = logging.getLogger(__name__)

RECONCILER_LOCK_KEY = "balance_poller_lock"


def in_flight_key(balance_id: int) -> str:
    return f"balance_in_flight:{balance_id}"


class BalancesInFlight:
    """
    Marks balances as taking part in an orchestrated transfer.

    While marked, the reconciler leaves them alone so it cannot book the
    on-chain side of a transfer that the orchestrator is about to write.
    Markers expire on their own if the holder dies.

    Each marker has exactly one owner. A second transfer on a marked balance
    waits for the first to release it (up to wait_seconds) and then owns the
    marker itself, so a balance is never left unmarked while any transfer on
    it is between submission and ledger write.
    """

    def __init__(
        self,
        lock: DistributedLock,
        balance_ids: Iterable[int],
        *,
        ttl_seconds: float,
        wait_seconds: float = 30.0,
        poll_seconds: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = lock
        # Sorted so two transfers over the same pair acquire in the same order.
        self._balance_ids = sorted(set(balance_ids))
        self._ttl_seconds = ttl_seconds
        self._wait_seconds = wait_seconds
        self._poll_seconds = poll_seconds
        self._sleep = sleep
        self._clock = clock
        self._tokens: dict[str, str] = {}

    async def __aenter__(self) -> "BalancesInFlight":
        deadline = self._clock() + self._wait_seconds
        try:
            for balance_id in self._balance_ids:
                key = in_flight_key(balance_id)
                self._tokens[key] = await self._acquire(key, deadline)
        except BaseException:
            await self._release_all()
            raise
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self._release_all()

    async def _acquire(self, key: str, deadline: float) -> str:
        while True:
            token = await self._lock.acquire(key, ttl_seconds=self._ttl_seconds)
            if token is not None:
                return token
            if self._clock() >= deadline:
                raise BalanceBusyError(key)
            logger.debug("Waiting for in-flight marker %s", key)
            await self._sleep(self._poll_seconds)

    async def _release_all(self) -> None:
        for key, token in self._tokens.items():
            try:
                await self._lock.release(key, token)
            except Exception:
                logger.exception("Failed to release in-flight marker %s", key)
        self._tokens.clear()
