from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from tag_ledger.app.application.services.block_range import iter_block_ranges
from tag_ledger.app.application.services.retry import RetryPolicy
from tag_ledger.app.domain.ports.out import BlockCheckpointStore, ChainEventSource, TaskQueue


logger = logging.getLogger(__name__)

APPLY_CHAIN_EVENT_JOB = "apply_chain_event"


class ChainEventListener:
    """
    Watches one chain for tag-wallet events and enqueues one job per event.

    The checkpoint (last processed block) is advanced only after every event of
    a chunk has been enqueued, so a crash replays the chunk instead of skipping
    it. Consumers are idempotent on tx_hash, which makes replays harmless.
    """

    def __init__(
        self,
        *,
        source: ChainEventSource,
        checkpoints: BlockCheckpointStore,
        queue: TaskQueue,
        retry: RetryPolicy,
        job_type: str = APPLY_CHAIN_EVENT_JOB,
        chunk_size: int = 500,
        poll_interval_seconds: float = 10.0,
        start_block: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._source = source
        self._checkpoints = checkpoints
        self._queue = queue
        self._retry = retry
        self._job_type = job_type
        self._chunk_size = chunk_size
        self._poll_interval_seconds = poll_interval_seconds
        self._start_block = start_block
        self._sleep = sleep

    @property
    def chain_key(self) -> str:
        return self._source.chain_key

    async def run_forever(self, *, stop: asyncio.Event | None = None) -> None:
        logger.info("Starting %s event listener", self.chain_key)
        while stop is None or not stop.is_set():
            try:
                await self.poll_once()
            except Exception:
                logger.exception("%s listener error", self.chain_key)
            await self._sleep(self._poll_interval_seconds)

    async def poll_once(self) -> int:
        """Process every new block once. Returns the number of enqueued events."""
        current_block = await self._retry.run(
            self._source.get_block_number,
            description=f"{self.chain_key} get_block_number",
        )

        last_block = await self._checkpoints.get_last_processed_block(self.chain_key)
        if last_block is None:
            # First run: start at the configured block, otherwise at the head.
            if self._start_block is None:
                await self._checkpoints.set_last_processed_block(self.chain_key, current_block)
                logger.info("%s listener starting from head block %s", self.chain_key, current_block)
                return 0
            last_block = self._start_block - 1

        if current_block <= last_block:
            return 0

        logger.info(
            "%s: new blocks [%s, %s]",
            self.chain_key,
            last_block + 1,
            current_block,
        )

        enqueued = 0
        for block_range in iter_block_ranges(
            from_block=last_block + 1,
            to_block=current_block,
            chunk_size=self._chunk_size,
        ):
            events = await self._retry.run(
                lambda: self._source.fetch_events(
                    from_block=block_range.from_block,
                    to_block=block_range.to_block,
                ),
                description=f"{self.chain_key} fetch_events[{block_range.from_block}, {block_range.to_block}]",
            )

            for event in events:
                await self._queue.enqueue(self._job_type, event.to_payload())
                logger.info("Queued %s %s (tx=%s)", self.chain_key, event.name, event.tx_hash)

            await self._checkpoints.set_last_processed_block(self.chain_key, block_range.to_block)
            enqueued += len(events)

        return enqueued
