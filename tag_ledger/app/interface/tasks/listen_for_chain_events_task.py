from __future__ import annotations

from tag_ledger.app.application.services.listen_for_chain_events import ChainEventListener
from tag_ledger.app.config import settings
from tag_ledger.app.infrastructure.db.engine import create_app_async_engine
from tag_ledger.app.infrastructure.factories.chains_factory import chain_event_source_factory
from tag_ledger.app.infrastructure.factories.storage_factory import block_checkpoint_store_factory
from tag_ledger.app.infrastructure.factories.task_queue_factory import task_queue_factory
from tag_ledger.app.interface.tasks.common import rpc_retry_policy


async def listen_for_chain_events_task(
    *,
    chain_key: str,
    once: bool = False,
    start_block: int | None = None,
    backend: str = "sqlalchemy",
) -> int | None:
    """
    Task: watch one chain's tag-wallet contract and queue an
    apply_chain_event job per deposit/withdrawal event.
    """
    engine = create_app_async_engine()
    try:
        listener = ChainEventListener(
            source=chain_event_source_factory(chain_key=chain_key),
            checkpoints=block_checkpoint_store_factory(backend=backend, engine=engine),
            queue=task_queue_factory(),
            retry=rpc_retry_policy(),
            chunk_size=settings.listener_block_chunk_size,
            poll_interval_seconds=settings.listener_poll_interval_seconds,
            start_block=start_block,
        )
        if once:
            return await listener.poll_once()
        await listener.run_forever()
        return None
    finally:
        await engine.dispose()
