from __future__ import annotations

from typing import Any

from tag_ledger.app.application.services.apply_chain_event import ChainEventApplier
from tag_ledger.app.domain.models import ChainEvent
from tag_ledger.app.infrastructure.db.engine import create_app_async_engine
from tag_ledger.app.infrastructure.factories.storage_factory import ledger_store_factory


async def apply_chain_event_task(
    *,
    payload: dict[str, Any],
    backend: str = "sqlalchemy",
) -> str | None:
    """Task: book one queued chain event. Returns the new transaction reference, if any."""
    engine = create_app_async_engine()
    try:
        applier = ChainEventApplier(ledger=ledger_store_factory(backend=backend, engine=engine))
        transaction = await applier.apply(ChainEvent.from_payload(payload))
        return transaction.reference if transaction is not None else None
    finally:
        await engine.dispose()
