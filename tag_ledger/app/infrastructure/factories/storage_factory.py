from __future__ import annotations

from typing import Callable, Dict

from sqlalchemy.ext.asyncio import AsyncEngine

from tag_ledger.app.domain.ports.out import BlockCheckpointStore, LedgerStore
from tag_ledger.app.infrastructure.adapters.checkpoints.sqlalchemy_block_checkpoint_store import (
    SqlAlchemyBlockCheckpointStore,
)
from tag_ledger.app.infrastructure.adapters.ledger.sqlalchemy_ledger_store import SqlAlchemyLedgerStore

LedgerStoreFactory = Callable[[AsyncEngine], LedgerStore]
CheckpointStoreFactory = Callable[[AsyncEngine], BlockCheckpointStore]

_LEDGER_STORE_REGISTRY: Dict[str, LedgerStoreFactory] = {}
_CHECKPOINT_STORE_REGISTRY: Dict[str, CheckpointStoreFactory] = {}

# Register backends
_LEDGER_STORE_REGISTRY["sqlalchemy"] = lambda engine: SqlAlchemyLedgerStore(engine)
_CHECKPOINT_STORE_REGISTRY["sqlalchemy"] = lambda engine: SqlAlchemyBlockCheckpointStore(engine)


def ledger_store_factory(*, backend: str, engine: AsyncEngine) -> LedgerStore:
    try:
        factory = _LEDGER_STORE_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported ledger store backend: {backend!r}")
    return factory(engine)


def block_checkpoint_store_factory(*, backend: str, engine: AsyncEngine) -> BlockCheckpointStore:
    try:
        factory = _CHECKPOINT_STORE_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported checkpoint store backend: {backend!r}")
    return factory(engine)
