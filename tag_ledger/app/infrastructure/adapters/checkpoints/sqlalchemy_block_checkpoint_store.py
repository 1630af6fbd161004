from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Final

from sqlalchemy import Table, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine

from tag_ledger.app.infrastructure.db.models.ledger.block_checkpoints import BlockCheckpointsDB


logger = logging.getLogger(__name__)

_CHECKPOINTS: Final[Table] = BlockCheckpointsDB.__table__  # type: ignore[assignment]


class SqlAlchemyBlockCheckpointStore:
    """Per-chain last processed block, upserted with ON CONFLICT DO UPDATE."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get_last_processed_block(self, chain_key: str) -> int | None:
        async with self._engine.connect() as conn:
            value = (
                await conn.execute(
                    select(_CHECKPOINTS.c.last_processed_block).where(
                        _CHECKPOINTS.c.chain_key == chain_key.upper()
                    )
                )
            ).scalar_one_or_none()
        return int(value) if value is not None else None

    async def set_last_processed_block(self, chain_key: str, block_number: int) -> None:
        if block_number < 0:
            raise ValueError("Block numbers must be non-negative")

        async with self._engine.begin() as conn:
            dialect_insert = sqlite.insert if conn.dialect.name == "sqlite" else postgresql.insert
            stmt = dialect_insert(_CHECKPOINTS).values(
                chain_key=chain_key.upper(),
                last_processed_block=block_number,
                updated_at=datetime.now(timezone.utc),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[_CHECKPOINTS.c.chain_key],
                set_={
                    "last_processed_block": stmt.excluded.last_processed_block,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await conn.execute(stmt)

        logger.debug("Checkpoint %s -> %s", chain_key, block_number)
