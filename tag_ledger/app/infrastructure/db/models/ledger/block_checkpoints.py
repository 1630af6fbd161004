from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, PrimaryKeyConstraint, Text
from sqlalchemy.orm import Mapped, mapped_column

from tag_ledger.app.infrastructure.db.db_base import LEDGER_SCHEMA, BaseDB


class BlockCheckpointsDB(BaseDB):
    """
    Last block whose events were all handed to the task queue, per chain.

    The listener resumes from last_processed_block + 1 after a restart.
    """

    __tablename__ = "block_checkpoints"
    __table_args__ = (
        PrimaryKeyConstraint("chain_key"),
        {"schema": LEDGER_SCHEMA},
    )

    chain_key: Mapped[str] = mapped_column(Text, nullable=False)
    last_processed_block: Mapped[int] = mapped_column(BigInteger, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
