from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from tag_ledger.app.infrastructure.db.db_base import LEDGER_SCHEMA, BaseDB
from tag_ledger.app.infrastructure.db.types import ExactDecimal


class TransactionsDB(BaseDB):
    """
    Immutable record of every balance movement.

    (tx_hash, type) is unique: one on-chain transfer yields at most one debit
    and one credit, no matter how often its event is delivered. Reconciler
    corrections have no hash (NULLs never collide).
    """

    __tablename__ = "transactions"
    __table_args__ = (
        PrimaryKeyConstraint("id"),
        UniqueConstraint("reference"),
        UniqueConstraint("tx_hash", "type"),
        Index("ix_transactions_user_timestamp", "user_id", "timestamp"),
        {"schema": LEDGER_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey(f"{LEDGER_SCHEMA}.users.id", ondelete="CASCADE"),
        nullable=False,
    )
    token_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey(f"{LEDGER_SCHEMA}.tokens.id"),
        nullable=False,
    )

    reference: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)  # credit | debit
    status: Mapped[str] = mapped_column(Text, nullable=False, default="completed")
    tx_hash: Mapped[str | None] = mapped_column(Text, nullable=True)

    amount: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False)
    usd_value: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False, default=Decimal(0))

    from_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    to_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Decoded event payload or reconciler context
    extra: Mapped[dict[str, Any] | None] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=True,
    )
