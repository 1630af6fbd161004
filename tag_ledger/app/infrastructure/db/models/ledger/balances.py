from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from tag_ledger.app.infrastructure.db.db_base import LEDGER_SCHEMA, BaseDB
from tag_ledger.app.infrastructure.db.types import ExactDecimal


class BalancesDB(BaseDB):
    """
    Ledger balance of one user for one token.

    address is the tag's wallet on that token's chain; incoming chain events
    are matched to balances through it. version increases on every write and
    backs compare-and-swap updates.
    """

    __tablename__ = "balances"
    __table_args__ = (
        PrimaryKeyConstraint("id"),
        UniqueConstraint("user_id", "token_id"),
        Index("ix_balances_address", "address"),
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

    amount: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False, default=Decimal(0))
    usd_value: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False, default=Decimal(0))
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
