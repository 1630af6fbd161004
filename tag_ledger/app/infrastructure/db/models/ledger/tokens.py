from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Integer, PrimaryKeyConstraint, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from tag_ledger.app.infrastructure.db.db_base import LEDGER_SCHEMA, BaseDB
from tag_ledger.app.infrastructure.db.types import ExactDecimal


class TokensDB(BaseDB):
    """
    One row per supported chain's native token.

    symbol doubles as the chain key used to pick the chain adapter.
    """

    __tablename__ = "tokens"
    __table_args__ = (
        PrimaryKeyConstraint("id"),
        UniqueConstraint("symbol"),
        {"schema": LEDGER_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, autoincrement=True)
    symbol: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    chain_key: Mapped[str] = mapped_column(Text, nullable=False)
    decimals: Mapped[int] = mapped_column(Integer, nullable=False, default=18)

    # USD price per whole token
    price: Mapped[Decimal] = mapped_column(ExactDecimal(), nullable=False, default=Decimal(0))
