from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, PrimaryKeyConstraint, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from tag_ledger.app.infrastructure.db.db_base import LEDGER_SCHEMA, BaseDB


class UsersDB(BaseDB):
    """
    Ledger users, identified by their tag.

    Tags are stored normalized (no leading '@', lower-cased).
    """

    __tablename__ = "users"
    __table_args__ = (
        PrimaryKeyConstraint("id"),
        UniqueConstraint("tag"),
        {"schema": LEDGER_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, autoincrement=True)
    tag: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
