from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    PrimaryKeyConstraint,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from tag_ledger.app.infrastructure.db.db_base import LEDGER_SCHEMA, BaseDB


class NotificationsDB(BaseDB):
    __tablename__ = "notifications"
    __table_args__ = (
        PrimaryKeyConstraint("id"),
        Index("ix_notifications_user_created", "user_id", "created_at"),
        {"schema": LEDGER_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey(f"{LEDGER_SCHEMA}.users.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
