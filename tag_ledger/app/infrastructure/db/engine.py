from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tag_ledger.app.config import settings


def create_app_async_engine(*, echo: bool | None = None) -> AsyncEngine:
    """
    One engine (and pool) per process for CLI tasks and Celery workers.

    Reconciler batches and transfers hold a connection per concurrent balance
    write, so the pool is sized from DB_POOL_SIZE / DB_MAX_OVERFLOW.
    """
    return create_async_engine(
        settings.database_url,  # postgresql+asyncpg://...
        echo=settings.db_echo if echo is None else echo,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )
