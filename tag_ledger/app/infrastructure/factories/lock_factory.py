from __future__ import annotations

from typing import Callable, Dict

from tag_ledger.app.config import settings
from tag_ledger.app.infrastructure.locks.memory_lock import InMemoryDistributedLock
from tag_ledger.app.infrastructure.locks.redis_lock import RedisDistributedLock

# Both implementations also expose close().
ClosableLock = RedisDistributedLock | InMemoryDistributedLock

_LOCK_REGISTRY: Dict[str, Callable[[], ClosableLock]] = {}

# Register backends
_LOCK_REGISTRY["redis"] = lambda: RedisDistributedLock.from_url(settings.redis_url)
_LOCK_REGISTRY["memory"] = lambda: InMemoryDistributedLock()


def distributed_lock_factory(*, backend: str | None = None) -> ClosableLock:
    """LOCK_BACKEND=memory only coordinates within one process."""
    backend = backend or settings.lock_backend
    try:
        factory = _LOCK_REGISTRY[backend]
    except KeyError:
        raise ValueError(f"Unsupported lock backend: {backend!r}")
    return factory()
