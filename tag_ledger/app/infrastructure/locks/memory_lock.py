from __future__ import annotations

import secrets
import time
from collections.abc import Callable


class InMemoryDistributedLock:
    """
    Single-process lock with the same TTL and owner-token semantics as the
    Redis lock. Used for local runs (LOCK_BACKEND=memory) and tests.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._held: dict[str, tuple[str, float]] = {}

    def _purge(self, key: str) -> None:
        entry = self._held.get(key)
        if entry is not None and entry[1] <= self._clock():
            del self._held[key]

    async def acquire(self, key: str, *, ttl_seconds: float) -> str | None:
        self._purge(key)
        if key in self._held:
            return None
        token = secrets.token_hex(16)
        self._held[key] = (token, self._clock() + ttl_seconds)
        return token

    async def release(self, key: str, token: str) -> bool:
        self._purge(key)
        entry = self._held.get(key)
        if entry is None or entry[0] != token:
            return False
        del self._held[key]
        return True

    async def is_held(self, key: str) -> bool:
        self._purge(key)
        return key in self._held

    async def close(self) -> None:
        self._held.clear()
