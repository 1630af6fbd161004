from __future__ import annotations

import logging
import secrets
from typing import Final

from redis.asyncio import Redis


logger = logging.getLogger(__name__)

# Delete only if the caller still owns the lock.
_RELEASE_SCRIPT: Final[str] = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""


class RedisDistributedLock:
    """
    SET key token NX PX ttl based lock.

    The TTL bounds how long a crashed holder can block others. Release runs a
    Lua compare-and-delete so a holder whose lock already expired cannot free
    a lock somebody else has taken since.
    """

    def __init__(self, client: Redis) -> None:
        self._client = client
        self._release = client.register_script(_RELEASE_SCRIPT)

    @classmethod
    def from_url(cls, url: str) -> "RedisDistributedLock":
        return cls(Redis.from_url(url, decode_responses=True))

    async def acquire(self, key: str, *, ttl_seconds: float) -> str | None:
        token = secrets.token_hex(16)
        acquired = await self._client.set(key, token, nx=True, px=max(1, int(ttl_seconds * 1000)))
        if not acquired:
            return None
        logger.debug("Acquired lock %s", key)
        return token

    async def release(self, key: str, token: str) -> bool:
        released = await self._release(keys=[key], args=[token])
        return bool(released)

    async def is_held(self, key: str) -> bool:
        return bool(await self._client.exists(key))

    async def close(self) -> None:
        await self._client.aclose()
