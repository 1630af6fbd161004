from typing import Any

import pytest

from tag_ledger.app.application.services.balance_guards import BalancesInFlight, in_flight_key
from tag_ledger.app.domain.errors import BalanceBusyError
from tag_ledger.app.infrastructure.locks.memory_lock import InMemoryDistributedLock
from tag_ledger.app.infrastructure.locks.redis_lock import RedisDistributedLock


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


async def test_memory_lock_is_exclusive():
    lock = InMemoryDistributedLock()
    token = await lock.acquire("k", ttl_seconds=10)
    assert token is not None
    assert await lock.acquire("k", ttl_seconds=10) is None
    assert await lock.is_held("k")

    assert await lock.release("k", token)
    assert not await lock.is_held("k")
    assert await lock.acquire("k", ttl_seconds=10) is not None


async def test_memory_lock_expires():
    clock = FakeClock()
    lock = InMemoryDistributedLock(clock=clock)
    first = await lock.acquire("k", ttl_seconds=15)
    clock.now = 16
    assert not await lock.is_held("k")

    second = await lock.acquire("k", ttl_seconds=15)
    assert second is not None
    # The expired holder cannot free the new holder's lock.
    assert not await lock.release("k", first)
    assert await lock.is_held("k")


async def test_balances_in_flight_marks_and_releases():
    lock = InMemoryDistributedLock()
    async with BalancesInFlight(lock, [2, 1, 2], ttl_seconds=30):
        assert await lock.is_held(in_flight_key(1))
        assert await lock.is_held(in_flight_key(2))
    assert not await lock.is_held(in_flight_key(1))
    assert not await lock.is_held(in_flight_key(2))


async def test_balances_in_flight_waits_for_the_previous_holder():
    lock = InMemoryDistributedLock()
    other = await lock.acquire(in_flight_key(1), ttl_seconds=30)
    waits: list[float] = []

    async def previous_transfer_finishes(seconds: float) -> None:
        waits.append(seconds)
        await lock.release(in_flight_key(1), other)

    guard = BalancesInFlight(lock, [1], ttl_seconds=30, poll_seconds=0.5, sleep=previous_transfer_finishes)
    async with guard:
        assert waits == [0.5]
        # The marker now belongs to this transfer, not the finished one.
        assert await lock.is_held(in_flight_key(1))
        assert not await lock.release(in_flight_key(1), other)
    assert not await lock.is_held(in_flight_key(1))


async def test_balances_in_flight_gives_up_and_drops_partial_markers():
    lock = InMemoryDistributedLock()
    other = await lock.acquire(in_flight_key(2), ttl_seconds=30)
    clock = FakeClock()

    async def tick(seconds: float) -> None:
        clock.now += seconds

    guard = BalancesInFlight(
        lock, [1, 2], ttl_seconds=30, wait_seconds=1.0, poll_seconds=0.25, sleep=tick, clock=clock
    )
    with pytest.raises(BalanceBusyError):
        async with guard:
            pytest.fail("entered a busy balance")

    assert not await lock.is_held(in_flight_key(1))
    assert await lock.release(in_flight_key(2), other)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the lock."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.set_calls: list[dict[str, Any]] = []

    def register_script(self, _script: str):
        async def compare_and_delete(*, keys: list[str], args: list[str]) -> int:
            if self.store.get(keys[0]) == args[0]:
                del self.store[keys[0]]
                return 1
            return 0

        return compare_and_delete

    async def set(self, key: str, value: str, *, nx: bool, px: int) -> bool | None:
        self.set_calls.append({"key": key, "nx": nx, "px": px})
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    async def exists(self, key: str) -> int:
        return int(key in self.store)

    async def aclose(self) -> None:
        return None


async def test_redis_lock_set_nx_px_and_owner_release():
    client = FakeRedis()
    lock = RedisDistributedLock(client)  # type: ignore[arg-type]

    token = await lock.acquire("balance_poller_lock", ttl_seconds=15)
    assert token is not None
    assert client.set_calls[0] == {"key": "balance_poller_lock", "nx": True, "px": 15000}
    assert await lock.acquire("balance_poller_lock", ttl_seconds=15) is None

    assert not await lock.release("balance_poller_lock", "not-the-owner")
    assert await lock.is_held("balance_poller_lock")
    assert await lock.release("balance_poller_lock", token)
    assert not await lock.is_held("balance_poller_lock")
