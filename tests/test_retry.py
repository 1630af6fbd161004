import asyncio

import pytest

from tag_ledger.app.application.services.block_range import BlockRange, iter_block_ranges
from tag_ledger.app.application.services.retry import RetryPolicy, with_retry


class Flaky:
    def __init__(self, failures: int, result: str = "ok") -> None:
        self.failures = failures
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls}")
        return self.result


async def test_retry_succeeds_after_failures():
    delays: list[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    fn = Flaky(failures=2)
    assert await with_retry(fn, attempts=3, base_delay=2.0, sleep=sleep) == "ok"
    assert fn.calls == 3
    assert delays == [2.0, 4.0]


async def test_retry_reraises_last_failure():
    async def sleep(_: float) -> None:
        return None

    fn = Flaky(failures=5)
    with pytest.raises(ConnectionError, match="attempt 3"):
        await with_retry(fn, attempts=3, base_delay=1.0, sleep=sleep)
    assert fn.calls == 3


async def test_timeout_counts_as_failed_attempt():
    calls = 0

    async def slow_then_fast() -> str:
        nonlocal calls
        calls += 1
        if calls == 1:
            await asyncio.sleep(1)
        return "done"

    async def sleep(_: float) -> None:
        return None

    policy = RetryPolicy(attempts=2, base_delay=0.0, timeout=0.01, sleep=sleep)
    assert await policy.run(slow_then_fast) == "done"
    assert calls == 2


async def test_attempts_must_be_positive():
    with pytest.raises(ValueError):
        await with_retry(Flaky(0), attempts=0)


def test_block_ranges_are_inclusive_chunks():
    ranges = list(iter_block_ranges(from_block=10, to_block=25, chunk_size=5))
    assert ranges == [
        BlockRange(10, 14),
        BlockRange(15, 19),
        BlockRange(20, 24),
        BlockRange(25, 25),
    ]


def test_block_range_rejects_inverted_bounds():
    with pytest.raises(ValueError):
        list(iter_block_ranges(from_block=5, to_block=4, chunk_size=10))
