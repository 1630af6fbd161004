from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass


@dataclass(frozen=True)
class BlockRange:
    from_block: int
    to_block: int

    def validate(self) -> None:
        if self.from_block < 0 or self.to_block < 0:
            raise ValueError("Block numbers must be non-negative")
        if self.from_block > self.to_block:
            raise ValueError("from_block must be <= to_block")


def iter_block_ranges(*, from_block: int, to_block: int, chunk_size: int) -> Iterator[BlockRange]:
    """Split the inclusive range [from_block, to_block] into chunks."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    BlockRange(from_block=from_block, to_block=to_block).validate()

    current = from_block
    while current <= to_block:
        batch_to = min(current + chunk_size - 1, to_block)
        yield BlockRange(from_block=current, to_block=batch_to)
        current = batch_to + 1
