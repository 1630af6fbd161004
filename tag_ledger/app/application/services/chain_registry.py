from __future__ import annotations

from collections.abc import Iterator, Mapping

from tag_ledger.app.domain.errors import UnsupportedChainError
from tag_ledger.app.domain.ports.out import ChainAdapter


class ChainRegistry(Mapping[str, ChainAdapter]):
    """
    Chain key -> ChainAdapter, built once at startup.

    Token symbols double as chain keys ("STRK", "BASE", "LSK", ...), so a
    balance's token is enough to pick its adapter.
    """

    def __init__(self, adapters: Mapping[str, ChainAdapter]) -> None:
        self._adapters = {key.upper(): adapter for key, adapter in adapters.items()}

    def __getitem__(self, chain_key: str) -> ChainAdapter:
        return self._adapters[chain_key.upper()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)

    def require(self, chain_key: str) -> ChainAdapter:
        try:
            return self[chain_key]
        except KeyError:
            raise UnsupportedChainError(chain_key) from None
