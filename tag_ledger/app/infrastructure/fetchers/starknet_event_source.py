from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Sequence

from starknet_py.net.full_node_client import FullNodeClient

from tag_ledger.app.domain.errors import ChainRpcError
from tag_ledger.app.domain.models import ChainEvent
from tag_ledger.app.infrastructure.chains.starknet_adapter import normalize_felt_address
from tag_ledger.app.infrastructure.decoders.starknet.tag_wallet_events_decoder import (
    TagWalletEventDecoder,
    default_decoders,
)


logger = logging.getLogger(__name__)


class StarknetEventSource:
    """
    Reads DepositReceived / WithdrawalCompleted events of the Starknet
    tag-wallet contract with starknet_getEvents.

    A deposit affects the recipient wallet, a withdrawal the sender wallet.
    Events for tokens other than the configured native token are dropped.
    """

    def __init__(
        self,
        *,
        client: FullNodeClient,
        contract_address: str,
        chain_key: str = "STRK",
        token_address: str | None = None,
        decoders: Sequence[TagWalletEventDecoder] | None = None,
        page_size: int = 100,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.chain_key = chain_key.upper()
        self._client = client
        self._contract_address = int(contract_address, 16)
        self._token_address = normalize_felt_address(token_address) if token_address else None
        self._decoders = list(decoders) if decoders is not None else default_decoders()
        self._page_size = page_size
        self._timeout = timeout_seconds

    async def _rpc(self, awaitable: Any, what: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except Exception as exc:
            raise ChainRpcError(f"Starknet {what} failed: {exc!r}") from exc

    async def get_block_number(self) -> int:
        return int(await self._rpc(self._client.get_block_number(), "get_block_number"))

    async def fetch_events(self, *, from_block: int, to_block: int) -> list[ChainEvent]:
        chunk = await self._rpc(
            self._client.get_events(
                address=self._contract_address,
                keys=[[d.selector for d in self._decoders]],
                from_block_number=from_block,
                to_block_number=to_block,
                follow_continuation_token=True,
                chunk_size=self._page_size,
            ),
            f"get_events[{from_block}, {to_block}]",
        )

        # starknet_getEvents has no log index; number events within their tx.
        seen_per_tx: dict[int, int] = defaultdict(int)
        events: list[ChainEvent] = []
        for emitted in chunk.events:
            tx_key = int(emitted.transaction_hash)
            log_index = seen_per_tx[tx_key]
            seen_per_tx[tx_key] += 1

            for decoder in self._decoders:
                decoded = decoder.decode(keys=emitted.keys, data=emitted.data)
                if decoded is None:
                    continue

                if self._token_address is not None and decoded["token"] != self._token_address:
                    break

                is_deposit = "recipient" in decoded
                events.append(
                    ChainEvent(
                        chain_key=self.chain_key,
                        name=decoder.event_name,
                        tx_hash=normalize_felt_address(emitted.transaction_hash),
                        block_number=int(emitted.block_number or 0),
                        log_index=log_index,
                        address=decoded["recipient"] if is_deposit else decoded["sender"],
                        amount=str(decoded["amount"]),
                        counterparty=decoded["sender"] if is_deposit else None,
                        token=decoded["token"],
                    )
                )
                break

        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events
