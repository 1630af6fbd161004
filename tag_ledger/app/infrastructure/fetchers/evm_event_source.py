from __future__ import annotations

import asyncio
import logging
from typing import Any

from web3 import AsyncWeb3, Web3
from web3.contract.async_contract import AsyncContract

from tag_ledger.app.application.services.apply_chain_event import DEPOSIT_RECEIVED
from tag_ledger.app.domain.errors import ChainRpcError
from tag_ledger.app.domain.models import ChainEvent
from tag_ledger.app.infrastructure.chains.abi import load_abi
from tag_ledger.app.infrastructure.chains.evm_adapter import ZERO_ADDRESS
from tag_ledger.app.infrastructure.decoders.evm.deposit_received_decoder import DepositReceivedDecoder


logger = logging.getLogger(__name__)


class Web3EvmEventSource:
    """
    Reads DepositReceived logs of the TagWallet contract via eth_getLogs.

    The event only carries keccak(tag). The plain tag is recovered from the
    depositToTag(string) call that emitted it, checked against the hash, and
    resolved to the tag's wallet address.
    """

    def __init__(
        self,
        *,
        chain_key: str,
        w3: AsyncWeb3,
        contract_address: str,
        decoder: DepositReceivedDecoder | None = None,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.chain_key = chain_key.upper()
        self._w3 = w3
        self._address = Web3.to_checksum_address(contract_address)
        self._contract: AsyncContract = w3.eth.contract(address=self._address, abi=load_abi())
        self._decoder = decoder or DepositReceivedDecoder()
        self._timeout = timeout_seconds

    async def _rpc(self, awaitable: Any, what: str) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except Exception as exc:
            raise ChainRpcError(f"{self.chain_key} {what} failed: {exc!r}") from exc

    async def get_block_number(self) -> int:
        return int(await self._rpc(self._w3.eth.block_number, "eth_blockNumber"))

    async def fetch_events(self, *, from_block: int, to_block: int) -> list[ChainEvent]:
        logs = await self._rpc(
            self._w3.eth.get_logs(
                {
                    "fromBlock": from_block,
                    "toBlock": to_block,
                    "address": self._address,
                    "topics": [Web3.to_hex(self._decoder.topic0)],
                }
            ),
            f"eth_getLogs[{from_block}, {to_block}]",
        )

        events: list[ChainEvent] = []
        for log in logs:
            decoded = self._decoder.decode(keys=list(log["topics"]), data=bytes(log["data"]))
            if decoded is None:
                continue

            tx_hash = Web3.to_hex(log["transactionHash"])
            tag = await self._recover_tag(tx_hash, decoded["tag_hash"])
            if tag is None:
                logger.warning("%s deposit %s: could not recover tag, skipping", self.chain_key, tx_hash)
                continue

            wallet = await self._rpc(
                self._contract.functions.getUserChainAddress(tag).call(),
                f"getUserChainAddress({tag})",
            )
            if not wallet or wallet == ZERO_ADDRESS:
                logger.warning("%s deposit %s to unregistered tag %s", self.chain_key, tx_hash, tag)
                continue

            events.append(
                ChainEvent(
                    chain_key=self.chain_key,
                    name=DEPOSIT_RECEIVED,
                    tx_hash=tx_hash,
                    block_number=int(log["blockNumber"]),
                    log_index=int(log["logIndex"]),
                    address=str(wallet).lower(),
                    amount=str(decoded["amount"]),
                    counterparty=decoded["sender"],
                    tag=tag,
                )
            )

        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events

    async def _recover_tag(self, tx_hash: str, tag_hash: bytes) -> str | None:
        tx = await self._rpc(self._w3.eth.get_transaction(tx_hash), f"eth_getTransactionByHash({tx_hash})")
        try:
            fn, params = self._contract.decode_function_input(tx["input"])
        except ValueError:
            return None
        if fn.fn_name != "depositToTag":
            return None
        tag = params.get("tag")
        if not isinstance(tag, str) or DepositReceivedDecoder.tag_hash(tag) != tag_hash:
            return None
        return tag
