from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from decimal import Decimal
from typing import Any, TypeVar

from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.contract.async_contract import AsyncContract
from web3.exceptions import ContractLogicError, TimeExhausted

from tag_ledger.app.application.services.amounts import from_chain_units, to_chain_units
from tag_ledger.app.domain.errors import ChainRpcError
from tag_ledger.app.infrastructure.chains.abi import load_abi


logger = logging.getLogger(__name__)

T = TypeVar("T")

ZERO_ADDRESS = "0x" + "00" * 20


def is_evm_address(value: str) -> bool:
    return Web3.is_address(value.strip())


class Web3EvmChainAdapter:
    """
    ChainAdapter for EVM chains running the TagWallet contract.

    Every tag owns a contract wallet; the operator account signs all writes
    (registration and withdrawals) on behalf of the tags.
    """

    def __init__(
        self,
        *,
        chain_key: str,
        w3: AsyncWeb3,
        contract_address: str,
        account: LocalAccount,
        decimals: int = 18,
        timeout_seconds: float = 30.0,
        abi: list[dict[str, Any]] | None = None,
    ) -> None:
        self.chain_key = chain_key.upper()
        self.decimals = decimals
        self._w3 = w3
        self._account = account
        self._timeout = timeout_seconds
        self._contract: AsyncContract = w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=abi if abi is not None else load_abi(),
        )

    async def _rpc(self, awaitable: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except ContractLogicError:
            raise
        except Exception as exc:
            raise ChainRpcError(f"{self.chain_key} {what} failed: {exc!r}") from exc

    async def get_tag_address(self, tag: str) -> str | None:
        address = await self._rpc(
            self._contract.functions.getUserChainAddress(tag).call(),
            f"getUserChainAddress({tag})",
        )
        if not address or address == ZERO_ADDRESS:
            return None
        return Web3.to_checksum_address(address)

    async def register_tag(self, tag: str) -> str | None:
        existing = await self.get_tag_address(tag)
        if existing is not None:
            return existing

        try:
            receipt = await self._send(
                self._contract.functions.registerTag(tag, self._account.address),
                f"registerTag({tag})",
            )
        except ContractLogicError as exc:
            logger.warning("%s registerTag(%s) reverted: %s", self.chain_key, tag, exc)
            return None
        if receipt.get("status") != 1:
            return None

        return await self.get_tag_address(tag)

    async def get_balance(self, tag: str) -> Decimal:
        try:
            raw = await self._rpc(
                self._contract.functions.getTagBalance(tag).call(),
                f"getTagBalance({tag})",
            )
        except ContractLogicError:
            # Unknown tag reverts; it holds nothing.
            return Decimal(0)
        return from_chain_units(int(raw), self.decimals)

    async def transfer(self, sender_tag: str, recipient: str, amount: Decimal) -> str | None:
        if is_evm_address(recipient):
            destination = Web3.to_checksum_address(recipient.strip())
        else:
            destination = await self.get_tag_address(recipient)
            if destination is None:
                logger.warning("%s recipient tag %s has no wallet", self.chain_key, recipient)
                return None

        units = int(to_chain_units(amount, self.decimals))
        available = await self._rpc(
            self._contract.functions.getTagBalance(sender_tag).call(),
            f"getTagBalance({sender_tag})",
        )
        if int(available) < units:
            logger.warning(
                "%s wallet of %s holds %s units, %s requested",
                self.chain_key,
                sender_tag,
                available,
                units,
            )
            return None

        try:
            receipt = await self._send(
                self._contract.functions.withdrawEthFromWallet(destination, units, sender_tag),
                f"withdrawEthFromWallet({sender_tag})",
            )
        except ContractLogicError as exc:
            logger.warning("%s transfer from %s reverted: %s", self.chain_key, sender_tag, exc)
            return None
        if receipt.get("status") != 1:
            return None
        return Web3.to_hex(receipt["transactionHash"])

    async def wait_for_finality(self, tx_hash: str) -> bool:
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._timeout)
        except TimeExhausted as exc:
            raise ChainRpcError(f"{self.chain_key} receipt for {tx_hash} not found") from exc
        return receipt.get("status") == 1

    async def _send(self, fn: Any, what: str) -> Any:
        """Build, sign and submit a contract call; return its receipt."""
        address = self._account.address
        nonce = await self._rpc(self._w3.eth.get_transaction_count(address, "pending"), "get_transaction_count")
        chain_id = await self._rpc(self._w3.eth.chain_id, "chain_id")

        tx = await self._rpc(
            fn.build_transaction({"from": address, "nonce": nonce, "chainId": chain_id}),
            f"build {what}",
        )
        signed = self._account.sign_transaction(tx)
        tx_hash = await self._rpc(self._w3.eth.send_raw_transaction(signed.raw_transaction), f"send {what}")
        logger.info("%s submitted %s: %s", self.chain_key, what, Web3.to_hex(tx_hash))

        try:
            return await self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._timeout)
        except TimeExhausted as exc:
            raise ChainRpcError(f"{self.chain_key} {what} not mined in {self._timeout}s") from exc
