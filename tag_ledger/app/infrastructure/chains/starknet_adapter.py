from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from decimal import Decimal
from typing import Any, TypeVar

from starknet_py.cairo.felt import encode_shortstring
from starknet_py.contract import Contract
from starknet_py.net.account.account import Account
from starknet_py.net.client_errors import ClientError
from starknet_py.net.client_models import TransactionExecutionStatus
from starknet_py.net.full_node_client import FullNodeClient

from tag_ledger.app.application.services.amounts import from_chain_units, to_chain_units
from tag_ledger.app.domain.errors import ChainRpcError


logger = logging.getLogger(__name__)

T = TypeVar("T")


def normalize_felt_address(value: int | str) -> str:
    """0x-prefixed lower-case hex without leading zeros, e.g. 0x49d3..."""
    as_int = int(value, 16) if isinstance(value, str) else int(value)
    return hex(as_int)


def is_starknet_address(value: str) -> bool:
    text = value.strip().lower()
    if not text.startswith("0x") or len(text) > 66:
        return False
    try:
        int(text, 16)
    except ValueError:
        return False
    return True


def encode_tag(tag: str) -> int:
    """Tags travel as Cairo short strings (at most 31 ASCII chars)."""
    return encode_shortstring(tag)


class StarknetChainAdapter:
    """
    ChainAdapter for the Starknet tag-wallet contract (starknet-py).

    Balances are read per token: the contract tracks every ERC-20 the tag
    wallet holds, so the native token address comes from settings.
    """

    def __init__(
        self,
        *,
        client: FullNodeClient,
        account: Account,
        contract_address: str,
        token_address: str,
        chain_key: str = "STRK",
        decimals: int = 18,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.chain_key = chain_key.upper()
        self.decimals = decimals
        self._client = client
        self._account = account
        self._contract_address = int(contract_address, 16)
        self._token_address = int(token_address, 16)
        self._timeout = timeout_seconds
        self._contract: Contract | None = None
        self._contract_lock = asyncio.Lock()

    async def _rpc(self, awaitable: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except Exception as exc:
            raise ChainRpcError(f"{self.chain_key} {what} failed: {exc!r}") from exc

    async def _get_contract(self) -> Contract:
        async with self._contract_lock:
            if self._contract is None:
                self._contract = await self._rpc(
                    Contract.from_address(address=self._contract_address, provider=self._account),
                    "load contract",
                )
                logger.info("Starknet contract initialized: %s", hex(self._contract_address))
            return self._contract

    async def _call(self, function: str, *args: Any) -> Any:
        contract = await self._get_contract()
        (value,) = await self._rpc(contract.functions[function].call(*args), function)
        return value

    async def get_tag_address(self, tag: str) -> str | None:
        address = await self._call("get_tag_wallet_address", encode_tag(tag))
        if not address:
            return None
        return normalize_felt_address(address)

    async def register_tag(self, tag: str) -> str | None:
        existing = await self.get_tag_address(tag)
        if existing is not None:
            return existing

        contract = await self._get_contract()
        try:
            invocation = await self._rpc(
                contract.functions["register_tag"].invoke_v3(encode_tag(tag), auto_estimate=True),
                f"register_tag({tag})",
            )
            await self._rpc(invocation.wait_for_acceptance(), f"register_tag({tag}) acceptance")
        except ChainRpcError as exc:
            if isinstance(exc.__cause__, ClientError):
                logger.warning("Starknet register_tag(%s) rejected: %s", tag, exc.__cause__)
                return None
            raise

        return await self.get_tag_address(tag)

    async def get_balance(self, tag: str) -> Decimal:
        raw = await self._call("get_tag_wallet_balance", encode_tag(tag), self._token_address)
        return from_chain_units(int(raw), self.decimals)

    async def transfer(self, sender_tag: str, recipient: str, amount: Decimal) -> str | None:
        if is_starknet_address(recipient):
            destination = int(recipient.strip(), 16)
        else:
            resolved = await self.get_tag_address(recipient)
            if resolved is None:
                logger.warning("Starknet recipient tag %s has no wallet", recipient)
                return None
            destination = int(resolved, 16)

        units = int(to_chain_units(amount, self.decimals))
        available = await self._call("get_tag_wallet_balance", encode_tag(sender_tag), self._token_address)
        if int(available) < units:
            logger.warning("Starknet wallet of %s holds %s units, %s requested", sender_tag, available, units)
            return None

        contract = await self._get_contract()
        try:
            invocation = await self._rpc(
                contract.functions["withdraw_from_wallet"].invoke_v3(
                    self._token_address,
                    encode_tag(sender_tag),
                    destination,
                    units,
                    auto_estimate=True,
                ),
                f"withdraw_from_wallet({sender_tag})",
            )
            await self._rpc(invocation.wait_for_acceptance(), "withdraw_from_wallet acceptance")
        except ChainRpcError as exc:
            if isinstance(exc.__cause__, ClientError):
                logger.warning("Starknet transfer from %s rejected: %s", sender_tag, exc.__cause__)
                return None
            raise
        return hex(invocation.hash)

    async def wait_for_finality(self, tx_hash: str) -> bool:
        receipt = await self._rpc(self._client.wait_for_tx(int(tx_hash, 16)), f"wait_for_tx({tx_hash})")
        return receipt.execution_status == TransactionExecutionStatus.SUCCEEDED
