from __future__ import annotations

import logging
from typing import Callable, Dict

from eth_account import Account as EthAccount
from starknet_py.net.account.account import Account as StarknetAccount
from starknet_py.net.full_node_client import FullNodeClient
from starknet_py.net.models import StarknetChainId
from starknet_py.net.signer.stark_curve_signer import KeyPair
from web3 import AsyncHTTPProvider, AsyncWeb3

from tag_ledger.app.application.services.chain_registry import ChainRegistry
from tag_ledger.app.config import EVM_CHAIN_KEYS, STARKNET_CHAIN_KEY, ChainSettings, settings
from tag_ledger.app.domain.errors import UnsupportedChainError
from tag_ledger.app.domain.ports.out import ChainAdapter, ChainEventSource
from tag_ledger.app.infrastructure.chains.evm_adapter import Web3EvmChainAdapter
from tag_ledger.app.infrastructure.chains.starknet_adapter import StarknetChainAdapter
from tag_ledger.app.infrastructure.fetchers.evm_event_source import Web3EvmEventSource
from tag_ledger.app.infrastructure.fetchers.starknet_event_source import StarknetEventSource


logger = logging.getLogger(__name__)

ChainAdapterFactory = Callable[[str, ChainSettings], ChainAdapter]
EventSourceFactory = Callable[[str, ChainSettings], ChainEventSource]

_ADAPTER_REGISTRY: Dict[str, ChainAdapterFactory] = {}
_EVENT_SOURCE_REGISTRY: Dict[str, EventSourceFactory] = {}


def _chain_family(chain_key: str) -> str:
    key = chain_key.upper()
    if key == STARKNET_CHAIN_KEY:
        return "starknet"
    if key in EVM_CHAIN_KEYS:
        return "evm"
    raise UnsupportedChainError(chain_key)


def _make_w3(cfg: ChainSettings) -> AsyncWeb3:
    return AsyncWeb3(
        AsyncHTTPProvider(
            cfg.rpc_url,
            request_kwargs={"timeout": settings.rpc_timeout_seconds},
        )
    )


def _make_starknet_client(cfg: ChainSettings) -> FullNodeClient:
    return FullNodeClient(node_url=cfg.rpc_url)


def _make_evm_adapter(chain_key: str, cfg: ChainSettings) -> ChainAdapter:
    """
    Wire dependencies for an EVM chain:
    - AsyncWeb3 provider (per-chain RPC URL)
    - operator account from the chain's private key
    - TagWallet contract adapter
    """
    if cfg.private_key is None:
        raise ValueError(f"{chain_key} private key is not configured")
    return Web3EvmChainAdapter(
        chain_key=chain_key,
        w3=_make_w3(cfg),
        contract_address=cfg.contract_address,
        account=EthAccount.from_key(cfg.private_key.get_secret_value()),
        decimals=cfg.decimals,
        timeout_seconds=settings.rpc_timeout_seconds,
    )


def _make_starknet_adapter(chain_key: str, cfg: ChainSettings) -> ChainAdapter:
    if cfg.private_key is None or cfg.account_address is None or cfg.token_address is None:
        raise ValueError("Starknet account address, private key and token address are required")
    client = _make_starknet_client(cfg)
    account = StarknetAccount(
        address=cfg.account_address,
        client=client,
        key_pair=KeyPair.from_private_key(int(cfg.private_key.get_secret_value(), 16)),
        chain=StarknetChainId.MAINNET if cfg.network == "mainnet" else StarknetChainId.SEPOLIA,
    )
    return StarknetChainAdapter(
        client=client,
        account=account,
        contract_address=cfg.contract_address,
        token_address=cfg.token_address,
        chain_key=chain_key,
        decimals=cfg.decimals,
        timeout_seconds=settings.rpc_timeout_seconds,
    )


# Register backends
_ADAPTER_REGISTRY["evm"] = _make_evm_adapter
_ADAPTER_REGISTRY["starknet"] = _make_starknet_adapter

_EVENT_SOURCE_REGISTRY["evm"] = lambda chain_key, cfg: Web3EvmEventSource(
    chain_key=chain_key,
    w3=_make_w3(cfg),
    contract_address=cfg.contract_address,
    timeout_seconds=settings.rpc_timeout_seconds,
)
_EVENT_SOURCE_REGISTRY["starknet"] = lambda chain_key, cfg: StarknetEventSource(
    client=_make_starknet_client(cfg),
    contract_address=cfg.contract_address,
    chain_key=chain_key,
    token_address=cfg.token_address,
    timeout_seconds=settings.rpc_timeout_seconds,
)


def chain_adapter_factory(*, chain_key: str) -> ChainAdapter:
    cfg = settings.chain(chain_key)
    if not cfg.is_configured:
        raise ValueError(f"Chain {chain_key!r} is missing RPC URL or contract address")
    return _ADAPTER_REGISTRY[_chain_family(chain_key)](chain_key.upper(), cfg)


def chain_registry_factory(*, chain_keys: list[str] | None = None) -> ChainRegistry:
    """
    Build the chain key -> adapter registry from settings.

    Without explicit keys, every chain with an RPC URL and contract address
    configured is included; a chain that fails to wire up is left out.
    """
    explicit = chain_keys is not None
    keys = chain_keys if explicit else [STARKNET_CHAIN_KEY, *EVM_CHAIN_KEYS]

    adapters: dict[str, ChainAdapter] = {}
    for key in keys:
        if not explicit and not settings.chain(key).is_configured:
            continue
        try:
            adapters[key.upper()] = chain_adapter_factory(chain_key=key)
        except ValueError:
            if explicit:
                raise
            logger.exception("Chain %s is misconfigured, skipping", key)

    logger.info("Chain adapters ready: %s", ", ".join(sorted(adapters)) or "none")
    return ChainRegistry(adapters)


def chain_event_source_factory(*, chain_key: str) -> ChainEventSource:
    cfg = settings.chain(chain_key)
    if not cfg.is_configured:
        raise ValueError(f"Chain {chain_key!r} is missing RPC URL or contract address")
    return _EVENT_SOURCE_REGISTRY[_chain_family(chain_key)](chain_key.upper(), cfg)
