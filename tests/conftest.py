from __future__ import annotations

import os

# Settings() is built at import time; give it a database to describe.
os.environ.setdefault("POSTGRES_USER", "ledger")
os.environ.setdefault("POSTGRES_PASSWORD", "ledger")
os.environ.setdefault("POSTGRES_SERVER", "localhost")
os.environ.setdefault("POSTGRES_PORT", "5432")
os.environ.setdefault("POSTGRES_DB", "ledger")
os.environ.setdefault("LOCK_BACKEND", "memory")

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import event, insert
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from tag_ledger.app.application.services.chain_registry import ChainRegistry
from tag_ledger.app.application.services.retry import RetryPolicy
from tag_ledger.app.domain.models import Balance, ChainEvent, Token, User
from tag_ledger.app.infrastructure.adapters.ledger.sqlalchemy_ledger_store import SqlAlchemyLedgerStore
from tag_ledger.app.infrastructure.db.db_base import BaseDB
from tag_ledger.app.infrastructure.db.models.ledger.block_checkpoints import BlockCheckpointsDB  # noqa: F401
from tag_ledger.app.infrastructure.db.models.ledger.notifications import NotificationsDB  # noqa: F401
from tag_ledger.app.infrastructure.db.models.ledger.tokens import TokensDB
from tag_ledger.app.infrastructure.locks.memory_lock import InMemoryDistributedLock


# ---------------------------------------------------------------------------
# Fakes at the port boundary
# ---------------------------------------------------------------------------


def fake_address(tag: str) -> str:
    return "0x" + tag.encode().hex().rjust(40, "0")[-40:]


class FakeChainAdapter:
    """In-memory tag-wallet contract."""

    def __init__(self, chain_key: str = "STRK", decimals: int = 18) -> None:
        self.chain_key = chain_key
        self.decimals = decimals
        self.addresses: dict[str, str] = {}
        self.balances: dict[str, Decimal] = {}
        self.transfers: list[tuple[str, str, Decimal]] = []
        self.balance_errors: dict[str, Exception] = {}
        self.fail_register = False
        self.fail_transfer: Exception | None = None
        self.reject_transfer = False
        self.finalized = True
        self._tx_counter = 0

    async def register_tag(self, tag: str) -> str | None:
        if self.fail_register:
            return None
        return self.addresses.setdefault(tag, fake_address(tag))

    async def get_tag_address(self, tag: str) -> str | None:
        return self.addresses.get(tag)

    async def get_balance(self, tag: str) -> Decimal:
        if tag in self.balance_errors:
            raise self.balance_errors[tag]
        return self.balances.get(tag, Decimal(0))

    async def transfer(self, sender_tag: str, recipient: str, amount: Decimal) -> str | None:
        if self.fail_transfer is not None:
            raise self.fail_transfer
        if self.reject_transfer or self.balances.get(sender_tag, Decimal(0)) < amount:
            return None
        self.balances[sender_tag] -= amount
        if not recipient.startswith("0x"):
            self.balances[recipient] = self.balances.get(recipient, Decimal(0)) + amount
        self.transfers.append((sender_tag, recipient, amount))
        self._tx_counter += 1
        return f"0x{self._tx_counter:064x}"

    async def wait_for_finality(self, tx_hash: str) -> bool:
        return self.finalized


class FakeTaskQueue:
    def __init__(self) -> None:
        self.jobs: list[tuple[str, dict[str, Any]]] = []
        self.fail_after: int | None = None

    async def enqueue(self, job_type: str, payload: dict[str, Any]) -> None:
        if self.fail_after is not None and len(self.jobs) >= self.fail_after:
            raise ConnectionError("broker unavailable")
        self.jobs.append((job_type, payload))


class FakeEventSource:
    def __init__(self, chain_key: str = "STRK") -> None:
        self.chain_key = chain_key
        self.head = 0
        self.events: list[ChainEvent] = []
        self.fetched: list[tuple[int, int]] = []

    async def get_block_number(self) -> int:
        return self.head

    async def fetch_events(self, *, from_block: int, to_block: int) -> list[ChainEvent]:
        self.fetched.append((from_block, to_block))
        return [e for e in self.events if from_block <= e.block_number <= to_block]


class FakeCheckpointStore:
    def __init__(self) -> None:
        self.blocks: dict[str, int] = {}

    async def get_last_processed_block(self, chain_key: str) -> int | None:
        return self.blocks.get(chain_key)

    async def set_last_processed_block(self, chain_key: str, block_number: int) -> None:
        self.blocks[chain_key] = block_number


async def no_sleep(_: float) -> None:
    return None


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncEngine:
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        execution_options={"schema_translate_map": {"ledger": None}},
    )

    # Let SQLAlchemy own transaction boundaries so SAVEPOINTs work on SQLite.
    @event.listens_for(eng.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with eng.begin() as conn:
        await conn.run_sync(BaseDB.metadata.create_all)

    yield eng
    await eng.dispose()


@pytest.fixture
def ledger(engine: AsyncEngine) -> SqlAlchemyLedgerStore:
    return SqlAlchemyLedgerStore(engine)


@dataclass
class World:
    strk: Token
    base: Token
    alice: User
    bob: User
    alice_strk: Balance
    bob_strk: Balance


@pytest_asyncio.fixture
async def world(engine: AsyncEngine, ledger: SqlAlchemyLedgerStore) -> World:
    async with engine.begin() as conn:
        await conn.execute(
            insert(TokensDB),
            [
                {"symbol": "STRK", "name": "Starknet Token", "chain_key": "STRK", "decimals": 18, "price": Decimal("0.5")},
                {"symbol": "BASE", "name": "Base", "chain_key": "BASE", "decimals": 18, "price": Decimal("2")},
            ],
        )

    strk = await ledger.get_token_by_symbol("STRK")
    base = await ledger.get_token_by_symbol("BASE")
    alice = await ledger.create_user(tag="alice")
    bob = await ledger.create_user(tag="bob")
    alice_strk = await ledger.get_or_create_balance(alice.id, strk.id, address=fake_address("alice"))
    bob_strk = await ledger.get_or_create_balance(bob.id, strk.id, address=fake_address("bob"))
    return World(strk=strk, base=base, alice=alice, bob=bob, alice_strk=alice_strk, bob_strk=bob_strk)


@pytest.fixture
def strk_chain() -> FakeChainAdapter:
    return FakeChainAdapter("STRK")


@pytest.fixture
def chains(strk_chain: FakeChainAdapter) -> ChainRegistry:
    return ChainRegistry({"STRK": strk_chain})


@pytest.fixture
def lock() -> InMemoryDistributedLock:
    return InMemoryDistributedLock()


@pytest.fixture
def retry() -> RetryPolicy:
    return RetryPolicy(attempts=3, base_delay=0.0, timeout=None, sleep=no_sleep)
