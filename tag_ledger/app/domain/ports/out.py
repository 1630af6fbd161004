from __future__ import annotations

from decimal import Decimal
from typing import Any, Protocol, Sequence

from tag_ledger.app.domain.models import (
    Balance,
    ChainEvent,
    LedgerEntry,
    NewNotification,
    NewTransaction,
    Token,
    Transaction,
    TransactionStatus,
    User,
)


class ChainAdapter(Protocol):
    """
    Port for talking to one chain's tag-wallet contract.

    Implementations hide SDK wiring (providers, accounts, contracts) and
    decimal conversion: every amount crossing this port is a canonical
    decimal in human units.

    Implementations do not retry; callers wrap calls in with_retry.
    """

    chain_key: str
    decimals: int

    async def register_tag(self, tag: str) -> str | None:
        """
        Return the tag's wallet address, registering the tag on-chain only if
        it has no address yet. None if the chain write failed.
        """
        ...

    async def get_tag_address(self, tag: str) -> str | None:
        ...

    async def get_balance(self, tag: str) -> Decimal:
        """
        Current on-chain balance of the tag's wallet.

        Return Decimal(0) for an unknown tag/wallet; raise ChainRpcError for a
        genuine RPC failure.
        """
        ...

    async def transfer(self, sender_tag: str, recipient: str, amount: Decimal) -> str | None:
        """
        Submit a transfer from the sender tag's wallet to a tag or address.

        Returns the transaction hash once the chain has accepted the
        submission, or None if the pre-check (on-chain balance >= amount)
        fails or the chain rejects it.
        """
        ...

    async def wait_for_finality(self, tx_hash: str) -> bool:
        ...


class ChainEventSource(Protocol):
    """
    Port for reading tag-wallet contract events from one chain.

    fetch_events returns decoded events for the inclusive block range,
    ordered by (block_number, log_index).
    """

    chain_key: str

    async def get_block_number(self) -> int:
        ...

    async def fetch_events(self, *, from_block: int, to_block: int) -> list[ChainEvent]:
        ...


class ChainEventDecoder(Protocol):
    def decode(
        self,
        *,
        keys: Sequence[bytes | int],
        data: Sequence[bytes | int] | bytes,
    ) -> dict[str, Any] | None:
        """
        Decode one raw event (keys/topics + data) into a dict of typed fields.

        Return None if the event is not the expected one.
        """
        ...


class LedgerStore(Protocol):
    """
    Port for the off-chain ledger (users, tokens, balances, transactions,
    notifications).

    Exposes atomic operations only. Balance.amount is never written with a
    read-then-write pair visible to other callers.
    """

    async def create_user(self, *, tag: str) -> User: ...

    async def get_user(self, user_id: int) -> User | None: ...

    async def find_user_by_tag(self, tag: str) -> User | None: ...

    async def get_token(self, token_id: int) -> Token | None: ...

    async def get_token_by_symbol(self, symbol: str) -> Token | None: ...

    async def list_tokens(self) -> list[Token]: ...

    async def get_or_create_balance(
        self,
        user_id: int,
        token_id: int,
        *,
        address: str | None = None,
    ) -> Balance: ...

    async def find_balance(self, user_id: int, token_id: int) -> Balance | None: ...

    async def find_balance_by_address(self, address: str, *, token_id: int | None = None) -> Balance | None: ...

    async def list_balances_for_user(self, user_id: int) -> list[Balance]: ...

    async def list_all_balances(self) -> list[Balance]: ...

    async def apply_delta(self, balance_id: int, delta_amount: Decimal) -> Balance:
        """Add delta_amount to the balance and revalue usd_value at the token price."""
        ...

    async def record_transaction(self, fields: NewTransaction) -> Transaction:
        """
        Insert a transaction row. A duplicate (tx_hash, type) returns the stored
        row instead of raising.
        """
        ...

    async def apply_entries(self, entries: Sequence[LedgerEntry]) -> list[Transaction]:
        """
        Apply balance deltas and their transaction rows in one storage
        transaction. An entry whose (tx_hash, type) already exists is skipped
        entirely (no delta). Any failure rolls back all entries.

        Returns only the newly inserted transactions.
        """
        ...

    async def find_transaction_by_tx_hash(self, tx_hash: str) -> Transaction | None: ...

    async def list_transactions(self, *, user_id: int | None = None) -> list[Transaction]: ...

    async def set_transaction_status(self, reference: str, status: TransactionStatus) -> Transaction: ...

    async def record_notification(self, notification: NewNotification) -> None: ...


class BlockCheckpointStore(Protocol):
    """Persists the last fully enqueued block per chain."""

    async def get_last_processed_block(self, chain_key: str) -> int | None: ...

    async def set_last_processed_block(self, chain_key: str, block_number: int) -> None: ...


class DistributedLock(Protocol):
    """
    TTL-bounded mutual exclusion shared by every worker process.

    acquire returns an owner token when the lock was taken, None when somebody
    else holds it. release only removes the lock if the token still owns it.
    """

    async def acquire(self, key: str, *, ttl_seconds: float) -> str | None: ...

    async def release(self, key: str, token: str) -> bool: ...

    async def is_held(self, key: str) -> bool: ...


class TaskQueue(Protocol):
    """
    At-least-once task queue. Retries and backoff are owned by the queue
    implementation.
    """

    async def enqueue(self, job_type: str, payload: dict[str, Any]) -> None: ...
