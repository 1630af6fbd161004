from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal


TransactionType = Literal["credit", "debit"]
TransactionStatus = Literal["pending", "completed", "failed"]

CREDIT: TransactionType = "credit"
DEBIT: TransactionType = "debit"


def normalize_tag(tag: str) -> str:
    """Tags are unique case-insensitively; store and look them up lower-cased."""
    cleaned = tag.strip().lstrip("@").lower()
    if not cleaned:
        raise ValueError("Tag must not be empty")
    return cleaned


@dataclass(frozen=True)
class User:
    id: int
    tag: str


@dataclass(frozen=True)
class Token:
    id: int
    symbol: str
    decimals: int
    price: Decimal
    name: str | None = None


@dataclass(frozen=True)
class Balance:
    id: int
    user_id: int
    token_id: int
    amount: Decimal
    usd_value: Decimal
    address: str | None
    version: int = 0


@dataclass(frozen=True)
class Transaction:
    id: int
    user_id: int
    token_id: int
    reference: str
    type: TransactionType
    status: TransactionStatus
    tx_hash: str | None
    amount: Decimal
    usd_value: Decimal
    from_address: str | None
    to_address: str | None
    description: str | None
    timestamp: datetime
    extra: dict[str, Any] | None = None


@dataclass(frozen=True)
class NewTransaction:
    """Fields of a transaction row that has not been stored yet."""

    user_id: int
    token_id: int
    reference: str
    type: TransactionType
    amount: Decimal
    usd_value: Decimal
    tx_hash: str | None = None
    status: TransactionStatus = "completed"
    from_address: str | None = None
    to_address: str | None = None
    description: str | None = None
    timestamp: datetime | None = None
    extra: dict[str, Any] | None = None


@dataclass(frozen=True)
class LedgerEntry:
    """
    One balance delta together with the transaction row that explains it.

    The delta is signed: credits carry a positive amount, debits a negative one.
    The balance usd_value is not part of the delta; the store revalues the
    balance at the token price on every write.
    expected_version, when set, makes the write a compare-and-swap against the
    balance version the caller computed the delta from.
    """

    balance_id: int
    delta_amount: Decimal
    transaction: NewTransaction
    expected_version: int | None = None


@dataclass(frozen=True)
class NewNotification:
    user_id: int
    title: str
    body: str


@dataclass(frozen=True)
class ChainEvent:
    """
    A decoded tag-wallet contract event, as carried through the task queue.

    amount is the raw on-chain integer encoded as a decimal string so the payload
    stays JSON-safe for values up to 2**256.
    """

    chain_key: str
    name: str
    tx_hash: str
    block_number: int
    log_index: int
    address: str | None
    amount: str
    counterparty: str | None = None
    token: str | None = None
    tag: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "chain_key": self.chain_key,
            "name": self.name,
            "tx_hash": self.tx_hash,
            "block_number": self.block_number,
            "log_index": self.log_index,
            "address": self.address,
            "amount": self.amount,
            "counterparty": self.counterparty,
            "token": self.token,
            "tag": self.tag,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ChainEvent":
        return cls(
            chain_key=payload["chain_key"],
            name=payload["name"],
            tx_hash=payload["tx_hash"],
            block_number=int(payload["block_number"]),
            log_index=int(payload.get("log_index", 0)),
            address=payload.get("address"),
            amount=str(payload["amount"]),
            counterparty=payload.get("counterparty"),
            token=payload.get("token"),
            tag=payload.get("tag"),
            extra=dict(payload.get("extra") or {}),
        )
