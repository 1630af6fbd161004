from __future__ import annotations

from decimal import Decimal


class TagLedgerError(Exception):
    """Base class for errors raised by the ledger core."""


class ValidationError(TagLedgerError):
    """Request rejected synchronously; never retried automatically."""


class UnknownUserError(ValidationError):
    def __init__(self, who: object) -> None:
        super().__init__(f"Unknown user or tag: {who!r}")
        self.who = who


class SelfTransferError(ValidationError):
    def __init__(self) -> None:
        super().__init__("Sender and recipient must differ")


class InvalidAmountError(ValidationError):
    def __init__(self, amount: object) -> None:
        super().__init__(f"Amount must be positive, got {amount!r}")
        self.amount = amount


class InsufficientBalanceError(ValidationError):
    def __init__(self, *, available: Decimal, requested: Decimal) -> None:
        super().__init__(
            f"Insufficient balance: available={available}, requested={requested}"
        )
        self.available = available
        self.requested = requested


class OnchainTransferFailedError(TagLedgerError):
    """The chain rejected or never accepted the transfer; the ledger is untouched."""


class StaleBalanceError(TagLedgerError):
    """A balance changed between the read a delta was computed from and the write."""

    def __init__(self, balance_id: int, *, expected: int, actual: int) -> None:
        super().__init__(
            f"Balance {balance_id} moved: expected version {expected}, found {actual}"
        )
        self.balance_id = balance_id
        self.expected = expected
        self.actual = actual


class UnknownBalanceError(TagLedgerError):
    def __init__(self, balance_id: int) -> None:
        super().__init__(f"Unknown balance id {balance_id}")
        self.balance_id = balance_id


class ChainRpcError(TagLedgerError):
    """Transient chain/RPC failure. Callers retry with backoff."""


class UnsupportedChainError(TagLedgerError):
    def __init__(self, chain_key: str) -> None:
        super().__init__(f"No chain adapter registered for {chain_key!r}")
        self.chain_key = chain_key


class BalanceBusyError(TagLedgerError):
    """Another transfer kept the balance marked in-flight for longer than we would wait."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Balance is busy with another transfer: {key}")
        self.key = key
