from __future__ import annotations

import logging
from typing import Final

from tag_ledger.app.application.services.amounts import from_chain_units, usd_value
from tag_ledger.app.application.services.references import generate_reference
from tag_ledger.app.domain.models import (
    CREDIT,
    DEBIT,
    ChainEvent,
    LedgerEntry,
    NewNotification,
    NewTransaction,
    Transaction,
    TransactionType,
)
from tag_ledger.app.domain.ports.out import LedgerStore


logger = logging.getLogger(__name__)

DEPOSIT_RECEIVED: Final[str] = "DepositReceived"
WITHDRAWAL_COMPLETED: Final[str] = "WithdrawalCompleted"

_EVENT_TYPES: Final[dict[str, TransactionType]] = {
    DEPOSIT_RECEIVED: CREDIT,
    WITHDRAWAL_COMPLETED: DEBIT,
}


class ChainEventApplier:
    """
    Queue consumer side of event ingestion: turns one decoded chain event into
    a ledger entry.

    Safe to run any number of times for the same event: a known tx_hash is a
    no-op, and the (tx_hash, type) constraint catches concurrent duplicates.
    """

    def __init__(self, *, ledger: LedgerStore) -> None:
        self._ledger = ledger

    async def apply(self, event: ChainEvent) -> Transaction | None:
        tx_type = _EVENT_TYPES.get(event.name)
        if tx_type is None:
            logger.warning("Ignoring unknown %s event %r (tx=%s)", event.chain_key, event.name, event.tx_hash)
            return None

        existing = await self._ledger.find_transaction_by_tx_hash(event.tx_hash)
        if existing is not None:
            logger.info("Event already applied: %s %s (tx=%s)", event.chain_key, event.name, event.tx_hash)
            return None

        token = await self._ledger.get_token_by_symbol(event.chain_key)
        if token is None:
            logger.warning("No token configured for chain %s", event.chain_key)
            return None

        if not event.address:
            logger.warning("Event without wallet address: %s (tx=%s)", event.name, event.tx_hash)
            return None

        balance = await self._ledger.find_balance_by_address(event.address, token_id=token.id)
        if balance is None:
            logger.info("No balance for %s address %s, ignoring %s", event.chain_key, event.address, event.name)
            return None

        amount = from_chain_units(event.amount, token.decimals)
        if amount <= 0:
            logger.info("Zero-amount %s ignored (tx=%s)", event.name, event.tx_hash)
            return None

        usd = usd_value(amount, token.price)
        is_credit = tx_type == CREDIT
        description = "Deposit received" if is_credit else "Withdrawal completed"

        entry = LedgerEntry(
            balance_id=balance.id,
            delta_amount=amount if is_credit else amount.copy_negate(),
            transaction=NewTransaction(
                user_id=balance.user_id,
                token_id=token.id,
                reference=generate_reference(),
                type=tx_type,
                status="completed",
                tx_hash=event.tx_hash,
                amount=amount,
                usd_value=usd,
                from_address=event.counterparty if is_credit else balance.address,
                to_address=balance.address if is_credit else event.counterparty,
                description=f"{description} on {event.chain_key}",
                extra=event.to_payload(),
            ),
        )

        created = await self._ledger.apply_entries([entry])
        if not created:
            logger.info("Concurrent duplicate of %s (tx=%s) skipped", event.name, event.tx_hash)
            return None

        try:
            await self._ledger.record_notification(
                NewNotification(
                    user_id=balance.user_id,
                    title="Deposit" if is_credit else "Withdrawal",
                    body=f"{'Deposit' if is_credit else 'Withdrawal'} of {amount} {token.symbol} "
                    f"{'received' if is_credit else 'completed'}",
                )
            )
        except Exception:
            logger.exception("Failed to record notification for tx=%s", event.tx_hash)

        logger.info(
            "Applied %s %s of %s %s to balance %s",
            event.chain_key,
            event.name,
            amount,
            token.symbol,
            balance.id,
        )
        return created[0]
