from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from tag_ledger.app.application.services.amounts import truncate, usd_value
from tag_ledger.app.application.services.balance_guards import BalancesInFlight
from tag_ledger.app.application.services.chain_registry import ChainRegistry
from tag_ledger.app.application.services.references import generate_reference
from tag_ledger.app.application.services.retry import RetryPolicy
from tag_ledger.app.domain.errors import (
    InsufficientBalanceError,
    InvalidAmountError,
    OnchainTransferFailedError,
    SelfTransferError,
    UnknownUserError,
    UnsupportedChainError,
    ValidationError,
)
from tag_ledger.app.domain.models import (
    CREDIT,
    DEBIT,
    Balance,
    LedgerEntry,
    NewNotification,
    NewTransaction,
    Token,
    Transaction,
    User,
    normalize_tag,
)
from tag_ledger.app.domain.ports.out import ChainAdapter, DistributedLock, LedgerStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferResult:
    reference: str
    chain_key: str
    tx_hash: str
    amount: Decimal
    debit: Transaction
    credit: Transaction | None


@dataclass(frozen=True)
class _TransferPlan:
    sender: User
    token: Token
    adapter: ChainAdapter
    amount: Decimal
    sender_balance: Balance
    recipient_balance: Balance | None
    recipient_user: User | None
    destination: str
    destination_label: str


def _parse_amount(amount: Decimal | int | str) -> Decimal:
    if isinstance(amount, float):
        amount = str(amount)
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except InvalidOperation:
        raise InvalidAmountError(amount) from None
    if not value.is_finite() or value <= 0:
        raise InvalidAmountError(amount)
    return value


class TransferOrchestrator:
    """
    User-initiated tag-to-tag and tag-to-wallet transfers.

    VALIDATE -> CHECK_BALANCE -> SUBMIT_ONCHAIN -> AWAIT_FINALITY ->
    DUAL_LEDGER_WRITE -> NOTIFY.

    Nothing touches the ledger before the chain has accepted the transfer. If
    the process dies between acceptance and the ledger write, the reconciler
    books the sender's lower on-chain balance on its next sweep.
    Transfers touching the same balance take turns on its in-flight marker.
    """

    def __init__(
        self,
        *,
        ledger: LedgerStore,
        chains: ChainRegistry,
        lock: DistributedLock,
        retry: RetryPolicy,
        in_flight_ttl_seconds: float = 120.0,
        in_flight_wait_seconds: float = 30.0,
    ) -> None:
        self._ledger = ledger
        self._chains = chains
        self._lock = lock
        self._retry = retry
        self._in_flight_ttl_seconds = in_flight_ttl_seconds
        self._in_flight_wait_seconds = in_flight_wait_seconds

    async def send_to_tag(
        self,
        *,
        user_id: int,
        chain_key: str,
        recipient_tag: str,
        amount: Decimal | int | str,
    ) -> TransferResult:
        sender, token, adapter, value = await self._validate_common(user_id, chain_key, amount)

        recipient = await self._ledger.find_user_by_tag(normalize_tag(recipient_tag))
        if recipient is None:
            raise UnknownUserError(recipient_tag)
        if recipient.id == sender.id:
            raise SelfTransferError()

        sender_balance = await self._check_balance(sender, token, value)
        recipient_balance = await self._ledger.get_or_create_balance(recipient.id, token.id)

        plan = _TransferPlan(
            sender=sender,
            token=token,
            adapter=adapter,
            amount=value,
            sender_balance=sender_balance,
            recipient_balance=recipient_balance,
            recipient_user=recipient,
            destination=recipient.tag,
            destination_label=f"@{recipient.tag}",
        )
        return await self._execute(plan)

    async def send_to_wallet(
        self,
        *,
        user_id: int,
        chain_key: str,
        recipient_address: str,
        amount: Decimal | int | str,
    ) -> TransferResult:
        sender, token, adapter, value = await self._validate_common(user_id, chain_key, amount)

        address = recipient_address.strip()
        if not address:
            raise ValidationError("Recipient address must not be empty")

        sender_balance = await self._check_balance(sender, token, value)
        if sender_balance.address and sender_balance.address.lower() == address.lower():
            raise SelfTransferError()

        # A wallet address may still belong to one of our users.
        recipient_balance = await self._ledger.find_balance_by_address(address, token_id=token.id)
        recipient_user = None
        if recipient_balance is not None:
            if recipient_balance.user_id == sender.id:
                raise SelfTransferError()
            recipient_user = await self._ledger.get_user(recipient_balance.user_id)

        plan = _TransferPlan(
            sender=sender,
            token=token,
            adapter=adapter,
            amount=value,
            sender_balance=sender_balance,
            recipient_balance=recipient_balance,
            recipient_user=recipient_user,
            destination=address,
            destination_label=address,
        )
        return await self._execute(plan)

    async def _validate_common(
        self,
        user_id: int,
        chain_key: str,
        amount: Decimal | int | str,
    ) -> tuple[User, Token, ChainAdapter, Decimal]:
        value = _parse_amount(amount)

        sender = await self._ledger.get_user(user_id)
        if sender is None:
            raise UnknownUserError(user_id)

        adapter = self._chains.require(chain_key)
        token = await self._ledger.get_token_by_symbol(chain_key.upper())
        if token is None:
            raise UnsupportedChainError(chain_key)

        value = truncate(value, token.decimals)
        if value <= 0:
            raise InvalidAmountError(amount)

        return sender, token, adapter, value

    async def _check_balance(self, sender: User, token: Token, amount: Decimal) -> Balance:
        balance = await self._ledger.find_balance(sender.id, token.id)
        available = balance.amount if balance is not None else Decimal(0)
        if balance is None or available < amount:
            raise InsufficientBalanceError(available=available, requested=amount)
        return balance

    async def _execute(self, plan: _TransferPlan) -> TransferResult:
        balance_ids = [plan.sender_balance.id]
        if plan.recipient_balance is not None:
            balance_ids.append(plan.recipient_balance.id)

        in_flight = BalancesInFlight(
            self._lock,
            balance_ids,
            ttl_seconds=self._in_flight_ttl_seconds,
            wait_seconds=self._in_flight_wait_seconds,
        )
        async with in_flight:
            tx_hash = await self._submit(plan)
            debit, credit, reference = await self._write_ledger(plan, tx_hash)

        await self._notify(plan, reference)

        logger.info(
            "Transfer %s: %s %s from @%s to %s (tx=%s)",
            reference,
            plan.amount,
            plan.token.symbol,
            plan.sender.tag,
            plan.destination_label,
            tx_hash,
        )
        return TransferResult(
            reference=reference,
            chain_key=plan.token.symbol,
            tx_hash=tx_hash,
            amount=plan.amount,
            debit=debit,
            credit=credit,
        )

    async def _submit(self, plan: _TransferPlan) -> str:
        # Submission is not retried: a resend could move funds twice.
        try:
            tx_hash = await plan.adapter.transfer(plan.sender.tag, plan.destination, plan.amount)
        except Exception as exc:
            raise OnchainTransferFailedError(
                f"{plan.token.symbol} transfer from @{plan.sender.tag} failed: {exc}"
            ) from exc
        if not tx_hash:
            raise OnchainTransferFailedError(
                f"{plan.token.symbol} transfer from @{plan.sender.tag} was not accepted"
            )

        try:
            accepted = await self._retry.run(
                lambda: plan.adapter.wait_for_finality(tx_hash),
                description=f"{plan.token.symbol} wait_for_finality({tx_hash})",
            )
        except Exception as exc:
            raise OnchainTransferFailedError(
                f"Could not confirm {plan.token.symbol} transfer {tx_hash}: {exc}"
            ) from exc
        if not accepted:
            raise OnchainTransferFailedError(f"{plan.token.symbol} transfer {tx_hash} was rejected")
        return tx_hash

    async def _write_ledger(
        self,
        plan: _TransferPlan,
        tx_hash: str,
    ) -> tuple[Transaction, Transaction | None, str]:
        reference = generate_reference()
        usd = usd_value(plan.amount, plan.token.price)
        recipient_address = (
            plan.recipient_balance.address if plan.recipient_balance is not None else None
        ) or (plan.destination if plan.recipient_user is None else None)
        extra = {"transfer_reference": reference, "source": "transfer"}

        entries = [
            LedgerEntry(
                balance_id=plan.sender_balance.id,
                delta_amount=plan.amount.copy_negate(),
                transaction=NewTransaction(
                    user_id=plan.sender.id,
                    token_id=plan.token.id,
                    reference=reference,
                    type=DEBIT,
                    status="completed",
                    tx_hash=tx_hash,
                    amount=plan.amount,
                    usd_value=usd,
                    from_address=plan.sender_balance.address,
                    to_address=recipient_address,
                    description=f"Sent to {plan.destination_label}",
                    extra=extra,
                ),
            )
        ]
        if plan.recipient_balance is not None:
            entries.append(
                LedgerEntry(
                    balance_id=plan.recipient_balance.id,
                    delta_amount=plan.amount,
                    transaction=NewTransaction(
                        user_id=plan.recipient_balance.user_id,
                        token_id=plan.token.id,
                        reference=generate_reference(),
                        type=CREDIT,
                        status="completed",
                        tx_hash=tx_hash,
                        amount=plan.amount,
                        usd_value=usd,
                        from_address=plan.sender_balance.address,
                        to_address=recipient_address,
                        description=f"Received from @{plan.sender.tag}",
                        extra=extra,
                    ),
                )
            )

        try:
            created = await self._ledger.apply_entries(entries)
        except Exception:
            logger.error(
                "Ledger write failed after on-chain transfer %s (%s); the reconciler will book it",
                tx_hash,
                plan.token.symbol,
            )
            raise

        by_type = {t.type: t for t in created}
        debit = by_type.get(DEBIT)
        if debit is None:
            # Already recorded by the event consumer under this hash.
            stored = await self._ledger.find_transaction_by_tx_hash(tx_hash)
            if stored is None:
                raise RuntimeError(f"Debit for {tx_hash} neither written nor found")
            debit = stored
        return debit, by_type.get(CREDIT), reference

    async def _notify(self, plan: _TransferPlan, reference: str) -> None:
        notes = [
            NewNotification(
                user_id=plan.sender.id,
                title="Transfer sent",
                body=f"You sent {plan.amount} {plan.token.symbol} to {plan.destination_label}",
            )
        ]
        if plan.recipient_user is not None:
            notes.append(
                NewNotification(
                    user_id=plan.recipient_user.id,
                    title="Transfer received",
                    body=f"You received {plan.amount} {plan.token.symbol} from @{plan.sender.tag}",
                )
            )
        for note in notes:
            try:
                await self._ledger.record_notification(note)
            except Exception:
                logger.exception("Failed to record notification for transfer %s", reference)
