from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal

from tag_ledger.app.application.services.amounts import difference, usd_value
from tag_ledger.app.application.services.balance_guards import RECONCILER_LOCK_KEY, in_flight_key
from tag_ledger.app.application.services.chain_registry import ChainRegistry
from tag_ledger.app.application.services.references import generate_reference
from tag_ledger.app.application.services.retry import RetryPolicy
from tag_ledger.app.domain.models import (
    CREDIT,
    DEBIT,
    Balance,
    LedgerEntry,
    NewNotification,
    NewTransaction,
    Token,
    User,
)
from tag_ledger.app.domain.ports.out import DistributedLock, LedgerStore


logger = logging.getLogger(__name__)

Outcome = Literal["ok", "credited", "debited", "in_flight", "unsupported", "error"]


@dataclass
class ReconcileReport:
    """Summary of one reconciler cycle."""

    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    skipped: bool = False
    total: int = 0
    ok: int = 0
    credited: int = 0
    debited: int = 0
    in_flight: int = 0
    unsupported: int = 0
    errors: int = 0

    def count(self, outcome: Outcome) -> None:
        self.total += 1
        attr = "errors" if outcome == "error" else outcome
        setattr(self, attr, getattr(self, attr) + 1)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()


def _chunks(seq: list[Balance], size: int) -> Iterable[list[Balance]]:
    for i in range(0, len(seq), size):
        yield seq[i : i + size]


class BalanceReconciler:
    """
    Periodically diffs every ledger balance against its on-chain value and
    books the difference as a Deposit (credit) or Withdrawal (debit).

    One cycle: acquire the global lock -> load balances -> for each batch,
    read the chain concurrently -> compare -> correct -> release the lock.
    An instance that cannot take the lock skips the cycle.
    """

    def __init__(
        self,
        *,
        ledger: LedgerStore,
        chains: ChainRegistry,
        lock: DistributedLock,
        retry: RetryPolicy,
        lock_key: str = RECONCILER_LOCK_KEY,
        lock_ttl_seconds: float = 15.0,
        interval_seconds: float = 10.0,
        batch_size: int = 5,
        epsilon: Decimal = Decimal("1e-10"),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self._ledger = ledger
        self._chains = chains
        self._lock = lock
        self._retry = retry
        self._lock_key = lock_key
        self._lock_ttl_seconds = lock_ttl_seconds
        self._interval_seconds = interval_seconds
        self._batch_size = batch_size
        self._epsilon = epsilon
        self._sleep = sleep

    async def run_forever(self, *, stop: asyncio.Event | None = None) -> None:
        logger.info("Starting balance reconciler (interval=%ss)", self._interval_seconds)
        while stop is None or not stop.is_set():
            try:
                await self.run_cycle()
            except Exception:
                # Cycle-level failures (e.g. DB down) must not kill the loop.
                logger.exception("Reconciler cycle failed")
            await self._sleep(self._interval_seconds)

    async def run_cycle(self) -> ReconcileReport:
        token = await self._lock.acquire(self._lock_key, ttl_seconds=self._lock_ttl_seconds)
        if token is None:
            logger.info("Another reconciler holds %s, skipping this cycle", self._lock_key)
            return ReconcileReport(skipped=True, finished_at=datetime.now(timezone.utc))

        try:
            return await self._sweep()
        finally:
            released = await self._lock.release(self._lock_key, token)
            if not released:
                logger.warning("Reconciler lock %s expired before release", self._lock_key)

    async def _sweep(self) -> ReconcileReport:
        report = ReconcileReport()
        started = time.monotonic()

        balances = await self._ledger.list_all_balances()
        if not balances:
            report.finished_at = datetime.now(timezone.utc)
            return report

        tokens = await self._load_tokens({b.token_id for b in balances})
        users = await self._load_users({b.user_id for b in balances})

        for batch in _chunks(balances, self._batch_size):
            outcomes = await asyncio.gather(
                *(self._reconcile_one(b, tokens.get(b.token_id), users.get(b.user_id)) for b in batch)
            )
            for outcome in outcomes:
                report.count(outcome)

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Reconciliation cycle complete in %.2fs: total=%s ok=%s credited=%s debited=%s "
            "in_flight=%s unsupported=%s errors=%s",
            time.monotonic() - started,
            report.total,
            report.ok,
            report.credited,
            report.debited,
            report.in_flight,
            report.unsupported,
            report.errors,
        )
        return report

    async def _load_tokens(self, token_ids: set[int]) -> dict[int, Token]:
        out: dict[int, Token] = {}
        for token_id in token_ids:
            token = await self._ledger.get_token(token_id)
            if token is not None:
                out[token_id] = token
        return out

    async def _load_users(self, user_ids: set[int]) -> dict[int, User]:
        out: dict[int, User] = {}
        for user_id in user_ids:
            user = await self._ledger.get_user(user_id)
            if user is not None:
                out[user_id] = user
        return out

    async def _reconcile_one(self, balance: Balance, token: Token | None, user: User | None) -> Outcome:
        if token is None or user is None:
            return "unsupported"

        adapter = self._chains.get(token.symbol)
        if adapter is None:
            return "unsupported"

        try:
            if await self._lock.is_held(in_flight_key(balance.id)):
                logger.debug("Balance %s has a transfer in flight, skipping", balance.id)
                return "in_flight"

            onchain = await self._retry.run(
                lambda: adapter.get_balance(user.tag),
                description=f"get_balance({token.symbol}, {user.tag})",
            )
            logger.debug(
                "Chain: %s | DB Bal: %s | Onchain Bal: %s | Tag: %s",
                token.symbol,
                balance.amount,
                onchain,
                user.tag,
            )

            diff = difference(onchain, balance.amount)
            if diff.copy_abs() < self._epsilon:
                return "ok"

            return await self._correct(balance, token, user, onchain=onchain, diff=diff)
        except Exception as exc:
            logger.warning(
                "Poll error for %s (%s), balance %s: %r",
                user.tag,
                token.symbol,
                balance.id,
                exc,
            )
            return "error"

    async def _correct(
        self,
        balance: Balance,
        token: Token,
        user: User,
        *,
        onchain: Decimal,
        diff: Decimal,
    ) -> Outcome:
        is_deposit = diff > 0
        amount = diff.copy_abs()
        usd = usd_value(amount, token.price)
        description = "Deposit" if is_deposit else "Withdrawal"

        entry = LedgerEntry(
            balance_id=balance.id,
            delta_amount=diff,
            expected_version=balance.version,
            transaction=NewTransaction(
                user_id=user.id,
                token_id=token.id,
                reference=generate_reference(),
                type=CREDIT if is_deposit else DEBIT,
                status="completed",
                tx_hash=None,
                amount=amount,
                usd_value=usd,
                from_address=None if is_deposit else balance.address,
                to_address=balance.address if is_deposit else None,
                description=description,
                extra={
                    "source": "reconciler",
                    "ledger_amount": str(balance.amount),
                    "chain_amount": str(onchain),
                },
            ),
        )
        await self._ledger.apply_entries([entry])

        logger.info(
            "%s: %s%s %s for %s",
            description,
            "+" if is_deposit else "-",
            amount,
            token.symbol,
            user.tag,
        )

        try:
            await self._ledger.record_notification(
                NewNotification(
                    user_id=user.id,
                    title=description,
                    body=f"{description} of {amount} {token.symbol} "
                    f"{'received' if is_deposit else 'completed'}",
                )
            )
        except Exception:
            logger.exception("Failed to record %s notification for %s", description, user.tag)

        return "credited" if is_deposit else "debited"
