from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, localcontext
from typing import Any, Final, Sequence

from sqlalchemy import Table, insert, select, update
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from tag_ledger.app.application.services.amounts import LEDGER_PRECISION, usd_value
from tag_ledger.app.domain.errors import StaleBalanceError, UnknownBalanceError
from tag_ledger.app.domain.models import (
    Balance,
    LedgerEntry,
    NewNotification,
    NewTransaction,
    Token,
    Transaction,
    TransactionStatus,
    User,
    normalize_tag,
)
from tag_ledger.app.infrastructure.db.models.ledger.balances import BalancesDB
from tag_ledger.app.infrastructure.db.models.ledger.notifications import NotificationsDB
from tag_ledger.app.infrastructure.db.models.ledger.tokens import TokensDB
from tag_ledger.app.infrastructure.db.models.ledger.transactions import TransactionsDB
from tag_ledger.app.infrastructure.db.models.ledger.users import UsersDB


logger = logging.getLogger(__name__)

_USERS: Final[Table] = UsersDB.__table__  # type: ignore[assignment]
_TOKENS: Final[Table] = TokensDB.__table__  # type: ignore[assignment]
_BALANCES: Final[Table] = BalancesDB.__table__  # type: ignore[assignment]
_TRANSACTIONS: Final[Table] = TransactionsDB.__table__  # type: ignore[assignment]
_NOTIFICATIONS: Final[Table] = NotificationsDB.__table__  # type: ignore[assignment]

_STATUS_TRANSITIONS: Final[dict[str, frozenset[str]]] = {
    "pending": frozenset({"completed", "failed"}),
    "completed": frozenset(),
    "failed": frozenset(),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _norm_address(address: str | None) -> str | None:
    if address is None:
        return None
    cleaned = address.strip().lower()
    return cleaned or None


def _add(left: Decimal, right: Decimal) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = LEDGER_PRECISION
        return left + right


def _user(row: Row[Any]) -> User:
    return User(id=row.id, tag=row.tag)


def _token(row: Row[Any]) -> Token:
    return Token(
        id=row.id,
        symbol=row.symbol,
        decimals=row.decimals,
        price=row.price,
        name=row.name,
    )


def _balance(row: Row[Any]) -> Balance:
    return Balance(
        id=row.id,
        user_id=row.user_id,
        token_id=row.token_id,
        amount=row.amount,
        usd_value=row.usd_value,
        address=row.address,
        version=row.version,
    )


def _transaction(row: Row[Any]) -> Transaction:
    return Transaction(
        id=row.id,
        user_id=row.user_id,
        token_id=row.token_id,
        reference=row.reference,
        type=row.type,
        status=row.status,
        tx_hash=row.tx_hash,
        amount=row.amount,
        usd_value=row.usd_value,
        from_address=row.from_address,
        to_address=row.to_address,
        description=row.description,
        timestamp=row.timestamp,
        extra=row.extra,
    )


def _transaction_values(fields: NewTransaction) -> dict[str, Any]:
    return {
        "user_id": fields.user_id,
        "token_id": fields.token_id,
        "reference": fields.reference,
        "type": fields.type,
        "status": fields.status,
        "tx_hash": fields.tx_hash,
        "amount": fields.amount,
        "usd_value": fields.usd_value,
        "from_address": _norm_address(fields.from_address),
        "to_address": _norm_address(fields.to_address),
        "description": fields.description,
        "timestamp": fields.timestamp or _now(),
        "extra": fields.extra,
    }


class SqlAlchemyLedgerStore:
    """
    SQLAlchemy Core implementation of LedgerStore.

    Balances are only written inside a storage transaction that first locks
    the row (SELECT ... FOR UPDATE) and then updates it with a version check,
    so two writers can never both apply a delta computed from the same read.

    Every balance write also revalues usd_value as amount x token price, so a
    price change is picked up the next time the balance moves.

    Addresses are stored lower-cased and compared lower-cased.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    # ------------------------------------------------------------------
    # Users / tokens
    # ------------------------------------------------------------------

    async def create_user(self, *, tag: str) -> User:
        normalized = normalize_tag(tag)
        async with self._engine.begin() as conn:
            try:
                async with conn.begin_nested():
                    result = await conn.execute(insert(_USERS).values(tag=normalized))
                return User(id=result.inserted_primary_key[0], tag=normalized)
            except IntegrityError:
                # Created concurrently; the unique tag wins.
                row = (await conn.execute(select(_USERS).where(_USERS.c.tag == normalized))).one()
                return _user(row)

    async def get_user(self, user_id: int) -> User | None:
        async with self._engine.connect() as conn:
            row = (await conn.execute(select(_USERS).where(_USERS.c.id == user_id))).first()
        return _user(row) if row is not None else None

    async def find_user_by_tag(self, tag: str) -> User | None:
        async with self._engine.connect() as conn:
            row = (
                await conn.execute(select(_USERS).where(_USERS.c.tag == normalize_tag(tag)))
            ).first()
        return _user(row) if row is not None else None

    async def get_token(self, token_id: int) -> Token | None:
        async with self._engine.connect() as conn:
            row = (await conn.execute(select(_TOKENS).where(_TOKENS.c.id == token_id))).first()
        return _token(row) if row is not None else None

    async def get_token_by_symbol(self, symbol: str) -> Token | None:
        async with self._engine.connect() as conn:
            row = (
                await conn.execute(select(_TOKENS).where(_TOKENS.c.symbol == symbol.upper()))
            ).first()
        return _token(row) if row is not None else None

    async def list_tokens(self) -> list[Token]:
        async with self._engine.connect() as conn:
            rows = (await conn.execute(select(_TOKENS).order_by(_TOKENS.c.id))).all()
        return [_token(r) for r in rows]

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    async def get_or_create_balance(
        self,
        user_id: int,
        token_id: int,
        *,
        address: str | None = None,
    ) -> Balance:
        address = _norm_address(address)
        where = (_BALANCES.c.user_id == user_id) & (_BALANCES.c.token_id == token_id)

        async with self._engine.begin() as conn:
            row = (await conn.execute(select(_BALANCES).where(where).with_for_update())).first()

            if row is None:
                now = _now()
                try:
                    async with conn.begin_nested():
                        await conn.execute(
                            insert(_BALANCES).values(
                                user_id=user_id,
                                token_id=token_id,
                                amount=Decimal(0),
                                usd_value=Decimal(0),
                                address=address,
                                version=0,
                                created_at=now,
                                updated_at=now,
                            )
                        )
                except IntegrityError:
                    logger.debug("Balance (%s, %s) created concurrently", user_id, token_id)
                row = (await conn.execute(select(_BALANCES).where(where).with_for_update())).one()

            if address is not None and row.address != address:
                await conn.execute(
                    update(_BALANCES)
                    .where(_BALANCES.c.id == row.id)
                    .values(address=address, updated_at=_now())
                )
                row = (await conn.execute(select(_BALANCES).where(_BALANCES.c.id == row.id))).one()

        return _balance(row)

    async def find_balance(self, user_id: int, token_id: int) -> Balance | None:
        async with self._engine.connect() as conn:
            row = (
                await conn.execute(
                    select(_BALANCES).where(
                        (_BALANCES.c.user_id == user_id) & (_BALANCES.c.token_id == token_id)
                    )
                )
            ).first()
        return _balance(row) if row is not None else None

    async def find_balance_by_address(self, address: str, *, token_id: int | None = None) -> Balance | None:
        stmt = select(_BALANCES).where(_BALANCES.c.address == _norm_address(address))
        if token_id is not None:
            stmt = stmt.where(_BALANCES.c.token_id == token_id)
        async with self._engine.connect() as conn:
            row = (await conn.execute(stmt.order_by(_BALANCES.c.id))).first()
        return _balance(row) if row is not None else None

    async def list_balances_for_user(self, user_id: int) -> list[Balance]:
        async with self._engine.connect() as conn:
            rows = (
                await conn.execute(
                    select(_BALANCES).where(_BALANCES.c.user_id == user_id).order_by(_BALANCES.c.id)
                )
            ).all()
        return [_balance(r) for r in rows]

    async def list_all_balances(self) -> list[Balance]:
        async with self._engine.connect() as conn:
            rows = (await conn.execute(select(_BALANCES).order_by(_BALANCES.c.id))).all()
        return [_balance(r) for r in rows]

    async def apply_delta(self, balance_id: int, delta_amount: Decimal) -> Balance:
        async with self._engine.begin() as conn:
            row = await self._lock_balance(conn, balance_id)
            return await self._write_delta(conn, _balance(row), delta_amount)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def record_transaction(self, fields: NewTransaction) -> Transaction:
        async with self._engine.begin() as conn:
            inserted = await self._insert_transaction(conn, fields)
            if inserted is not None:
                return inserted
            existing = await self._find_duplicate(conn, fields)
            if existing is None:
                raise RuntimeError(
                    f"Transaction {fields.reference} neither inserted nor found as a duplicate"
                )
            return existing

    async def apply_entries(self, entries: Sequence[LedgerEntry]) -> list[Transaction]:
        if not entries:
            return []

        created: list[Transaction] = []
        async with self._engine.begin() as conn:
            # Lock every touched balance up front, in id order, so concurrent
            # callers touching the same pair cannot deadlock.
            balance_ids = sorted({e.balance_id for e in entries})
            rows = (
                await conn.execute(
                    select(_BALANCES)
                    .where(_BALANCES.c.id.in_(balance_ids))
                    .order_by(_BALANCES.c.id)
                    .with_for_update()
                )
            ).all()
            state: dict[int, Balance] = {r.id: _balance(r) for r in rows}

            for entry in entries:
                balance = state.get(entry.balance_id)
                if balance is None:
                    raise UnknownBalanceError(entry.balance_id)
                if entry.expected_version is not None and balance.version != entry.expected_version:
                    raise StaleBalanceError(
                        balance.id,
                        expected=entry.expected_version,
                        actual=balance.version,
                    )

                transaction = await self._insert_transaction(conn, entry.transaction)
                if transaction is None:
                    logger.info(
                        "Skipping duplicate %s for tx_hash=%s",
                        entry.transaction.type,
                        entry.transaction.tx_hash,
                    )
                    continue

                state[balance.id] = await self._write_delta(conn, balance, entry.delta_amount)
                created.append(transaction)

        return created

    async def find_transaction_by_tx_hash(self, tx_hash: str) -> Transaction | None:
        async with self._engine.connect() as conn:
            row = (
                await conn.execute(
                    select(_TRANSACTIONS)
                    .where(_TRANSACTIONS.c.tx_hash == tx_hash)
                    .order_by(_TRANSACTIONS.c.id)
                    .limit(1)
                )
            ).first()
        return _transaction(row) if row is not None else None

    async def list_transactions(self, *, user_id: int | None = None) -> list[Transaction]:
        stmt = select(_TRANSACTIONS)
        if user_id is not None:
            stmt = stmt.where(_TRANSACTIONS.c.user_id == user_id)
        stmt = stmt.order_by(_TRANSACTIONS.c.timestamp.desc(), _TRANSACTIONS.c.id.desc())
        async with self._engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return [_transaction(r) for r in rows]

    async def set_transaction_status(self, reference: str, status: TransactionStatus) -> Transaction:
        async with self._engine.begin() as conn:
            row = (
                await conn.execute(
                    select(_TRANSACTIONS)
                    .where(_TRANSACTIONS.c.reference == reference)
                    .with_for_update()
                )
            ).first()
            if row is None:
                raise ValueError(f"Unknown transaction reference: {reference!r}")
            if row.status == status:
                return _transaction(row)
            if status not in _STATUS_TRANSITIONS.get(row.status, frozenset()):
                raise ValueError(f"Transaction {reference} cannot move from {row.status} to {status}")

            await conn.execute(
                update(_TRANSACTIONS).where(_TRANSACTIONS.c.id == row.id).values(status=status)
            )
            row = (await conn.execute(select(_TRANSACTIONS).where(_TRANSACTIONS.c.id == row.id))).one()
        return _transaction(row)

    async def record_notification(self, notification: NewNotification) -> None:
        async with self._engine.begin() as conn:
            await conn.execute(
                insert(_NOTIFICATIONS).values(
                    user_id=notification.user_id,
                    title=notification.title,
                    body=notification.body,
                    read=False,
                    created_at=_now(),
                )
            )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _lock_balance(self, conn: AsyncConnection, balance_id: int) -> Row[Any]:
        row = (
            await conn.execute(
                select(_BALANCES).where(_BALANCES.c.id == balance_id).with_for_update()
            )
        ).first()
        if row is None:
            raise UnknownBalanceError(balance_id)
        return row

    async def _write_delta(
        self,
        conn: AsyncConnection,
        balance: Balance,
        delta_amount: Decimal,
    ) -> Balance:
        new_amount = _add(balance.amount, delta_amount)
        price = (
            await conn.execute(select(_TOKENS.c.price).where(_TOKENS.c.id == balance.token_id))
        ).scalar_one_or_none()
        new_usd = usd_value(new_amount, price)

        result = await conn.execute(
            update(_BALANCES)
            .where((_BALANCES.c.id == balance.id) & (_BALANCES.c.version == balance.version))
            .values(
                amount=new_amount,
                usd_value=new_usd,
                version=_BALANCES.c.version + 1,
                updated_at=_now(),
            )
        )
        if result.rowcount != 1:
            current = await self._lock_balance(conn, balance.id)
            raise StaleBalanceError(balance.id, expected=balance.version, actual=current.version)

        return Balance(
            id=balance.id,
            user_id=balance.user_id,
            token_id=balance.token_id,
            amount=new_amount,
            usd_value=new_usd,
            address=balance.address,
            version=balance.version + 1,
        )

    async def _insert_transaction(self, conn: AsyncConnection, fields: NewTransaction) -> Transaction | None:
        """Insert inside a savepoint. Returns None if (tx_hash, type) already exists."""
        values = _transaction_values(fields)
        try:
            async with conn.begin_nested():
                result = await conn.execute(insert(_TRANSACTIONS).values(**values))
        except IntegrityError:
            if await self._find_duplicate(conn, fields) is not None:
                return None
            raise

        return Transaction(id=result.inserted_primary_key[0], **values)

    async def _find_duplicate(self, conn: AsyncConnection, fields: NewTransaction) -> Transaction | None:
        if fields.tx_hash is None:
            return None
        row = (
            await conn.execute(
                select(_TRANSACTIONS).where(
                    (_TRANSACTIONS.c.tx_hash == fields.tx_hash) & (_TRANSACTIONS.c.type == fields.type)
                )
            )
        ).first()
        return _transaction(row) if row is not None else None
