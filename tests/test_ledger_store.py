import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import update

from tag_ledger.app.domain.errors import StaleBalanceError, UnknownBalanceError
from tag_ledger.app.domain.models import CREDIT, DEBIT, LedgerEntry, NewNotification, NewTransaction
from tag_ledger.app.infrastructure.adapters.ledger.sqlalchemy_ledger_store import SqlAlchemyLedgerStore
from tag_ledger.app.infrastructure.db.models.ledger.tokens import TokensDB

from .conftest import fake_address


def _tx(world, *, reference, tx_type=CREDIT, amount="1", tx_hash=None, user=None, status="completed"):
    user = user or world.alice
    return NewTransaction(
        user_id=user.id,
        token_id=world.strk.id,
        reference=reference,
        type=tx_type,
        status=status,
        tx_hash=tx_hash,
        amount=Decimal(amount),
        usd_value=Decimal(0),
    )


async def test_create_user_normalizes_and_is_idempotent(ledger, world):
    again = await ledger.create_user(tag="@Alice")
    assert again == world.alice
    assert (await ledger.find_user_by_tag("ALICE")) == world.alice
    assert await ledger.find_user_by_tag("carol") is None


async def test_get_or_create_balance_updates_address(ledger, world):
    same = await ledger.get_or_create_balance(world.alice.id, world.strk.id)
    assert same.id == world.alice_strk.id
    assert same.address == fake_address("alice")

    moved = await ledger.get_or_create_balance(world.alice.id, world.strk.id, address="0xABCDEF")
    assert moved.id == world.alice_strk.id
    assert moved.address == "0xabcdef"
    assert (await ledger.find_balance_by_address("0xAbCdEf")).id == world.alice_strk.id


async def test_apply_delta_keeps_exact_precision(ledger, world):
    delta = Decimal("123456789012345678901234.000000000000000001")
    updated = await ledger.apply_delta(world.alice_strk.id, delta)
    assert updated.amount == delta
    assert updated.version == world.alice_strk.version + 1

    stored = await ledger.find_balance(world.alice.id, world.strk.id)
    assert stored.amount == delta
    # STRK is priced at 0.5; usd_value is truncated to 10 places.
    assert stored.usd_value == Decimal("61728394506172839450617")


async def test_apply_delta_unknown_balance(ledger, world):
    with pytest.raises(UnknownBalanceError):
        await ledger.apply_delta(9999, Decimal("1"))


async def test_apply_entries_moves_both_balances(ledger, world):
    created = await ledger.apply_entries(
        [
            LedgerEntry(
                balance_id=world.alice_strk.id,
                delta_amount=Decimal("-2.5"),
                transaction=_tx(world, reference="REF-DEBIT", tx_type=DEBIT, amount="2.5", tx_hash="0xaa"),
            ),
            LedgerEntry(
                balance_id=world.bob_strk.id,
                delta_amount=Decimal("2.5"),
                transaction=_tx(world, reference="REF-CREDIT", amount="2.5", tx_hash="0xaa", user=world.bob),
            ),
        ]
    )
    assert [t.type for t in created] == [DEBIT, CREDIT]
    assert (await ledger.find_balance(world.alice.id, world.strk.id)).amount == Decimal("-2.5")
    assert (await ledger.find_balance(world.bob.id, world.strk.id)).amount == Decimal("2.5")


async def test_apply_entries_skips_duplicate_hash(ledger, world):
    entry = LedgerEntry(
        balance_id=world.alice_strk.id,
        delta_amount=Decimal("5"),
        transaction=_tx(world, reference="FIRST", amount="5", tx_hash="0xbeef"),
    )
    assert len(await ledger.apply_entries([entry])) == 1

    replay = LedgerEntry(
        balance_id=world.alice_strk.id,
        delta_amount=Decimal("5"),
        transaction=_tx(world, reference="SECOND", amount="5", tx_hash="0xbeef"),
    )
    assert await ledger.apply_entries([replay]) == []

    assert (await ledger.find_balance(world.alice.id, world.strk.id)).amount == Decimal("5")
    assert len(await ledger.list_transactions(user_id=world.alice.id)) == 1


async def test_apply_entries_is_all_or_nothing(ledger, world):
    entries = [
        LedgerEntry(
            balance_id=world.alice_strk.id,
            delta_amount=Decimal("1"),
            transaction=_tx(world, reference="OK-1", tx_hash="0x01"),
        ),
        LedgerEntry(
            balance_id=4242,
            delta_amount=Decimal("1"),
            transaction=_tx(world, reference="BAD-1", tx_hash="0x02"),
        ),
    ]
    with pytest.raises(UnknownBalanceError):
        await ledger.apply_entries(entries)

    assert (await ledger.find_balance(world.alice.id, world.strk.id)).amount == Decimal(0)
    assert await ledger.list_transactions() == []


async def test_apply_entries_rejects_stale_version(ledger, world):
    await ledger.apply_delta(world.alice_strk.id, Decimal("10"))

    stale = LedgerEntry(
        balance_id=world.alice_strk.id,
        delta_amount=Decimal("-10"),
        expected_version=world.alice_strk.version,
        transaction=_tx(world, reference="STALE", tx_type=DEBIT, amount="10"),
    )
    with pytest.raises(StaleBalanceError) as excinfo:
        await ledger.apply_entries([stale])
    assert excinfo.value.actual == world.alice_strk.version + 1
    assert (await ledger.find_balance(world.alice.id, world.strk.id)).amount == Decimal("10")


async def test_reconciler_style_rows_without_hash_do_not_collide(ledger, world):
    for ref in ("R1", "R2"):
        await ledger.apply_entries(
            [
                LedgerEntry(
                    balance_id=world.alice_strk.id,
                    delta_amount=Decimal("1"),
                    transaction=_tx(world, reference=ref),
                )
            ]
        )
    assert (await ledger.find_balance(world.alice.id, world.strk.id)).amount == Decimal("2")


async def test_record_transaction_returns_stored_duplicate(ledger, world):
    first = await ledger.record_transaction(_tx(world, reference="P1", tx_hash="0xcafe", status="pending"))
    second = await ledger.record_transaction(_tx(world, reference="P2", tx_hash="0xcafe", status="pending"))
    assert second.id == first.id
    assert second.reference == "P1"


async def test_transaction_status_transitions(ledger, world):
    await ledger.record_transaction(_tx(world, reference="PEND", status="pending"))
    done = await ledger.set_transaction_status("PEND", "completed")
    assert done.status == "completed"

    with pytest.raises(ValueError):
        await ledger.set_transaction_status("PEND", "failed")
    with pytest.raises(ValueError):
        await ledger.set_transaction_status("MISSING", "completed")


async def test_notifications_and_token_lookup(ledger, world):
    await ledger.record_notification(NewNotification(user_id=world.bob.id, title="Hi", body="there"))
    token = await ledger.get_token_by_symbol("strk")
    assert token == world.strk
    assert token.price == Decimal("0.5")
    assert [t.symbol for t in await ledger.list_tokens()] == ["STRK", "BASE"]


async def test_balance_is_revalued_at_current_price(engine, ledger, world):
    await ledger.apply_delta(world.alice_strk.id, Decimal("100"))
    assert (await ledger.find_balance(world.alice.id, world.strk.id)).usd_value == Decimal("50")

    async with engine.begin() as conn:
        await conn.execute(update(TokensDB).where(TokensDB.symbol == "STRK").values(price=Decimal("1.2")))

    updated = await ledger.apply_delta(world.alice_strk.id, Decimal("-40"))
    assert updated.usd_value == Decimal("72")
    assert (await ledger.find_balance(world.alice.id, world.strk.id)).usd_value == Decimal("72")


async def test_concurrent_deltas_on_one_balance_are_all_applied(ledger, world):
    deltas = [Decimal(n) / 10 for n in range(1, 11)]

    await asyncio.gather(*(ledger.apply_delta(world.alice_strk.id, d) for d in deltas))

    balance = await ledger.find_balance(world.alice.id, world.strk.id)
    assert balance.amount == Decimal("5.5")
    assert balance.version == world.alice_strk.version + len(deltas)


async def test_concurrent_entries_on_one_balance_are_all_applied(ledger, world):
    def entry(n):
        return LedgerEntry(
            balance_id=world.alice_strk.id,
            delta_amount=Decimal(n),
            transaction=_tx(world, reference=f"CONC-{n}", amount=str(n), tx_hash=f"0x{n:04x}"),
        )

    results = await asyncio.gather(*(ledger.apply_entries([entry(n)]) for n in range(1, 9)))

    assert all(len(created) == 1 for created in results)
    assert (await ledger.find_balance(world.alice.id, world.strk.id)).amount == Decimal(36)
    assert len(await ledger.list_transactions(user_id=world.alice.id)) == 8


async def test_record_transaction_fails_loudly_when_row_vanishes(ledger, world, monkeypatch):
    async def nothing(self, conn, fields):
        return None

    monkeypatch.setattr(SqlAlchemyLedgerStore, "_insert_transaction", nothing)
    monkeypatch.setattr(SqlAlchemyLedgerStore, "_find_duplicate", nothing)

    with pytest.raises(RuntimeError):
        await ledger.record_transaction(_tx(world, reference="GONE", tx_hash="0xdead"))
