import asyncio
from decimal import Decimal

from sqlalchemy import update

from tag_ledger.app.application.services.balance_guards import RECONCILER_LOCK_KEY, in_flight_key
from tag_ledger.app.application.services.chain_registry import ChainRegistry
from tag_ledger.app.application.services.reconcile_balances import BalanceReconciler
from tag_ledger.app.domain.errors import ChainRpcError
from tag_ledger.app.domain.models import CREDIT, DEBIT
from tag_ledger.app.infrastructure.db.models.ledger.tokens import TokensDB


def _reconciler(ledger, chains, lock, retry, **kwargs):
    return BalanceReconciler(ledger=ledger, chains=chains, lock=lock, retry=retry, **kwargs)


async def _seed(ledger, balance, amount):
    await ledger.apply_delta(balance.id, Decimal(amount))


async def test_higher_onchain_balance_is_booked_as_deposit(ledger, world, chains, strk_chain, lock, retry):
    await _seed(ledger, world.alice_strk, "100")
    strk_chain.balances["alice"] = Decimal("130")

    report = await _reconciler(ledger, chains, lock, retry).run_cycle()

    assert report.credited == 1
    assert report.total == 2
    balance = await ledger.find_balance(world.alice.id, world.strk.id)
    assert balance.amount == Decimal("130")

    [tx] = await ledger.list_transactions(user_id=world.alice.id)
    assert tx.type == CREDIT
    assert tx.amount == Decimal("30")
    assert tx.usd_value == Decimal("15")
    assert tx.tx_hash is None
    assert tx.description == "Deposit"
    assert tx.extra["source"] == "reconciler"


async def test_lower_onchain_balance_is_booked_as_withdrawal(ledger, world, chains, strk_chain, lock, retry):
    await _seed(ledger, world.alice_strk, "100")
    strk_chain.balances["alice"] = Decimal("60")

    report = await _reconciler(ledger, chains, lock, retry).run_cycle()

    assert report.debited == 1
    assert (await ledger.find_balance(world.alice.id, world.strk.id)).amount == Decimal("60")
    [tx] = await ledger.list_transactions(user_id=world.alice.id)
    assert tx.type == DEBIT
    assert tx.amount == Decimal("40")
    assert tx.description == "Withdrawal"


async def test_second_sweep_is_a_no_op(ledger, world, chains, strk_chain, lock, retry):
    strk_chain.balances["bob"] = Decimal("3")
    reconciler = _reconciler(ledger, chains, lock, retry)

    await reconciler.run_cycle()
    report = await reconciler.run_cycle()

    assert report.ok == 2
    assert report.credited == 0
    assert len(await ledger.list_transactions(user_id=world.bob.id)) == 1


async def test_differences_below_epsilon_are_ignored(ledger, world, chains, strk_chain, lock, retry):
    await _seed(ledger, world.alice_strk, "1")
    strk_chain.balances["alice"] = Decimal("1.00000000001")

    report = await _reconciler(ledger, chains, lock, retry).run_cycle()

    assert report.ok == 2
    assert await ledger.list_transactions() == []


async def test_cycle_skipped_when_lock_held(ledger, world, chains, strk_chain, lock, retry):
    await lock.acquire(RECONCILER_LOCK_KEY, ttl_seconds=15)
    strk_chain.balances["alice"] = Decimal("5")

    report = await _reconciler(ledger, chains, lock, retry).run_cycle()

    assert report.skipped
    assert report.total == 0
    assert await ledger.list_transactions() == []


async def test_lock_released_after_cycle(ledger, world, chains, lock, retry):
    await _reconciler(ledger, chains, lock, retry).run_cycle()
    assert not await lock.is_held(RECONCILER_LOCK_KEY)


async def test_rpc_error_does_not_stop_the_sweep(ledger, world, chains, strk_chain, lock, retry):
    strk_chain.balance_errors["alice"] = ChainRpcError("rpc down")
    strk_chain.balances["bob"] = Decimal("7")

    report = await _reconciler(ledger, chains, lock, retry).run_cycle()

    assert report.errors == 1
    assert report.credited == 1
    assert (await ledger.find_balance(world.alice.id, world.strk.id)).amount == Decimal(0)
    assert (await ledger.find_balance(world.bob.id, world.strk.id)).amount == Decimal("7")


async def test_balances_in_flight_are_skipped(ledger, world, chains, strk_chain, lock, retry):
    await lock.acquire(in_flight_key(world.alice_strk.id), ttl_seconds=60)
    strk_chain.balances["alice"] = Decimal("9")

    report = await _reconciler(ledger, chains, lock, retry).run_cycle()

    assert report.in_flight == 1
    assert (await ledger.find_balance(world.alice.id, world.strk.id)).amount == Decimal(0)


async def test_balances_without_adapter_are_unsupported(ledger, world, lock, retry):
    await ledger.get_or_create_balance(world.alice.id, world.base.id)

    report = await _reconciler(ledger, ChainRegistry({}), lock, retry).run_cycle()

    assert report.unsupported == 3
    assert report.errors == 0


async def test_batches_cover_every_balance(ledger, world, chains, strk_chain, lock, retry):
    for i in range(7):
        user = await ledger.create_user(tag=f"user{i}")
        await ledger.get_or_create_balance(user.id, world.strk.id)
        strk_chain.balances[user.tag] = Decimal(i + 1)

    report = await _reconciler(ledger, chains, lock, retry, batch_size=3).run_cycle()

    assert report.total == 9
    assert report.credited == 7
    assert report.ok == 2


async def test_correction_revalues_balance_at_current_price(engine, ledger, world, chains, strk_chain, lock, retry):
    await _seed(ledger, world.alice_strk, "100")
    async with engine.begin() as conn:
        await conn.execute(update(TokensDB).where(TokensDB.symbol == "STRK").values(price=Decimal("1")))
    strk_chain.balances["alice"] = Decimal("130")

    await _reconciler(ledger, chains, lock, retry).run_cycle()

    balance = await ledger.find_balance(world.alice.id, world.strk.id)
    assert balance.amount == Decimal("130")
    assert balance.usd_value == Decimal("130")
    [tx] = await ledger.list_transactions(user_id=world.alice.id)
    assert tx.usd_value == Decimal("30")


async def test_racing_cycles_book_a_difference_once(ledger, world, chains, strk_chain, lock, retry):
    strk_chain.balances["alice"] = Decimal("5")

    reports = await asyncio.gather(
        _reconciler(ledger, chains, lock, retry).run_cycle(),
        _reconciler(ledger, chains, lock, retry).run_cycle(),
    )

    assert sorted(r.skipped for r in reports) == [False, True]
    assert sum(r.credited for r in reports) == 1
    assert len(await ledger.list_transactions(user_id=world.alice.id)) == 1
    assert (await ledger.find_balance(world.alice.id, world.strk.id)).amount == Decimal("5")
