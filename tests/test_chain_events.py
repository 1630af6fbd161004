from decimal import Decimal

import pytest

from tag_ledger.app.application.services.apply_chain_event import (
    DEPOSIT_RECEIVED,
    WITHDRAWAL_COMPLETED,
    ChainEventApplier,
)
from tag_ledger.app.application.services.listen_for_chain_events import (
    APPLY_CHAIN_EVENT_JOB,
    ChainEventListener,
)
from tag_ledger.app.domain.models import CREDIT, DEBIT, ChainEvent

from .conftest import FakeCheckpointStore, FakeEventSource, FakeTaskQueue, fake_address


ONE_STRK = str(10**18)


def _event(block: int, *, name: str = DEPOSIT_RECEIVED, tx: str | None = None, address: str | None = None,
           amount: str = ONE_STRK, log_index: int = 0) -> ChainEvent:
    return ChainEvent(
        chain_key="STRK",
        name=name,
        tx_hash=tx or f"0x{block:04x}{log_index:02x}",
        block_number=block,
        log_index=log_index,
        address=address or fake_address("alice"),
        amount=amount,
        counterparty="0x0000000000000000000000000000000000000abc",
    )


@pytest.fixture
def source():
    return FakeEventSource("STRK")


@pytest.fixture
def checkpoints():
    return FakeCheckpointStore()


@pytest.fixture
def queue():
    return FakeTaskQueue()


def _listener(source, checkpoints, queue, retry, **kwargs):
    return ChainEventListener(source=source, checkpoints=checkpoints, queue=queue, retry=retry, **kwargs)


# ---------------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------------


async def test_first_poll_starts_at_head(source, checkpoints, queue, retry):
    source.head = 120
    source.events = [_event(100)]

    assert await _listener(source, checkpoints, queue, retry).poll_once() == 0
    assert checkpoints.blocks["STRK"] == 120
    assert queue.jobs == []


async def test_configured_start_block_is_scanned(source, checkpoints, queue, retry):
    source.head = 120
    source.events = [_event(99), _event(100)]

    listener = _listener(source, checkpoints, queue, retry, start_block=100)
    assert await listener.poll_once() == 1
    assert queue.jobs == [(APPLY_CHAIN_EVENT_JOB, _event(100).to_payload())]
    assert checkpoints.blocks["STRK"] == 120


async def test_new_blocks_are_fetched_in_chunks(source, checkpoints, queue, retry):
    checkpoints.blocks["STRK"] = 10
    source.head = 22
    source.events = [_event(12), _event(21, log_index=1), _event(21, log_index=3)]

    enqueued = await _listener(source, checkpoints, queue, retry, chunk_size=5).poll_once()

    assert enqueued == 3
    assert source.fetched == [(11, 15), (16, 20), (21, 22)]
    assert checkpoints.blocks["STRK"] == 22
    assert [p["block_number"] for _, p in queue.jobs] == [12, 21, 21]


async def test_no_new_blocks(source, checkpoints, queue, retry):
    checkpoints.blocks["STRK"] = 50
    source.head = 50
    assert await _listener(source, checkpoints, queue, retry).poll_once() == 0
    assert source.fetched == []


async def test_enqueue_failure_keeps_checkpoint_before_the_chunk(source, checkpoints, queue, retry):
    checkpoints.blocks["STRK"] = 0
    source.head = 10
    source.events = [_event(2), _event(7), _event(8)]
    queue.fail_after = 2

    with pytest.raises(ConnectionError):
        await _listener(source, checkpoints, queue, retry, chunk_size=5).poll_once()

    # First chunk [1, 5] made it; the second is replayed on the next poll.
    assert checkpoints.blocks["STRK"] == 5

    queue.fail_after = None
    assert await _listener(source, checkpoints, queue, retry, chunk_size=5).poll_once() == 2
    assert checkpoints.blocks["STRK"] == 10
    # Block 7 was delivered twice; the consumer deduplicates it.
    assert [p["block_number"] for _, p in queue.jobs] == [2, 7, 7, 8]


# ---------------------------------------------------------------------------
# Consumer
# ---------------------------------------------------------------------------


async def test_deposit_event_credits_balance(ledger, world):
    applier = ChainEventApplier(ledger=ledger)

    tx = await applier.apply(_event(5, tx="0xdep"))

    assert tx is not None
    assert tx.type == CREDIT
    assert tx.amount == Decimal("1")
    assert tx.tx_hash == "0xdep"
    assert tx.to_address == fake_address("alice")
    assert (await ledger.find_balance(world.alice.id, world.strk.id)).amount == Decimal("1")


async def test_replayed_event_is_applied_once(ledger, world):
    applier = ChainEventApplier(ledger=ledger)
    event = _event(5, tx="0xdup")
    payload = event.to_payload()

    assert await applier.apply(event) is not None
    assert await applier.apply(ChainEvent.from_payload(payload)) is None

    assert (await ledger.find_balance(world.alice.id, world.strk.id)).amount == Decimal("1")
    assert len(await ledger.list_transactions(user_id=world.alice.id)) == 1


async def test_withdrawal_event_debits_balance(ledger, world):
    await ledger.apply_delta(world.bob_strk.id, Decimal("3"))
    applier = ChainEventApplier(ledger=ledger)

    tx = await applier.apply(
        _event(9, name=WITHDRAWAL_COMPLETED, tx="0xwd", address=fake_address("bob").upper().replace("0X", "0x"))
    )

    assert tx.type == DEBIT
    balance = await ledger.find_balance(world.bob.id, world.strk.id)
    assert balance.amount == Decimal("2")
    assert balance.usd_value == Decimal("1")


async def test_event_for_unknown_address_is_ignored(ledger, world):
    applier = ChainEventApplier(ledger=ledger)
    assert await applier.apply(_event(5, address="0x" + "9" * 40)) is None
    assert await ledger.list_transactions() == []


async def test_unknown_event_name_is_ignored(ledger, world):
    applier = ChainEventApplier(ledger=ledger)
    assert await applier.apply(_event(5, name="TagRegistered")) is None
    assert await ledger.list_transactions() == []


async def test_payload_round_trip_keeps_large_amounts():
    event = _event(1, amount=str(2**200))
    assert ChainEvent.from_payload(event.to_payload()) == event
