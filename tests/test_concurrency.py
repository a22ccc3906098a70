"""Interleavings around the transfer-rail suspension point."""

import asyncio

import pytest

from ticket_lottery.lottery.errors import (
    AlreadyCompletedError,
    PaymentFailureError,
    PreconditionError,
)
from ticket_lottery.lottery.models import RoundMarker
from ticket_lottery.utils.common import derive_address

from tests.conftest import (
    LOTTERY_ADDRESS,
    GatedLedger,
    RejectingLedger,
    build_engine,
    fund,
)

PRICE = 10
DURATION = 3600


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


async def test_tickets_are_reserved_before_payment_and_never_overlap(clock):
    ledger = GatedLedger()
    fund(ledger, "alice", "bob")
    engine = build_engine(ledger, clock=clock)
    await engine.initialize(PRICE, DURATION)
    round_id = await engine.start_round()

    first = asyncio.create_task(engine.buy_ticket("alice", round_id, 3))
    second = asyncio.create_task(engine.buy_ticket("bob", round_id, 2))
    await settle()

    # alice is suspended inside the transfer with her numbers already committed
    assert ledger.in_flight == 1
    reserved = engine.get_round(round_id)
    assert reserved.tickets_sold == 3
    assert reserved.participations[0].tickets == [0, 1, 2]
    assert engine.store.prize_pool == 0

    ledger.gate.set()
    alice, bob = await asyncio.gather(first, second)

    assert alice.tickets == [0, 1, 2]
    assert bob.tickets == [3, 4]
    final = engine.get_round(round_id)
    assert sorted(t for p in final.participations for t in p.tickets) == list(range(5))
    assert engine.store.prize_pool == 50


async def test_many_concurrent_buyers_keep_numbering_gapless(clock):
    ledger = GatedLedger()
    callers = [f"player-{i}" for i in range(8)]
    fund(ledger, *callers)
    engine = build_engine(ledger, clock=clock)
    await engine.initialize(PRICE, DURATION)
    round_id = await engine.start_round()

    tasks = [asyncio.create_task(engine.buy_ticket(c, round_id, 1 + i % 3)) for i, c in enumerate(callers)]
    tasks += [asyncio.create_task(engine.buy_ticket(c, round_id, 1)) for c in callers[:3]]
    await settle()
    ledger.gate.set()
    await asyncio.gather(*tasks)

    lottery_round = engine.get_round(round_id)
    numbers = [t for p in lottery_round.participations for t in p.tickets]
    assert sorted(numbers) == list(range(lottery_round.tickets_sold))
    assert len(lottery_round.participations) == len(callers)
    assert len({p.caller for p in lottery_round.participations}) == len(callers)


async def test_purchase_payment_failure_keeps_reservation(clock):
    ledger = RejectingLedger()
    fund(ledger, "bob")
    engine = build_engine(ledger, clock=clock)
    await engine.initialize(PRICE, DURATION)
    round_id = await engine.start_round()

    # alice has no funds: the transfer is rejected after her tickets were reserved
    with pytest.raises(PaymentFailureError) as excinfo:
        await engine.buy_ticket("alice", round_id, 2)

    error = excinfo.value
    assert error.fatal is True
    assert not isinstance(error, PreconditionError)
    assert error.tickets == [0, 1]
    assert error.amount == 20

    lottery_round = engine.get_round(round_id)
    assert lottery_round.tickets_sold == 2
    assert lottery_round.participations[0].tickets == [0, 1]
    assert engine.store.prize_pool == 0

    # the next buyer continues after the unpaid reservation
    receipt = await engine.buy_ticket("bob", round_id, 1)
    assert receipt.tickets == [2]


async def test_rail_exception_is_surfaced_as_payment_failure(clock):
    ledger = RejectingLedger(blocked=[derive_address("alice")], raise_error=True)
    fund(ledger, "alice")
    engine = build_engine(ledger, clock=clock)
    await engine.initialize(PRICE, DURATION)
    round_id = await engine.start_round()

    with pytest.raises(PaymentFailureError) as excinfo:
        await engine.buy_ticket("alice", round_id, 1)
    assert isinstance(excinfo.value.__cause__, ConnectionError)


async def closed_round_with_gated_payout(clock):
    ledger = GatedLedger()
    fund(ledger, "alice", "bob")
    engine = build_engine(ledger, clock=clock)
    await engine.initialize(PRICE, DURATION)
    round_id = await engine.start_round()
    ledger.gate.set()
    await engine.buy_ticket("alice", round_id, 2)
    await engine.buy_ticket("bob", round_id, 2)
    clock.advance(DURATION)
    await engine.close_round(round_id)  # scripted entropy draws ticket 0: alice
    ledger.gate.clear()
    return engine, ledger, round_id


async def test_concurrent_claims_pay_exactly_once(clock):
    engine, ledger, round_id = await closed_round_with_gated_payout(clock)

    first = asyncio.create_task(engine.claim("alice", round_id))
    second = asyncio.create_task(engine.claim("alice", round_id))
    await settle()
    assert ledger.in_flight == 1
    assert engine.get_round(round_id).marker == RoundMarker.AWAITING_PAYOUT

    ledger.gate.set()
    results = await asyncio.gather(first, second, return_exceptions=True)

    paid = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, AlreadyCompletedError)]
    assert len(paid) == 1 and len(rejected) == 1
    assert paid[0].reward == 20
    assert engine.store.prize_pool == 20
    assert await ledger.balance_of(LOTTERY_ADDRESS) == 20


async def test_delete_waits_for_inflight_claim(clock):
    engine, ledger, round_id = await closed_round_with_gated_payout(clock)

    claim = asyncio.create_task(engine.claim("alice", round_id))
    await settle()
    delete = asyncio.create_task(engine.delete_round(round_id))
    await settle()
    assert not delete.done()

    ledger.gate.set()
    await claim
    await delete
    assert engine.list_rounds() == []


async def test_claim_payment_failure_keeps_pool_decrement_and_marker(clock):
    ledger = RejectingLedger()
    fund(ledger, "alice")
    engine = build_engine(ledger, clock=clock)
    await engine.initialize(PRICE, DURATION)
    round_id = await engine.start_round()
    await engine.buy_ticket("alice", round_id, 4)
    clock.advance(DURATION)
    await engine.close_round(round_id)
    ledger.blocked.add(LOTTERY_ADDRESS.lower())

    with pytest.raises(PaymentFailureError) as excinfo:
        await engine.claim("alice", round_id)

    assert excinfo.value.amount == 20
    assert engine.store.prize_pool == 20
    lottery_round = engine.get_round(round_id)
    assert lottery_round.marker == RoundMarker.AWAITING_PAYOUT
    assert lottery_round.winner is None

    # no rollback: a retry sizes the reward from the already reduced pool
    ledger.blocked.clear()
    receipt = await engine.claim("alice", round_id)
    assert receipt.reward == 10
    assert engine.get_round(round_id).marker == RoundMarker.COMPLETED
