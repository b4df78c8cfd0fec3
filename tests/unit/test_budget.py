"""Unit tests for the daily budget ledger and per-analysis budget"""

import asyncio
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone

import pytest

from waterfall_gateway.domain.budget import AnalysisBudget, BudgetLedger
from waterfall_gateway.domain.exceptions import BudgetExceeded


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def test_reserve_until_exhausted():
    ledger = BudgetLedger(50.0)

    assert ledger.reserve(25.0) is True
    assert ledger.reserve(25.0) is True
    assert ledger.reserve(0.01) is False
    assert ledger.remaining == 0.0
    assert ledger.spent == 50.0


def test_release_returns_reservation():
    ledger = BudgetLedger(30.0)
    assert ledger.reserve(25.0)
    assert not ledger.reserve(25.0)

    ledger.release(25.0)

    assert ledger.remaining == 30.0
    assert ledger.reserve(25.0)


def test_release_never_goes_below_zero():
    ledger = BudgetLedger(30.0)
    ledger.release(10.0)
    assert ledger.spent == 0.0


@pytest.mark.parametrize("amount", [-1.0, float("nan"), float("inf"), "5", True])
def test_reserve_rejects_bad_amounts(amount):
    with pytest.raises(ValueError):
        BudgetLedger(100.0).reserve(amount)


def test_cents_do_not_drift():
    ledger = BudgetLedger(0.3)
    assert ledger.reserve(0.1)
    assert ledger.reserve(0.1)
    assert ledger.reserve(0.1)
    assert not ledger.reserve(0.01)


def test_ledger_resets_on_new_utc_day():
    clock = FakeClock(datetime(2024, 3, 10, 23, 59, tzinfo=timezone.utc))
    ledger = BudgetLedger(200.0, clock=clock)
    assert ledger.reserve(190.0)
    assert not ledger.reserve(25.0)

    clock.now += timedelta(minutes=2)

    assert ledger.remaining == 200.0
    assert ledger.reserve(25.0)


def test_hold_records_the_charged_day():
    clock = FakeClock(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc))
    ledger = BudgetLedger(30.0, clock=clock)

    reservation = ledger.hold(25.0)

    assert reservation.amount == 25.0
    assert reservation.day == date(2024, 3, 10)
    assert ledger.hold(25.0) is None


def test_release_after_midnight_does_not_refund_new_day():
    """Yesterday's failed call must not free up today's budget"""
    clock = FakeClock(datetime(2024, 3, 10, 23, 59, 59, tzinfo=timezone.utc))
    ledger = BudgetLedger(200.0, clock=clock)
    reservation = ledger.hold(25.0)

    clock.now += timedelta(seconds=2)
    assert ledger.reserve(200.0)
    ledger.cancel(reservation)

    assert ledger.spent == 200.0
    assert not ledger.reserve(25.0)


def test_cancel_same_day_returns_reservation():
    clock = FakeClock(datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc))
    ledger = BudgetLedger(200.0, clock=clock)
    reservation = ledger.hold(25.0)

    clock.now += timedelta(hours=3)
    ledger.cancel(reservation)

    assert ledger.spent == 0.0


def test_ledger_day_boundary_is_utc():
    # 20:00 in New York on March 10 is already March 11 in UTC
    eastern = timezone(timedelta(hours=-4))
    clock = FakeClock(datetime(2024, 3, 10, 19, 0, tzinfo=eastern))
    ledger = BudgetLedger(100.0, clock=clock)
    assert ledger.reserve(100.0)

    clock.now = datetime(2024, 3, 10, 20, 30, tzinfo=eastern)

    assert ledger.remaining == 100.0


@pytest.mark.asyncio
async def test_concurrent_reservations_never_overspend():
    """N analyses each reserving $25 against $30 left: exactly one wins"""
    ledger = BudgetLedger(200.0)
    assert ledger.reserve(170.0)

    async def attempt() -> bool:
        await asyncio.sleep(0)
        return ledger.reserve(25.0)

    results = await asyncio.gather(*(attempt() for _ in range(20)))

    assert results.count(True) == 1
    assert results.count(False) == 19
    assert ledger.remaining == 5.0


def test_threaded_reservations_never_overspend():
    ledger = BudgetLedger(200.0)
    assert ledger.reserve(170.0)
    barrier = threading.Barrier(16)

    def attempt() -> bool:
        barrier.wait()
        return ledger.reserve(25.0)

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(lambda _: attempt(), range(16)))

    assert results.count(True) == 1
    assert ledger.spent == 195.0


def test_analysis_budget_tracks_one_run():
    budget = AnalysisBudget(50.0)

    assert budget.can_reserve(45.0)
    budget.reserve(5.0)
    budget.reserve(15.0)
    budget.reserve(25.0)

    assert budget.spent == 45.0
    assert budget.remaining == 5.0
    assert not budget.can_reserve(25.0)


def test_analysis_budget_refuses_overspend():
    budget = AnalysisBudget(20.0)
    budget.reserve(15.0)

    with pytest.raises(BudgetExceeded):
        budget.reserve(25.0)

    assert budget.spent == 15.0


def test_analysis_budget_release():
    budget = AnalysisBudget(50.0)
    budget.reserve(25.0)
    budget.release(25.0)
    assert budget.spent == 0.0
    assert budget.can_reserve(50.0)
