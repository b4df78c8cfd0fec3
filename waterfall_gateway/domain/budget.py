"""Spend tracking for paid verification calls - daily ledger and per-analysis budget"""

import logging
import math
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Optional

from waterfall_gateway.domain.exceptions import BudgetExceeded


@dataclass(frozen=True)
class Reservation:
    """Spend held against one UTC day's budget"""

    amount: float
    day: date


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _check_amount(amount: float) -> None:
    if isinstance(amount, bool) or not isinstance(amount, (int, float)) or not math.isfinite(amount) or amount < 0:
        raise ValueError(f"amount must be a non-negative finite number, got {amount!r}")


class BudgetLedger:
    """
    Daily spend counter shared by every analysis in the process.

    reserve() is an atomic check-and-reserve: two callers can never both
    claim the last dollars. The lock is a plain threading.Lock and is never
    held across an await, so the ledger is safe from the event loop and from
    worker threads alike. Spend resets when the UTC date of clock() changes.
    """

    def __init__(self, daily_budget: float, clock: Optional[Callable[[], datetime]] = None):
        _check_amount(daily_budget)
        self.daily_budget = float(daily_budget)
        self._clock = clock or _utc_now
        self._lock = threading.Lock()
        self._spent = 0.0
        self._day = self._current_day()

    def _current_day(self) -> date:
        now = self._clock()
        if now.tzinfo is not None:
            now = now.astimezone(timezone.utc)
        return now.date()

    def _roll_over(self) -> None:
        # Caller holds the lock
        today = self._current_day()
        if today != self._day:
            logging.info(
                "Daily budget reset",
                extra={"step": "budget_reset", "previous_day": self._day.isoformat(), "spent": self._spent},
            )
            self._day = today
            self._spent = 0.0

    def hold(self, amount: float) -> Optional[Reservation]:
        """Reserve amount against today's budget; None when it does not fit"""
        _check_amount(amount)
        with self._lock:
            self._roll_over()
            if round(self._spent + amount, 2) > self.daily_budget:
                return None
            self._spent = round(self._spent + amount, 2)
            if self._spent > self.daily_budget:
                raise BudgetExceeded(f"Daily spend {self._spent} exceeds budget {self.daily_budget}")
            return Reservation(amount=float(amount), day=self._day)

    def reserve(self, amount: float) -> bool:
        """Reserve amount against today's budget; False when it does not fit"""
        return self.hold(amount) is not None

    def release(self, amount: float, day: Optional[date] = None) -> None:
        """
        Return an unused reservation (failed or timed-out call).

        When day is given and is no longer the current day, the spend was
        charged to a day that has already rolled over and nothing is returned.
        """
        _check_amount(amount)
        with self._lock:
            self._roll_over()
            if day is not None and day != self._day:
                logging.info(
                    "Stale reservation not released",
                    extra={"step": "budget_release", "reserved_day": day.isoformat(), "amount": amount},
                )
                return
            self._spent = max(0.0, round(self._spent - amount, 2))

    def cancel(self, reservation: Reservation) -> None:
        self.release(reservation.amount, reservation.day)

    @property
    def spent(self) -> float:
        with self._lock:
            self._roll_over()
            return self._spent

    @property
    def remaining(self) -> float:
        with self._lock:
            self._roll_over()
            return round(self.daily_budget - self._spent, 2)


class AnalysisBudget:
    """Spend cap for a single analysis run; owned by one orchestration, not shared"""

    def __init__(self, limit: float):
        _check_amount(limit)
        self.limit = float(limit)
        self.spent = 0.0

    @property
    def remaining(self) -> float:
        return round(self.limit - self.spent, 2)

    def can_reserve(self, amount: float) -> bool:
        return round(self.spent + amount, 2) <= self.limit

    def reserve(self, amount: float) -> None:
        """
        Raises:
            BudgetExceeded: If amount would take the run past its cap
        """
        _check_amount(amount)
        if not self.can_reserve(amount):
            raise BudgetExceeded(f"Analysis spend {self.spent + amount} would exceed budget {self.limit}")
        self.spent = round(self.spent + amount, 2)

    def release(self, amount: float) -> None:
        _check_amount(amount)
        self.spent = max(0.0, round(self.spent - amount, 2))
