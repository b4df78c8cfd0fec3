"""Risk scoring engine - statement metrics, risk score and internal confidence score"""

import math
import re
from collections import defaultdict
from numbers import Real
from typing import Dict, List, Sequence, Tuple

from waterfall_gateway.domain.exceptions import TypeMismatch
from waterfall_gateway.domain.models import (
    BalanceSummary,
    RiskAnalysisResult,
    RiskLevel,
    Totals,
    Transaction,
)
from waterfall_gateway.utils.date_utils import month_key

NSF_PATTERN = re.compile(
    r"\bnsf\b|non[-\s]?sufficient|insufficient\s+funds|returned\s+item|returned\s+check",
    re.I,
)

# Risk score bands (0 = safest, 100 = riskiest), lower bound inclusive
RISK_LEVEL_BANDS: List[Tuple[int, RiskLevel]] = [
    (70, RiskLevel.HIGH),
    (40, RiskLevel.MEDIUM),
    (15, RiskLevel.LOW),
    (0, RiskLevel.VERY_LOW),
]

INTERNAL_SCORE_MIN = 300
INTERNAL_SCORE_MAX = 850


def _require_sequence(transactions) -> None:
    if not isinstance(transactions, (list, tuple)):
        raise TypeMismatch(f"transactions must be a list, got {type(transactions).__name__}")


def calculate_totals(transactions: Sequence[Transaction]) -> Totals:
    """Sum positive amounts as deposits and absolute negative amounts as withdrawals"""
    _require_sequence(transactions)

    total_deposits = 0.0
    total_withdrawals = 0.0
    deposit_count = 0
    withdrawal_count = 0
    for txn in transactions:
        if txn.amount > 0:
            total_deposits += txn.amount
            deposit_count += 1
        elif txn.amount < 0:
            total_withdrawals += abs(txn.amount)
            withdrawal_count += 1

    return Totals(
        total_deposits=round(total_deposits, 2),
        total_withdrawals=round(total_withdrawals, 2),
        deposit_count=deposit_count,
        withdrawal_count=withdrawal_count,
    )


def calculate_nsf_count(transactions: Sequence[Transaction]) -> int:
    """Count NSF / returned-item transactions by description, whatever the amount's sign"""
    _require_sequence(transactions)
    return sum(1 for txn in transactions if NSF_PATTERN.search(txn.description or ""))


def calculate_average_daily_balance(
    transactions: Sequence[Transaction],
    opening_balance: float,
) -> BalanceSummary:
    """
    Walk the statement and summarize the balance trajectory.

    The average is the plain mean of the balance after each transaction
    (every transaction weighs the same), not a calendar-day weighted average.
    period_days counts distinct transaction dates.

    Raises:
        TypeMismatch: If transactions is not a list or opening_balance is not a finite number
    """
    _require_sequence(transactions)
    if (
        isinstance(opening_balance, bool)
        or not isinstance(opening_balance, Real)
        or not math.isfinite(opening_balance)
    ):
        raise TypeMismatch(f"opening_balance must be a finite number, got {opening_balance!r}")

    if not transactions:
        return BalanceSummary(
            average_daily_balance=opening_balance,
            period_days=0,
            minimum_balance=opening_balance,
            maximum_balance=opening_balance,
            ending_balance=opening_balance,
            negative_balance_days=[],
        )

    # sorted() is stable: same-day transactions keep statement order
    sorted_txns = sorted(transactions, key=lambda t: t.date)

    running_balance = float(opening_balance)
    post_balances = []
    end_of_day: Dict = {}
    for txn in sorted_txns:
        running_balance += txn.amount
        post_balances.append(running_balance)
        end_of_day[txn.date] = running_balance

    return BalanceSummary(
        average_daily_balance=round(sum(post_balances) / len(post_balances), 2),
        period_days=len(end_of_day),
        minimum_balance=round(min([opening_balance, *post_balances]), 2),
        maximum_balance=round(max([opening_balance, *post_balances]), 2),
        ending_balance=round(running_balance, 2),
        negative_balance_days=[day for day, balance in end_of_day.items() if balance < 0],
    )


def determine_risk_level(risk_score: int) -> RiskLevel:
    """
    Map a 0-100 risk score to a level.

    Bands:
    - 70+:   HIGH (three NSFs alone score 75)
    - 40-69: MEDIUM
    - 15-39: LOW
    - 0-14:  VERY_LOW
    """
    for lower_bound, level in RISK_LEVEL_BANDS:
        if risk_score >= lower_bound:
            return level
    return RiskLevel.VERY_LOW


def calculate_risk_score(
    totals: Totals,
    nsf_count: int,
    balance: BalanceSummary,
) -> Tuple[int, Dict[str, int]]:
    """
    Calculate risk score from 0 (lowest risk) to 100 (highest risk).

    Penalties only add, so no other factor can pull a multi-NSF account
    out of the HIGH band:
    - 25 per NSF, capped at 75
    - average balance <= 0: 25, < $500: 15, < $1000: 5
    - any negative balance: 10
    - withdrawals exceed deposits: 10
    """
    factors = {
        "nsf": min(nsf_count * 25, 75),
        "average_balance": 0,
        "negative_balance": 10 if balance.minimum_balance < 0 else 0,
        "cash_flow": 10 if totals.total_withdrawals > totals.total_deposits else 0,
    }

    if balance.average_daily_balance <= 0:
        factors["average_balance"] = 25
    elif balance.average_daily_balance < 500:
        factors["average_balance"] = 15
    elif balance.average_daily_balance < 1000:
        factors["average_balance"] = 5

    score = max(0, min(100, sum(factors.values())))
    return score, factors


def analyze_risk(transactions: Sequence[Transaction], opening_balance: float) -> RiskAnalysisResult:
    """
    Main entry point: analyze one statement's transactions.

    Returns complete RiskAnalysisResult with totals, NSF count, balance trajectory and risk band.
    """
    totals = calculate_totals(transactions)
    nsf_count = calculate_nsf_count(transactions)
    balance = calculate_average_daily_balance(transactions, opening_balance)
    risk_score, factors = calculate_risk_score(totals, nsf_count, balance)

    return RiskAnalysisResult(
        total_deposits=totals.total_deposits,
        total_withdrawals=totals.total_withdrawals,
        nsf_count=nsf_count,
        average_daily_balance=balance.average_daily_balance,
        period_days=balance.period_days,
        minimum_balance=balance.minimum_balance,
        maximum_balance=balance.maximum_balance,
        ending_balance=balance.ending_balance,
        negative_balance_days=balance.negative_balance_days,
        transaction_count=len(transactions),
        risk_score=risk_score,
        risk_level=determine_risk_level(risk_score),
        factors=factors,
    )


def _income_stability(transactions: Sequence[Transaction]) -> float:
    """0-100 stability of monthly deposit totals (100 = identical every month)"""
    monthly: Dict[str, float] = defaultdict(float)
    for txn in transactions:
        if txn.amount > 0:
            monthly[month_key(txn.date)] += txn.amount

    if not monthly:
        return 0.0

    amounts = list(monthly.values())
    mean = sum(amounts) / len(amounts)
    variance = sum((a - mean) ** 2 for a in amounts) / len(amounts)
    coefficient_of_variation = math.sqrt(variance) / mean
    return max(0.0, 100 * (1 - coefficient_of_variation))


def calculate_internal_score(
    transactions: Sequence[Transaction],
    balance: BalanceSummary,
    nsf_count: int,
) -> Tuple[int, Dict[str, int]]:
    """
    Internal confidence score on the 300-850 scale, computed before any paid verification.

    Starts at 700 and applies:
    - NSF: -50 each, max -150
    - Balance: -100 if average <= 0, -50 if ever negative, else up to +100 at a $5,000 average
    - Income stability: stability - 50, or -100 with no deposits at all
    - Volume: nothing under 5 transactions, else +1 per 2 transactions up to +50
    """
    factors: Dict[str, int] = {"nsf": -min(nsf_count * 50, 150)}

    if balance.average_daily_balance <= 0:
        factors["balance"] = -100
    elif balance.minimum_balance < 0:
        factors["balance"] = -50
    else:
        factors["balance"] = math.floor(min(100.0, balance.average_daily_balance / 5000 * 100))

    if any(txn.amount > 0 for txn in transactions):
        factors["income_stability"] = math.floor(_income_stability(transactions) - 50)
    else:
        factors["income_stability"] = -100

    factors["volume"] = 0 if len(transactions) < 5 else min(50, len(transactions) // 2)

    score = 700 + sum(factors.values())
    return max(INTERNAL_SCORE_MIN, min(INTERNAL_SCORE_MAX, score)), factors
