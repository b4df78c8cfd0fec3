"""
Alerts engine - ordered catalog of independent alert rules.

Each rule is a predicate plus an alert constructor. PER-REPORT rules run once
for every statement report, APPLICATION rules run once per request. Every
alert's data carries the thresholds and the computed values behind it.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from rapidfuzz import fuzz, utils

from waterfall_gateway.domain.exceptions import TypeMismatch
from waterfall_gateway.domain.models import (
    Alert,
    ApplicationData,
    CreditCheckResult,
    RegistryData,
    RiskAnalysisResult,
    RiskLevel,
    Severity,
)
from waterfall_gateway.utils.date_utils import months_between

NSF_COUNT_THRESHOLD = 3
LOW_BALANCE_THRESHOLD = 500.0
NEGATIVE_BALANCE_THRESHOLD = 0.0
NSF_SPREAD_THRESHOLD = 3
REVENUE_DISCREPANCY_THRESHOLD_PCT = 20.0
TIME_IN_BUSINESS_THRESHOLD_MONTHS = 3
NEW_BUSINESS_THRESHOLD_MONTHS = 6
DAYS_PER_YEAR = 365
NAME_SIMILARITY_THRESHOLD = 0.8

# Credit score bands, checked top-down: (code, severity, exclusive ceiling)
CREDIT_RISK_BANDS = [
    ("VERY_HIGH_CREDIT_RISK", Severity.CRITICAL, 580),
    ("HIGH_CREDIT_RISK", Severity.HIGH, 650),
    ("MODERATE_CREDIT_RISK", Severity.MEDIUM, 700),
]


class RuleScope(str, Enum):
    REPORT = "report"
    APPLICATION = "application"


@dataclass(frozen=True)
class RuleInput:
    """Everything a rule may look at; report fields are set for REPORT-scope rules"""

    application: ApplicationData
    reports: Sequence[RiskAnalysisResult]
    registry: Optional[RegistryData]
    as_of: date
    report: Optional[RiskAnalysisResult] = None
    report_index: Optional[int] = None
    credit: Optional[CreditCheckResult] = None


@dataclass(frozen=True)
class AlertRule:
    code: str
    scope: RuleScope
    predicate: Callable[[RuleInput], bool]
    build: Callable[[RuleInput], Alert]


# --- Per-report rules -------------------------------------------------------


def _high_nsf_count(inp: RuleInput) -> bool:
    return inp.report.nsf_count >= NSF_COUNT_THRESHOLD


def _build_high_nsf_count(inp: RuleInput) -> Alert:
    nsf_count = inp.report.nsf_count
    return Alert(
        code="HIGH_NSF_COUNT",
        severity=Severity.HIGH,
        title="High NSF count",
        message=(
            f"Account has {nsf_count} Non-Sufficient Funds (NSF) incidents, "
            "indicating potential cash flow issues."
        ),
        data={"nsf_count": nsf_count, "threshold": NSF_COUNT_THRESHOLD},
        report_index=inp.report_index,
    )


def _low_average_balance(inp: RuleInput) -> bool:
    return inp.report.average_daily_balance < LOW_BALANCE_THRESHOLD


def _build_low_average_balance(inp: RuleInput) -> Alert:
    average = inp.report.average_daily_balance
    return Alert(
        code="LOW_AVERAGE_BALANCE",
        severity=Severity.MEDIUM,
        title="Low average balance",
        message=(
            f"Average daily balance of ${average:,.2f} is below the recommended "
            f"minimum of ${LOW_BALANCE_THRESHOLD:,.2f}."
        ),
        data={
            "average_daily_balance": average,
            "threshold": LOW_BALANCE_THRESHOLD,
            "shortfall": round(LOW_BALANCE_THRESHOLD - average, 2),
            "period_days": inp.report.period_days,
        },
        report_index=inp.report_index,
    )


def _negative_balance_days(inp: RuleInput) -> bool:
    report = inp.report
    return bool(report.negative_balance_days) or report.minimum_balance < NEGATIVE_BALANCE_THRESHOLD


def _build_negative_balance_days(inp: RuleInput) -> Alert:
    report = inp.report
    days = report.negative_balance_days
    return Alert(
        code="NEGATIVE_BALANCE_DAYS",
        severity=Severity.CRITICAL,
        title="Negative balance days",
        message=(
            f"Account had {len(days)} day(s) ending with a negative balance; "
            f"lowest balance was ${report.minimum_balance:,.2f}."
        ),
        data={
            "negative_day_count": len(days),
            "negative_days": [d.isoformat() for d in days[:10]],
            "minimum_balance": report.minimum_balance,
            "threshold": NEGATIVE_BALANCE_THRESHOLD,
            "period_days": report.period_days,
        },
        report_index=inp.report_index,
    )


# --- Cross-report rules -----------------------------------------------------


def _inconsistent_nsf_patterns(inp: RuleInput) -> bool:
    if len(inp.reports) < 2:
        return False
    counts = [r.nsf_count for r in inp.reports]
    return max(counts) - min(counts) > NSF_SPREAD_THRESHOLD


def _build_inconsistent_nsf_patterns(inp: RuleInput) -> Alert:
    counts = [r.nsf_count for r in inp.reports]
    return Alert(
        code="INCONSISTENT_NSF_PATTERNS",
        severity=Severity.MEDIUM,
        title="Inconsistent NSF patterns",
        message=f"NSF counts vary widely across accounts (range {min(counts)}-{max(counts)}).",
        data={
            "nsf_counts": counts,
            "spread": max(counts) - min(counts),
            "threshold": NSF_SPREAD_THRESHOLD,
            "account_count": len(counts),
        },
    )


def _multi_account_high_risk(inp: RuleInput) -> bool:
    if len(inp.reports) < 2:
        return False
    high = sum(1 for r in inp.reports if r.risk_level is RiskLevel.HIGH)
    return high > len(inp.reports) / 2


def _build_multi_account_high_risk(inp: RuleInput) -> Alert:
    high = sum(1 for r in inp.reports if r.risk_level is RiskLevel.HIGH)
    return Alert(
        code="MULTI_ACCOUNT_HIGH_RISK",
        severity=Severity.HIGH,
        title="Most accounts are high risk",
        message=f"{high} of {len(inp.reports)} bank accounts show HIGH risk.",
        data={
            "high_risk_count": high,
            "account_count": len(inp.reports),
            "threshold": 0.5,
            "risk_scores": [r.risk_score for r in inp.reports],
        },
    )


# --- Credibility rules ------------------------------------------------------


def _annualized_deposits(inp: RuleInput) -> Optional[float]:
    stated = inp.application.stated_annual_revenue
    if not stated or stated <= 0:
        return None

    total_days = sum(r.period_days for r in inp.reports)
    if total_days <= 0:
        return None
    return sum(r.total_deposits for r in inp.reports) / total_days * DAYS_PER_YEAR


def _discrepancy_pct(inp: RuleInput) -> Optional[float]:
    """Unrounded gap between stated revenue and annualized deposits, in percent"""
    annualized = _annualized_deposits(inp)
    if annualized is None:
        return None
    stated = inp.application.stated_annual_revenue
    return abs(stated - annualized) / stated * 100


def revenue_figures(inp: RuleInput) -> Optional[Dict[str, Any]]:
    """Annualized deposits vs stated revenue; None when either side is unavailable"""
    annualized = _annualized_deposits(inp)
    if annualized is None:
        return None

    stated = inp.application.stated_annual_revenue
    return {
        "stated_annual_revenue": stated,
        "annualized_deposits": round(annualized, 2),
        "total_deposits": round(sum(r.total_deposits for r in inp.reports), 2),
        "total_period_days": sum(r.period_days for r in inp.reports),
        "discrepancy": round(abs(stated - annualized), 2),
        "discrepancy_percentage": round(_discrepancy_pct(inp), 2),
        "is_overstated": stated > annualized,
        "threshold": REVENUE_DISCREPANCY_THRESHOLD_PCT,
    }


def _revenue_discrepancy(inp: RuleInput) -> bool:
    pct = _discrepancy_pct(inp)
    return pct is not None and pct > REVENUE_DISCREPANCY_THRESHOLD_PCT


def _build_revenue_discrepancy(inp: RuleInput) -> Alert:
    figures = revenue_figures(inp)
    pct = _discrepancy_pct(inp)
    if pct <= 50:
        severity = Severity.MEDIUM
    elif pct <= 100:
        severity = Severity.HIGH
    else:
        severity = Severity.CRITICAL

    direction = "exceeds" if figures["is_overstated"] else "is below"
    return Alert(
        code="REVENUE_DISCREPANCY",
        severity=severity,
        title="Stated revenue does not match deposits",
        message=(
            f"Stated annual revenue of ${figures['stated_annual_revenue']:,.0f} {direction} "
            f"annualized deposits of ${figures['annualized_deposits']:,.0f} by {pct:.1f}%."
        ),
        data=figures,
    )


def _months_apart(inp: RuleInput) -> Optional[int]:
    stated = inp.application.business_start_date
    registered = inp.registry.registration_date if inp.registry else None
    if stated is None or registered is None:
        return None
    return months_between(stated, registered)


def _time_in_business_discrepancy(inp: RuleInput) -> bool:
    months = _months_apart(inp)
    return months is not None and abs(months) > TIME_IN_BUSINESS_THRESHOLD_MONTHS


def _build_time_in_business_discrepancy(inp: RuleInput) -> Alert:
    months = _months_apart(inp)
    gap = abs(months)
    if gap <= 12:
        severity = Severity.MEDIUM
    elif gap <= 36:
        severity = Severity.HIGH
    else:
        severity = Severity.CRITICAL

    stated = inp.application.business_start_date
    registered = inp.registry.registration_date
    direction = "earlier" if months > 0 else "later"
    return Alert(
        code="TIME_IN_BUSINESS_DISCREPANCY",
        severity=severity,
        title="Business start date does not match registry",
        message=(
            f"Stated business start date ({stated.isoformat()}) is {gap} months {direction} "
            f"than the registry date ({registered.isoformat()})."
        ),
        data={
            "stated_start_date": stated.isoformat(),
            "registration_date": registered.isoformat(),
            "months_difference": months,
            "discrepancy_months": gap,
            "threshold": TIME_IN_BUSINESS_THRESHOLD_MONTHS,
            "comparison": "month_and_year",
        },
    )


def _business_not_verified(inp: RuleInput) -> bool:
    return inp.registry is not None and inp.registry.found is False


def _build_business_not_verified(inp: RuleInput) -> Alert:
    return Alert(
        code="BUSINESS_NOT_VERIFIED",
        severity=Severity.HIGH,
        title="Business not found in registry",
        message="Business could not be found in Secretary of State records.",
        data={
            "found": False,
            "searched_name": inp.application.business_name,
            "state": inp.registry.state or inp.application.state,
        },
    )


def _business_inactive(inp: RuleInput) -> bool:
    registry = inp.registry
    return registry is not None and bool(registry.found) and registry.status is not None and not registry.is_active


def _build_business_inactive(inp: RuleInput) -> Alert:
    return Alert(
        code="BUSINESS_INACTIVE_STATUS",
        severity=Severity.CRITICAL,
        title="Business registration not active",
        message=f"Business registry status is '{inp.registry.status}'.",
        data={
            "status": inp.registry.status,
            "registered_name": inp.registry.business_name,
            "registration_date": inp.registry.registration_date.isoformat() if inp.registry.registration_date else None,
        },
    )


def _newly_registered(inp: RuleInput) -> bool:
    registry = inp.registry
    if registry is None or not registry.found or registry.registration_date is None:
        return False
    return months_between(registry.registration_date, inp.as_of) < NEW_BUSINESS_THRESHOLD_MONTHS


def _build_newly_registered(inp: RuleInput) -> Alert:
    months_old = months_between(inp.registry.registration_date, inp.as_of)
    return Alert(
        code="NEWLY_REGISTERED_BUSINESS",
        severity=Severity.MEDIUM,
        title="Recently registered business",
        message=f"Business was registered only {months_old} months ago.",
        data={
            "registration_date": inp.registry.registration_date.isoformat(),
            "as_of": inp.as_of.isoformat(),
            "months_old": months_old,
            "threshold": NEW_BUSINESS_THRESHOLD_MONTHS,
        },
    )


def name_similarity(applied: str, registered: str) -> float:
    """0.0-1.0 edit-distance similarity, ignoring case and punctuation"""
    return fuzz.ratio(applied, registered, processor=utils.default_process) / 100


def _business_name_mismatch(inp: RuleInput) -> bool:
    registry = inp.registry
    applied = inp.application.business_name
    if registry is None or not registry.found or not registry.business_name or not applied:
        return False
    return name_similarity(applied, registry.business_name) < NAME_SIMILARITY_THRESHOLD


def _build_business_name_mismatch(inp: RuleInput) -> Alert:
    applied = inp.application.business_name
    registered = inp.registry.business_name
    return Alert(
        code="BUSINESS_NAME_MISMATCH",
        severity=Severity.MEDIUM,
        title="Business name differs from registry",
        message=f"Applied as '{applied}' but registered as '{registered}'.",
        data={
            "applied_name": applied,
            "registered_name": registered,
            "similarity": round(name_similarity(applied, registered), 4),
            "threshold": NAME_SIMILARITY_THRESHOLD,
        },
    )


# --- Credit rules -----------------------------------------------------------


def _credit_band(inp: RuleInput) -> Optional[Tuple[str, Severity, int]]:
    """(code, severity, band ceiling) for the purchased credit score, None when no risk band applies"""
    if inp.credit is None or inp.credit.score is None:
        return None
    for code, severity, ceiling in CREDIT_RISK_BANDS:
        if inp.credit.score < ceiling:
            return code, severity, ceiling
    return None


def _credit_risk(inp: RuleInput) -> bool:
    return _credit_band(inp) is not None


def _build_credit_risk(inp: RuleInput) -> Alert:
    code, severity, ceiling = _credit_band(inp)
    score = inp.credit.score
    label = code.replace("_CREDIT_RISK", "").replace("_", " ").lower()
    return Alert(
        code=code,
        severity=severity,
        title=f"{label.capitalize()} credit risk",
        message=f"Credit score of {score} indicates {label} credit risk.",
        data={"credit_score": score, "threshold": ceiling},
    )


HIGH_NSF_COUNT = AlertRule("HIGH_NSF_COUNT", RuleScope.REPORT, _high_nsf_count, _build_high_nsf_count)
LOW_AVERAGE_BALANCE = AlertRule(
    "LOW_AVERAGE_BALANCE", RuleScope.REPORT, _low_average_balance, _build_low_average_balance
)
NEGATIVE_BALANCE_DAYS = AlertRule(
    "NEGATIVE_BALANCE_DAYS", RuleScope.REPORT, _negative_balance_days, _build_negative_balance_days
)
INCONSISTENT_NSF_PATTERNS = AlertRule(
    "INCONSISTENT_NSF_PATTERNS",
    RuleScope.APPLICATION,
    _inconsistent_nsf_patterns,
    _build_inconsistent_nsf_patterns,
)
MULTI_ACCOUNT_HIGH_RISK = AlertRule(
    "MULTI_ACCOUNT_HIGH_RISK", RuleScope.APPLICATION, _multi_account_high_risk, _build_multi_account_high_risk
)
REVENUE_DISCREPANCY = AlertRule(
    "REVENUE_DISCREPANCY", RuleScope.APPLICATION, _revenue_discrepancy, _build_revenue_discrepancy
)
TIME_IN_BUSINESS_DISCREPANCY = AlertRule(
    "TIME_IN_BUSINESS_DISCREPANCY",
    RuleScope.APPLICATION,
    _time_in_business_discrepancy,
    _build_time_in_business_discrepancy,
)
BUSINESS_NOT_VERIFIED = AlertRule(
    "BUSINESS_NOT_VERIFIED", RuleScope.APPLICATION, _business_not_verified, _build_business_not_verified
)
BUSINESS_INACTIVE_STATUS = AlertRule(
    "BUSINESS_INACTIVE_STATUS", RuleScope.APPLICATION, _business_inactive, _build_business_inactive
)
NEWLY_REGISTERED_BUSINESS = AlertRule(
    "NEWLY_REGISTERED_BUSINESS", RuleScope.APPLICATION, _newly_registered, _build_newly_registered
)
BUSINESS_NAME_MISMATCH = AlertRule(
    "BUSINESS_NAME_MISMATCH", RuleScope.APPLICATION, _business_name_mismatch, _build_business_name_mismatch
)
CREDIT_RISK = AlertRule("CREDIT_RISK", RuleScope.APPLICATION, _credit_risk, _build_credit_risk)

# Evaluation order
ALERT_RULES: List[AlertRule] = [
    HIGH_NSF_COUNT,
    LOW_AVERAGE_BALANCE,
    NEGATIVE_BALANCE_DAYS,
    INCONSISTENT_NSF_PATTERNS,
    MULTI_ACCOUNT_HIGH_RISK,
    REVENUE_DISCREPANCY,
    TIME_IN_BUSINESS_DISCREPANCY,
    BUSINESS_NOT_VERIFIED,
    BUSINESS_INACTIVE_STATUS,
    NEWLY_REGISTERED_BUSINESS,
    BUSINESS_NAME_MISMATCH,
    CREDIT_RISK,
]


def evaluate_rule(rule: AlertRule, inp: RuleInput) -> List[Alert]:
    """Run one rule; REPORT rules fan out over every report"""
    if rule.scope is RuleScope.APPLICATION:
        return [rule.build(inp)] if rule.predicate(inp) else []

    alerts = []
    for index, report in enumerate(inp.reports):
        report_input = replace(inp, report=report, report_index=index)
        if rule.predicate(report_input):
            alerts.append(rule.build(report_input))
    return alerts


def generate_alerts(
    application_data: Optional[ApplicationData],
    statement_reports: Sequence[RiskAnalysisResult],
    external_registry_data: Optional[RegistryData] = None,
    as_of: Optional[date] = None,
    credit_data: Optional[CreditCheckResult] = None,
    rules: Sequence[AlertRule] = ALERT_RULES,
) -> List[Alert]:
    """
    Evaluate the rule catalog in order.

    credit_data is the purchased credit check, when there is one.

    Returns alerts stably sorted by severity (CRITICAL first); alerts of equal
    severity keep rule order.
    """
    if not isinstance(statement_reports, (list, tuple)):
        raise TypeMismatch(f"statement_reports must be a list, got {type(statement_reports).__name__}")

    inp = RuleInput(
        application=application_data or ApplicationData(),
        reports=statement_reports,
        registry=external_registry_data,
        as_of=as_of or date.today(),
        credit=credit_data,
    )

    alerts: List[Alert] = []
    for rule in rules:
        alerts.extend(evaluate_rule(rule, inp))

    alerts.sort(key=lambda a: a.severity.rank)

    logging.info(
        "Alert generation completed",
        extra={
            "step": "alerts",
            "report_count": len(statement_reports),
            "alert_codes": [a.code for a in alerts],
        },
    )
    return alerts
