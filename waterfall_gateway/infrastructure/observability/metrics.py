"""Prometheus metrics for monitoring recommendations, alerts and verification spend"""

from prometheus_client import Counter, Gauge, Histogram

from waterfall_gateway.domain.models import SkipReason, WaterfallDecision

# Analysis metrics
analysis_counter = Counter(
    "waterfall_analysis_total",
    "Total statement analyses completed",
    ["recommendation"],  # APPROVE | REVIEW | DECLINE
)

alert_counter = Counter(
    "waterfall_alerts_total",
    "Alerts raised by the rule engine",
    ["severity"],
)

# External verification metrics
external_call_counter = Counter(
    "waterfall_external_calls_total",
    "Paid verification calls issued",
    ["service", "outcome"],  # success | failure
)

external_spend_counter = Counter(
    "waterfall_external_spend_usd_total",
    "Money spent on successful verification calls",
    ["service"],
)

external_call_latency_histogram = Histogram(
    "waterfall_external_call_latency_seconds",
    "Verification service response time",
    ["service"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

budget_rejection_counter = Counter(
    "waterfall_budget_rejections_total",
    "External checks skipped for lack of budget",
    ["budget"],  # daily | per_analysis
)

daily_budget_remaining_gauge = Gauge(
    "waterfall_daily_budget_remaining_usd",
    "Daily verification budget left",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_analysis(decision: WaterfallDecision) -> None:
    """Record one analysis outcome, its alerts and its spend"""
    analysis_counter.labels(recommendation=decision.executive_summary.recommendation).inc()

    for alert in decision.alerts:
        alert_counter.labels(severity=alert.severity.value).inc()

    results = decision.waterfall_results
    checks = results.external_checks
    failed = {s.service for s in checks.skipped if s.reason is SkipReason.CALL_FAILED}
    for service in checks.called:
        outcome = "failure" if service in failed else "success"
        external_call_counter.labels(service=service.value, outcome=outcome).inc()

    for service, cost in checks.charges.items():
        external_spend_counter.labels(service=service.value).inc(cost)

    for skipped in checks.skipped:
        if skipped.reason is SkipReason.DAILY_BUDGET_EXHAUSTED:
            budget_rejection_counter.labels(budget="daily").inc()
        elif skipped.reason is SkipReason.PER_ANALYSIS_BUDGET_EXHAUSTED:
            budget_rejection_counter.labels(budget="per_analysis").inc()

    daily_budget_remaining_gauge.set(results.cost_analysis.daily_budget_remaining)
