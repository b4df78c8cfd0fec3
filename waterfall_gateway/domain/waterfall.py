"""
Waterfall orchestrator - pays for external verification only when free signals justify it.

Four phases, run once each and in order:
1. Internal analysis: parse, analyze and alert on the statements (free)
2. Criteria evaluation: weighted checklist deciding whether paid checks are worth it
3. External checks: registry, credit and verification calls, cheapest first, each
   behind a score gate and both budgets
4. Consolidation: bounded score adjustment, grade, confidence, recommendation, cost report
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from waterfall_gateway.config import Settings, settings
from waterfall_gateway.domain.alerts import generate_alerts
from waterfall_gateway.domain.budget import AnalysisBudget, BudgetLedger, Reservation
from waterfall_gateway.domain.exceptions import BudgetExceeded, ExternalCallFailure, ParseFailure, TypeMismatch
from waterfall_gateway.domain.models import (
    Alert,
    ApplicationData,
    CostReport,
    CriteriaEvaluation,
    CriterionResult,
    ExecutiveSummary,
    ExternalChecks,
    ExternalService,
    InternalAnalysis,
    RegistryData,
    RiskAnalysisResult,
    RiskLevel,
    Severity,
    SkippedCheck,
    SkipReason,
    Statement,
    WaterfallDecision,
    WaterfallResults,
)
from waterfall_gateway.domain.parser import StatementTextParser
from waterfall_gateway.domain.scoring import (
    INTERNAL_SCORE_MAX,
    INTERNAL_SCORE_MIN,
    analyze_risk,
    calculate_internal_score,
)

# Lower bound inclusive, checked top-down
GRADE_BANDS = [(800, "A+"), (750, "A"), (700, "B"), (650, "C"), (600, "D")]


@dataclass(frozen=True)
class ExternalStep:
    """One paid service with its price and the internal score it requires"""

    service: ExternalService
    cost: float
    min_score: int


def statement_days(statement: Statement, report: RiskAnalysisResult) -> int:
    """Stated period length; a period assumed by the parser only counts days with activity"""
    if statement.account_info.period_defaulted:
        return report.period_days
    return statement.account_info.period_days


def grade_for(score: int) -> str:
    for lower_bound, grade in GRADE_BANDS:
        if score >= lower_bound:
            return grade
    return "F"


def confidence_for(success_count: int) -> str:
    """HIGH with two or more successful external sources, MEDIUM with one, LOW with none"""
    if success_count >= 2:
        return "HIGH"
    if success_count == 1:
        return "MEDIUM"
    return "LOW"


def recommend(final_score: int, alerts: Sequence[Alert]) -> str:
    """
    Final recommendation:
    - DECLINE below 600
    - REVIEW with any CRITICAL alert or below 700
    - APPROVE otherwise
    """
    if final_score < 600:
        return "DECLINE"
    if final_score < 700 or any(a.severity is Severity.CRITICAL for a in alerts):
        return "REVIEW"
    return "APPROVE"


def score_adjustment(checks: ExternalChecks, max_adjustment: int) -> Dict[str, int]:
    """
    Points contributed by each successful external result.

    - Registry: +15 found and active, -40 found but inactive, -30 not found
    - Credit: +25 at 720+, +10 at 650+, -30 under 580
    - Verification: +20 verified, -25 not verified

    The "total" entry is clamped to +/- max_adjustment.
    """
    parts: Dict[str, int] = {}

    if checks.registry is not None:
        registry = checks.registry
        if not registry.found:
            parts["registry"] = -30
        elif registry.to_registry_data().is_active:
            parts["registry"] = 15
        else:
            parts["registry"] = -40

    if checks.credit is not None and checks.credit.score is not None:
        credit_score = checks.credit.score
        if credit_score >= 720:
            parts["credit"] = 25
        elif credit_score >= 650:
            parts["credit"] = 10
        elif credit_score < 580:
            parts["credit"] = -30
        else:
            parts["credit"] = 0

    if checks.verification is not None:
        parts["verification"] = 20 if checks.verification.verified else -25

    parts["total"] = max(-max_adjustment, min(max_adjustment, sum(parts.values())))
    return parts


class WaterfallOrchestrator:
    """
    Drives one analysis through the four phases.

    The daily BudgetLedger is shared and injected; the per-analysis budget is
    created fresh for every run.
    """

    def __init__(
        self,
        ledger: BudgetLedger,
        registry_client,
        credit_client,
        verification_client,
        config: Settings = settings,
        parser: Optional[StatementTextParser] = None,
    ):
        self.ledger = ledger
        self.registry_client = registry_client
        self.credit_client = credit_client
        self.verification_client = verification_client
        self.config = config
        self.parser = parser or StatementTextParser()
        self.steps: List[ExternalStep] = [
            ExternalStep(ExternalService.BUSINESS_REGISTRY, config.registry_lookup_cost, config.registry_lookup_min_score),
            ExternalStep(ExternalService.CREDIT_CHECK, config.credit_check_cost, config.credit_check_min_score),
            ExternalStep(
                ExternalService.BUSINESS_VERIFICATION,
                config.business_verification_cost,
                config.business_verification_min_score,
            ),
        ]

    @property
    def full_price(self) -> float:
        return round(sum(step.cost for step in self.steps), 2)

    async def analyze(
        self,
        raw_texts: Sequence[str],
        application_data: Optional[ApplicationData] = None,
        external_registry_data: Optional[RegistryData] = None,
        as_of: Optional[date] = None,
    ) -> WaterfallDecision:
        """
        Run all four phases.

        Raises:
            ParseFailure: If any statement cannot be parsed
            TypeMismatch: If raw_texts is not a list of strings
            BudgetExceeded: If spend went past the per-analysis cap
        """
        application = application_data or ApplicationData()
        as_of = as_of or date.today()

        internal = self.run_internal_analysis(raw_texts, application, external_registry_data, as_of)
        budget = AnalysisBudget(self.config.per_analysis_budget)
        criteria = self.evaluate_criteria(internal, budget)
        checks = await self.execute_external_checks(internal, criteria, application, budget)
        decision = self.consolidate(internal, criteria, checks, application, external_registry_data, as_of)

        logging.info(
            "Waterfall analysis completed",
            extra={
                "step": "waterfall_complete",
                "internal_score": decision.executive_summary.internal_score,
                "final_score": decision.executive_summary.final_score,
                "recommendation": decision.executive_summary.recommendation,
                "external_apis_called": sorted(s.value for s in decision.external_apis_called),
                "total_cost": decision.total_cost,
            },
        )
        return decision

    # Phase 1

    def run_internal_analysis(
        self,
        raw_texts: Sequence[str],
        application: Optional[ApplicationData] = None,
        external_registry_data: Optional[RegistryData] = None,
        as_of: Optional[date] = None,
    ) -> InternalAnalysis:
        """
        Parse and analyze every statement; any failure here is fatal.

        The internal score is the rounded mean of the per-statement scores.
        """
        if not isinstance(raw_texts, (list, tuple)):
            raise TypeMismatch(f"raw_texts must be a list of strings, got {type(raw_texts).__name__}")
        if not raw_texts:
            raise ParseFailure("No statement text provided; document did not resemble a bank statement")

        statements = [self.parser.parse(text) for text in raw_texts]
        reports = [analyze_risk(s.transactions, s.opening_balance) for s in statements]

        scores = []
        factor_totals: Dict[str, int] = {}
        for statement, report in zip(statements, reports):
            # RiskAnalysisResult carries the balance fields the score reads
            score, factors = calculate_internal_score(statement.transactions, report, report.nsf_count)
            scores.append(score)
            for name, value in factors.items():
                factor_totals[name] = factor_totals.get(name, 0) + value

        count = len(statements)
        internal = InternalAnalysis(
            statements=statements,
            reports=reports,
            alerts=generate_alerts(application, reports, external_registry_data, as_of),
            internal_score=round(sum(scores) / count),
            score_factors={name: round(total / count) for name, total in factor_totals.items()},
            transaction_count=sum(r.transaction_count for r in reports),
            statement_days=sum(statement_days(s, r) for s, r in zip(statements, reports)),
            average_balance=round(sum(r.average_daily_balance for r in reports) / count, 2),
            nsf_count=sum(r.nsf_count for r in reports),
            worst_risk_level=max((r.risk_level for r in reports), key=lambda level: level.rank),
        )

        logging.info(
            "Internal analysis completed",
            extra={
                "step": "phase_1_internal",
                "statement_count": count,
                "internal_score": internal.internal_score,
                "worst_risk_level": internal.worst_risk_level.value,
                "alert_count": len(internal.alerts),
            },
        )
        return internal

    # Phase 2

    def evaluate_criteria(self, internal: InternalAnalysis, budget: AnalysisBudget) -> CriteriaEvaluation:
        """Weighted checklist; proceed when the passed weight share reaches the threshold and money is left"""
        cfg = self.config
        max_risk = RiskLevel(cfg.criteria_max_risk_level)
        checks = [
            CriterionResult(
                "min_internal_score",
                internal.internal_score >= cfg.criteria_min_internal_score,
                3,
                cfg.criteria_min_internal_score,
                internal.internal_score,
            ),
            CriterionResult(
                "min_transaction_count",
                internal.transaction_count >= cfg.criteria_min_transaction_count,
                1,
                cfg.criteria_min_transaction_count,
                internal.transaction_count,
            ),
            CriterionResult(
                "min_statement_days",
                internal.statement_days >= cfg.criteria_min_statement_days,
                1,
                cfg.criteria_min_statement_days,
                internal.statement_days,
            ),
            CriterionResult(
                "min_average_balance",
                internal.average_balance >= cfg.criteria_min_average_balance,
                2,
                cfg.criteria_min_average_balance,
                internal.average_balance,
            ),
            CriterionResult(
                "max_risk_level",
                internal.worst_risk_level.rank <= max_risk.rank,
                2,
                max_risk.value,
                internal.worst_risk_level.value,
            ),
            # Three NSFs already raise a HIGH_NSF_COUNT alert
            CriterionResult(
                "max_nsf_count",
                internal.nsf_count < cfg.criteria_max_nsf_count,
                2,
                cfg.criteria_max_nsf_count,
                internal.nsf_count,
            ),
        ]

        total_weight = sum(c.weight for c in checks)
        pass_ratio = round(sum(c.weight for c in checks if c.passed) / total_weight, 4)
        cheapest = min(step.cost for step in self.steps)
        budget_available = budget.can_reserve(cheapest) and self.ledger.remaining >= cheapest

        evaluation = CriteriaEvaluation(
            checks=checks,
            pass_ratio=pass_ratio,
            threshold=cfg.criteria_pass_threshold,
            budget_available=budget_available,
            should_proceed=pass_ratio >= cfg.criteria_pass_threshold and budget_available,
        )

        logging.info(
            "Criteria evaluated",
            extra={
                "step": "phase_2_criteria",
                "pass_ratio": pass_ratio,
                "failed": [c.name for c in checks if not c.passed],
                "budget_available": budget_available,
                "should_proceed": evaluation.should_proceed,
            },
        )
        return evaluation

    # Phase 3

    def _skip_reason(
        self,
        step: ExternalStep,
        internal: InternalAnalysis,
        application: ApplicationData,
        budget: AnalysisBudget,
    ) -> Optional[SkippedCheck]:
        if internal.internal_score < step.min_score:
            return SkippedCheck(
                step.service,
                SkipReason.GATE_NOT_MET,
                f"internal score {internal.internal_score} below gate {step.min_score}",
            )
        if not application.business_name:
            return SkippedCheck(step.service, SkipReason.MISSING_BUSINESS_IDENTITY, "business name not provided")
        if not budget.can_reserve(step.cost):
            return SkippedCheck(
                step.service,
                SkipReason.PER_ANALYSIS_BUDGET_EXHAUSTED,
                f"cost {step.cost} exceeds remaining analysis budget {budget.remaining}",
            )
        return None

    async def execute_external_checks(
        self,
        internal: InternalAnalysis,
        criteria: CriteriaEvaluation,
        application: ApplicationData,
        budget: AnalysisBudget,
    ) -> ExternalChecks:
        """
        Reserve, then call. Reservations happen in gate order; reserved calls
        run concurrently. A failed call gives both reservations back and never
        fails the run.
        """
        checks = ExternalChecks()

        if not criteria.should_proceed:
            if criteria.pass_ratio < criteria.threshold:
                reason = SkipReason.CRITERIA_NOT_MET
                detail = f"pass ratio {criteria.pass_ratio} below {criteria.threshold}"
            elif not budget.can_reserve(min(step.cost for step in self.steps)):
                reason = SkipReason.PER_ANALYSIS_BUDGET_EXHAUSTED
                detail = f"analysis budget {budget.limit} below cheapest check"
            else:
                reason = SkipReason.DAILY_BUDGET_EXHAUSTED
                detail = f"daily budget remaining {self.ledger.remaining} below cheapest check"
            checks.skipped = [SkippedCheck(step.service, reason, detail) for step in self.steps]
            self._log_skipped(checks.skipped)
            return checks

        planned: List[Tuple[ExternalStep, Reservation]] = []
        for step in self.steps:
            skipped = self._skip_reason(step, internal, application, budget)
            reservation = self.ledger.hold(step.cost) if skipped is None else None
            if skipped is None and reservation is None:
                skipped = SkippedCheck(
                    step.service,
                    SkipReason.DAILY_BUDGET_EXHAUSTED,
                    f"cost {step.cost} exceeds remaining daily budget {self.ledger.remaining}",
                )
            if skipped is not None:
                checks.skipped.append(skipped)
                continue
            budget.reserve(step.cost)
            planned.append((step, reservation))

        reservations = dict(planned)
        # Anything still here when the block exits was never charged
        unsettled = dict(planned)
        try:
            results = await asyncio.gather(
                *(self._call(step, application) for step, _ in planned),
                return_exceptions=True,
            )

            interrupted: Optional[BaseException] = None
            for (step, _), result in zip(planned, results):
                checks.called.add(step.service)
                if isinstance(result, BaseException) and not isinstance(result, Exception):
                    interrupted = interrupted or result
                    continue
                del unsettled[step]
                if isinstance(result, Exception):
                    self._release(step, reservations[step], budget)
                    checks.skipped.append(SkippedCheck(step.service, SkipReason.CALL_FAILED, str(result)))
                    logging.warning(
                        "External check failed",
                        extra={"step": "phase_3_external", "service": step.service.value, "error": str(result)},
                    )
                    continue

                checks.charges[step.service] = step.cost
                checks.total_cost = round(checks.total_cost + step.cost, 2)
                if step.service is ExternalService.BUSINESS_REGISTRY:
                    checks.registry = result
                elif step.service is ExternalService.CREDIT_CHECK:
                    checks.credit = result
                else:
                    checks.verification = result

            if interrupted is not None:
                raise interrupted
        finally:
            for step, reservation in unsettled.items():
                self._release(step, reservation, budget)
            if unsettled:
                logging.warning(
                    "External checks interrupted",
                    extra={"step": "phase_3_external", "released": [step.service.value for step in unsettled]},
                )

        if checks.total_cost > budget.limit:
            raise BudgetExceeded(f"Analysis spent {checks.total_cost}, budget is {budget.limit}")

        self._log_skipped(checks.skipped)
        return checks

    def _release(self, step: ExternalStep, reservation: Reservation, budget: AnalysisBudget) -> None:
        self.ledger.cancel(reservation)
        budget.release(step.cost)

    async def _call(self, step: ExternalStep, application: ApplicationData):
        timeout = self.config.external_call_timeout_seconds
        try:
            result = await asyncio.wait_for(self._invoke(step, application), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ExternalCallFailure(step.service.value, f"timed out after {timeout}s") from e

        if not getattr(result, "success", False):
            raise ExternalCallFailure(step.service.value, "service did not report success")
        return result

    def _invoke(self, step: ExternalStep, application: ApplicationData):
        if step.service is ExternalService.BUSINESS_REGISTRY:
            return self.registry_client.lookup_business(application.business_name, application.state)
        if step.service is ExternalService.CREDIT_CHECK:
            return self.credit_client.check_credit(application)
        return self.verification_client.verify_business(application.business_name, application.state)

    @staticmethod
    def _log_skipped(skipped: List[SkippedCheck]) -> None:
        for check in skipped:
            logging.info(
                "External check skipped",
                extra={
                    "step": "phase_3_external",
                    "service": check.service.value,
                    "reason": check.reason.value,
                    "detail": check.detail,
                },
            )

    # Phase 4

    def consolidate(
        self,
        internal: InternalAnalysis,
        criteria: CriteriaEvaluation,
        checks: ExternalChecks,
        application: ApplicationData,
        external_registry_data: Optional[RegistryData] = None,
        as_of: Optional[date] = None,
    ) -> WaterfallDecision:
        """Fold external results into the final score and build the cost report"""
        adjustment = score_adjustment(checks, self.config.max_score_adjustment)["total"]
        final_score = max(INTERNAL_SCORE_MIN, min(INTERNAL_SCORE_MAX, internal.internal_score + adjustment))

        # Purchased results replace caller-supplied registry data
        if checks.registry is not None or checks.credit is not None:
            registry_data = (
                checks.registry.to_registry_data(application.state)
                if checks.registry is not None
                else external_registry_data
            )
            alerts = generate_alerts(application, internal.reports, registry_data, as_of, credit_data=checks.credit)
        else:
            alerts = internal.alerts

        per_analysis_budget = self.config.per_analysis_budget
        cost_analysis = CostReport(
            total_cost=checks.total_cost,
            full_price=self.full_price,
            cost_savings=round(self.full_price - checks.total_cost, 2),
            per_analysis_budget=per_analysis_budget,
            budget_utilization=round(checks.total_cost / per_analysis_budget * 100, 2) if per_analysis_budget else 0.0,
            daily_budget_remaining=self.ledger.remaining,
        )

        summary = ExecutiveSummary(
            internal_score=internal.internal_score,
            final_score=final_score,
            score_adjustment=final_score - internal.internal_score,
            grade=grade_for(final_score),
            confidence_level=confidence_for(checks.success_count),
            recommendation=recommend(final_score, alerts),
            risk_level=internal.worst_risk_level,
            alert_counts={severity.value: sum(1 for a in alerts if a.severity is severity) for severity in Severity},
        )

        return WaterfallDecision(
            executive_summary=summary,
            waterfall_results=WaterfallResults(
                internal_analysis=internal,
                criteria=criteria,
                external_checks=checks,
                cost_analysis=cost_analysis,
            ),
            alerts=alerts,
            risk_analysis=internal.reports,
        )
