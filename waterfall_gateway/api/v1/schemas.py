"""Pydantic schemas for API request/response validation"""

from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from waterfall_gateway.domain.models import (
    ApplicationData,
    ExternalService,
    RegistryData,
    RiskLevel,
    Severity,
    SkipReason,
    WaterfallDecision,
)


class ApplicationSchema(BaseModel):
    """Facts the applicant stated on the application"""

    business_name: Optional[str] = None
    state: Optional[str] = Field(None, max_length=2, description="Two-letter state code")
    stated_annual_revenue: Optional[float] = Field(None, gt=0)
    business_start_date: Optional[date] = None
    tax_id: Optional[str] = None

    def to_domain(self) -> ApplicationData:
        return ApplicationData(**self.model_dump())


class RegistryDataSchema(BaseModel):
    """Registry facts the caller already holds"""

    found: Optional[bool] = None
    status: Optional[str] = None
    registration_date: Optional[date] = None
    business_name: Optional[str] = None
    state: Optional[str] = None

    def to_domain(self) -> RegistryData:
        return RegistryData(**self.model_dump())


class AnalysisRequest(BaseModel):
    """Request body for POST /v1/analysis"""

    statements: List[str] = Field(..., min_length=1, description="Extracted text of each bank statement")
    application: Optional[ApplicationSchema] = None
    registry_data: Optional[RegistryDataSchema] = None
    as_of: Optional[date] = Field(None, description="Reference date for age-based rules, defaults to today")


class _FromDomain(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class ExecutiveSummarySchema(_FromDomain):
    internal_score: int
    final_score: int
    score_adjustment: int
    grade: str
    confidence_level: str
    recommendation: str
    risk_level: RiskLevel
    alert_counts: Dict[str, int]


class AlertSchema(_FromDomain):
    code: str
    severity: Severity
    title: str
    message: str
    data: Dict[str, Any]
    report_index: Optional[int] = None


class RiskAnalysisSchema(_FromDomain):
    total_deposits: float
    total_withdrawals: float
    nsf_count: int
    average_daily_balance: float
    period_days: int
    minimum_balance: float
    maximum_balance: float
    ending_balance: float
    negative_balance_days: List[date]
    transaction_count: int
    risk_score: int
    risk_level: RiskLevel
    factors: Dict[str, int]


class CriterionSchema(_FromDomain):
    name: str
    passed: bool
    weight: int
    threshold: Any
    actual: Any


class CriteriaSchema(_FromDomain):
    checks: List[CriterionSchema]
    pass_ratio: float
    threshold: float
    budget_available: bool
    should_proceed: bool


class SkippedCheckSchema(_FromDomain):
    service: ExternalService
    reason: SkipReason
    detail: str


class CostAnalysisSchema(_FromDomain):
    total_cost: float
    full_price: float
    cost_savings: float
    per_analysis_budget: float
    budget_utilization: float
    daily_budget_remaining: float


class AnalysisResponse(BaseModel):
    """Response for POST /v1/analysis"""

    executive_summary: ExecutiveSummarySchema
    alerts: List[AlertSchema]
    risk_analysis: List[RiskAnalysisSchema]
    criteria: CriteriaSchema
    external_apis_called: List[ExternalService]
    skipped_checks: List[SkippedCheckSchema]
    cost_analysis: CostAnalysisSchema

    @classmethod
    def from_decision(cls, decision: WaterfallDecision) -> "AnalysisResponse":
        results = decision.waterfall_results
        called = decision.external_apis_called
        return cls(
            executive_summary=ExecutiveSummarySchema.model_validate(decision.executive_summary),
            alerts=[AlertSchema.model_validate(a) for a in decision.alerts],
            risk_analysis=[RiskAnalysisSchema.model_validate(r) for r in decision.risk_analysis],
            criteria=CriteriaSchema.model_validate(results.criteria),
            # Gate order
            external_apis_called=[s for s in ExternalService if s in called],
            skipped_checks=[SkippedCheckSchema.model_validate(s) for s in results.external_checks.skipped],
            cost_analysis=CostAnalysisSchema.model_validate(results.cost_analysis),
        )
