"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class Section(str, Enum):
    """Statement section the parser is currently reading"""

    NONE = "none"
    DEPOSITS = "deposits"
    WITHDRAWALS = "withdrawals"
    ELECTRONIC = "electronic"
    FEES = "fees"

    @property
    def sign(self) -> int:
        return 1 if self is Section.DEPOSITS else -1


@dataclass
class Transaction:
    """One statement line, amount signed by its section"""

    date: date
    description: str
    amount: float
    category: str = "Other"
    section: Section = Section.NONE


@dataclass
class AccountInfo:
    """Header data extracted from a statement"""

    bank_name: str
    account_number: Optional[str]
    account_holder: Optional[str]
    period_start: date
    period_end: date
    period_defaulted: bool = False  # True when no period was found and the current month was assumed

    @property
    def period_days(self) -> int:
        return (self.period_end - self.period_start).days + 1


@dataclass
class Balances:
    beginning: Optional[float] = None
    ending: Optional[float] = None


@dataclass
class Statement:
    """One parsed bank statement"""

    account_info: AccountInfo
    balances: Balances
    transactions: List[Transaction] = field(default_factory=list)

    @property
    def opening_balance(self) -> float:
        return self.balances.beginning if self.balances.beginning is not None else 0.0


@dataclass
class Totals:
    total_deposits: float
    total_withdrawals: float
    deposit_count: int
    withdrawal_count: int


@dataclass
class BalanceSummary:
    """Balance trajectory over a statement"""

    average_daily_balance: float
    period_days: int
    minimum_balance: float
    maximum_balance: float
    ending_balance: float
    negative_balance_days: List[date] = field(default_factory=list)


class RiskLevel(str, Enum):
    VERY_LOW = "VERY_LOW"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return list(RiskLevel).index(self)


@dataclass
class RiskAnalysisResult:
    """Calculated risk metrics for one statement"""

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
    factors: Dict[str, int] = field(default_factory=dict)


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        # 0 is most severe
        return list(Severity).index(self)


@dataclass
class Alert:
    """One triggered rule; data holds every number used to decide the trigger"""

    code: str
    severity: Severity
    title: str
    message: str
    data: Dict[str, Any]
    report_index: Optional[int] = None


@dataclass
class ApplicationData:
    """Facts stated by the applicant"""

    business_name: Optional[str] = None
    state: Optional[str] = None
    stated_annual_revenue: Optional[float] = None
    business_start_date: Optional[date] = None
    tax_id: Optional[str] = None


ACTIVE_REGISTRY_STATUSES = {"active", "good standing", "in existence", "current"}


@dataclass
class RegistryData:
    """Business registry facts, supplied by the caller or by the registry lookup"""

    found: Optional[bool] = None
    status: Optional[str] = None
    registration_date: Optional[date] = None
    business_name: Optional[str] = None
    state: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return (self.status or "").strip().lower() in ACTIVE_REGISTRY_STATUSES


@dataclass
class RegistryLookupResult:
    success: bool
    found: bool
    status: Optional[str] = None
    registration_date: Optional[date] = None
    matched_name: Optional[str] = None

    def to_registry_data(self, state: Optional[str] = None) -> RegistryData:
        return RegistryData(
            found=self.found,
            status=self.status,
            registration_date=self.registration_date,
            business_name=self.matched_name,
            state=state,
        )


@dataclass
class CreditCheckResult:
    success: bool
    score: Optional[int]
    report: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BusinessVerificationResult:
    success: bool
    verified: bool
    details: Dict[str, Any] = field(default_factory=dict)


class ExternalService(str, Enum):
    """Paid verification services, in waterfall order"""

    BUSINESS_REGISTRY = "business_registry"
    CREDIT_CHECK = "credit_check"
    BUSINESS_VERIFICATION = "business_verification"


class SkipReason(str, Enum):
    CRITERIA_NOT_MET = "CRITERIA_NOT_MET"
    GATE_NOT_MET = "GATE_NOT_MET"
    PER_ANALYSIS_BUDGET_EXHAUSTED = "PER_ANALYSIS_BUDGET_EXHAUSTED"
    DAILY_BUDGET_EXHAUSTED = "DAILY_BUDGET_EXHAUSTED"
    MISSING_BUSINESS_IDENTITY = "MISSING_BUSINESS_IDENTITY"
    CALL_FAILED = "CALL_FAILED"


@dataclass
class InternalAnalysis:
    """Phase 1 output: everything computed from statement text alone"""

    statements: List[Statement]
    reports: List[RiskAnalysisResult]
    alerts: List[Alert]
    internal_score: int
    score_factors: Dict[str, int]
    transaction_count: int
    statement_days: int
    average_balance: float
    nsf_count: int
    worst_risk_level: RiskLevel


@dataclass
class CriterionResult:
    name: str
    passed: bool
    weight: int
    threshold: Any
    actual: Any


@dataclass
class CriteriaEvaluation:
    """Phase 2 output"""

    checks: List[CriterionResult]
    pass_ratio: float
    threshold: float
    budget_available: bool
    should_proceed: bool


@dataclass
class SkippedCheck:
    service: ExternalService
    reason: SkipReason
    detail: str


@dataclass
class ExternalChecks:
    """Phase 3 output; only successful results are kept"""

    called: Set[ExternalService] = field(default_factory=set)
    skipped: List[SkippedCheck] = field(default_factory=list)
    charges: Dict[ExternalService, float] = field(default_factory=dict)  # Successful calls only
    total_cost: float = 0.0
    registry: Optional[RegistryLookupResult] = None
    credit: Optional[CreditCheckResult] = None
    verification: Optional[BusinessVerificationResult] = None

    @property
    def success_count(self) -> int:
        return sum(1 for result in (self.registry, self.credit, self.verification) if result is not None)


@dataclass
class CostReport:
    total_cost: float
    full_price: float
    cost_savings: float
    per_analysis_budget: float
    budget_utilization: float  # Percent of the per-analysis budget
    daily_budget_remaining: float


@dataclass
class ExecutiveSummary:
    internal_score: int
    final_score: int
    score_adjustment: int
    grade: str
    confidence_level: str
    recommendation: str
    risk_level: RiskLevel
    alert_counts: Dict[str, int]


@dataclass
class WaterfallResults:
    internal_analysis: InternalAnalysis
    criteria: CriteriaEvaluation
    external_checks: ExternalChecks
    cost_analysis: CostReport


@dataclass
class WaterfallDecision:
    """Output of one orchestration run"""

    executive_summary: ExecutiveSummary
    waterfall_results: WaterfallResults
    alerts: List[Alert]
    risk_analysis: List[RiskAnalysisResult]

    @property
    def external_apis_called(self) -> Set[ExternalService]:
        return self.waterfall_results.external_checks.called

    @property
    def total_cost(self) -> float:
        return self.waterfall_results.cost_analysis.total_cost

    @property
    def cost_savings(self) -> float:
        return self.waterfall_results.cost_analysis.cost_savings

    @property
    def budget_utilization(self) -> float:
        return self.waterfall_results.cost_analysis.budget_utilization
