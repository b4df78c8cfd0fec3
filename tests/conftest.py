"""Pytest fixtures for testing"""

import asyncio
from datetime import date
from typing import Callable, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from waterfall_gateway.api.dependencies import (
    get_credit_client,
    get_registry_client,
    get_verification_client,
)
from waterfall_gateway.api.main import create_app
from waterfall_gateway.config import Settings
from waterfall_gateway.domain.budget import BudgetLedger
from waterfall_gateway.domain.models import (
    BusinessVerificationResult,
    CreditCheckResult,
    RegistryLookupResult,
    RiskAnalysisResult,
    RiskLevel,
    Section,
)

SECTION_HEADERS = {
    Section.DEPOSITS: "DEPOSITS AND ADDITIONS",
    Section.WITHDRAWALS: "ATM & DEBIT CARD WITHDRAWALS",
    Section.ELECTRONIC: "ELECTRONIC WITHDRAWALS",
    Section.FEES: "FEES",
}

# (MM/DD, description, amount magnitude, section)
Row = Tuple[str, str, float, Section]

HEALTHY_ROWS: List[Row] = [
    ("01/02", "ACH Credit Square Inc Settlement", 3000.00, Section.DEPOSITS),
    ("01/09", "Remote Online Deposit", 3200.00, Section.DEPOSITS),
    ("01/16", "Zelle Payment From Jane Doe", 2800.00, Section.DEPOSITS),
    ("01/23", "Stripe Transfer Settlement", 3100.00, Section.DEPOSITS),
    ("01/30", "Mobile Deposit", 2900.00, Section.DEPOSITS),
    ("01/03", "Card Purchase Shell Oil 57442", 120.45, Section.WITHDRAWALS),
    ("01/05", "Card Purchase Whole Foods Market", 85.20, Section.WITHDRAWALS),
    ("01/11", "ATM Withdrawal 123 Main St", 300.00, Section.WITHDRAWALS),
    ("01/19", "Card Purchase Staples Store", 64.10, Section.WITHDRAWALS),
    ("01/06", "Payroll ADP Tax", 2500.00, Section.ELECTRONIC),
    ("01/15", "Orig CO Name:Comcast Business", 1800.00, Section.ELECTRONIC),
    ("01/20", "Online Transfer To Sav 4411", 2200.00, Section.ELECTRONIC),
    ("01/25", "Credit Card Payment Chase Card", 950.00, Section.ELECTRONIC),
    ("01/31", "Monthly Service Fee", 15.00, Section.FEES),
]

RISKY_ROWS: List[Row] = [
    ("01/03", "Mobile Deposit", 500.00, Section.DEPOSITS),
    ("01/17", "Zelle Payment From Customer", 500.00, Section.DEPOSITS),
    ("01/04", "Card Purchase Kroger Grocery", 400.00, Section.WITHDRAWALS),
    ("01/10", "Check # 1043", 300.00, Section.WITHDRAWALS),
    ("01/18", "ATM Withdrawal 88 Elm St", 450.00, Section.WITHDRAWALS),
    ("01/10", "NSF Fee", 35.00, Section.FEES),
    ("01/11", "Returned Item Fee", 35.00, Section.FEES),
    ("01/12", "Insufficient Funds Fee", 35.00, Section.FEES),
]


def build_statement_text(
    rows: List[Row],
    beginning_balance: float = 8000.00,
    bank_line: str = "JPMorgan Chase Bank, N.A.",
    holder: str = "ACME WIDGETS LLC",
    period: Optional[Tuple[str, str]] = ("January 1, 2024", "January 31, 2024"),
) -> str:
    """Render rows the way a Chase business checking statement reads after text extraction"""
    lines = [bank_line, "P O Box 182051", "Columbus, OH 43218-2051", "", holder, "100 Market St", ""]
    if period:
        lines.append(f"Statement Period: {period[0]} to {period[1]}")
    lines += [
        "Account Number: 000000123456789",
        "",
        "CHECKING SUMMARY",
        f"Beginning Balance ${beginning_balance:,.2f}",
        "",
    ]

    for section, header in SECTION_HEADERS.items():
        section_rows = [r for r in rows if r[3] is section]
        if not section_rows:
            continue
        lines += [header, "DATE DESCRIPTION AMOUNT"]
        lines += [f"{d} {desc} ${amount:,.2f}" for d, desc, amount, _ in section_rows]
        lines += [f"Total {header.title()} ${sum(r[2] for r in section_rows):,.2f}", ""]

    # Balance table lines look like transactions and must be ignored
    lines += ["DAILY ENDING BALANCE", "DATE AMOUNT"]
    lines += [f"{d} Balance ${beginning_balance:,.2f}" for d in sorted({r[0] for r in rows})]
    return "\n".join(lines)


@pytest.fixture
def statement_builder() -> Callable[..., str]:
    return build_statement_text


@pytest.fixture
def healthy_rows() -> List[Row]:
    return list(HEALTHY_ROWS)


@pytest.fixture
def healthy_statement_text() -> str:
    """One month, no NSFs, five deposits, balance never below $8,000"""
    return build_statement_text(HEALTHY_ROWS, beginning_balance=8000.00)


@pytest.fixture
def risky_statement_text() -> str:
    """Three NSF-type fees and several days overdrawn"""
    return build_statement_text(RISKY_ROWS, beginning_balance=100.00, holder="CORNER DELI INC")


@pytest.fixture
def report_factory() -> Callable[..., RiskAnalysisResult]:
    """Build a RiskAnalysisResult with healthy defaults; override any field"""

    def make_report(**overrides) -> RiskAnalysisResult:
        fields = dict(
            total_deposits=15000.0,
            total_withdrawals=8000.0,
            nsf_count=0,
            average_daily_balance=12000.0,
            period_days=30,
            minimum_balance=8000.0,
            maximum_balance=15000.0,
            ending_balance=15000.0,
            negative_balance_days=[],
            transaction_count=14,
            risk_score=0,
            risk_level=RiskLevel.VERY_LOW,
            factors={},
        )
        fields.update(overrides)
        return RiskAnalysisResult(**fields)

    return make_report


class FakeVerificationService:
    """
    Stand-in for all three verification clients.

    Records every call; can be slowed down or made to raise.
    """

    def __init__(
        self,
        registry: Optional[RegistryLookupResult] = None,
        credit: Optional[CreditCheckResult] = None,
        verification: Optional[BusinessVerificationResult] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.registry = registry or RegistryLookupResult(
            success=True,
            found=True,
            status="Active",
            registration_date=date(2018, 3, 1),
            matched_name="ACME WIDGETS LLC",
        )
        self.credit = credit or CreditCheckResult(success=True, score=735, report={"tradelines": 4})
        self.verification = verification or BusinessVerificationResult(success=True, verified=True)
        self.error = error
        self.delay = delay
        self.calls: List[str] = []

    async def _respond(self, name: str, result):
        self.calls.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return result

    async def lookup_business(self, business_name, state=None):
        return await self._respond("lookup_business", self.registry)

    async def check_credit(self, application):
        return await self._respond("check_credit", self.credit)

    async def verify_business(self, business_name, state=None):
        return await self._respond("verify_business", self.verification)


@pytest.fixture
def fake_service() -> FakeVerificationService:
    return FakeVerificationService()


@pytest.fixture
def fake_service_factory() -> Callable[..., FakeVerificationService]:
    return FakeVerificationService


@pytest.fixture
def test_settings() -> Settings:
    """Default prices, gates and budgets, independent of any local .env"""
    return Settings(
        _env_file=None,
        daily_budget=200.0,
        per_analysis_budget=50.0,
        external_call_timeout_seconds=1.0,
    )


@pytest.fixture
def budget_ledger() -> BudgetLedger:
    return BudgetLedger(200.0)


@pytest.fixture
def client(budget_ledger: BudgetLedger, fake_service: FakeVerificationService) -> TestClient:
    """Create FastAPI test client with fake verification services"""
    app = create_app(budget_ledger)
    app.dependency_overrides[get_registry_client] = lambda: fake_service
    app.dependency_overrides[get_credit_client] = lambda: fake_service
    app.dependency_overrides[get_verification_client] = lambda: fake_service
    return TestClient(app)
