"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request

from waterfall_gateway.domain.budget import BudgetLedger
from waterfall_gateway.domain.waterfall import WaterfallOrchestrator
from waterfall_gateway.infrastructure.clients.credit import CreditCheckClient
from waterfall_gateway.infrastructure.clients.registry import BusinessRegistryClient
from waterfall_gateway.infrastructure.clients.verification import BusinessVerificationClient


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_budget_ledger(request: Request) -> BudgetLedger:
    """The process-wide daily ledger owned by the application"""
    return request.app.state.budget_ledger


def get_registry_client() -> BusinessRegistryClient:
    return BusinessRegistryClient()


def get_credit_client() -> CreditCheckClient:
    return CreditCheckClient()


def get_verification_client() -> BusinessVerificationClient:
    return BusinessVerificationClient()


def get_orchestrator(
    ledger: BudgetLedger = Depends(get_budget_ledger),
    registry_client: BusinessRegistryClient = Depends(get_registry_client),
    credit_client: CreditCheckClient = Depends(get_credit_client),
    verification_client: BusinessVerificationClient = Depends(get_verification_client),
) -> WaterfallOrchestrator:
    """Provide an orchestrator wired to the shared ledger"""
    return WaterfallOrchestrator(ledger, registry_client, credit_client, verification_client)
