"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from waterfall_gateway.api.middleware import MetricsMiddleware, RequestIDMiddleware
from waterfall_gateway.api.v1 import analysis
from waterfall_gateway.config import settings
from waterfall_gateway.domain.budget import BudgetLedger
from waterfall_gateway.infrastructure.observability.logging import setup_logging

# Setup structured logging
setup_logging(settings.log_level)


def create_app(budget_ledger: BudgetLedger | None = None) -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Waterfall Gateway",
        description="Bank statement risk analysis and cost-gated business verification",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # One daily ledger per process, shared by every request
    app.state.budget_ledger = budget_ledger or BudgetLedger(settings.daily_budget)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {
            "status": "ok",
            "service": settings.service_name,
            "daily_budget_remaining": app.state.budget_ledger.remaining,
        }

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(analysis.router, prefix="/v1", tags=["analysis"])

    return app


app = create_app()
