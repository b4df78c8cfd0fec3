"""POST /v1/analysis - statement analysis and verification waterfall endpoint"""

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Request

from waterfall_gateway.api.dependencies import get_orchestrator, get_request_id
from waterfall_gateway.api.v1.schemas import AnalysisRequest, AnalysisResponse
from waterfall_gateway.domain.exceptions import BudgetExceeded, ParseFailure, TypeMismatch
from waterfall_gateway.domain.waterfall import WaterfallOrchestrator
from waterfall_gateway.infrastructure.observability.logging import log_waterfall
from waterfall_gateway.infrastructure.observability.metrics import record_analysis

router = APIRouter()


@router.post("/analysis", response_model=AnalysisResponse)
async def create_analysis(
    request_body: AnalysisRequest,
    request: Request,
    orchestrator: WaterfallOrchestrator = Depends(get_orchestrator),
):
    """
    Analyze bank statements and run the verification waterfall.

    Flow:
    1. Parse and score every statement, raise alerts (free)
    2. Decide whether paid verification is justified
    3. Call the verification services the score and budgets allow
    4. Return the consolidated score, recommendation and cost report
    """
    start_time = time.time()
    request_id = get_request_id(request)

    try:
        decision = await orchestrator.analyze(
            request_body.statements,
            application_data=request_body.application.to_domain() if request_body.application else None,
            external_registry_data=request_body.registry_data.to_domain() if request_body.registry_data else None,
            as_of=request_body.as_of,
        )

    except ParseFailure as e:
        logging.warning(f"Statement rejected: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=422, detail=str(e))

    except TypeMismatch as e:
        logging.warning(f"Invalid analysis input: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=422, detail=str(e))

    except BudgetExceeded as e:
        logging.error(f"Budget guard tripped: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail="Verification budget exceeded")

    duration_ms = (time.time() - start_time) * 1000
    summary = decision.executive_summary
    record_analysis(decision)
    log_waterfall(
        request_id,
        summary.recommendation,
        summary.final_score,
        sorted(s.value for s in decision.external_apis_called),
        decision.total_cost,
        duration_ms,
    )

    return AnalysisResponse.from_decision(decision)
