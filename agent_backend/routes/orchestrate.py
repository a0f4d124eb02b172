from __future__ import annotations

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from ..dependencies import get_orchestrator
from ..errors import BudgetExceeded, EmptyGenerationError, TransportError
from ..schemas import OrchestrateRequest, OrchestrateResponse
from ..services.orchestrator import OrchestrationResult, Orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


def require_user_id(x_user_id: Optional[str] = Header(default=None, alias="X-User-Id")) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail={"error": "unauthorized", "reason": "missing X-User-Id header"})
    return user_id


def _to_response(result: OrchestrationResult) -> OrchestrateResponse:
    return OrchestrateResponse(
        response=result.response,
        model=result.model,
        tokens_used=result.tokens_used,
        cost=f"{result.cost:.6f}",
        has_web_data=result.has_web_data,
        web_sources=result.web_sources,
        validation_score=result.validation_score,
        search_engine=result.search_engine,
        context_quality=result.context_quality,
        low_confidence=result.low_confidence,
        regenerated=result.regenerated,
        validation_issues=result.validation_issues,
        steps=[asdict(step) for step in result.steps],
    )


@router.post("/orchestrate", response_model=OrchestrateResponse)
async def orchestrate(
    req: OrchestrateRequest,
    user_id: str = Depends(require_user_id),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> OrchestrateResponse:
    try:
        result = await orchestrator.run(req.to_domain(user_id))
    except BudgetExceeded as exc:
        raise HTTPException(status_code=429, detail={"error": "budget_exceeded", "reason": exc.reason})
    except EmptyGenerationError as exc:
        raise HTTPException(
            status_code=500,
            detail={"error": "empty_generation", "model": exc.model_id, "message": str(exc)},
        )
    except TransportError as exc:
        raise HTTPException(
            status_code=500,
            detail={"error": "provider_error", "model": exc.model_id, "message": str(exc)},
        )
    return _to_response(result)
