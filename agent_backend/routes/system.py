from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import get_credit_governor, settings
from ..schemas import CreditStatusResponse
from ..services.credits import CreditGovernor
from .orchestrate import require_user_id

router = APIRouter()


@router.get("/health")
async def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "providers": {
            "openai": settings.openai.configured,
            "anthropic": settings.anthropic.configured,
            "perplexity": settings.perplexity.configured,
        },
        "default_model": settings.llm_default_model,
        "search_model": settings.search_model,
    }


@router.get("/credits", response_model=CreditStatusResponse)
async def credits(
    user_id: str = Depends(require_user_id),
    governor: CreditGovernor = Depends(get_credit_governor),
) -> CreditStatusResponse:
    status = await governor.status(user_id)
    if status is None:
        raise HTTPException(status_code=404, detail={"error": "no_account", "reason": "no credit account for caller"})
    return CreditStatusResponse(
        user_id=status.user_id,
        remaining_credits=status.remaining_credits,
        daily_used=status.daily_used,
        daily_limit=status.daily_limit,
    )
