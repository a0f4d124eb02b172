from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..models import EvidenceBundle, ModelResponse, OrchestrationRequest, PromptMessage, PromptSet
from .model_invoker import ModelInvoker
from .prompts import FORCED_SYSTEM_PROMPT, FORCED_USER_TEMPLATE

logger = logging.getLogger(__name__)


class RegenerationController:
    """Single evidence-only retry after a failed groundedness check."""

    def __init__(
        self,
        invoker: ModelInvoker,
        *,
        default_model: str,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.invoker = invoker
        self.default_model = default_model
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def build_forced_prompt(self, request: OrchestrationRequest, evidence: EvidenceBundle) -> PromptSet:
        sources = ", ".join(evidence.sources) or "the web data above"
        user_prompt = FORCED_USER_TEMPLATE.format(
            content=evidence.content,
            message=request.message,
            as_of=self._clock().date().isoformat(),
            sources=sources,
        )
        return PromptSet(
            messages=(
                PromptMessage(role="system", content=FORCED_SYSTEM_PROMPT),
                PromptMessage(role="user", content=user_prompt),
            ),
            kind="forced",
        )

    async def force_regenerate(
        self,
        request: OrchestrationRequest,
        evidence: EvidenceBundle,
        *,
        model_id: Optional[str] = None,
    ) -> ModelResponse:
        prompt_set = self.build_forced_prompt(request, evidence)
        model_id = model_id or request.model or self.default_model
        logger.info("Forcing evidence-only regeneration for %s with %s", request.agent_type.value, model_id)
        # Low temperature keeps the forced pass close to the evidence.
        return await self.invoker.invoke(prompt_set, model_id, temperature=0.1)
