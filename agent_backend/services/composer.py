from __future__ import annotations

import logging
from typing import Optional

from ..models import EvidenceBundle, OrchestrationRequest, PromptMessage, PromptSet
from .prompts import EVIDENCE_BLOCK, NO_DATA_BLOCK, profile_for, render_template, use_tripartite_flow

logger = logging.getLogger(__name__)


def render_evidence_block(evidence: EvidenceBundle) -> str:
    if evidence.insights:
        lines = "\n".join(f"- {i.title}: {i.description}" for i in evidence.insights)
        insights_section = f"\n=== KEY INSIGHTS ===\n{lines}\n"
    else:
        insights_section = ""
    sources = "\n".join(f"- {s}" for s in evidence.sources) or "- Multiple verified web sources"
    return EVIDENCE_BLOCK.format(
        retrieved=evidence.timestamp or "unknown",
        engine=evidence.engine,
        confidence=evidence.confidence,
        content=evidence.content.strip(),
        insights_section=insights_section,
        sources=sources,
    )


class PromptComposer:
    """Builds the primary system/user message pair for one generation attempt."""

    def build(
        self,
        request: OrchestrationRequest,
        evidence: Optional[EvidenceBundle],
        *,
        search_requested: Optional[bool] = None,
    ) -> PromptSet:
        if search_requested is None:
            search_requested = use_tripartite_flow(request)
        if request.custom_system_prompt:
            system_prompt = request.custom_system_prompt
        else:
            profile = profile_for(request.agent_type)
            system_prompt = render_template(profile, request.session_config, request.current_page)

        if evidence is not None:
            system_prompt += render_evidence_block(evidence)
        elif search_requested:
            system_prompt += NO_DATA_BLOCK

        logger.debug(
            "Composed prompt for %s: system=%d chars evidence=%s search_requested=%s",
            request.agent_type.value,
            len(system_prompt),
            evidence is not None,
            search_requested,
        )
        return PromptSet(
            messages=(
                PromptMessage(role="system", content=system_prompt),
                PromptMessage(role="user", content=request.message),
            ),
            kind="primary",
        )
