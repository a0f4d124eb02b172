"""
Response orchestrator.

Sequences one request through the pipeline:
- Reserve credits (reject before any paid call when denied)
- Optional web search, decided once by use_tripartite_flow()
- Compose the primary prompt and generate
- Validate against evidence, when there is evidence
- At most one forced, evidence-only regeneration with its own reservation
- Settle credits and record usage

The generation path is two explicit steps, so a request makes at most two
model calls.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..config import AppSettings
from ..errors import BudgetExceeded, EmptyGenerationError, TransportError
from ..models import (
    CreditReservation,
    EvidenceBundle,
    ModelResponse,
    OrchestrationRequest,
    UsageRecord,
    ValidationScore,
)
from ..token_utils import estimate_messages_tokens
from .composer import PromptComposer
from .credits import CreditGovernor, estimate_request_credits
from .model_invoker import ModelInvoker
from .prompts import profile_for, use_tripartite_flow
from .regeneration import RegenerationController
from .usage import UsageRecorder
from .validator import ResponseValidator
from .web_search import WebSearchGateway

logger = logging.getLogger(__name__)


class OrchestrationState(str, Enum):
    RECEIVED = "received"
    BUDGET_CHECKED = "budget_checked"
    SEARCH_ATTEMPTED = "search_attempted"
    PROMPT_BUILT = "prompt_built"
    GENERATED = "generated"
    VALIDATED = "validated"
    REGENERATED = "regenerated"
    FINALIZED = "finalized"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class PipelineStep:
    """Record of a single pipeline step."""
    step_number: int
    name: str
    kind: str  # "budget", "search", "compose", "generate", "validate", "regenerate", "finalize"
    duration_seconds: float = 0.0
    state: str = "done"  # "done", "skipped", "error"
    details: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


@dataclass
class OrchestrationResult:
    response: str
    model: str
    tokens_used: int
    cost: float
    has_web_data: bool
    web_sources: List[str] = field(default_factory=list)
    validation_score: int = 0
    search_engine: str = "none"
    context_quality: str = "standard"
    low_confidence: bool = False
    regenerated: bool = False
    validation_issues: List[str] = field(default_factory=list)
    steps: List[PipelineStep] = field(default_factory=list)
    state: OrchestrationState = OrchestrationState.FINALIZED


def function_name_for(request: OrchestrationRequest) -> str:
    return f"orchestrate-{request.agent_type.value}"


class Orchestrator:
    def __init__(
        self,
        *,
        settings: AppSettings,
        governor: CreditGovernor,
        search_gateway: WebSearchGateway,
        composer: PromptComposer,
        invoker: ModelInvoker,
        validator: ResponseValidator,
        regeneration: RegenerationController,
        recorder: UsageRecorder,
    ) -> None:
        self.settings = settings
        self.governor = governor
        self.search_gateway = search_gateway
        self.composer = composer
        self.invoker = invoker
        self.validator = validator
        self.regeneration = regeneration
        self.recorder = recorder

    async def run(self, request: OrchestrationRequest) -> OrchestrationResult:
        started = time.perf_counter()
        steps: List[PipelineStep] = []
        state = OrchestrationState.RECEIVED
        function_name = function_name_for(request)
        profile = profile_for(request.agent_type)
        model_id = request.model or self.settings.llm_default_model
        use_search = use_tripartite_flow(request)

        # Budget
        step_start = time.perf_counter()
        estimate = estimate_request_credits(request, self.settings, use_search)
        reservation = await self.governor.reserve(request.user_id, estimate, function_name)
        steps.append(PipelineStep(
            step_number=len(steps),
            name="Reserve Credits",
            kind="budget",
            duration_seconds=time.perf_counter() - step_start,
            state="done" if reservation.granted else "error",
            details={"estimated_credits": estimate, "granted": reservation.granted},
            error=reservation.reason or None,
        ))
        if not reservation.granted:
            state = OrchestrationState.REJECTED
            logger.info("Request from %s rejected in state %s: %s", request.user_id, state.value, reservation.reason)
            raise BudgetExceeded(reservation.reason, credits_requested=estimate)
        state = OrchestrationState.BUDGET_CHECKED

        try:
            # Search
            evidence: Optional[EvidenceBundle] = None
            if use_search:
                step_start = time.perf_counter()
                evidence = await self.search_gateway.search(request.message, request.agent_type, request.session_config)
                state = OrchestrationState.SEARCH_ATTEMPTED
                steps.append(PipelineStep(
                    step_number=len(steps),
                    name="Web Search",
                    kind="search",
                    duration_seconds=time.perf_counter() - step_start,
                    details={
                        "has_evidence": evidence is not None,
                        "sources": len(evidence.sources) if evidence else 0,
                        "confidence": evidence.confidence if evidence else None,
                    },
                ))

            # Primary generation
            step_start = time.perf_counter()
            prompt_set = self.composer.build(request, evidence, search_requested=use_search)
            state = OrchestrationState.PROMPT_BUILT
            steps.append(PipelineStep(
                step_number=len(steps),
                name="Compose Prompt",
                kind="compose",
                duration_seconds=time.perf_counter() - step_start,
                details={"custom_prompt": bool(request.custom_system_prompt), "with_evidence": evidence is not None},
            ))

            step_start = time.perf_counter()
            primary = await self.invoker.invoke(
                prompt_set,
                model_id,
                temperature=profile.temperature,
                max_tokens=profile.max_tokens,
            )
            state = OrchestrationState.GENERATED
            steps.append(PipelineStep(
                step_number=len(steps),
                name="Generate Answer",
                kind="generate",
                duration_seconds=time.perf_counter() - step_start,
                details={"model": primary.model_id, "tokens": primary.total_tokens},
            ))
        except asyncio.CancelledError:
            logger.info("Request from %s cancelled in state %s; refunding", request.user_id, state.value)
            await asyncio.shield(self.governor.refund(reservation))
            raise
        except (TransportError, EmptyGenerationError) as exc:
            state = OrchestrationState.FAILED
            await self.governor.refund(reservation)
            steps.append(PipelineStep(
                step_number=len(steps),
                name="Generate Answer",
                kind="generate",
                state="error",
                error=str(exc),
            ))
            logger.warning("Generation failed for %s with %s (%s): %s", request.user_id, model_id, state.value, exc)
            await self._record(
                request,
                function_name,
                model_id,
                responses=(),
                started=started,
                status="error",
                error_message=str(exc),
                metadata={"state": state.value},
            )
            raise
        except Exception:
            logger.exception("Request from %s failed in state %s; refunding", request.user_id, state.value)
            await self.governor.refund(reservation)
            raise

        # The primary answer is paid for from here on, so any exit settles to it.
        search_tokens = self.settings.search_token_allowance if use_search else 0
        actual = self.governor.credits_for(primary.input_tokens + search_tokens, primary.output_tokens)

        responses: List[ModelResponse] = [primary]
        final = primary
        validation: Optional[ValidationScore] = None
        regenerated = False
        low_confidence = False

        try:
            if evidence is not None:
                step_start = time.perf_counter()
                validation = self.validator.score(primary.text, evidence)
                state = OrchestrationState.VALIDATED
                steps.append(PipelineStep(
                    step_number=len(steps),
                    name="Validate Grounding",
                    kind="validate",
                    duration_seconds=time.perf_counter() - step_start,
                    details={"score": validation.score, "passed": validation.passed, "issues": list(validation.issues)},
                ))

                if not validation.passed:
                    forced, forced_step = await self._forced_pass(
                        request, evidence, model_id, function_name, profile.max_tokens
                    )
                    forced_step.step_number = len(steps)
                    steps.append(forced_step)
                    if forced is None:
                        low_confidence = True
                    else:
                        responses.append(forced)
                        final = forced
                        regenerated = True
                        state = OrchestrationState.REGENERATED
                        validation = self.validator.score(forced.text, evidence)
                        low_confidence = not validation.passed
                        steps.append(PipelineStep(
                            step_number=len(steps),
                            name="Revalidate Grounding",
                            kind="validate",
                            details={"score": validation.score, "passed": validation.passed},
                        ))
        except asyncio.CancelledError:
            logger.info("Request from %s cancelled in state %s; settling primary usage", request.user_id, state.value)
            await asyncio.shield(self.governor.settle(reservation, actual))
            raise
        except Exception:
            logger.exception("Request from %s failed in state %s; settling primary usage", request.user_id, state.value)
            await self.governor.settle(reservation, actual)
            raise

        # Finalize
        charged = await self.governor.settle(reservation, actual)
        state = OrchestrationState.FINALIZED

        tokens_used = sum(r.total_tokens for r in responses)
        cost = sum(r.estimated_cost for r in responses)
        passed = validation is not None and validation.passed
        steps.append(PipelineStep(
            step_number=len(steps),
            name="Finalize",
            kind="finalize",
            details={
                "credits_charged": charged,
                "model_calls": len(responses),
                "low_confidence": low_confidence,
            },
        ))
        await self._record(
            request,
            function_name,
            final.model_id,
            responses=responses,
            started=started,
            status="success",
            metadata={
                "state": state.value,
                "regenerated": regenerated,
                "validation_score": validation.score if validation else None,
                "has_web_data": evidence is not None,
            },
        )
        logger.info(
            "Request from %s finalized: agent=%s model=%s tokens=%s regenerated=%s low_confidence=%s",
            request.user_id,
            request.agent_type.value,
            final.model_id,
            tokens_used,
            regenerated,
            low_confidence,
        )

        return OrchestrationResult(
            response=final.text,
            model=final.model_id,
            tokens_used=tokens_used,
            cost=cost,
            has_web_data=evidence is not None,
            web_sources=list(evidence.sources) if evidence else [],
            validation_score=validation.score if validation else 0,
            search_engine=evidence.engine if evidence else "none",
            context_quality="elite" if evidence is not None and passed else "standard",
            low_confidence=low_confidence,
            regenerated=regenerated,
            validation_issues=list(validation.issues) if validation else [],
            steps=steps,
            state=state,
        )

    async def _forced_pass(
        self,
        request: OrchestrationRequest,
        evidence: EvidenceBundle,
        model_id: str,
        function_name: str,
        max_tokens: int,
    ) -> Tuple[Optional[ModelResponse], PipelineStep]:
        """The single regeneration attempt. Returns (None, step) when it could not run."""
        step_start = time.perf_counter()
        forced_prompt = self.regeneration.build_forced_prompt(request, evidence)
        estimate = max(1, self.governor.credits_for(
            estimate_messages_tokens(forced_prompt.as_chat_messages()),
            min(max_tokens, self.settings.expected_completion_tokens),
        ))
        reservation = await self.governor.reserve(request.user_id, estimate, function_name)
        if not reservation.granted:
            logger.warning(
                "Regeneration for %s skipped: %s; returning primary answer as low confidence",
                request.user_id,
                reservation.reason,
            )
            return None, PipelineStep(
                step_number=0,
                name="Forced Regeneration",
                kind="regenerate",
                duration_seconds=time.perf_counter() - step_start,
                state="skipped",
                details={"estimated_credits": estimate},
                error=reservation.reason,
            )

        try:
            forced = await self.regeneration.force_regenerate(request, evidence, model_id=model_id)
        except asyncio.CancelledError:
            await asyncio.shield(self.governor.refund(reservation))
            raise
        except (TransportError, EmptyGenerationError) as exc:
            await self.governor.refund(reservation)
            logger.warning("Forced regeneration failed for %s: %s", request.user_id, exc)
            return None, PipelineStep(
                step_number=0,
                name="Forced Regeneration",
                kind="regenerate",
                duration_seconds=time.perf_counter() - step_start,
                state="error",
                error=str(exc),
            )

        await self.governor.settle(reservation, self.governor.credits_for(forced.input_tokens, forced.output_tokens))
        return forced, PipelineStep(
            step_number=0,
            name="Forced Regeneration",
            kind="regenerate",
            duration_seconds=time.perf_counter() - step_start,
            details={"model": forced.model_id, "tokens": forced.total_tokens},
        )

    async def _record(
        self,
        request: OrchestrationRequest,
        function_name: str,
        model_name: str,
        *,
        responses: Any,
        started: float,
        status: str,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        record = UsageRecord(
            user_id=request.user_id,
            function_name=function_name,
            model_name=model_name,
            input_tokens=sum(r.input_tokens for r in responses),
            output_tokens=sum(r.output_tokens for r in responses),
            total_cost=sum(r.estimated_cost for r in responses),
            request_duration_ms=int((time.perf_counter() - started) * 1000),
            status=status,
            error_message=error_message,
            metadata=metadata or {},
        )
        try:
            await self.recorder.record(record)
        except Exception as exc:
            logger.warning("Failed to record usage for %s: %s", request.user_id, exc)
