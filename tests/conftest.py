"""Shared fixtures and fakes for the orchestration test suite."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, List, Optional, Tuple, Union

import pytest

from agent_backend.config import AppSettings, ProviderEndpoint, load_settings
from agent_backend.models import (
    AgentType,
    EvidenceBundle,
    Insight,
    ModelResponse,
    OrchestrationRequest,
    PromptSet,
    SessionConfig,
)
from agent_backend.services.composer import PromptComposer
from agent_backend.services.credits import CreditGovernor, InMemoryCreditLedger
from agent_backend.services.orchestrator import Orchestrator
from agent_backend.services.regeneration import RegenerationController
from agent_backend.services.usage import InMemoryUsageRecorder
from agent_backend.services.validator import ResponseValidator

REFERENCE_DATE = date(2025, 6, 1)
USER_ID = "user-1"

EVIDENCE_CONTENT = (
    "Bloomberg reports that Acme quarterly revenue climbed strongly, driven by cloud "
    "subscriptions, enterprise contracts, international expansion, improved margins, "
    "operating efficiency, product launches, customer retention, pricing power and partnerships."
)

GROUNDED_ANSWER = (
    "According to Bloomberg, in 2025 Acme quarterly revenue climbed strongly, driven by cloud "
    "subscriptions, enterprise contracts, international expansion, improved margins and "
    "operating efficiency."
)

GENERIC_ANSWER = "Companies should focus on their strategy and think about growth opportunities."


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeSearchGateway:
    def __init__(self, evidence: Optional[EvidenceBundle] = None) -> None:
        self.evidence = evidence
        self.calls: List[Tuple[str, AgentType, SessionConfig]] = []

    async def search(self, query: str, agent_type: AgentType, session_config: SessionConfig) -> Optional[EvidenceBundle]:
        self.calls.append((query, agent_type, session_config))
        return self.evidence


class FakeInvoker:
    """Replays scripted outcomes; an Exception outcome is raised instead of returned."""

    def __init__(self, *outcomes: Union[str, BaseException, ModelResponse]) -> None:
        self.outcomes = list(outcomes)
        self.calls: List[Tuple[PromptSet, str]] = []

    async def invoke(
        self,
        prompt_set: PromptSet,
        model_id: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ModelResponse:
        self.calls.append((prompt_set, model_id))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, ModelResponse):
            return outcome
        return ModelResponse(
            text=outcome,
            model_id=model_id,
            input_tokens=100,
            output_tokens=50,
            estimated_cost=0.001,
            provider_latency_ms=5,
        )


class SpyValidator(ResponseValidator):
    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.calls = 0

    def score(self, response_text, evidence):
        self.calls += 1
        return super().score(response_text, evidence)


class SpyRegeneration(RegenerationController):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.calls = 0

    async def force_regenerate(self, request, evidence, *, model_id=None):
        self.calls += 1
        return await super().force_regenerate(request, evidence, model_id=model_id)


class FailingRecorder:
    async def record(self, record) -> None:
        raise RuntimeError("usage table unavailable")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> AppSettings:
    base = load_settings()
    return replace(
        base,
        data_dir=tmp_path,
        ledger_db_path=tmp_path / "ledger.db",
        openai=ProviderEndpoint("openai", "https://api.openai.test/v1", "sk-test"),
        anthropic=ProviderEndpoint("anthropic", "https://api.anthropic.test", "ak-test"),
        perplexity=ProviderEndpoint("perplexity", "https://api.perplexity.test", "pk-test"),
        llm_default_model="gpt-4o-mini",
        llm_temperature=None,
        tokens_per_credit=1000,
        output_token_weight=2,
        expected_completion_tokens=1500,
        search_token_allowance=2000,
        validation_pass_threshold=100,
        validation_min_shared_words=10,
        default_plan_credits=0,
        default_daily_credit_limit=100,
    )


@pytest.fixture
def evidence() -> EvidenceBundle:
    return EvidenceBundle(
        content=EVIDENCE_CONTENT,
        sources=("bloomberg.com", "https://www.reuters.com/technology/acme"),
        insights=(Insight(title="Revenue", description="Quarterly revenue climbed strongly"),),
        confidence=90,
        engine="perplexity",
        timestamp="2025-06-01T00:00:00+00:00",
    )


@pytest.fixture
def ledger() -> InMemoryCreditLedger:
    ledger = InMemoryCreditLedger()
    ledger.set_account(USER_ID, remaining_credits=1000, daily_limit=1000)
    return ledger


@pytest.fixture
def recorder() -> InMemoryUsageRecorder:
    return InMemoryUsageRecorder()


@pytest.fixture
def validator() -> SpyValidator:
    return SpyValidator(pass_threshold=100, min_shared_words=10, reference_date=REFERENCE_DATE)


@pytest.fixture
def make_request():
    def _make(agent_type: AgentType = AgentType.MENTOR, **kwargs: Any) -> OrchestrationRequest:
        kwargs.setdefault("message", "How is Acme doing financially?")
        kwargs.setdefault("session_config", SessionConfig(company_name="Acme", industry="software"))
        return OrchestrationRequest(user_id=USER_ID, agent_type=agent_type, **kwargs)

    return _make


@pytest.fixture
def make_orchestrator(settings, ledger, recorder, validator):
    def _make(
        invoker: FakeInvoker,
        search: Optional[FakeSearchGateway] = None,
        *,
        governor: Optional[CreditGovernor] = None,
        usage_recorder: Any = None,
    ) -> Tuple[Orchestrator, SpyRegeneration]:
        regeneration = SpyRegeneration(
            invoker,
            default_model=settings.llm_default_model,
            clock=lambda: datetime(2025, 6, 1, tzinfo=timezone.utc),
        )
        orchestrator = Orchestrator(
            settings=settings,
            governor=governor or CreditGovernor.from_settings(ledger, settings),
            search_gateway=search or FakeSearchGateway(),
            composer=PromptComposer(),
            invoker=invoker,
            validator=validator,
            regeneration=regeneration,
            recorder=usage_recorder or recorder,
        )
        return orchestrator, regeneration

    return _make
