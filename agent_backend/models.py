"""Request-scoped value types for the orchestration pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class AgentType(str, Enum):
    """Agents a request can be addressed to. Values are the wire names."""
    MENTOR = "clipogino"
    COMPETITOR_DISCOVERY = "cdv"
    COMPETITIVE_ANALYST = "cia"
    COMPETITIVE_RETRIEVER = "cir"
    RESEARCH_ENGINE = "research-engine"
    CONTENT_GENERATOR = "enhanced-content-generator"


@dataclass(frozen=True)
class SessionConfig:
    company_name: Optional[str] = None
    industry: Optional[str] = None
    analysis_focus: Optional[str] = None
    objectives: Optional[str] = None


@dataclass(frozen=True)
class OrchestrationRequest:
    """One inbound call. Never mutated once built."""
    user_id: str
    message: str
    agent_type: AgentType
    session_config: SessionConfig = field(default_factory=SessionConfig)
    current_page: str = "/chat"
    search_enabled: bool = False
    force_tripartite_flow: bool = False
    custom_system_prompt: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class Insight:
    title: str
    description: str


@dataclass(frozen=True)
class EvidenceBundle:
    """Normalized result of one web search call."""
    content: str
    sources: Tuple[str, ...] = ()
    insights: Tuple[Insight, ...] = ()
    confidence: int = 0  # 0-100
    engine: str = "unknown"
    timestamp: str = ""


@dataclass(frozen=True)
class PromptMessage:
    role: str  # "system" | "user"
    content: str


@dataclass(frozen=True)
class PromptSet:
    messages: Tuple[PromptMessage, ...]
    kind: str = "primary"  # "primary" | "forced"

    def as_chat_messages(self) -> list:
        return [{"role": m.role, "content": m.content} for m in self.messages]

    @property
    def system_prompt(self) -> str:
        return "\n\n".join(m.content for m in self.messages if m.role == "system")


@dataclass(frozen=True)
class ModelResponse:
    text: str
    model_id: str
    input_tokens: int
    output_tokens: int
    estimated_cost: float
    provider_latency_ms: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class ValidationScore:
    score: int
    passed: bool
    issues: Tuple[str, ...] = ()
    has_source_reference: bool = False
    has_specific_data: bool = False
    has_recency: bool = False
    has_attribution: bool = False


@dataclass(frozen=True)
class CreditReservation:
    user_id: str
    amount_reserved: int
    function_name: str
    granted: bool
    reason: str = ""


@dataclass(frozen=True)
class CreditStatus:
    user_id: str
    remaining_credits: int
    daily_used: int
    daily_limit: int


@dataclass(frozen=True)
class UsageRecord:
    user_id: str
    function_name: str
    model_name: str
    input_tokens: int
    output_tokens: int
    total_cost: float
    request_duration_ms: int
    status: str  # "success" | "error"
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ConsumeOutcome(str, Enum):
    GRANTED = "granted"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    DAILY_LIMIT = "daily_limit"
    NO_ACCOUNT = "no_account"
