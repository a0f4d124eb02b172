from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import AgentType, OrchestrationRequest, SessionConfig


class SessionConfigPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    company_name: Optional[str] = Field(default=None, alias="companyName")
    industry: Optional[str] = Field(default=None)
    analysis_focus: Optional[str] = Field(default=None, alias="analysisFocus")
    objectives: Optional[str] = Field(default=None)


class OrchestrateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1)
    agent_type: AgentType = Field(..., alias="agentType")
    current_page: str = Field(default="/chat", alias="currentPage")
    session_config: SessionConfigPayload = Field(default_factory=SessionConfigPayload, alias="sessionConfig")
    search_enabled: bool = Field(default=False, alias="searchEnabled")
    use_tripartite_flow: bool = Field(default=False, alias="useTripartiteFlow")
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    model: Optional[str] = Field(default=None)

    def to_domain(self, user_id: str) -> OrchestrationRequest:
        session = self.session_config
        return OrchestrationRequest(
            user_id=user_id,
            message=self.message,
            agent_type=self.agent_type,
            session_config=SessionConfig(
                company_name=session.company_name,
                industry=session.industry,
                analysis_focus=session.analysis_focus,
                objectives=session.objectives,
            ),
            current_page=self.current_page,
            search_enabled=self.search_enabled,
            force_tripartite_flow=self.use_tripartite_flow,
            custom_system_prompt=self.system_prompt or None,
            model=self.model or None,
        )


class OrchestrateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    response: str
    model: str
    tokens_used: int = Field(..., alias="tokensUsed")
    cost: str
    has_web_data: bool = Field(..., alias="hasWebData")
    web_sources: List[str] = Field(default_factory=list, alias="webSources")
    validation_score: int = Field(0, alias="validationScore")
    search_engine: str = Field("none", alias="searchEngine")
    context_quality: str = Field("standard", alias="contextQuality")
    low_confidence: bool = Field(False, alias="lowConfidence")
    regenerated: bool = Field(False)
    validation_issues: List[str] = Field(default_factory=list, alias="validationIssues")
    steps: List[Dict[str, Any]] = Field(default_factory=list)


class CreditStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    remaining_credits: int = Field(..., alias="remainingCredits")
    daily_used: int = Field(..., alias="dailyUsed")
    daily_limit: int = Field(..., alias="dailyLimit")
