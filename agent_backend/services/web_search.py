"""
Web search gateway.

One best-effort call to a Perplexity-compatible chat completions endpoint.
Failures and empty answers degrade to "no evidence" and are never retried.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from ..config import AppSettings, ProviderEndpoint
from ..errors import SearchProviderError
from ..models import AgentType, EvidenceBundle, Insight, SessionConfig
from .prompts import profile_for

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 30
MAX_SOURCES = 5
MAX_INSIGHTS = 3
_RECENCY_VALUES = {"hour", "day", "week", "month", "year"}
_LIST_PREFIX = re.compile(r"^(?:\d+[.)]\s*|[-*]\s*)")

_FOCUS_INSTRUCTIONS = {
    "financial": "Focus on financial performance, revenue, margins, funding and market data.",
    "competitive": "Focus on competitors, market share, positioning and recent strategic moves.",
    "comprehensive": "Provide a comprehensive overview with recent developments and key figures.",
}


def build_search_query(query: str, agent_type: AgentType, session: SessionConfig) -> str:
    focus = profile_for(agent_type).search_focus
    parts: List[str] = []
    if session.company_name:
        subject = f"Analyze {session.company_name}"
        if session.industry:
            subject += f" in the {session.industry} industry"
        parts.append(subject + ".")
    elif session.industry:
        parts.append(f"Analyze the {session.industry} industry.")
    if session.analysis_focus:
        parts.append(f"Focus on {session.analysis_focus}.")
    parts.append(_FOCUS_INSTRUCTIONS.get(focus, _FOCUS_INSTRUCTIONS["comprehensive"]))
    parts.append(f"Specific question: {query.strip()}")
    parts.append("Provide specific data with verifiable sources.")
    return " ".join(parts)


def extract_sources(citations: Any) -> Tuple[str, ...]:
    if not isinstance(citations, list):
        return ()
    sources: List[str] = []
    for citation in citations:
        if isinstance(citation, str):
            value = citation.strip()
        elif isinstance(citation, dict):
            value = str(citation.get("url") or citation.get("title") or citation.get("source") or "").strip()
        else:
            value = ""
        if value and value not in sources:
            sources.append(value)
        if len(sources) >= MAX_SOURCES:
            break
    return tuple(sources)


def extract_insights(content: str) -> Tuple[Insight, ...]:
    """Pick up to three "Title: description" lines from the head of the content."""
    lines = [line.strip() for line in content.splitlines() if len(line.strip()) > 20]
    insights: List[Insight] = []
    for line in lines[:MAX_INSIGHTS]:
        if ":" not in line or len(line) <= 30:
            continue
        title, _, description = line.partition(":")
        title = _LIST_PREFIX.sub("", title).strip(" *#")
        description = description.strip()
        if title and description:
            insights.append(Insight(title=title, description=description))
    return tuple(insights)


def extract_confidence(payload: Dict[str, Any]) -> int:
    raw = payload.get("confidence")
    if raw is None:
        metrics = payload.get("metrics")
        if isinstance(metrics, dict):
            raw = metrics.get("confidence")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if value <= 1.0:
        value *= 100
    return int(max(0, min(100, round(value))))


class WebSearchGateway:
    def __init__(
        self,
        endpoint: ProviderEndpoint,
        *,
        model: str = "sonar",
        timeout: float = 30.0,
        recency: str = "month",
        max_tokens: int = 2000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.endpoint = endpoint
        self.model = model
        self.timeout = max(1.0, float(timeout))
        self.recency = recency if recency in _RECENCY_VALUES else "month"
        self.max_tokens = max_tokens
        self._transport = transport
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "WebSearchGateway":
        return cls(
            settings.perplexity,
            model=settings.search_model,
            timeout=settings.search_timeout,
            recency=settings.search_recency,
            max_tokens=settings.search_max_tokens,
        )

    @property
    def configured(self) -> bool:
        return self.endpoint.configured

    async def search(
        self,
        query: str,
        agent_type: AgentType,
        session_config: SessionConfig,
    ) -> Optional[EvidenceBundle]:
        if not self.configured:
            logger.warning("Web search skipped: %s API key not configured", self.endpoint.name)
            return None

        provider_query = build_search_query(query, agent_type, session_config)
        started = time.perf_counter()
        try:
            bundle = await self._call_provider(provider_query, profile_for(agent_type).search_focus)
        except SearchProviderError as exc:
            logger.warning("Web search failed for %s: %s", agent_type.value, exc)
            return None
        duration = time.perf_counter() - started
        if bundle is None:
            logger.info("Web search returned no content for %s (%.2fs)", agent_type.value, duration)
            return None
        logger.info(
            "Web search ok for %s: %d sources, confidence=%s (%.2fs)",
            agent_type.value,
            len(bundle.sources),
            bundle.confidence,
            duration,
        )
        return bundle

    async def _call_provider(self, provider_query: str, focus: str) -> Optional[EvidenceBundle]:
        body = {
            "model": self.model,
            "messages": [
                {
                    "role": "system",
                    "content": (
                        "You are an expert business intelligence analyst. Provide detailed, factual "
                        f"analysis with specific data and sources. Focus on {focus} intelligence."
                    ),
                },
                {"role": "user", "content": provider_query},
            ],
            "temperature": 0.1,
            "max_tokens": self.max_tokens,
            "return_citations": True,
            "search_recency_filter": self.recency,
        }
        headers = {"Authorization": f"Bearer {self.endpoint.api_key}"}
        timeout = httpx.Timeout(self.timeout, connect=min(10.0, self.timeout))
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                resp = await client.post(f"{self.endpoint.base_url}/chat/completions", json=body, headers=headers)
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPStatusError as exc:
            raise SearchProviderError(
                f"{self.endpoint.name} returned HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SearchProviderError(f"{self.endpoint.name} request failed: {exc}") from exc
        except ValueError as exc:
            raise SearchProviderError(f"{self.endpoint.name} returned invalid JSON") from exc

        if not isinstance(payload, dict):
            raise SearchProviderError(f"{self.endpoint.name} returned an unexpected payload")

        content = ""
        choices = payload.get("choices") or []
        if not isinstance(choices, list):
            raise SearchProviderError(f"{self.endpoint.name} returned malformed choices")
        if choices and isinstance(choices[0], dict):
            message = choices[0].get("message") or {}
            if not isinstance(message, dict):
                raise SearchProviderError(f"{self.endpoint.name} returned a malformed message")
            content = str(message.get("content") or "").strip()
        if not content:
            return None

        return EvidenceBundle(
            content=content,
            sources=extract_sources(payload.get("citations") or payload.get("search_results")),
            insights=extract_insights(content),
            confidence=extract_confidence(payload),
            engine=self.endpoint.name,
            timestamp=self._clock().isoformat(timespec="seconds"),
        )
