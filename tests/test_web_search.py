from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from agent_backend.config import ProviderEndpoint
from agent_backend.models import AgentType, SessionConfig
from agent_backend.services.web_search import (
    DEFAULT_CONFIDENCE,
    WebSearchGateway,
    build_search_query,
    extract_confidence,
    extract_insights,
    extract_sources,
)

ENDPOINT = ProviderEndpoint("perplexity", "https://api.perplexity.test", "pk-test")
SESSION = SessionConfig(company_name="Acme", industry="fintech", analysis_focus="pricing")
CONTENT = (
    "1. Revenue growth: Acme grew revenue 40% year over year in 2025.\n"
    "2. Market share: Acme holds roughly 12% of the payments segment.\n"
    "short line"
)


def _gateway(handler, endpoint: ProviderEndpoint = ENDPOINT) -> WebSearchGateway:
    return WebSearchGateway(
        endpoint,
        transport=httpx.MockTransport(handler),
        clock=lambda: datetime(2025, 6, 1, tzinfo=timezone.utc),
    )


def _completion(content: str, **extra) -> dict:
    payload = {"choices": [{"message": {"role": "assistant", "content": content}}]}
    payload.update(extra)
    return payload


class TestQueryBuilding:
    def test_includes_company_industry_focus_and_question(self):
        query = build_search_query("Who are the main rivals?", AgentType.COMPETITIVE_RETRIEVER, SESSION)
        assert "Analyze Acme in the fintech industry." in query
        assert "Focus on pricing." in query
        assert "financial performance" in query
        assert query.endswith("Provide specific data with verifiable sources.")
        assert "Specific question: Who are the main rivals?" in query

    def test_focus_depends_on_agent(self):
        query = build_search_query("rivals", AgentType.COMPETITOR_DISCOVERY, SessionConfig())
        assert "competitors, market share" in query
        query = build_search_query("rivals", AgentType.RESEARCH_ENGINE, SessionConfig())
        assert "comprehensive overview" in query


class TestExtraction:
    def test_sources_are_capped_and_deduplicated(self):
        citations = [f"https://site{i}.com" for i in range(8)] + ["https://site0.com"]
        assert len(extract_sources(citations)) == 5
        assert extract_sources([{"url": "https://a.com"}, {"title": "Annual report"}]) == (
            "https://a.com",
            "Annual report",
        )
        assert extract_sources(None) == ()

    def test_insights_from_titled_lines(self):
        insights = extract_insights(CONTENT)
        assert [i.title for i in insights] == ["Revenue growth", "Market share"]
        assert insights[0].description.startswith("Acme grew revenue 40%")

    def test_confidence_metric(self):
        assert extract_confidence({"confidence": 0.9}) == 90
        assert extract_confidence({"metrics": {"confidence": 75}}) == 75
        assert extract_confidence({}) == DEFAULT_CONFIDENCE
        assert extract_confidence({"confidence": "n/a"}) == DEFAULT_CONFIDENCE


class TestWebSearchGateway:
    async def test_success_builds_evidence(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json=_completion(CONTENT, citations=["https://www.bloomberg.com/acme", "https://reuters.com/x"]),
            )

        bundle = await _gateway(handler).search("Who are the rivals?", AgentType.COMPETITIVE_RETRIEVER, SESSION)

        assert bundle is not None
        assert bundle.content == CONTENT
        assert bundle.sources == ("https://www.bloomberg.com/acme", "https://reuters.com/x")
        assert bundle.engine == "perplexity"
        assert bundle.confidence == DEFAULT_CONFIDENCE
        assert bundle.timestamp == "2025-06-01T00:00:00+00:00"
        assert seen["url"] == "https://api.perplexity.test/chat/completions"
        assert seen["auth"] == "Bearer pk-test"
        assert seen["body"]["return_citations"] is True
        assert seen["body"]["search_recency_filter"] == "month"

    async def test_empty_content_is_no_evidence(self):
        bundle = await _gateway(lambda r: httpx.Response(200, json=_completion("   "))).search(
            "q", AgentType.RESEARCH_ENGINE, SESSION
        )
        assert bundle is None

    async def test_http_error_is_no_evidence(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502, text="bad gateway")

        bundle = await _gateway(handler).search("q", AgentType.RESEARCH_ENGINE, SESSION)

        assert bundle is None
        assert len(calls) == 1

    async def test_connection_error_is_no_evidence(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert await _gateway(handler).search("q", AgentType.RESEARCH_ENGINE, SESSION) is None

    async def test_invalid_json_is_no_evidence(self):
        bundle = await _gateway(lambda r: httpx.Response(200, text="<html>")).search(
            "q", AgentType.RESEARCH_ENGINE, SESSION
        )
        assert bundle is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"choices": [{"message": "not a dict"}]},
            {"choices": "not a list"},
            ["not", "an", "object"],
        ],
    )
    async def test_malformed_payload_is_no_evidence(self, payload):
        bundle = await _gateway(lambda r: httpx.Response(200, json=payload)).search(
            "q", AgentType.RESEARCH_ENGINE, SESSION
        )
        assert bundle is None

    async def test_missing_key_skips_call(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json=_completion(CONTENT))

        gateway = _gateway(handler, ProviderEndpoint("perplexity", "https://api.perplexity.test", ""))
        assert await gateway.search("q", AgentType.RESEARCH_ENGINE, SESSION) is None
        assert calls == []
