"""
Model invoker.

Sends one PromptSet to one provider and normalizes the answer into a
ModelResponse. No retries happen here: the SDK is built with max_retries=0 and
the Anthropic path is a single httpx request.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import httpx
from openai import APIConnectionError, APIError, APIStatusError, APITimeoutError, AsyncOpenAI

from ..config import AppSettings, ProviderEndpoint
from ..errors import EmptyGenerationError, TransportError
from ..models import ModelResponse, PromptSet
from ..token_utils import estimate_messages_tokens, estimate_tokens

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

# USD per 1K tokens: (input, output)
MODEL_PRICING: Dict[str, Tuple[float, float]] = {
    "gpt-4o": (0.00250, 0.01000),
    "gpt-4o-mini": (0.00015, 0.00060),
    "claude-3-5-sonnet-20241022": (0.00300, 0.01500),
    "claude-3-opus-20240229": (0.01500, 0.07500),
    "sonar": (0.00100, 0.00100),
    "sonar-pro": (0.00300, 0.01500),
}


def calculate_cost(model_id: str, input_tokens: int, output_tokens: int) -> float:
    pricing = MODEL_PRICING.get(model_id)
    if pricing is None:
        return 0.0
    input_rate, output_rate = pricing
    return (input_tokens / 1000.0) * input_rate + (output_tokens / 1000.0) * output_rate


def provider_for(model_id: str) -> str:
    lowered = model_id.lower()
    if lowered.startswith("claude"):
        return "anthropic"
    if lowered.startswith("sonar") or lowered.endswith("-online"):
        return "perplexity"
    return "openai"


class ModelInvoker:
    def __init__(
        self,
        *,
        openai: ProviderEndpoint,
        anthropic: ProviderEndpoint,
        perplexity: ProviderEndpoint,
        timeout: float = 60.0,
        default_temperature: Optional[float] = None,
        default_max_tokens: int = 2000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._endpoints = {"openai": openai, "anthropic": anthropic, "perplexity": perplexity}
        self.timeout = max(1.0, float(timeout))
        self.default_temperature = default_temperature
        self.default_max_tokens = default_max_tokens
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "ModelInvoker":
        return cls(
            openai=settings.openai,
            anthropic=settings.anthropic,
            perplexity=settings.perplexity,
            timeout=settings.llm_timeout,
            default_temperature=settings.llm_temperature,
        )

    async def invoke(
        self,
        prompt_set: PromptSet,
        model_id: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ModelResponse:
        provider = provider_for(model_id)
        endpoint = self._endpoints[provider]
        if not endpoint.configured:
            raise TransportError(model_id, f"{provider} API key not configured")

        if self.default_temperature is not None:
            temperature = self.default_temperature
        temperature = 0.7 if temperature is None else temperature
        max_tokens = max_tokens or self.default_max_tokens
        messages = prompt_set.as_chat_messages()

        started = time.perf_counter()
        if provider == "anthropic":
            text, usage = await self._call_anthropic(endpoint, messages, model_id, temperature, max_tokens)
        else:
            text, usage = await self._call_openai_compatible(endpoint, messages, model_id, temperature, max_tokens)
        latency_ms = int((time.perf_counter() - started) * 1000)

        if not text.strip():
            raise EmptyGenerationError(model_id)

        input_tokens = int(usage.get("input_tokens") or 0) or estimate_messages_tokens(messages)
        output_tokens = int(usage.get("output_tokens") or 0) or estimate_tokens(text)
        cost = calculate_cost(model_id, input_tokens, output_tokens)
        logger.info(
            "Model %s (%s, %s) answered: in=%s out=%s cost=%.6f latency=%sms",
            model_id,
            provider,
            prompt_set.kind,
            input_tokens,
            output_tokens,
            cost,
            latency_ms,
        )
        return ModelResponse(
            text=text,
            model_id=model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost=cost,
            provider_latency_ms=latency_ms,
        )

    def _http_client(self) -> Optional[httpx.AsyncClient]:
        if self._transport is None:
            return None
        return httpx.AsyncClient(transport=self._transport)

    async def _call_openai_compatible(
        self,
        endpoint: ProviderEndpoint,
        messages: List[Dict[str, str]],
        model_id: str,
        temperature: float,
        max_tokens: int,
    ) -> Tuple[str, Dict[str, int]]:
        client = AsyncOpenAI(
            base_url=endpoint.base_url,
            api_key=endpoint.api_key,
            timeout=self.timeout,
            max_retries=0,
            http_client=self._http_client(),
        )
        try:
            resp = await client.chat.completions.create(
                model=model_id,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except APIStatusError as exc:
            raise TransportError(
                model_id,
                f"{endpoint.name} returned HTTP {exc.status_code}",
                status_code=exc.status_code,
            ) from exc
        except APITimeoutError as exc:
            raise TransportError(model_id, f"{endpoint.name} timed out after {self.timeout:.0f}s") from exc
        except APIConnectionError as exc:
            raise TransportError(model_id, f"{endpoint.name} connection failed: {exc}") from exc
        except APIError as exc:
            raise TransportError(model_id, f"{endpoint.name} error: {exc}") from exc
        finally:
            await client.close()

        if not resp.choices:
            raise EmptyGenerationError(model_id, f"Model {model_id} returned no choices")
        text = resp.choices[0].message.content or ""
        usage: Dict[str, int] = {}
        if resp.usage is not None:
            usage = {
                "input_tokens": resp.usage.prompt_tokens or 0,
                "output_tokens": resp.usage.completion_tokens or 0,
            }
        return text, usage

    async def _call_anthropic(
        self,
        endpoint: ProviderEndpoint,
        messages: List[Dict[str, str]],
        model_id: str,
        temperature: float,
        max_tokens: int,
    ) -> Tuple[str, Dict[str, int]]:
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        body: Dict[str, Any] = {
            "model": model_id,
            "max_tokens": max_tokens,
            "system": system,
            "messages": [m for m in messages if m["role"] != "system"],
            "temperature": temperature,
        }
        headers = {
            "x-api-key": endpoint.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        timeout = httpx.Timeout(self.timeout, connect=min(10.0, self.timeout))
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                resp = await client.post(f"{endpoint.base_url}/v1/messages", json=body, headers=headers)
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise TransportError(model_id, f"{endpoint.name} returned HTTP {status}", status_code=status) from exc
        except httpx.TimeoutException as exc:
            raise TransportError(model_id, f"{endpoint.name} timed out after {self.timeout:.0f}s") from exc
        except httpx.HTTPError as exc:
            raise TransportError(model_id, f"{endpoint.name} request failed: {exc}") from exc
        except ValueError as exc:
            raise TransportError(model_id, f"{endpoint.name} returned invalid JSON") from exc

        if not isinstance(payload, dict):
            raise TransportError(model_id, f"{endpoint.name} returned an unexpected payload")
        blocks = payload.get("content") or []
        if not isinstance(blocks, list):
            raise TransportError(model_id, f"{endpoint.name} returned malformed content")
        text = "".join(
            str(block.get("text") or "")
            for block in blocks
            if isinstance(block, dict) and block.get("type", "text") == "text"
        )
        raw_usage = payload.get("usage")
        if not isinstance(raw_usage, dict):
            raw_usage = {}
        usage = {
            "input_tokens": int(raw_usage.get("input_tokens") or 0),
            "output_tokens": int(raw_usage.get("output_tokens") or 0),
        }
        return text, usage
