from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class ProviderEndpoint:
    name: str
    base_url: str
    api_key: str

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)


@dataclass(frozen=True)
class AppSettings:
    data_dir: Path
    ledger_db_path: Path
    frontend_origin: str
    log_level: str
    openai: ProviderEndpoint
    anthropic: ProviderEndpoint
    perplexity: ProviderEndpoint
    search_model: str
    search_timeout: float
    search_recency: str
    search_max_tokens: int
    llm_default_model: str
    llm_timeout: float
    llm_temperature: Optional[float]
    tokens_per_credit: int
    output_token_weight: int
    expected_completion_tokens: int
    search_token_allowance: int
    validation_pass_threshold: int
    validation_min_shared_words: int
    default_plan_credits: int
    default_daily_credit_limit: int


def _int_env(name: str, default: str) -> int:
    return int(os.environ.get(name, default) or default)


def _float_env(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        return float(raw or default)
    except (TypeError, ValueError):
        return float(default)


def _str_env(name: str, default: str = "") -> str:
    return (os.environ.get(name, default) or default).strip()


def _optional_float_env(name: str) -> Optional[float]:
    raw = os.environ.get(name)
    if raw is None or str(raw).strip() == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def load_settings() -> AppSettings:
    data_dir = Path(_str_env("DATA_DIR", "./data"))
    ledger_db_path = Path(os.environ.get("LEDGER_DB_PATH") or (data_dir / "agent_backend.db"))

    return AppSettings(
        data_dir=data_dir,
        ledger_db_path=ledger_db_path,
        frontend_origin=_str_env("FRONTEND_ORIGIN", "http://localhost:5173"),
        log_level=_str_env("LOG_LEVEL", "INFO").upper(),
        openai=ProviderEndpoint(
            name="openai",
            base_url=_str_env("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
            api_key=_str_env("OPENAI_API_KEY"),
        ),
        anthropic=ProviderEndpoint(
            name="anthropic",
            base_url=_str_env("ANTHROPIC_BASE_URL", "https://api.anthropic.com").rstrip("/"),
            api_key=_str_env("ANTHROPIC_API_KEY"),
        ),
        perplexity=ProviderEndpoint(
            name="perplexity",
            base_url=_str_env("PERPLEXITY_BASE_URL", "https://api.perplexity.ai").rstrip("/"),
            api_key=_str_env("PERPLEXITY_API_KEY"),
        ),
        search_model=_str_env("SEARCH_MODEL", "sonar"),
        search_timeout=_float_env("SEARCH_TIMEOUT", "30"),
        search_recency=_str_env("SEARCH_RECENCY", "month").lower(),
        search_max_tokens=_int_env("SEARCH_MAX_TOKENS", "2000"),
        llm_default_model=_str_env("LLM_DEFAULT_MODEL", "gpt-4o-mini"),
        llm_timeout=_float_env("LLM_TIMEOUT", "60"),
        llm_temperature=_optional_float_env("LLM_TEMPERATURE"),
        tokens_per_credit=max(1, _int_env("TOKENS_PER_CREDIT", "1000")),
        output_token_weight=max(1, _int_env("OUTPUT_TOKEN_WEIGHT", "2")),
        expected_completion_tokens=_int_env("EXPECTED_COMPLETION_TOKENS", "1500"),
        search_token_allowance=_int_env("SEARCH_TOKEN_ALLOWANCE", "2000"),
        validation_pass_threshold=_int_env("VALIDATION_PASS_THRESHOLD", "100"),
        validation_min_shared_words=_int_env("VALIDATION_MIN_SHARED_WORDS", "10"),
        default_plan_credits=_int_env("DEFAULT_PLAN_CREDITS", "0"),
        default_daily_credit_limit=_int_env("DEFAULT_DAILY_CREDIT_LIMIT", "100"),
    )
