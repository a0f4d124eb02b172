from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import load_settings
from .persistence import LedgerStore
from .services.composer import PromptComposer
from .services.credits import CreditGovernor
from .services.model_invoker import ModelInvoker
from .services.orchestrator import Orchestrator
from .services.regeneration import RegenerationController
from .services.usage import SqliteUsageRecorder
from .services.validator import ResponseValidator
from .services.web_search import WebSearchGateway

settings = load_settings()
ledger_store = LedgerStore(settings.ledger_db_path)
credit_governor = CreditGovernor.from_settings(ledger_store, settings)
usage_recorder = SqliteUsageRecorder(ledger_store)
search_gateway = WebSearchGateway.from_settings(settings)
model_invoker = ModelInvoker.from_settings(settings)


def get_orchestrator() -> Orchestrator:
    # Validator is rebuilt per request so its reference date follows the calendar.
    return Orchestrator(
        settings=settings,
        governor=credit_governor,
        search_gateway=search_gateway,
        composer=PromptComposer(),
        invoker=model_invoker,
        validator=ResponseValidator(
            pass_threshold=settings.validation_pass_threshold,
            min_shared_words=settings.validation_min_shared_words,
        ),
        regeneration=RegenerationController(model_invoker, default_model=settings.llm_default_model),
        recorder=usage_recorder,
    )


def get_credit_governor() -> CreditGovernor:
    return credit_governor


@asynccontextmanager
async def lifespan(app: FastAPI):
    await ledger_store.init()
    yield
