from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for orchestration failures."""


class BudgetExceeded(PipelineError):
    def __init__(self, reason: str, *, credits_requested: int = 0) -> None:
        super().__init__(reason)
        self.reason = reason
        self.credits_requested = credits_requested


class SearchProviderError(PipelineError):
    """Search provider failed or answered with nothing usable. Never caller-visible."""


class EmptyGenerationError(PipelineError):
    def __init__(self, model_id: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Model {model_id} returned an empty completion")
        self.model_id = model_id


class TransportError(PipelineError):
    def __init__(self, model_id: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.model_id = model_id
        self.status_code = status_code
