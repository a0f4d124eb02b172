from __future__ import annotations

import logging
from typing import List, Protocol

from ..models import UsageRecord
from ..persistence import LedgerStore

logger = logging.getLogger(__name__)


class UsageRecorder(Protocol):
    async def record(self, record: UsageRecord) -> None:
        ...


class SqliteUsageRecorder:
    """Writes one ai_usage_logs row per orchestration attempt."""

    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    async def record(self, record: UsageRecord) -> None:
        await self.store.insert_usage(record)
        logger.debug(
            "Usage recorded: user=%s function=%s model=%s tokens=%s status=%s",
            record.user_id,
            record.function_name,
            record.model_name,
            record.input_tokens + record.output_tokens,
            record.status,
        )


class InMemoryUsageRecorder:
    def __init__(self) -> None:
        self.records: List[UsageRecord] = []

    async def record(self, record: UsageRecord) -> None:
        self.records.append(record)
