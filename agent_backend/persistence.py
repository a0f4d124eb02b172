"""Async SQLite persistence for the credit ledger and usage log."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite

from .models import ConsumeOutcome, CreditStatus, UsageRecord


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat(timespec="seconds")


def _utc_day() -> str:
    return datetime.now(tz=timezone.utc).date().isoformat()


class LedgerStore:
    """Credit accounts, credit transactions and AI usage logs in one SQLite file.

    try_consume() is the only cross-request write that needs atomicity. It is a
    single conditional UPDATE, so two concurrent consumers for the same user
    can never both pass a check that only one of them fits.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._init_lock = asyncio.Lock()
        self._initialized = False

    async def init(self) -> None:
        async with self._init_lock:
            if self._initialized:
                return

            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(self.db_path)
            try:
                await conn.execute("PRAGMA journal_mode=WAL;")
                await conn.execute("PRAGMA synchronous=NORMAL;")
                await conn.execute("PRAGMA foreign_keys=ON;")

                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS credit_accounts (
                        user_id TEXT PRIMARY KEY,
                        remaining_credits INTEGER NOT NULL,
                        daily_limit INTEGER NOT NULL,
                        daily_used INTEGER NOT NULL DEFAULT 0,
                        usage_day TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )

                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS credit_transactions (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        kind TEXT NOT NULL,
                        amount INTEGER NOT NULL,
                        function_name TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        FOREIGN KEY(user_id) REFERENCES credit_accounts(user_id) ON DELETE CASCADE
                    )
                    """
                )

                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ai_usage_logs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        user_id TEXT NOT NULL,
                        function_name TEXT NOT NULL,
                        model_name TEXT NOT NULL,
                        input_tokens INTEGER NOT NULL,
                        output_tokens INTEGER NOT NULL,
                        total_cost REAL NOT NULL,
                        request_duration INTEGER NOT NULL,
                        status TEXT NOT NULL,
                        error_message TEXT,
                        metadata TEXT,
                        created_at TEXT NOT NULL
                    )
                    """
                )

                await conn.execute("CREATE INDEX IF NOT EXISTS idx_tx_user ON credit_transactions(user_id, id)")
                await conn.execute("CREATE INDEX IF NOT EXISTS idx_usage_user ON ai_usage_logs(user_id, created_at)")

                await conn.commit()
            finally:
                await conn.close()
            self._initialized = True

    async def _conn(self) -> aiosqlite.Connection:
        await self.init()
        conn = await aiosqlite.connect(self.db_path, timeout=30.0)
        conn.row_factory = aiosqlite.Row
        return conn

    # Accounts
    async def ensure_account(self, user_id: str, *, plan_credits: int, daily_limit: int) -> None:
        now = _utc_now()
        conn = await self._conn()
        try:
            await conn.execute(
                """
                INSERT INTO credit_accounts (user_id, remaining_credits, daily_limit, daily_used, usage_day, created_at, updated_at)
                VALUES (?, ?, ?, 0, ?, ?, ?)
                ON CONFLICT(user_id) DO NOTHING
                """,
                (user_id, plan_credits, daily_limit, _utc_day(), now, now),
            )
            await conn.commit()
        finally:
            await conn.close()

    async def get_status(self, user_id: str) -> Optional[CreditStatus]:
        conn = await self._conn()
        try:
            cur = await conn.execute("SELECT * FROM credit_accounts WHERE user_id=?", (user_id,))
            row = await cur.fetchone()
            await cur.close()
        finally:
            await conn.close()
        if not row:
            return None
        daily_used = int(row["daily_used"]) if row["usage_day"] == _utc_day() else 0
        return CreditStatus(
            user_id=user_id,
            remaining_credits=int(row["remaining_credits"]),
            daily_used=daily_used,
            daily_limit=int(row["daily_limit"]),
        )

    # Credits
    async def try_consume(self, user_id: str, credits: int, function_name: str) -> ConsumeOutcome:
        day = _utc_day()
        now = _utc_now()
        conn = await self._conn()
        try:
            cur = await conn.execute(
                """
                UPDATE credit_accounts SET
                    remaining_credits = remaining_credits - :credits,
                    daily_used = (CASE WHEN usage_day = :day THEN daily_used ELSE 0 END) + :credits,
                    usage_day = :day,
                    updated_at = :now
                WHERE user_id = :user_id
                  AND remaining_credits >= :credits
                  AND (CASE WHEN usage_day = :day THEN daily_used ELSE 0 END) + :credits <= daily_limit
                """,
                {"credits": credits, "day": day, "now": now, "user_id": user_id},
            )
            granted = cur.rowcount == 1
            await cur.close()
            if granted:
                await conn.execute(
                    "INSERT INTO credit_transactions (user_id, kind, amount, function_name, created_at) VALUES (?, 'consume', ?, ?, ?)",
                    (user_id, credits, function_name, now),
                )
            await conn.commit()
        finally:
            await conn.close()

        if granted:
            return ConsumeOutcome.GRANTED
        status = await self.get_status(user_id)
        if status is None:
            return ConsumeOutcome.NO_ACCOUNT
        if status.remaining_credits < credits:
            return ConsumeOutcome.INSUFFICIENT_CREDITS
        return ConsumeOutcome.DAILY_LIMIT

    async def refund(self, user_id: str, credits: int, function_name: str) -> None:
        if credits <= 0:
            return
        now = _utc_now()
        conn = await self._conn()
        try:
            await conn.execute(
                """
                UPDATE credit_accounts SET
                    remaining_credits = remaining_credits + :credits,
                    daily_used = CASE WHEN usage_day = :day THEN MAX(0, daily_used - :credits) ELSE daily_used END,
                    updated_at = :now
                WHERE user_id = :user_id
                """,
                {"credits": credits, "day": _utc_day(), "now": now, "user_id": user_id},
            )
            await conn.execute(
                "INSERT INTO credit_transactions (user_id, kind, amount, function_name, created_at) VALUES (?, 'refund', ?, ?, ?)",
                (user_id, credits, function_name, now),
            )
            await conn.commit()
        finally:
            await conn.close()

    async def list_transactions(self, user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        conn = await self._conn()
        try:
            cur = await conn.execute(
                "SELECT * FROM credit_transactions WHERE user_id=? ORDER BY id ASC LIMIT ?",
                (user_id, limit),
            )
            rows = await cur.fetchall()
            await cur.close()
            return [dict(r) for r in rows]
        finally:
            await conn.close()

    # Usage
    async def insert_usage(self, record: UsageRecord) -> None:
        created_at = (record.created_at or datetime.now(tz=timezone.utc)).isoformat(timespec="seconds")
        conn = await self._conn()
        try:
            await conn.execute(
                """
                INSERT INTO ai_usage_logs (
                    user_id, function_name, model_name, input_tokens, output_tokens, total_cost,
                    request_duration, status, error_message, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.user_id,
                    record.function_name,
                    record.model_name,
                    record.input_tokens,
                    record.output_tokens,
                    record.total_cost,
                    record.request_duration_ms,
                    record.status,
                    record.error_message,
                    json.dumps(record.metadata) if record.metadata else None,
                    created_at,
                ),
            )
            await conn.commit()
        finally:
            await conn.close()

    async def fetch_usage(self, user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        conn = await self._conn()
        try:
            cur = await conn.execute(
                "SELECT * FROM ai_usage_logs WHERE user_id=? ORDER BY id DESC LIMIT ?",
                (user_id, limit),
            )
            rows = await cur.fetchall()
            await cur.close()
            return [dict(r) for r in rows]
        finally:
            await conn.close()
