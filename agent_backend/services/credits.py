"""
Credit governor.

Every billable step goes through reserve() before any provider is contacted.
The ledger is the only state shared between concurrent requests, so the
check-and-decrement lives inside the ledger as one atomic operation.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional, Protocol

from ..config import AppSettings
from ..models import (
    ConsumeOutcome,
    CreditReservation,
    CreditStatus,
    OrchestrationRequest,
)
from ..token_utils import estimate_tokens
from .prompts import profile_for

logger = logging.getLogger(__name__)

REASON_INSUFFICIENT = "insufficient credits"
REASON_DAILY_LIMIT = "daily limit exceeded"

_DENIAL_REASONS = {
    ConsumeOutcome.INSUFFICIENT_CREDITS: REASON_INSUFFICIENT,
    ConsumeOutcome.NO_ACCOUNT: REASON_INSUFFICIENT,
    ConsumeOutcome.DAILY_LIMIT: REASON_DAILY_LIMIT,
}


class CreditLedger(Protocol):
    async def try_consume(self, user_id: str, credits: int, function_name: str) -> ConsumeOutcome:
        ...

    async def refund(self, user_id: str, credits: int, function_name: str) -> None:
        ...

    async def get_status(self, user_id: str) -> Optional[CreditStatus]:
        ...

    async def ensure_account(self, user_id: str, *, plan_credits: int, daily_limit: int) -> None:
        ...


def tokens_to_credits(
    input_tokens: int,
    output_tokens: int,
    *,
    tokens_per_credit: int = 1000,
    output_weight: int = 2,
) -> int:
    weighted = max(0, input_tokens) + output_weight * max(0, output_tokens)
    if weighted <= 0:
        return 0
    return math.ceil(weighted / max(1, tokens_per_credit))


def estimate_request_credits(
    request: OrchestrationRequest,
    settings: AppSettings,
    use_search: bool,
) -> int:
    """Pre-flight estimate, computed before any search or model call is made."""
    profile = profile_for(request.agent_type)
    base_prompt = request.custom_system_prompt or profile.template
    input_tokens = estimate_tokens(base_prompt) + estimate_tokens(request.message)
    if use_search:
        input_tokens += settings.search_token_allowance
    output_tokens = min(profile.max_tokens, settings.expected_completion_tokens)
    return max(
        1,
        tokens_to_credits(
            input_tokens,
            output_tokens,
            tokens_per_credit=settings.tokens_per_credit,
            output_weight=settings.output_token_weight,
        ),
    )


@dataclass
class _Account:
    remaining_credits: int
    daily_limit: int
    daily_used: int = 0
    usage_day: Optional[date] = None


class InMemoryCreditLedger:
    """Process-local ledger. Each user's balance is guarded by its own lock.

    The daily counter rolls over on the UTC date, as in the SQLite ledger.
    """

    def __init__(self, clock: Optional[Callable[[], date]] = None) -> None:
        self._accounts: Dict[str, _Account] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._today = clock or (lambda: datetime.now(tz=timezone.utc).date())

    def _lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    def _rollover(self, account: _Account) -> None:
        today = self._today()
        if account.usage_day != today:
            account.usage_day = today
            account.daily_used = 0

    def set_account(self, user_id: str, remaining_credits: int, daily_limit: int = 100, daily_used: int = 0) -> None:
        self._accounts[user_id] = _Account(remaining_credits, daily_limit, daily_used, self._today())

    async def ensure_account(self, user_id: str, *, plan_credits: int, daily_limit: int) -> None:
        async with self._lock(user_id):
            if user_id not in self._accounts:
                self._accounts[user_id] = _Account(plan_credits, daily_limit, 0, self._today())

    async def try_consume(self, user_id: str, credits: int, function_name: str) -> ConsumeOutcome:
        async with self._lock(user_id):
            account = self._accounts.get(user_id)
            if account is None:
                return ConsumeOutcome.NO_ACCOUNT
            self._rollover(account)
            if account.remaining_credits < credits:
                return ConsumeOutcome.INSUFFICIENT_CREDITS
            if account.daily_used + credits > account.daily_limit:
                return ConsumeOutcome.DAILY_LIMIT
            account.remaining_credits -= credits
            account.daily_used += credits
            return ConsumeOutcome.GRANTED

    async def refund(self, user_id: str, credits: int, function_name: str) -> None:
        if credits <= 0:
            return
        async with self._lock(user_id):
            account = self._accounts.get(user_id)
            if account is None:
                return
            account.remaining_credits += credits
            if account.usage_day == self._today():
                account.daily_used = max(0, account.daily_used - credits)

    async def get_status(self, user_id: str) -> Optional[CreditStatus]:
        account = self._accounts.get(user_id)
        if account is None:
            return None
        daily_used = account.daily_used if account.usage_day == self._today() else 0
        return CreditStatus(
            user_id=user_id,
            remaining_credits=account.remaining_credits,
            daily_used=daily_used,
            daily_limit=account.daily_limit,
        )


class CreditGovernor:
    def __init__(
        self,
        ledger: CreditLedger,
        *,
        tokens_per_credit: int = 1000,
        output_weight: int = 2,
        default_plan_credits: int = 0,
        default_daily_limit: int = 100,
    ) -> None:
        self.ledger = ledger
        self.tokens_per_credit = tokens_per_credit
        self.output_weight = output_weight
        self.default_plan_credits = default_plan_credits
        self.default_daily_limit = default_daily_limit

    @classmethod
    def from_settings(cls, ledger: CreditLedger, settings: AppSettings) -> "CreditGovernor":
        return cls(
            ledger,
            tokens_per_credit=settings.tokens_per_credit,
            output_weight=settings.output_token_weight,
            default_plan_credits=settings.default_plan_credits,
            default_daily_limit=settings.default_daily_credit_limit,
        )

    def credits_for(self, input_tokens: int, output_tokens: int) -> int:
        return tokens_to_credits(
            input_tokens,
            output_tokens,
            tokens_per_credit=self.tokens_per_credit,
            output_weight=self.output_weight,
        )

    async def reserve(self, user_id: str, estimated_credits: int, function_name: str) -> CreditReservation:
        credits = max(0, int(estimated_credits))
        if self.default_plan_credits > 0:
            await self.ledger.ensure_account(
                user_id,
                plan_credits=self.default_plan_credits,
                daily_limit=self.default_daily_limit,
            )

        outcome = await self.ledger.try_consume(user_id, credits, function_name)
        if outcome is ConsumeOutcome.GRANTED:
            logger.info("Reserved %s credits for %s (%s)", credits, user_id, function_name)
            return CreditReservation(
                user_id=user_id,
                amount_reserved=credits,
                function_name=function_name,
                granted=True,
            )

        reason = _DENIAL_REASONS.get(outcome, REASON_INSUFFICIENT)
        logger.info("Credit reservation denied for %s (%s): %s", user_id, function_name, reason)
        return CreditReservation(
            user_id=user_id,
            amount_reserved=0,
            function_name=function_name,
            granted=False,
            reason=reason,
        )

    async def refund(self, reservation: CreditReservation) -> None:
        if not reservation.granted or reservation.amount_reserved <= 0:
            return
        await self.ledger.refund(reservation.user_id, reservation.amount_reserved, reservation.function_name)
        logger.info(
            "Refunded %s credits to %s (%s)",
            reservation.amount_reserved,
            reservation.user_id,
            reservation.function_name,
        )

    async def settle(self, reservation: CreditReservation, actual_credits: int) -> int:
        """Return the unused part of a reservation. Returns the credits actually charged."""
        if not reservation.granted:
            return 0
        surplus = reservation.amount_reserved - max(0, actual_credits)
        if surplus > 0:
            await self.ledger.refund(reservation.user_id, surplus, reservation.function_name)
            return reservation.amount_reserved - surplus
        if surplus < 0:
            logger.debug(
                "Actual usage for %s exceeded reservation by %s credits; absorbed",
                reservation.user_id,
                -surplus,
            )
        return reservation.amount_reserved

    async def status(self, user_id: str) -> Optional[CreditStatus]:
        return await self.ledger.get_status(user_id)
