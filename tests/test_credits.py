from __future__ import annotations

import asyncio
from datetime import date

import pytest

from agent_backend.models import AgentType, ConsumeOutcome, OrchestrationRequest
from agent_backend.services.credits import (
    REASON_DAILY_LIMIT,
    REASON_INSUFFICIENT,
    CreditGovernor,
    InMemoryCreditLedger,
    estimate_request_credits,
    tokens_to_credits,
)


class TestTokensToCredits:
    def test_output_tokens_weigh_double(self):
        assert tokens_to_credits(1000, 0) == 1
        assert tokens_to_credits(0, 1000) == 2
        assert tokens_to_credits(500, 250) == 1
        assert tokens_to_credits(1001, 0) == 2

    def test_ratio_is_configurable(self):
        assert tokens_to_credits(1000, 1000, tokens_per_credit=500, output_weight=3) == 8

    def test_zero_usage_costs_nothing(self):
        assert tokens_to_credits(0, 0) == 0


class TestEstimate:
    def test_search_adds_allowance(self, settings):
        request = OrchestrationRequest(user_id="u", message="hello", agent_type=AgentType.RESEARCH_ENGINE)
        without = estimate_request_credits(request, settings, use_search=False)
        with_search = estimate_request_credits(request, settings, use_search=True)
        assert with_search - without == 2

    def test_estimate_is_at_least_one(self, settings):
        request = OrchestrationRequest(user_id="u", message="", agent_type=AgentType.MENTOR)
        assert estimate_request_credits(request, settings, use_search=False) >= 1


class TestCreditGovernor:
    async def test_grant_decrements_ledger(self):
        ledger = InMemoryCreditLedger()
        ledger.set_account("u", remaining_credits=10, daily_limit=100)
        governor = CreditGovernor(ledger)

        reservation = await governor.reserve("u", 4, "orchestrate-cdv")

        assert reservation.granted
        assert reservation.amount_reserved == 4
        assert reservation.reason == ""
        status = await governor.status("u")
        assert status.remaining_credits == 6
        assert status.daily_used == 4

    async def test_insufficient_credits_leaves_ledger_untouched(self):
        ledger = InMemoryCreditLedger()
        ledger.set_account("u", remaining_credits=2, daily_limit=100)
        governor = CreditGovernor(ledger)

        reservation = await governor.reserve("u", 3, "orchestrate-cir")

        assert not reservation.granted
        assert reservation.reason == REASON_INSUFFICIENT
        assert (await governor.status("u")).remaining_credits == 2

    async def test_daily_limit_is_reported_separately(self):
        ledger = InMemoryCreditLedger()
        ledger.set_account("u", remaining_credits=100, daily_limit=5, daily_used=4)
        governor = CreditGovernor(ledger)

        reservation = await governor.reserve("u", 2, "orchestrate-cia")

        assert not reservation.granted
        assert reservation.reason == REASON_DAILY_LIMIT

    async def test_unknown_user_is_denied(self):
        governor = CreditGovernor(InMemoryCreditLedger())
        reservation = await governor.reserve("nobody", 1, "orchestrate-clipogino")
        assert not reservation.granted
        assert reservation.reason == REASON_INSUFFICIENT

    async def test_auto_provisioning(self):
        ledger = InMemoryCreditLedger()
        governor = CreditGovernor(ledger, default_plan_credits=50, default_daily_limit=20)

        reservation = await governor.reserve("new-user", 5, "orchestrate-clipogino")

        assert reservation.granted
        status = await governor.status("new-user")
        assert status.remaining_credits == 45
        assert status.daily_limit == 20

    async def test_refund_restores_credits(self):
        ledger = InMemoryCreditLedger()
        ledger.set_account("u", remaining_credits=10)
        governor = CreditGovernor(ledger)

        reservation = await governor.reserve("u", 4, "orchestrate-cdv")
        await governor.refund(reservation)

        status = await governor.status("u")
        assert status.remaining_credits == 10
        assert status.daily_used == 0

    async def test_settle_returns_surplus_and_absorbs_overage(self):
        ledger = InMemoryCreditLedger()
        ledger.set_account("u", remaining_credits=10)
        governor = CreditGovernor(ledger)

        reservation = await governor.reserve("u", 4, "orchestrate-cdv")
        assert await governor.settle(reservation, 1) == 1
        assert (await governor.status("u")).remaining_credits == 9

        reservation = await governor.reserve("u", 2, "orchestrate-cdv")
        assert await governor.settle(reservation, 7) == 2
        assert (await governor.status("u")).remaining_credits == 7

    async def test_denied_reservation_is_never_refunded(self):
        ledger = InMemoryCreditLedger()
        ledger.set_account("u", remaining_credits=1)
        governor = CreditGovernor(ledger)

        reservation = await governor.reserve("u", 5, "orchestrate-cdv")
        await governor.refund(reservation)
        assert (await governor.status("u")).remaining_credits == 1

    @pytest.mark.parametrize("budget,cost,attempts", [(7, 2, 10), (5, 5, 8), (0, 1, 4), (9, 3, 3)])
    async def test_concurrent_reservations_never_over_grant(self, budget, cost, attempts):
        ledger = InMemoryCreditLedger()
        ledger.set_account("u", remaining_credits=budget, daily_limit=1000)
        governor = CreditGovernor(ledger)

        results = await asyncio.gather(
            *(governor.reserve("u", cost, "orchestrate-cdv") for _ in range(attempts))
        )

        granted = sum(1 for r in results if r.granted)
        assert granted == min(attempts, budget // cost)
        assert (await governor.status("u")).remaining_credits == budget - granted * cost


class TestInMemoryLedger:
    async def test_outcomes(self):
        ledger = InMemoryCreditLedger()
        assert await ledger.try_consume("u", 1, "f") is ConsumeOutcome.NO_ACCOUNT
        ledger.set_account("u", remaining_credits=3, daily_limit=2)
        assert await ledger.try_consume("u", 4, "f") is ConsumeOutcome.INSUFFICIENT_CREDITS
        assert await ledger.try_consume("u", 3, "f") is ConsumeOutcome.DAILY_LIMIT
        assert await ledger.try_consume("u", 2, "f") is ConsumeOutcome.GRANTED

    async def test_daily_usage_rolls_over_on_new_utc_day(self):
        today = [date(2025, 6, 1)]
        ledger = InMemoryCreditLedger(clock=lambda: today[0])
        ledger.set_account("u", remaining_credits=100, daily_limit=10, daily_used=10)
        assert await ledger.try_consume("u", 1, "f") is ConsumeOutcome.DAILY_LIMIT

        today[0] = date(2025, 6, 2)
        assert (await ledger.get_status("u")).daily_used == 0
        assert await ledger.try_consume("u", 4, "f") is ConsumeOutcome.GRANTED

        status = await ledger.get_status("u")
        assert status.daily_used == 4
        assert status.remaining_credits == 96

    async def test_refund_from_previous_day_leaves_today_untouched(self):
        today = [date(2025, 6, 1)]
        ledger = InMemoryCreditLedger(clock=lambda: today[0])
        ledger.set_account("u", remaining_credits=100, daily_limit=50)
        assert await ledger.try_consume("u", 5, "f") is ConsumeOutcome.GRANTED

        today[0] = date(2025, 6, 2)
        await ledger.refund("u", 5, "f")

        status = await ledger.get_status("u")
        assert status.remaining_credits == 100
        assert status.daily_used == 0
