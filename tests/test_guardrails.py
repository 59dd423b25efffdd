"""Tests for guardrail budgets and the model gateway."""

import pytest

from conftest import ScriptedModelClient, text_response
from taskpilot.errors import BudgetExceededError
from taskpilot.execution.cancellation import CancellationToken
from taskpilot.execution.guardrails import GuardrailLimits, UsageCounters, check_budgets, estimate_cost
from taskpilot.llm.gateway import ModelGateway
from taskpilot.llm.retry import BackoffRetryCaller
from taskpilot.llm.types import Usage


def test_unlimited_limits_never_raise():
    usage = UsageCounters(input_tokens=10**9, output_tokens=10**9, cost=10**6, iterations=10**6, global_turns=10**6)
    check_budgets(usage, GuardrailLimits(max_global_turns=None))


def test_global_turn_limit_is_checked_first():
    usage = UsageCounters(global_turns=5, iterations=5, input_tokens=1000)
    limits = GuardrailLimits(max_global_turns=5, max_iterations=5, max_tokens=10)
    with pytest.raises(BudgetExceededError) as exc_info:
        check_budgets(usage, limits)
    assert exc_info.value.limit_name == "global_turns"
    assert "Global turn limit exceeded: 5/5" in str(exc_info.value)


def test_token_and_cost_limits():
    with pytest.raises(BudgetExceededError, match="Token budget exceeded"):
        check_budgets(UsageCounters(input_tokens=600, output_tokens=400), GuardrailLimits(max_tokens=1000))

    with pytest.raises(BudgetExceededError, match="Cost budget exceeded") as exc_info:
        check_budgets(UsageCounters(cost=2.5), GuardrailLimits(max_cost=2.0))
    assert exc_info.value.limit_name == "cost"


def test_reset_iterations_keeps_global_turns():
    usage = UsageCounters()
    usage.record_response(Usage(input_tokens=3, output_tokens=2), cost=0.5)
    usage.record_response(None)
    usage.reset_iterations()
    assert usage.iterations == 0
    assert usage.global_turns == 2
    assert usage.total_tokens == 5
    assert usage.cost == 0.5


def test_estimate_cost_per_million_tokens():
    cost = estimate_cost(Usage(input_tokens=1_000_000, output_tokens=500_000), 3.0, 15.0)
    assert cost == pytest.approx(10.5)
    assert estimate_cost(None, 3.0, 15.0) == 0.0


@pytest.mark.asyncio
async def test_gateway_records_usage_and_blocks_when_limit_reached():
    client = ScriptedModelClient([text_response("one"), text_response("two")])
    usage = UsageCounters()
    gateway = ModelGateway(client, model="test-model", limits=GuardrailLimits(max_global_turns=1), usage=usage,
                           retry_caller=BackoffRetryCaller(initial_delay_ms=1))
    token = CancellationToken()

    response = await gateway.create_message("system", [{"role": "user", "content": "hi"}], token)
    assert response.text == "one"
    assert usage.global_turns == 1
    assert usage.total_tokens == 15

    with pytest.raises(BudgetExceededError):
        await gateway.create_message("system", [{"role": "user", "content": "again"}], token)
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_gateway_converts_dict_responses():
    client = ScriptedModelClient([{
        "stop_reason": "end_turn",
        "content": [{"type": "text", "text": "from a dict"}],
        "usage": {"input_tokens": 4, "output_tokens": 6},
    }])
    gateway = ModelGateway(client, limits=GuardrailLimits(max_global_turns=None))

    response = await gateway.create_message("s", [{"role": "user", "content": "x"}], CancellationToken())
    assert response.text == "from a dict"
    assert gateway.usage.total_tokens == 10
