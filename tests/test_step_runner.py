"""Tests for the per-step conversation loop."""

import pytest

from conftest import ScriptedModelClient, StubToolExecutor, empty_response, text_response, tool_response
from taskpilot.errors import AwaitingUserInputError, BudgetExceededError
from taskpilot.execution.executor import TaskExecutor
from taskpilot.execution.guardrails import GuardrailLimits
from taskpilot.execution.step_runner import EMPTY_RESPONSE_NUDGE, UNAVAILABLE_TOOLS_ERROR
from taskpilot.models.plan import Plan, PlanStep, StepStatus
from taskpilot.models.task import Task


def make_executor(responses, handlers, sink, clock, prompt="Ship the release", **kwargs):
    client = ScriptedModelClient(responses)
    tools = StubToolExecutor(handlers)
    kwargs.setdefault("limits", GuardrailLimits(max_global_turns=None))
    executor = TaskExecutor(Task(title="test", prompt=prompt), client, tools, event_sink=sink, clock=clock, **kwargs)
    return executor, client, tools


async def run_step(executor, plan, step):
    return await executor.step_runner.run(executor.task, plan, step, executor.cancel_token)


def single_step_plan(description="Run the test suite"):
    return Plan("test", [PlanStep("1", description)])


@pytest.mark.asyncio
async def test_text_reply_completes_step(sink, clock):
    executor, client, _ = make_executor([text_response("All tests passed.")], {}, sink, clock)
    plan = single_step_plan()

    messages = await run_step(executor, plan, plan[0])

    assert plan[0].status is StepStatus.COMPLETED
    assert messages[0]["content"].startswith("Execute this step: Run the test suite")
    assert "revise_plan" in client.calls[0]["tools"]
    assert sink.types() == ["step_started", "assistant_message", "step_completed"]


@pytest.mark.asyncio
async def test_unresolved_soft_failure_fails_the_step(sink, clock):
    executor, _, _ = make_executor(
        [tool_response(("run_command", {"command": "npm test"})), text_response("done")],
        {"run_command": {"success": False, "exitCode": 1}},
        sink, clock,
    )
    plan = single_step_plan()

    await run_step(executor, plan, plan[0])

    assert plan[0].status is StepStatus.FAILED
    assert "run_command" in plan[0].error
    assert sink.of_type("step_failed")[0].payload["reason"] == plan[0].error


@pytest.mark.asyncio
async def test_later_success_resolves_earlier_failure(sink, clock):
    executor, _, _ = make_executor(
        [
            tool_response(("run_command", {"command": "npm test"})),
            tool_response(("run_command", {"command": "npm test -- --runInBand"})),
            text_response("Tests pass now."),
        ],
        {"run_command": lambda tool_input: {"success": "runInBand" in tool_input["command"], "exitCode": 0}},
        sink, clock,
    )
    plan = single_step_plan()

    await run_step(executor, plan, plan[0])

    assert plan[0].status is StepStatus.COMPLETED


@pytest.mark.asyncio
async def test_non_idempotent_duplicate_without_success_fails(sink, clock):
    call = ("send_email", {"to": "ops@example.com", "subject": "Release"})
    executor, _, tools = make_executor(
        [tool_response(call), tool_response(call), tool_response(call)],
        {"send_email": {"success": False}},
        sink, clock,
    )
    plan = single_step_plan("Notify ops")

    await run_step(executor, plan, plan[0])

    assert plan[0].status is StepStatus.FAILED
    assert "unavailable or failed" in plan[0].error
    assert plan[0].error == UNAVAILABLE_TOOLS_ERROR
    assert len(tools.calls) == 2


@pytest.mark.asyncio
async def test_duplicate_of_successful_call_completes_step(sink, clock):
    call = ("send_email", {"to": "ops@example.com"})
    executor, client, tools = make_executor(
        [tool_response(call), tool_response(call), tool_response(call)],
        {"send_email": {"success": True}},
        sink, clock,
    )
    plan = single_step_plan("Notify ops")

    await run_step(executor, plan, plan[0])

    assert plan[0].status is StepStatus.COMPLETED
    assert len(tools.calls) == 2
    assert len(client.calls) == 3


@pytest.mark.asyncio
async def test_unrecoverable_tool_failure_fails_fast(sink, clock):
    executor, client, _ = make_executor(
        [tool_response(("use_skill", {"skill": "pdf"})), text_response("should not be reached")],
        {"use_skill": {"success": False, "error": "Skill 'pdf' is not currently executable"}},
        sink, clock,
    )
    plan = single_step_plan("Render the PDF")

    await run_step(executor, plan, plan[0])

    assert plan[0].status is StepStatus.FAILED
    assert "not currently executable" in plan[0].error
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_idempotent_failure_after_success_does_not_fail_step(sink, clock):
    executor, _, _ = make_executor(
        [
            tool_response(("glob", {"pattern": "docs/*.md"})),
            tool_response(("web_search", {"query": "release checklist"})),
            text_response("Found the docs locally."),
        ],
        {"glob": ["docs/a.md"], "web_search": RuntimeError("network unreachable")},
        sink, clock,
    )
    plan = single_step_plan("Find the release docs")

    await run_step(executor, plan, plan[0])

    assert plan[0].status is StepStatus.COMPLETED


@pytest.mark.asyncio
async def test_namespaced_tool_names_are_normalized(sink, clock):
    executor, _, tools = make_executor(
        [tool_response(("functions.web_search", {"query": "asyncio"})), text_response("ok")],
        {"web_search": {"success": True, "results": []}},
        sink, clock,
    )
    plan = single_step_plan("Search")

    await run_step(executor, plan, plan[0])

    assert tools.calls[0][0] == "web_search"
    assert sink.of_type("tool_call")[0].payload["tool"] == "web_search"


@pytest.mark.asyncio
async def test_question_pauses_when_enabled(sink, clock):
    executor, _, _ = make_executor([text_response("Which environment should I deploy to?")], {}, sink, clock,
                                   pause_for_questions=True)
    plan = single_step_plan("Deploy")

    with pytest.raises(AwaitingUserInputError):
        await run_step(executor, plan, plan[0])

    assert plan[0].status is StepStatus.PENDING
    assert "Which environment" in sink.of_type("awaiting_user_input")[0].payload["question"]


@pytest.mark.asyncio
async def test_question_ends_step_when_pausing_disabled(sink, clock):
    executor, client, _ = make_executor([text_response("Which environment should I deploy to?")], {}, sink, clock,
                                        pause_for_questions=False)
    plan = single_step_plan("Deploy")

    await run_step(executor, plan, plan[0])

    assert plan[0].status is StepStatus.COMPLETED
    assert len(client.calls) == 1
    assert not sink.of_type("awaiting_user_input")


@pytest.mark.asyncio
async def test_empty_responses_are_bounded(sink, clock):
    executor, client, _ = make_executor([empty_response(), empty_response(), empty_response()], {}, sink, clock)
    plan = single_step_plan()

    messages = await run_step(executor, plan, plan[0])

    assert len(client.calls) == 3
    assert plan[0].status is StepStatus.COMPLETED
    assert sum(1 for message in messages if message["content"] == EMPTY_RESPONSE_NUDGE) == 3


@pytest.mark.asyncio
async def test_turns_are_bounded(sink, clock):
    responses = [tool_response(("read_file", {"path": f"file{index}.txt"})) for index in range(10)]
    executor, client, _ = make_executor(responses, {"read_file": "content"}, sink, clock)
    plan = single_step_plan()

    await run_step(executor, plan, plan[0])

    assert len(client.calls) == 5
    assert plan[0].status is StepStatus.COMPLETED


@pytest.mark.asyncio
async def test_revise_plan_tool_inserts_steps(sink, clock):
    executor, client, _ = make_executor(
        [
            tool_response(("revise_plan", {"steps": ["Write tests", "Run tests"], "reason": "no coverage"})),
            text_response("Plan updated."),
        ],
        {}, sink, clock,
    )
    plan = Plan("test", [PlanStep("1", "Implement feature"), PlanStep("2", "Document feature")])

    await run_step(executor, plan, plan[0])

    assert [step.description for step in plan] == [
        "Implement feature", "Write tests", "Run tests", "Document feature",
    ]
    assert plan[0].status is StepStatus.COMPLETED
    assert executor.plan_revision_count == 1
    tool_result = client.calls[1]["messages"][-1]["content"][0]
    assert tool_result["type"] == "tool_result"
    assert '"success": true' in tool_result["content"]


@pytest.mark.asyncio
async def test_blocked_revision_is_reported_to_model(sink, clock):
    executor, client, _ = make_executor(
        [tool_response(("revise_plan", {"steps": [], "reason": "nothing"})), text_response("ok")],
        {}, sink, clock,
    )
    plan = single_step_plan()

    await run_step(executor, plan, plan[0])

    tool_result = client.calls[1]["messages"][-1]["content"][0]
    assert tool_result["is_error"] is True
    assert len(plan) == 1
    assert sink.of_type("plan_revision_blocked")


@pytest.mark.asyncio
async def test_budget_exceeded_fails_step_and_propagates(sink, clock):
    executor, _, _ = make_executor(
        [tool_response(("read_file", {"path": "a.txt"})), text_response("unreachable")],
        {"read_file": "content"},
        sink, clock,
        limits=GuardrailLimits(max_global_turns=1),
    )
    plan = single_step_plan()

    with pytest.raises(BudgetExceededError):
        await run_step(executor, plan, plan[0])

    assert plan[0].status is StepStatus.FAILED
    assert "Global turn limit exceeded" in plan[0].error
    assert sink.of_type("error")


@pytest.mark.asyncio
async def test_recovery_steps_inserted_once_per_signature(sink, clock):
    failing = {"success": False, "exitCode": 1}
    responses = [
        tool_response(("run_command", {"command": "deploy"})), text_response("done"),
        tool_response(("run_command", {"command": "deploy"})), text_response("done"),
        tool_response(("run_command", {"command": "deploy --force"})), text_response("done"),
    ]
    outcomes = [failing, failing, {"success": False, "error": "upload rejected by host"}]
    executor, _, _ = make_executor(responses, {"run_command": lambda tool_input: outcomes.pop(0)}, sink, clock,
                                   prompt="Deploy the site; if it's blocked, find a workaround")
    assert executor.escalator.recovery_requested
    plan = Plan("test", [PlanStep("1", "Deploy the site"), PlanStep("2", "Verify: site responds")])
    step = plan[0]

    await run_step(executor, plan, step)
    assert step.status is StepStatus.FAILED
    assert len(plan) == 4
    assert plan[1].description.startswith("Try an alternative toolchain")
    assert plan[3].description == "Verify: site responds"
    assert executor.plan_revision_count == 1

    step.reset()
    await run_step(executor, plan, step)
    assert len(plan) == 4
    assert executor.plan_revision_count == 1

    step.reset()
    await run_step(executor, plan, step)
    assert len(plan) == 6
    assert executor.plan_revision_count == 2


@pytest.mark.asyncio
async def test_no_recovery_without_intent(sink, clock):
    executor, _, _ = make_executor(
        [tool_response(("run_command", {"command": "deploy"})), text_response("done")],
        {"run_command": {"success": False, "exitCode": 1}},
        sink, clock,
    )
    plan = Plan("test", [PlanStep("1", "Deploy the site"), PlanStep("2", "Announce")])

    await run_step(executor, plan, plan[0])

    assert len(plan) == 2
    assert executor.plan_revision_count == 0


@pytest.mark.asyncio
async def test_context_includes_completed_steps_and_knowledge(sink, clock):
    executor, client, _ = make_executor(
        [tool_response(("read_file", {"path": "notes.md"})), text_response("read"), text_response("second")],
        {"read_file": "notes"},
        sink, clock,
    )
    plan = Plan("test", [PlanStep("1", "Read notes"), PlanStep("2", "Summarize notes")])

    await run_step(executor, plan, plan[0])
    await run_step(executor, plan, plan[1])

    context = client.calls[-1]["messages"][0]["content"]
    assert "Previous steps already completed:\n- Read notes" in context
    assert "Files already read: notes.md" in context
    assert len(client.calls[-1]["messages"]) == 1
