"""Tests for the task executor: planning, plan execution, goal mode and cancellation."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import HANG, ScriptedModelClient, StubToolExecutor, plan_response, text_response, tool_response
from taskpilot.errors import TaskFailedError, TaskIncompleteError
from taskpilot.execution.executor import TaskExecutor
from taskpilot.execution.guardrails import GuardrailLimits
from taskpilot.execution.verification import CommandResult
from taskpilot.models.plan import Plan, PlanStep, StepStatus
from taskpilot.models.task import CriteriaType, SuccessCriteria, Task, TaskStatus


class FakeCommandRunner:
    def __init__(self, exit_codes):
        self.exit_codes = list(exit_codes)
        self.commands = []

    async def run(self, command, cancel_token):
        self.commands.append(command)
        return CommandResult(exit_code=self.exit_codes.pop(0), stderr="assertion failed")


def make_executor(task, responses, handlers=None, sink=None, clock=None, **kwargs):
    client = ScriptedModelClient(responses)
    tools = StubToolExecutor(handlers or {})
    kwargs.setdefault("limits", GuardrailLimits(max_global_turns=None))
    executor = TaskExecutor(task, client, tools, event_sink=sink, clock=clock, **kwargs)
    return executor, client, tools


def progress_messages(sink):
    return [event.payload["message"] for event in sink.of_type("progress_update")]


@pytest.mark.asyncio
async def test_plan_and_run_to_completion(sink, clock, tmp_path):
    task = Task(title="Notes", prompt="Summarize notes.md into summary.md")
    executor, client, _ = make_executor(
        task,
        [
            plan_response("Read notes.md", "Write summary.md"),
            tool_response(("read_file", {"path": "notes.md"})),
            text_response("Read the notes."),
            text_response("Wrote the summary."),
        ],
        {"read_file": "line one"},
        sink, clock, workspace=tmp_path,
    )

    result = await executor.execute()

    assert result is task
    assert task.status is TaskStatus.COMPLETED
    assert task.current_attempt == 1
    assert all(step.status is StepStatus.COMPLETED for step in executor.plan)
    assert len(client.calls) == 4
    assert sink.types()[0] == "plan_created"
    assert sink.types()[-1] == "task_completed"
    assert progress_messages(sink) == [
        "Starting execution of 2 steps",
        "Executing step 1/2: Read notes.md",
        "Completed step 1/2",
        "Executing step 2/2: Write summary.md",
        "Completed step 2/2",
        "All steps completed",
    ]
    assert len(executor.conversation_history) >= 4


@pytest.mark.asyncio
async def test_goal_mode_retries_until_criteria_pass(sink, clock, tmp_path):
    def write_file(tool_input):
        (tmp_path / tool_input["path"]).write_text(tool_input["content"], encoding="utf-8")
        return {"success": True, "path": tool_input["path"]}

    task = Task(title="Out", prompt="Produce out.txt", max_attempts=2,
                success_criteria=SuccessCriteria(CriteriaType.FILE_EXISTS, file_paths=["out.txt"]))
    executor, client, _ = make_executor(
        task,
        [
            plan_response("Create out.txt"),
            text_response("I think it is done."),
            tool_response(("write_file", {"path": "out.txt", "content": "hello"})),
            text_response("Created out.txt."),
        ],
        {"write_file": write_file},
        sink, clock, workspace=tmp_path,
    )

    await executor.execute()

    assert task.status is TaskStatus.COMPLETED
    assert task.current_attempt == 2
    assert sink.of_type("verification_failed")[0].payload["will_retry"] is True
    assert sink.of_type("retry_started")[0].payload["attempt"] == 2
    assert sink.of_type("verification_passed")[0].payload["message"] == "All required files exist"
    second_attempt_context = client.calls[2]["messages"][0]["content"]
    assert "This is attempt 2" in second_attempt_context


@pytest.mark.asyncio
async def test_goal_mode_gives_up_after_max_attempts(sink, clock, tmp_path):
    task = Task(title="Tests", prompt="Make the tests pass", max_attempts=2,
                success_criteria=SuccessCriteria(CriteriaType.SHELL_COMMAND, command="pytest -q"))
    runner = FakeCommandRunner([1, 1])
    executor, _, _ = make_executor(task, [plan_response("Fix the failing test")], {}, sink, clock,
                                   workspace=tmp_path, command_runner=runner)

    await executor.execute()

    assert task.status is TaskStatus.FAILED
    assert task.error.startswith("Failed to meet success criteria after 2 attempts")
    assert "exit code 1" in task.error
    assert runner.commands == ["pytest -q", "pytest -q"]
    assert sink.of_type("verification_failed")[-1].payload["will_retry"] is False
    assert sink.types()[-1] == "error"


@pytest.mark.asyncio
async def test_shell_criteria_pass_on_first_attempt(sink, clock, tmp_path):
    task = Task(title="Tests", prompt="Run the tests", max_attempts=3,
                success_criteria=SuccessCriteria(CriteriaType.SHELL_COMMAND, command="make test"))
    runner = FakeCommandRunner([0])
    executor, _, _ = make_executor(task, [plan_response("Run make test")], {}, sink, clock,
                                   workspace=tmp_path, command_runner=runner)

    await executor.execute()

    assert task.status is TaskStatus.COMPLETED
    assert task.current_attempt == 1
    assert not sink.of_type("retry_started")


@pytest.mark.asyncio
async def test_failed_step_fails_the_task(sink, clock, tmp_path):
    task = Task(title="Deploy", prompt="Deploy the site")
    executor, _, _ = make_executor(
        task,
        [plan_response("Deploy the site"), tool_response(("use_skill", {"skill": "deploy"}))],
        {"use_skill": {"success": False, "error": "Skill 'deploy' is not currently executable"}},
        sink, clock, workspace=tmp_path,
    )

    await executor.execute()

    assert task.status is TaskStatus.FAILED
    assert task.error.startswith("Task failed: 1 step(s) failed")
    assert "Step failed 1/1" in " ".join(progress_messages(sink))


@pytest.mark.asyncio
async def test_execute_plan_detects_non_terminal_step(sink, clock, tmp_path):
    executor, _, _ = make_executor(Task(title="t", prompt="p"), [], {}, sink, clock, workspace=tmp_path)
    executor.plan = Plan("p", [PlanStep("1", "Do the thing")])
    executor.run_step = AsyncMock()

    with pytest.raises(TaskIncompleteError, match="Task incomplete"):
        await executor.execute_plan()


@pytest.mark.asyncio
async def test_execute_plan_reports_failed_steps(sink, clock, tmp_path):
    executor, _, _ = make_executor(Task(title="t", prompt="p"), [], {}, sink, clock, workspace=tmp_path)
    executor.plan = Plan("p", [PlanStep("1", "Build the bundle")])

    async def fail_step(step, token):
        step.start()
        step.fail("bundler crashed")

    executor.run_step = fail_step

    with pytest.raises(TaskFailedError, match="Task failed"):
        await executor.execute_plan()

    messages = progress_messages(sink)
    assert any(message.startswith("Step failed") for message in messages)
    assert not any(message.startswith("Completed step") for message in messages)
    assert sink.of_type("progress_update")[-1].payload["has_failures"] is True


@pytest.mark.asyncio
async def test_failed_verification_step_is_tolerated(sink, clock, tmp_path):
    executor, _, _ = make_executor(Task(title="t", prompt="p"), [], {}, sink, clock, workspace=tmp_path)
    executor.plan = Plan("p", [PlanStep("1", "Build"), PlanStep("2", "Verify: bundle loads")])

    async def run(step, token):
        step.start()
        if step.is_verification:
            step.fail("bundle did not load")
        else:
            step.complete()

    executor.run_step = run

    await executor.execute_plan()

    assert progress_messages(sink)[-1] == "All steps completed"


@pytest.mark.asyncio
async def test_steps_inserted_during_execution_are_run(sink, clock, tmp_path):
    executor, _, _ = make_executor(Task(title="t", prompt="p"), [], {}, sink, clock, workspace=tmp_path)
    executor.plan = Plan("p", [PlanStep("1", "First"), PlanStep("2", "Last")])
    seen = []

    async def run(step, token):
        seen.append(step.description)
        step.start()
        if step.id == "1":
            executor.plan.insert_after("1", [PlanStep("1a", "Inserted")])
        step.complete()

    executor.run_step = run

    await executor.execute_plan()

    assert seen == ["First", "Inserted", "Last"]


def test_reset_for_retry(sink, clock, tmp_path):
    task = Task(title="t", prompt="p", max_attempts=3)
    executor, _, _ = make_executor(task, [], {}, sink, clock, workspace=tmp_path)
    executor.plan = Plan("p", [PlanStep("1", "Build")])
    executor.plan[0].start()
    executor.plan[0].fail("boom")
    executor.revision_manager.revision_count = 3
    executor.usage.iterations = 7
    executor.usage.global_turns = 7
    executor.failure_tracker.record_failure("tool", "Quota exceeded")
    task.current_attempt = 2

    executor.reset_for_retry()

    assert executor.plan[0].status is StepStatus.PENDING
    assert executor.plan_revision_count == 0
    assert executor.usage.iterations == 0
    assert executor.usage.global_turns == 7
    assert not executor.failure_tracker.is_disabled("tool")
    assert "This is attempt 2" in executor.conversation_history[-1]["content"]
    assert executor.retry_note == executor.conversation_history[-1]["content"]


@pytest.mark.asyncio
async def test_cancel_during_planning(sink, clock, tmp_path):
    task = Task(title="t", prompt="p")
    executor, _, _ = make_executor(task, [HANG], {}, sink, clock, workspace=tmp_path)

    running = asyncio.ensure_future(executor.execute())
    await asyncio.sleep(0.02)
    executor.cancel()
    await asyncio.wait_for(running, timeout=2)

    assert task.status is TaskStatus.CANCELLED
    assert sink.of_type("task_cancelled")[0].payload["reason"] == "Task cancelled"
    assert not sink.of_type("error")


@pytest.mark.asyncio
async def test_step_timeout_fails_only_that_step(sink, clock, tmp_path):
    task = Task(title="t", prompt="p")
    executor, _, _ = make_executor(
        task,
        [plan_response("Slow step", "Verify: quick check"), HANG, text_response("checked")],
        {}, sink, clock, workspace=tmp_path, step_timeout_ms=50,
    )

    await executor.execute()

    slow, check = executor.plan
    assert slow.status is StepStatus.FAILED
    assert slow.error.startswith("Step timed out")
    assert check.status is StepStatus.COMPLETED
    assert sink.of_type("step_timeout")[0].payload["timeout"] == 50
    assert task.status is TaskStatus.FAILED


@pytest.mark.asyncio
async def test_question_moves_task_to_awaiting_input(sink, clock, tmp_path):
    task = Task(title="t", prompt="Deploy")
    executor, _, _ = make_executor(
        task,
        [plan_response("Deploy"), text_response("Which region should I deploy to?")],
        {}, sink, clock, workspace=tmp_path, pause_for_questions=True,
    )

    await executor.execute()

    assert task.status is TaskStatus.AWAITING_INPUT
    assert executor.plan[0].status is StepStatus.PENDING
    assert not sink.of_type("error")


@pytest.mark.asyncio
async def test_budget_exhaustion_fails_task(sink, clock, tmp_path):
    task = Task(title="t", prompt="p")
    executor, _, _ = make_executor(
        task,
        [plan_response("Step one"), tool_response(("read_file", {"path": "a"}))],
        {"read_file": "x"},
        sink, clock, workspace=tmp_path, limits=GuardrailLimits(max_global_turns=2),
    )

    await executor.execute()

    assert task.status is TaskStatus.FAILED
    assert "Global turn limit exceeded" in task.error


@pytest.mark.asyncio
async def test_spawn_depth_limit(clock, tmp_path):
    parent = Task(title="root", prompt="p", depth=3)
    child = parent.spawn_child("child", "q")
    assert child.parent_task_id == parent.id

    with pytest.raises(ValueError, match="maximum spawn depth"):
        TaskExecutor(child, ScriptedModelClient(), StubToolExecutor(), clock=clock, workspace=tmp_path,
                     max_spawn_depth=3)


@pytest.mark.asyncio
async def test_pause_and_resume_between_steps(sink, clock, tmp_path):
    task = Task(title="t", prompt="p")
    executor, _, _ = make_executor(task, [plan_response("Only step"), text_response("ok")], {}, sink, clock,
                                   workspace=tmp_path)
    executor.pause()
    assert executor.is_paused

    running = asyncio.ensure_future(executor.execute())
    await asyncio.sleep(0.02)
    assert not sink.of_type("step_started")

    executor.resume()
    await asyncio.wait_for(running, timeout=2)
    assert task.status is TaskStatus.COMPLETED
