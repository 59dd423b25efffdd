#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Task Executor.

Top-level driver for one task: analyze -> plan -> run the plan, repeating the
plan in goal mode until the success criteria pass or attempts run out.

The executor owns every piece of per-task state (trackers, circuit breaker,
usage counters, cancellation token), so two executors never share anything.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from taskpilot import config
from taskpilot.debug_logger import get_logger
from taskpilot.errors import (
    AwaitingUserInputError,
    OperationCancelled,
    SuccessCriteriaNotMetError,
    TaskFailedError,
    TaskIncompleteError,
    TaskPilotError,
)
from taskpilot.execution.cancellation import STEP_TIMEOUT, TASK_CANCELLED, CancellationToken, PauseGate
from taskpilot.execution.classifiers import is_recovery_intent
from taskpilot.execution.events import EventEmitter, EventSink, EventType, LoggingEventSink
from taskpilot.execution.guardrails import GuardrailLimits, UsageCounters
from taskpilot.execution.plan_revision import PlanRevisionManager, RecoveryEscalator
from taskpilot.execution.planner import Planner
from taskpilot.execution.step_runner import StepRunner
from taskpilot.execution.task_analysis import analyze_task
from taskpilot.execution.verification import CommandRunner, SubprocessCommandRunner, verify_success_criteria
from taskpilot.llm.gateway import ModelGateway
from taskpilot.llm.retry import BackoffRetryCaller
from taskpilot.llm.types import ModelClient
from taskpilot.models.plan import Plan, PlanStep, StepStatus
from taskpilot.models.task import Task, TaskStatus
from taskpilot.tools.deduplicator import ToolCallDeduplicator
from taskpilot.tools.failure_tracker import ToolFailureTracker
from taskpilot.tools.file_tracker import FileOperationTracker
from taskpilot.tools.mediator import ToolDispatchMediator, ToolExecutor
from taskpilot.tools.utils import Clock, now_ms

logger = get_logger()


def retry_context_message(attempt: int) -> str:
    return ("The previous attempt did not meet the success criteria. Please try a different approach. "
            f"This is attempt {attempt}.")


class TaskExecutor:
    """Runs a single task to a final status.

    Args:
        task: Task to run; only its status, attempt and error are written
        model_client: Implementation of the model-call contract
        tool_executor: Concrete tools the model may call
        event_sink: Receives the event stream (defaults to the debug log)
        limits: Guardrail limits (defaults to ``GuardrailLimits.from_env()``)
        command_runner: Runs shell success criteria
        clock: Millisecond clock shared by the trackers
    """

    def __init__(
        self,
        task: Task,
        model_client: ModelClient,
        tool_executor: ToolExecutor,
        event_sink: Optional[EventSink] = None,
        model: str = config.DEFAULT_MODEL,
        workspace: Union[str, Path] = config.ROOT,
        limits: Optional[GuardrailLimits] = None,
        command_runner: Optional[CommandRunner] = None,
        retry_caller: Optional[BackoffRetryCaller] = None,
        pause_for_questions: bool = config.PAUSE_FOR_QUESTIONS,
        step_timeout_ms: int = config.STEP_TIMEOUT_MS,
        tool_timeout_ms: int = config.TOOL_TIMEOUT_MS,
        max_spawn_depth: int = config.MAX_SPAWN_DEPTH,
        clock: Clock = now_ms,
    ):
        if task.depth > max_spawn_depth:
            raise ValueError(f"Task depth {task.depth} exceeds the maximum spawn depth of {max_spawn_depth}")

        self.task = task
        self.workspace = Path(workspace)
        self.step_timeout_ms = step_timeout_ms
        self.emit = EventEmitter(event_sink or LoggingEventSink(), task.id)

        self.cancel_token = CancellationToken()
        self.pause_gate = PauseGate()
        self.usage = UsageCounters()

        self.failure_tracker = ToolFailureTracker(clock=clock)
        self.deduplicator = ToolCallDeduplicator(clock=clock)
        self.file_tracker = FileOperationTracker(clock=clock)
        self.mediator = ToolDispatchMediator(
            tool_executor,
            self.failure_tracker,
            self.deduplicator,
            self.file_tracker,
            emit=self.emit,
            timeout_ms=tool_timeout_ms,
        )

        self.gateway = ModelGateway(
            model_client,
            model=model,
            limits=limits,
            usage=self.usage,
            retry_caller=retry_caller or BackoffRetryCaller(on_retry=self._on_llm_retry),
        )
        self.planner = Planner(self.gateway, self.emit)
        self.revision_manager = PlanRevisionManager(self.emit)
        self.escalator = RecoveryEscalator(self.revision_manager)
        self.escalator.recovery_requested = is_recovery_intent(task.prompt)
        self.step_runner = StepRunner(
            self.gateway,
            self.mediator,
            self.revision_manager,
            self.deduplicator,
            self.file_tracker,
            self.emit,
            pause_gate=self.pause_gate,
            pause_for_questions=pause_for_questions,
            workspace=str(self.workspace),
            escalator=self.escalator,
        )
        self.command_runner = command_runner or SubprocessCommandRunner(self.workspace)

        self.plan: Optional[Plan] = None
        self.conversation_history: List[Dict[str, Any]] = []
        self.retry_note: Optional[str] = None

    # ---- control ------------------------------------------------------

    def cancel(self, reason: str = TASK_CANCELLED) -> None:
        logger.log("executor", "CANCEL_REQUESTED", {"task_id": self.task.id, "reason": reason})
        self.cancel_token.cancel(reason)

    def pause(self) -> None:
        logger.log("executor", "PAUSED", {"task_id": self.task.id})
        self.pause_gate.pause()

    def resume(self) -> None:
        logger.log("executor", "RESUMED", {"task_id": self.task.id})
        self.pause_gate.resume()

    @property
    def is_paused(self) -> bool:
        return self.pause_gate.is_paused

    @property
    def plan_revision_count(self) -> int:
        return self.revision_manager.revision_count

    # ---- main loop ----------------------------------------------------

    async def execute(self) -> Task:
        """Run the task and return it with its final status.

        Never raises for task-level failures; they end in FAILED with
        ``task.error`` set and an ``error`` event. Cancellation ends in
        CANCELLED without an error event.
        """
        task = self.task
        try:
            analysis = analyze_task(task.prompt)
            logger.log("executor", "TASK_ANALYSIS", {"task_id": task.id, "task_type": analysis.task_type})

            self._set_status(TaskStatus.PLANNING)
            self.plan = await self.planner.create_plan(
                task, self.mediator.get_available_tools(), self.cancel_token, analysis
            )

            for attempt in range(1, task.max_attempts + 1):
                self.cancel_token.raise_if_cancelled()
                task.current_attempt = attempt
                if attempt > 1:
                    self.emit(EventType.RETRY_STARTED, {"attempt": attempt, "max_attempts": task.max_attempts})
                    self.reset_for_retry()

                self._set_status(TaskStatus.EXECUTING)
                await self.execute_plan()

                if task.success_criteria is None:
                    break
                if await self._verify_attempt(attempt):
                    break

            self._set_status(TaskStatus.COMPLETED)
            self.emit(EventType.TASK_COMPLETED, {
                "attempts": task.current_attempt,
                "usage": {"total_tokens": self.usage.total_tokens, "cost": round(self.usage.cost, 6)},
            })
        except OperationCancelled as e:
            self._set_status(TaskStatus.CANCELLED, {"reason": e.reason})
            self.emit(EventType.TASK_CANCELLED, {"reason": e.reason or TASK_CANCELLED})
        except AwaitingUserInputError as e:
            self._set_status(TaskStatus.AWAITING_INPUT, {"question": e.question[:200]})
        except Exception as e:
            task.error = str(e)
            self._set_status(TaskStatus.FAILED, {"error": str(e)})
            if not isinstance(e, TaskPilotError):
                logger.log_error("executor", e, {"task_id": task.id})
            self.emit(EventType.ERROR, {"message": str(e)})
        return task

    async def _verify_attempt(self, attempt: int) -> bool:
        task = self.task
        criteria = task.success_criteria
        self.emit(EventType.VERIFICATION_STARTED, {"attempt": attempt, "criteria": criteria.to_dict()})
        result = await verify_success_criteria(criteria, self.command_runner, self.cancel_token, self.workspace)

        if result.success:
            self.emit(EventType.VERIFICATION_PASSED, {"attempt": attempt, "message": result.message})
            return True

        self.emit(EventType.VERIFICATION_FAILED, {
            "attempt": attempt,
            "max_attempts": task.max_attempts,
            "message": result.message,
            "will_retry": attempt < task.max_attempts,
        })
        if attempt >= task.max_attempts:
            raise SuccessCriteriaNotMetError(
                f"Failed to meet success criteria after {task.max_attempts} attempts: {result.message}"
            )
        return False

    def reset_for_retry(self) -> None:
        """Prepare the same plan for another goal-mode attempt."""
        if self.plan is not None:
            self.plan.reset_all()
        self.failure_tracker.reset()
        self.deduplicator.reset_all()
        self.file_tracker.reset()
        self.revision_manager.reset()
        self.usage.reset_iterations()

        self.retry_note = retry_context_message(self.task.current_attempt)
        self.conversation_history.append({"role": "user", "content": self.retry_note})
        logger.log("executor", "RESET_FOR_RETRY", {"task_id": self.task.id, "attempt": self.task.current_attempt})

    async def execute_plan(self) -> None:
        """Run every step in order, including steps inserted along the way.

        Raises:
            TaskIncompleteError: a step returned without a terminal status
            TaskFailedError: a non-verification step ended failed
        """
        plan = self.plan
        if plan is None:
            raise TaskPilotError("No plan available")

        self._progress(f"Starting execution of {len(plan)} steps", completed=0)

        index = 0
        while index < len(plan):
            step = plan[index]
            index += 1
            await self.pause_gate.wait_if_paused(self.cancel_token)

            self._progress(f"Executing step {index}/{len(plan)}: {step.description}",
                           completed=index - 1, current_step=step.id)

            if not await self._run_step_with_timeout(step):
                continue

            if not step.is_terminal:
                raise TaskIncompleteError(
                    f"Task incomplete: step {step.id} ({step.description}) finished with status {step.status.value}"
                )
            if step.status is StepStatus.FAILED:
                self._progress(f"Step failed {index}/{len(plan)}: {step.error}", completed=index, current_step=step.id)
            else:
                self._progress(f"Completed step {index}/{len(plan)}", completed=index, current_step=step.id)

        critical = [step for step in plan.failed_steps() if not step.is_verification]
        if critical:
            self._progress(f"Completed with {len(critical)} failed step(s)", completed=len(plan.completed_steps()),
                           has_failures=True)
            raise TaskFailedError(
                f"Task failed: {len(critical)} step(s) failed - " + "; ".join(step.description for step in critical)
            )

        self._progress("All steps completed", completed=len(plan))

    async def _run_step_with_timeout(self, step: PlanStep) -> bool:
        """Run one step under its own child token. False when the step timed out."""
        step_token = self.cancel_token.child()
        step_token.cancel_after(self.step_timeout_ms / 1000, STEP_TIMEOUT)
        try:
            await self.run_step(step, step_token)
        except OperationCancelled:
            if self.cancel_token.cancelled or step_token.reason != STEP_TIMEOUT:
                raise
            self._fail_timed_out_step(step)
            return False
        finally:
            step_token.clear_timer()
        return True

    async def run_step(self, step: PlanStep, cancel_token: CancellationToken) -> None:
        try:
            await self.step_runner.run(self.task, self.plan, step, cancel_token, self.retry_note)
        finally:
            self.conversation_history.extend(self.step_runner.last_messages)

    def _fail_timed_out_step(self, step: PlanStep) -> None:
        message = f"Step timed out after {self.step_timeout_ms / 1000:.0f}s"
        logger.log("executor", "STEP_TIMEOUT", {"step_id": step.id, "timeout_ms": self.step_timeout_ms}, "WARNING")
        if step.status is StepStatus.IN_PROGRESS:
            self.escalator.maybe_escalate(self.plan, step, message)
            step.fail(message)
        self.emit(EventType.STEP_TIMEOUT, {
            "step": step.to_dict(),
            "timeout": self.step_timeout_ms,
            "message": message,
        })

    # ---- helpers ------------------------------------------------------

    def _progress(self, message: str, completed: int, **extra: Any) -> None:
        total = len(self.plan) if self.plan is not None else 0
        payload = {
            "phase": "execution",
            "completed_steps": completed,
            "total_steps": total,
            "progress": round(completed / total * 100) if total else 0,
            "message": message,
        }
        payload.update(extra)
        self.emit(EventType.PROGRESS_UPDATE, payload)

    def _set_status(self, status: TaskStatus, details: Optional[Dict[str, Any]] = None) -> None:
        self.task.status = status
        logger.log_task_status(self.task.id, status.value, details)

    def _on_llm_retry(self, operation: str, attempt: int, delay_ms: int, error: BaseException) -> None:
        self.emit(EventType.LLM_RETRY, {
            "operation": operation,
            "attempt": attempt,
            "delay_ms": delay_ms,
            "error": str(error),
        })
