#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Step Runner.

Runs one plan step as a short, bounded conversation with the model:

- each step starts from a fresh context (step, task, completed-step digest,
  knowledge summary), never from earlier transcripts
- at most ``max_turns`` model turns and ``max_empty_responses`` empty replies
- every tool_use block goes through the ``ToolDispatchMediator``
- ``revise_plan`` is handled here and routed to the ``PlanRevisionManager``

The runner always leaves the step terminal (completed or failed), except when
the task is cancelled, a step timeout fires, or the model waits on the user.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from taskpilot import config
from taskpilot.debug_logger import get_logger
from taskpilot.errors import AwaitingUserInputError, OperationCancelled
from taskpilot.execution.cancellation import CancellationToken, PauseGate
from taskpilot.execution.classifiers import is_asking_question, normalize_tool_name
from taskpilot.execution.events import EventType
from taskpilot.execution.plan_revision import PlanRevisionManager, RecoveryEscalator
from taskpilot.llm.gateway import ModelGateway
from taskpilot.models.plan import Plan, PlanStep
from taskpilot.models.task import Task
from taskpilot.tools.deduplicator import ToolCallDeduplicator, is_idempotent_tool
from taskpilot.tools.errors import is_unrecoverable_error
from taskpilot.tools.file_tracker import FileOperationTracker
from taskpilot.tools.mediator import DispatchOutcome, ToolCall, ToolDispatchMediator, ToolResult

logger = get_logger()

REVISE_PLAN_TOOL_NAME = "revise_plan"
REVISE_PLAN_TOOL = {
    "name": REVISE_PLAN_TOOL_NAME,
    "description": "Add new steps to the current plan when the remaining steps are not enough "
                   "to finish the task. Steps are inserted right after the current step.",
    "input_schema": {
        "type": "object",
        "properties": {
            "steps": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Descriptions of the steps to add, in order",
            },
            "reason": {"type": "string", "description": "Why the plan needs to change"},
        },
        "required": ["steps", "reason"],
    },
}

UNAVAILABLE_TOOLS_ERROR = "All required tools are unavailable or failed. Unable to complete this step."
EMPTY_RESPONSE_PLACEHOLDER = "I understand. Let me continue."
EMPTY_RESPONSE_NUDGE = "Continue with the step. Use the available tools, then reply with a short summary."

STEP_SYSTEM = """You are an autonomous task executor. Use the available tools to complete each step.
Workspace: {workspace}

IMPORTANT INSTRUCTIONS:
- Always use tools to accomplish the step. Do not just describe what you would do.
- Do NOT ask "Should I proceed?"; act on the step directly.
- After using tools, finish with a short text summary of what you did or found.

EFFICIENCY RULES:
- DO NOT read the same file multiple times. Use the knowledge you already have.
- DO NOT create multiple versions of the same file. Pick ONE target file.
- If a tool fails, try a DIFFERENT approach instead of repeating the same call.

ADAPTIVE PLANNING:
- If the current plan is insufficient, call the revise_plan tool to add steps.
- If an approach keeps failing, revise the plan with a fundamentally different strategy."""


def tool_failure_message(tool_name: str, error: Optional[str]) -> str:
    return f'Tool "{tool_name}" failed: {error or "unknown error"}'


def build_step_context(
    task: Task,
    plan: Plan,
    step: PlanStep,
    knowledge: str = "",
    retry_note: Optional[str] = None,
) -> str:
    """First user message of a step."""
    context = f"Execute this step: {step.description}\n\nTask context: {task.prompt}"

    completed = plan.completed_steps()
    if completed:
        context += "\n\nPrevious steps already completed:\n"
        context += "\n".join(f"- {done.description}" for done in completed)
        context += f"\n\nDo NOT repeat work from previous steps. Focus only on: {step.description}"

    if knowledge:
        context += f"\n\nKNOWLEDGE FROM PREVIOUS STEPS (use this instead of re-reading/re-listing):\n{knowledge}"

    if retry_note:
        context += f"\n\n{retry_note}"
    return context


@dataclass
class TurnSummary:
    """What the tool results of a single turn add up to."""

    stop: bool = False
    failure: Optional[str] = None


class StepRunner:
    """Executes one ``PlanStep`` to a terminal status."""

    def __init__(
        self,
        gateway: ModelGateway,
        mediator: ToolDispatchMediator,
        revision_manager: PlanRevisionManager,
        deduplicator: ToolCallDeduplicator,
        file_tracker: FileOperationTracker,
        emit,
        pause_gate: Optional[PauseGate] = None,
        pause_for_questions: bool = config.PAUSE_FOR_QUESTIONS,
        max_turns: int = config.MAX_STEP_TURNS,
        max_empty_responses: int = config.MAX_EMPTY_RESPONSES,
        workspace: str = str(config.ROOT),
        escalator: Optional[RecoveryEscalator] = None,
    ):
        self.gateway = gateway
        self.mediator = mediator
        self.revision_manager = revision_manager
        self.deduplicator = deduplicator
        self.file_tracker = file_tracker
        self.emit = emit
        self.pause_gate = pause_gate or PauseGate()
        self.pause_for_questions = pause_for_questions
        self.max_turns = max_turns
        self.max_empty_responses = max_empty_responses
        self.system_prompt = STEP_SYSTEM.format(workspace=workspace)
        self.escalator = escalator
        self.last_messages: List[Dict[str, Any]] = []

    def available_tools(self) -> List[Dict[str, Any]]:
        return self.mediator.get_available_tools() + [REVISE_PLAN_TOOL]

    async def run(
        self,
        task: Task,
        plan: Plan,
        step: PlanStep,
        cancel_token: CancellationToken,
        retry_note: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Run ``step`` and return the step's message transcript.

        Raises:
            OperationCancelled: task cancelled or step timed out; the step is
                left in progress for the caller to settle
            AwaitingUserInputError: the model asked a blocking question; the
                step is returned to pending
            BudgetExceededError: a guardrail limit was hit; the step is failed
        """
        self.emit(EventType.STEP_STARTED, {"step": step.to_dict()})
        step.start()
        self.deduplicator.reset()
        self.file_tracker.start_step()

        messages: List[Dict[str, Any]] = [{
            "role": "user",
            "content": build_step_context(task, plan, step, self.file_tracker.get_knowledge_summary(), retry_note),
        }]
        self.last_messages = messages

        try:
            failure = await self._run_turns(plan, step, messages, cancel_token)
        except OperationCancelled:
            raise
        except AwaitingUserInputError:
            step.reset()
            raise
        except Exception as e:
            step.fail(str(e))
            logger.log_error("step_runner", e, {"step_id": step.id})
            self.emit(EventType.ERROR, {"step": step.id, "error": str(e)})
            raise

        if failure:
            if self.escalator is not None:
                self.escalator.maybe_escalate(plan, step, failure)
            step.fail(failure)
            logger.log("step_runner", "STEP_FAILED", {"step_id": step.id, "error": failure}, "WARNING")
            self.emit(EventType.STEP_FAILED, {"step": step.to_dict(), "reason": failure})
        else:
            step.complete()
            logger.log("step_runner", "STEP_COMPLETED", {"step_id": step.id})
            self.emit(EventType.STEP_COMPLETED, {"step": step.to_dict()})
        return messages

    async def _run_turns(
        self,
        plan: Plan,
        step: PlanStep,
        messages: List[Dict[str, Any]],
        token: CancellationToken,
    ) -> Optional[str]:
        """Drive the turn loop. Returns a failure reason, or None on success."""
        turns = 0
        empty_responses = 0
        unresolved_failure: Optional[str] = None

        while turns < self.max_turns and empty_responses < self.max_empty_responses:
            await self.pause_gate.wait_if_paused(token)
            turns += 1

            response = await self.gateway.create_message(
                system=self.system_prompt,
                messages=messages,
                cancel_token=token,
                tools=self.available_tools(),
                operation=f"Step execution (turn {turns})",
            )

            for text in (block.text for block in response.content if getattr(block, "text", None)):
                self.emit(EventType.ASSISTANT_MESSAGE, {"message": text})

            if response.content:
                messages.append({"role": "assistant", "content": response.content_dicts()})
                empty_responses = 0
            else:
                empty_responses += 1
                messages.append({"role": "assistant", "content": [{"type": "text", "text": EMPTY_RESPONSE_PLACEHOLDER}]})
                messages.append({"role": "user", "content": EMPTY_RESPONSE_NUDGE})
                continue

            tool_uses = response.tool_uses
            if not tool_uses:
                if response.text and is_asking_question(response.text):
                    if self.pause_for_questions:
                        self.emit(EventType.AWAITING_USER_INPUT, {"step": step.id, "question": response.text})
                        raise AwaitingUserInputError(response.text)
                    logger.info(f"Step {step.id}: question asked with pausing disabled, ending step")
                    break
                if response.stop_reason == "end_turn":
                    break
                continue

            results: List[ToolResult] = []
            for block in tool_uses:
                token.raise_if_cancelled()
                name = normalize_tool_name(block.name)
                if name == REVISE_PLAN_TOOL_NAME:
                    results.append(self._revise_plan(plan, block.id, block.input or {}))
                else:
                    call = ToolCall(id=block.id, name=name, input=dict(block.input or {}))
                    results.append(await self.mediator.dispatch(call, token))

            messages.append({"role": "user", "content": [result.to_message_block() for result in results]})

            unresolved_failure = self._track_critical_failure(results, unresolved_failure)
            summary = self._summarize_turn(results)
            if summary.stop:
                return summary.failure

        return unresolved_failure

    @staticmethod
    def _track_critical_failure(results: List[ToolResult], unresolved: Optional[str]) -> Optional[str]:
        """A failed non-idempotent call stays unresolved until a later call succeeds."""
        for result in results:
            if result.tool_name == REVISE_PLAN_TOOL_NAME:
                continue
            if result.outcome is DispatchOutcome.EXECUTED:
                unresolved = None
            elif result.outcome is DispatchOutcome.FAILED and not is_idempotent_tool(result.tool_name):
                unresolved = tool_failure_message(result.tool_name, result.error)
        return unresolved

    @staticmethod
    def _summarize_turn(results: List[ToolResult]) -> TurnSummary:
        if any(result.outcome is DispatchOutcome.EXECUTED for result in results):
            return TurnSummary()

        for result in results:
            if result.outcome is DispatchOutcome.FAILED and is_unrecoverable_error(result.error or ""):
                return TurnSummary(stop=True, failure=tool_failure_message(result.tool_name, result.error))

        if not all(result.is_error for result in results):
            return TurnSummary()

        disabled = any(result.outcome is DispatchOutcome.DISABLED for result in results)
        duplicates = [result for result in results if result.outcome is DispatchOutcome.DUPLICATE]
        if not (disabled or duplicates):
            return TurnSummary()

        # Duplicates of calls that already worked mean the step is most likely done.
        if duplicates and any(result.previous_succeeded for result in duplicates):
            logger.info("All tool calls were duplicates of successful calls, treating step as satisfied")
            return TurnSummary(stop=True)
        return TurnSummary(stop=True, failure=UNAVAILABLE_TOOLS_ERROR)

    def _revise_plan(self, plan: Plan, tool_use_id: str, tool_input: Dict[str, Any]) -> ToolResult:
        steps = tool_input.get("steps") or tool_input.get("newSteps") or []
        if isinstance(steps, str):
            steps = [steps]
        reason = str(tool_input.get("reason") or "Model requested a plan revision")

        result = self.revision_manager.revise(plan, steps, reason)
        if result.accepted:
            content = json.dumps({
                "success": True,
                "added_steps": [step.description for step in result.added_steps],
                "total_steps": len(plan),
                "truncated": result.truncated,
            })
            return ToolResult(tool_use_id, REVISE_PLAN_TOOL_NAME, content, DispatchOutcome.EXECUTED)

        return ToolResult(
            tool_use_id,
            REVISE_PLAN_TOOL_NAME,
            json.dumps({"success": False, "error": result.reason}),
            DispatchOutcome.BLOCKED,
            is_error=True,
            error=result.reason,
        )