"""
Plan creation.

One model call turns the task into a JSON plan. Parsing is forgiving: the
first balanced JSON object in the reply is used, and anything unusable falls
back to a single-step plan so execution can always start.
"""

import json
from typing import Any, Dict, List, Optional

from taskpilot import config
from taskpilot.debug_logger import get_logger
from taskpilot.errors import BudgetExceededError, OperationCancelled
from taskpilot.execution.cancellation import CancellationToken
from taskpilot.execution.events import EventType
from taskpilot.execution.task_analysis import TaskAnalysis
from taskpilot.llm.gateway import ModelGateway
from taskpilot.models.plan import Plan, PlanStep
from taskpilot.models.task import Task

logger = get_logger()

FALLBACK_TEXT_LIMIT = 500

PLANNING_SYSTEM = """You are an autonomous task executor. Your job is to:
1. Analyze the user's request and work out which files, commands and tools are involved
2. Create a concrete, step-by-step plan
3. Execute each step with the available tools

Available tools:
{tools}

PLANNING RULES:
- Create a plan with 3-7 SPECIFIC steps. Each step must describe one concrete action.
- Name files explicitly when they are known.
- DO NOT add a "verify" or "review" step after every action.
- DO NOT plan to create several versions of the same file; pick ONE target file.
- DO NOT plan to read the same file in several steps.
- Plans are capped at {max_steps} steps in total.

VERIFICATION STEP:
- For non-trivial tasks, end with ONE step whose description starts with "Verify:".
{analysis}
Format your plan as a JSON object with this structure:
{{
  "description": "Overall plan description",
  "steps": [
    {{"id": "1", "description": "Specific action with file names when applicable", "status": "pending"}},
    {{"id": "N", "description": "Verify: [describe what to check]", "status": "pending"}}
  ]
}}"""


def extract_json_object(text: str) -> Optional[Any]:
    """Parse the first balanced ``{...}`` in ``text``.

    Braces inside double-quoted strings are ignored and backslash escapes are
    honoured. Returns None when no balanced object parses.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if escaped:
            escaped = False
            continue
        if char == "\\" and in_string:
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(text[start:index + 1])
                except json.JSONDecodeError:
                    return None
    return None


def describe_tools(tools: List[Dict[str, Any]]) -> str:
    if not tools:
        return "(no tools available; answer with reasoning only)"
    lines = []
    for tool in tools:
        description = (tool.get("description") or "").strip().splitlines()
        lines.append(f"- {tool.get('name')}: {description[0] if description else ''}".rstrip())
    return "\n".join(lines)


def _step_description(raw: Any) -> str:
    if isinstance(raw, dict):
        for key in ("description", "step", "task"):
            value = raw.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return str(raw).strip()


def plan_from_json(data: Any, max_steps: int = config.MAX_TOTAL_STEPS) -> Optional[Plan]:
    """Build a plan from parsed JSON, or None when there are no usable steps."""
    if not isinstance(data, dict):
        return None
    raw_steps = data.get("steps")
    if not isinstance(raw_steps, list) or not raw_steps:
        return None

    steps: List[PlanStep] = []
    seen = set()
    for index, raw in enumerate(raw_steps[:max_steps]):
        description = _step_description(raw)
        if not description:
            continue
        step_id = str(raw.get("id")) if isinstance(raw, dict) and raw.get("id") else str(index + 1)
        if step_id in seen:
            step_id = f"{step_id}-{index + 1}"
        seen.add(step_id)
        steps.append(PlanStep(step_id, description))

    if not steps:
        return None
    return Plan(str(data.get("description") or "Execution plan"), steps)


def parse_plan_text(text: str, task: Task, max_steps: int = config.MAX_TOTAL_STEPS) -> Plan:
    """Turn a planning reply into a plan, falling back in two layers."""
    try:
        plan = plan_from_json(extract_json_object(text), max_steps)
        if plan is not None:
            return plan
        fallback = text.strip()[:FALLBACK_TEXT_LIMIT]
        if not fallback:
            raise ValueError("empty planning response")
        return Plan("Execution plan", [PlanStep("1", fallback)])
    except Exception as e:
        logger.warning(f"Failed to parse plan, using task prompt: {e}")
        return Plan("Execute task", [PlanStep("1", task.prompt)])


class Planner:
    """Creates the initial plan for a task."""

    def __init__(self, gateway: ModelGateway, emit, max_steps: int = config.MAX_TOTAL_STEPS):
        self.gateway = gateway
        self.emit = emit
        self.max_steps = max_steps

    def build_system_prompt(self, tools: List[Dict[str, Any]], analysis: Optional[TaskAnalysis] = None) -> str:
        analysis_text = ""
        if analysis is not None and analysis.hint:
            analysis_text = f"\nTASK ANALYSIS:\n- Type: {analysis.task_type}\n- {analysis.hint}\n"
        return PLANNING_SYSTEM.format(
            tools=describe_tools(tools),
            max_steps=self.max_steps,
            analysis=analysis_text,
        )

    async def create_plan(
        self,
        task: Task,
        tools: List[Dict[str, Any]],
        cancel_token: CancellationToken,
        analysis: Optional[TaskAnalysis] = None,
    ) -> Plan:
        """Ask the model for a plan.

        Budget and cancellation errors propagate; every other failure yields a
        fallback plan.
        """
        user_message = f"Task: {task.title}\n\nDetails: {task.prompt}\n\nCreate an execution plan."
        try:
            response = await self.gateway.create_message(
                system=self.build_system_prompt(tools, analysis),
                messages=[{"role": "user", "content": user_message}],
                cancel_token=cancel_token,
                operation="Plan creation",
            )
            plan = parse_plan_text(response.text, task, self.max_steps)
        except (BudgetExceededError, OperationCancelled):
            raise
        except Exception as e:
            logger.log_error("planner", e, {"task_id": task.id})
            self.emit(EventType.ERROR, {"message": f"Model error during planning: {e}"})
            plan = Plan("Execute task", [PlanStep("1", task.prompt)])

        self.emit(EventType.PLAN_CREATED, {"plan": plan.to_dict()})
        logger.log("planner", "PLAN_CREATED", plan.get_summary())
        return plan
