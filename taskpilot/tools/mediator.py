#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Tool dispatch mediation.

Every tool call requested by the model passes through an ordered chain of
stages before it may execute:

    circuit breaker -> deduplication -> file redundancy -> parameter inference -> execute

A stage either returns a ``ToolResult`` (short-circuit, nothing executes) or
``None`` to let the call continue. Trackers are updated only after execution
settles; a cancelled call leaves them untouched.
"""

import asyncio
import inspect
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Union, runtime_checkable

from taskpilot import config
from taskpilot.debug_logger import get_logger
from taskpilot.errors import OperationCancelled
from taskpilot.execution.cancellation import CancellationToken
from taskpilot.execution.events import EventType
from taskpilot.tools.deduplicator import ToolCallDeduplicator, is_idempotent_tool
from taskpilot.tools.errors import detect_soft_failure
from taskpilot.tools.failure_tracker import ToolFailureTracker
from taskpilot.tools.file_tracker import FileOperationTracker
from taskpilot.tools.parameter_inference import infer_missing_parameters
from taskpilot.tools.utils import stringify_result, truncate

logger = get_logger()

FILE_CREATION_TOOLS = ("create_document", "write_file", "copy_file")

Emit = Callable[[Union[EventType, str], Dict[str, Any]], None]


@runtime_checkable
class ToolExecutor(Protocol):
    """Executes concrete tools. ``execute_tool`` may be sync or async and may raise."""

    def get_tools(self) -> List[Dict[str, Any]]:
        ...

    def execute_tool(self, name: str, tool_input: Dict[str, Any]) -> Union[Any, Awaitable[Any]]:
        ...


class DispatchOutcome(Enum):
    EXECUTED = "executed"
    FAILED = "failed"
    DISABLED = "disabled"
    DUPLICATE = "duplicate"
    CACHED = "cached"
    BLOCKED = "blocked"


@dataclass
class ToolCall:
    """One tool call. ``original_input`` keeps what the model sent once inference rewrites ``input``."""

    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)
    original_input: Optional[Dict[str, Any]] = None

    @property
    def requested_input(self) -> Dict[str, Any]:
        """The input as the model requested it; duplicate detection keys on this."""
        return self.original_input if self.original_input is not None else self.input


@dataclass
class ToolResult:
    """What the model sees for one tool call, plus how it was produced."""

    tool_use_id: str
    tool_name: str
    content: str
    outcome: DispatchOutcome
    is_error: bool = False
    error: Optional[str] = None
    raw: Any = None
    duplicate_kind: Optional[str] = None
    previous_succeeded: bool = False
    disabled_tool: bool = False

    @property
    def succeeded(self) -> bool:
        return self.outcome is DispatchOutcome.EXECUTED

    def to_message_block(self) -> Dict[str, Any]:
        block: Dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }
        if self.is_error:
            block["is_error"] = True
        return block


def _error_content(**fields: Any) -> str:
    return json.dumps(fields)


def _emit_noop(event_type: Union[EventType, str], payload: Dict[str, Any]) -> None:
    return None


class DispatchStage:
    """One link of the dispatch chain."""

    name = "stage"

    def apply(self, call: ToolCall) -> Optional[ToolResult]:
        raise NotImplementedError


class CircuitBreakerStage(DispatchStage):
    name = "circuit_breaker"

    def __init__(self, tracker: ToolFailureTracker, emit: Emit):
        self.tracker = tracker
        self.emit = emit

    def apply(self, call: ToolCall) -> Optional[ToolResult]:
        if not self.tracker.is_disabled(call.name):
            return None

        last_error = self.tracker.get_last_error(call.name) or "repeated failures"
        message = (f'Tool "{call.name}" is temporarily unavailable due to: {last_error}. '
                   "Please try a different approach or wait and try again later.")
        self.emit(EventType.TOOL_BLOCKED, {"tool": call.name, "reason": "circuit_breaker", "error": last_error})
        return ToolResult(
            tool_use_id=call.id,
            tool_name=call.name,
            content=_error_content(error=message, disabled=True),
            outcome=DispatchOutcome.DISABLED,
            is_error=True,
            error=message,
            disabled_tool=True,
        )


class DeduplicationStage(DispatchStage):
    name = "deduplication"

    def __init__(self, deduplicator: ToolCallDeduplicator, emit: Emit):
        self.deduplicator = deduplicator
        self.emit = emit

    def apply(self, call: ToolCall) -> Optional[ToolResult]:
        check = self.deduplicator.check_duplicate(call.name, call.requested_input)
        if not check.is_duplicate:
            return None

        if check.kind == "exact" and check.cached_result is not None and is_idempotent_tool(call.name):
            self.emit(EventType.TOOL_BLOCKED, {"tool": call.name, "reason": "duplicate_cached"})
            return ToolResult(
                tool_use_id=call.id,
                tool_name=call.name,
                content=check.cached_result,
                outcome=DispatchOutcome.CACHED,
                duplicate_kind=check.kind,
                previous_succeeded=check.previous_succeeded,
            )

        if check.previous_succeeded:
            suggestion = ("This tool was already called with these exact parameters and the previous "
                          "call succeeded. Proceed to the next step or try a different approach.")
        else:
            suggestion = "Do not repeat this call. Try a different approach or a different tool."
        self.emit(EventType.TOOL_BLOCKED, {"tool": call.name, "reason": check.kind, "detail": check.reason})
        return ToolResult(
            tool_use_id=call.id,
            tool_name=call.name,
            content=_error_content(error=check.reason, suggestion=suggestion, duplicate=True),
            outcome=DispatchOutcome.DUPLICATE,
            is_error=True,
            error=check.reason,
            duplicate_kind=check.kind,
            previous_succeeded=check.previous_succeeded,
        )


class FileRedundancyStage(DispatchStage):
    name = "file_redundancy"

    def __init__(self, tracker: FileOperationTracker, emit: Emit):
        self.tracker = tracker
        self.emit = emit

    def apply(self, call: ToolCall) -> Optional[ToolResult]:
        path = call.input.get("path")

        if call.name == "read_file" and path:
            check = self.tracker.check_file_read(str(path))
            if check.blocked:
                self.emit(EventType.TOOL_BLOCKED, {"tool": call.name, "reason": "redundant_read", "path": path})
                return ToolResult(
                    tool_use_id=call.id,
                    tool_name=call.name,
                    content=_error_content(error=check.reason, suggestion=check.suggestion, blocked=True),
                    outcome=DispatchOutcome.BLOCKED,
                    is_error=True,
                    error=check.reason,
                )

        if call.name == "list_directory" and path:
            check = self.tracker.check_directory_listing(str(path))
            if check.blocked and check.cached_files is not None:
                self.emit(EventType.TOOL_BLOCKED, {"tool": call.name, "reason": "redundant_listing", "path": path})
                return ToolResult(
                    tool_use_id=call.id,
                    tool_name=call.name,
                    content=f"Directory contents (cached): {', '.join(check.cached_files)}",
                    outcome=DispatchOutcome.CACHED,
                )

        if call.name in FILE_CREATION_TOOLS:
            filename = (call.input.get("filename") or call.input.get("path")
                        or call.input.get("destPath") or call.input.get("destination"))
            if filename:
                check = self.tracker.check_file_creation(str(filename))
                if check.existing_path:
                    logger.warning(f"Duplicate file creation detected: {filename}")
                    self.emit(EventType.TOOL_WARNING, {
                        "tool": call.name,
                        "warning": check.suggestion,
                        "existing_file": check.existing_path,
                    })
        return None


class ParameterInferenceStage(DispatchStage):
    name = "parameter_inference"

    def __init__(self, tracker: FileOperationTracker, emit: Emit):
        self.tracker = tracker
        self.emit = emit

    def apply(self, call: ToolCall) -> Optional[ToolResult]:
        result = infer_missing_parameters(call.name, call.input, self.tracker)
        if result.modified:
            if call.original_input is None:
                call.original_input = call.input
            call.input = result.input
            logger.log("mediator", "PARAMETER_INFERENCE", {"tool": call.name, "inference": result.inference})
            self.emit(EventType.PARAMETER_INFERENCE, {"tool": call.name, "inference": result.inference})
        return None


def extract_listing(result: Any) -> List[str]:
    """Pull file names out of a list_directory result of any common shape."""
    if isinstance(result, list):
        names = []
        for entry in result:
            if isinstance(entry, dict):
                names.append(str(entry.get("name") or entry.get("path") or entry))
            else:
                names.append(str(entry))
        return names
    if isinstance(result, str):
        return [part.strip() for part in result.replace("\n", ",").split(",") if part.strip()]
    if isinstance(result, dict) and isinstance(result.get("files"), list):
        return extract_listing(result["files"])
    return []


class ToolDispatchMediator:
    """Runs every tool call through the stage chain and then executes it."""

    def __init__(
        self,
        tool_executor: ToolExecutor,
        failure_tracker: ToolFailureTracker,
        deduplicator: ToolCallDeduplicator,
        file_tracker: FileOperationTracker,
        emit: Optional[Emit] = None,
        timeout_ms: int = config.TOOL_TIMEOUT_MS,
        stages: Optional[Sequence[DispatchStage]] = None,
    ):
        self.tool_executor = tool_executor
        self.failure_tracker = failure_tracker
        self.deduplicator = deduplicator
        self.file_tracker = file_tracker
        self.emit = emit or _emit_noop
        self.timeout_ms = timeout_ms
        if stages is None:
            stages = [
                CircuitBreakerStage(failure_tracker, self.emit),
                DeduplicationStage(deduplicator, self.emit),
                FileRedundancyStage(file_tracker, self.emit),
                ParameterInferenceStage(file_tracker, self.emit),
            ]
        self.stages: List[DispatchStage] = list(stages)

    def get_available_tools(self) -> List[Dict[str, Any]]:
        """Tool definitions minus tools the circuit breaker has disabled."""
        tools = list(self.tool_executor.get_tools() or [])
        disabled = set(self.failure_tracker.disabled_tools())
        if not disabled:
            return tools
        logger.info(f"Filtered out {len(disabled)} disabled tools: {', '.join(sorted(disabled))}")
        return [tool for tool in tools if tool.get("name") not in disabled]

    async def dispatch(self, call: ToolCall, cancel_token: Optional[CancellationToken] = None) -> ToolResult:
        token = cancel_token or CancellationToken()
        self.emit(EventType.TOOL_CALL, {"tool": call.name, "input": call.input})

        for stage in self.stages:
            short_circuit = stage.apply(call)
            if short_circuit is not None:
                logger.log("mediator", "SHORT_CIRCUIT", {
                    "tool": call.name,
                    "stage": stage.name,
                    "outcome": short_circuit.outcome.value,
                })
                return short_circuit

        return await self._execute(call, token)

    async def _invoke(self, call: ToolCall) -> Any:
        execute = self.tool_executor.execute_tool
        if asyncio.iscoroutinefunction(execute):
            result = await execute(call.name, call.input)
        else:
            # Sync executors run on a worker thread; the event loop never blocks on a tool.
            result = await asyncio.to_thread(execute, call.name, call.input)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _execute(self, call: ToolCall, token: CancellationToken) -> ToolResult:
        timeout_s = self.timeout_ms / 1000
        try:
            raw = await token.run(self._invoke(call), timeout=timeout_s)
        except OperationCancelled:
            raise
        except asyncio.TimeoutError:
            return self._record_exception(call, f'Tool "{call.name}" timed out after {timeout_s:.0f}s')
        except Exception as e:
            return self._record_exception(call, str(e) or type(e).__name__)

        text = stringify_result(raw)
        soft_failure = detect_soft_failure(raw)
        logger.log_tool_execution(call.name, call.input, result=raw)

        if soft_failure is None:
            self.failure_tracker.record_success(call.name)
            self.deduplicator.record_call(call.name, call.requested_input, text, succeeded=True)
            self._record_file_operation(call, raw, text)
            self.emit(EventType.TOOL_RESULT, {"tool": call.name, "success": True,
                                              "result": truncate(text, 2000)})
            return ToolResult(
                tool_use_id=call.id,
                tool_name=call.name,
                content=text,
                outcome=DispatchOutcome.EXECUTED,
                raw=raw,
            )

        disabled = False
        if soft_failure.error:
            disabled = self.failure_tracker.record_failure(call.name, soft_failure.error)
        self.deduplicator.record_call(call.name, call.requested_input, text, succeeded=False)
        self.emit(EventType.TOOL_RESULT, {"tool": call.name, "success": False,
                                          "error": soft_failure.message, "result": truncate(text, 2000)})
        return ToolResult(
            tool_use_id=call.id,
            tool_name=call.name,
            content=text,
            outcome=DispatchOutcome.FAILED,
            is_error=True,
            error=soft_failure.message,
            raw=raw,
            disabled_tool=disabled,
        )

    def _record_exception(self, call: ToolCall, message: str) -> ToolResult:
        disabled = self.failure_tracker.record_failure(call.name, message)
        self.deduplicator.record_call(call.name, call.requested_input, None, succeeded=False)
        logger.log_tool_execution(call.name, call.input, error=message)
        self.emit(EventType.TOOL_ERROR, {"tool": call.name, "error": message, "disabled": disabled})
        return ToolResult(
            tool_use_id=call.id,
            tool_name=call.name,
            content=_error_content(error=message, disabled=disabled),
            outcome=DispatchOutcome.FAILED,
            is_error=True,
            error=message,
            disabled_tool=disabled,
        )

    def _record_file_operation(self, call: ToolCall, raw: Any, text: str) -> None:
        path = call.input.get("path")
        if call.name == "read_file" and path:
            self.file_tracker.record_file_read(str(path), len(text))
        elif call.name == "list_directory" and path:
            self.file_tracker.record_directory_listing(str(path), extract_listing(raw))
        elif call.name in FILE_CREATION_TOOLS:
            created = None
            if isinstance(raw, dict):
                created = raw.get("path") or raw.get("filename")
            created = created or call.input.get("filename") or path or call.input.get("destPath")
            if created:
                self.file_tracker.record_file_creation(str(created))
