#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Event stream emitted while a task runs, plus a few ready-made sinks."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable

from taskpilot.debug_logger import get_logger


class EventType(Enum):
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    STEP_TIMEOUT = "step_timeout"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    TOOL_ERROR = "tool_error"
    TOOL_BLOCKED = "tool_blocked"
    TOOL_WARNING = "tool_warning"
    PARAMETER_INFERENCE = "parameter_inference"
    PLAN_CREATED = "plan_created"
    PLAN_REVISED = "plan_revised"
    PLAN_REVISION_BLOCKED = "plan_revision_blocked"
    PROGRESS_UPDATE = "progress_update"
    ASSISTANT_MESSAGE = "assistant_message"
    LLM_RETRY = "llm_retry"
    VERIFICATION_STARTED = "verification_started"
    VERIFICATION_PASSED = "verification_passed"
    VERIFICATION_FAILED = "verification_failed"
    RETRY_STARTED = "retry_started"
    AWAITING_USER_INPUT = "awaiting_user_input"
    TASK_COMPLETED = "task_completed"
    TASK_CANCELLED = "task_cancelled"
    ERROR = "error"


@runtime_checkable
class EventSink(Protocol):
    def log_event(self, task_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        ...


@dataclass
class Event:
    task_id: str
    type: str
    payload: Dict[str, Any]
    timestamp: float = field(default_factory=time.time)


class RecordingEventSink:
    """Keeps every event in memory."""

    def __init__(self):
        self.events: List[Event] = []

    def log_event(self, task_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        self.events.append(Event(task_id=task_id, type=event_type, payload=dict(payload)))

    def of_type(self, event_type: Union[EventType, str]) -> List[Event]:
        wanted = event_type.value if isinstance(event_type, EventType) else event_type
        return [event for event in self.events if event.type == wanted]

    def types(self) -> List[str]:
        return [event.type for event in self.events]


class LoggingEventSink:
    """Mirrors events into the debug log, optionally forwarding to another sink."""

    def __init__(self, inner: Optional[EventSink] = None):
        self.inner = inner

    def log_event(self, task_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        level = "ERROR" if event_type in (EventType.ERROR.value, EventType.STEP_FAILED.value) else "INFO"
        get_logger().log("events", event_type.upper(), {"task_id": task_id, **payload}, level)
        if self.inner is not None:
            self.inner.log_event(task_id, event_type, payload)


class EventEmitter:
    """Binds a sink to one task id."""

    def __init__(self, sink: EventSink, task_id: str):
        self.sink = sink
        self.task_id = task_id

    def __call__(self, event_type: Union[EventType, str], payload: Optional[Dict[str, Any]] = None) -> None:
        name = event_type.value if isinstance(event_type, EventType) else event_type
        self.sink.log_event(self.task_id, name, payload or {})
