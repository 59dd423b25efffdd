"""Shared fixtures: a scripted model client, a stub tool executor and a fake clock."""

import asyncio
import copy
import itertools
import sys
from pathlib import Path

import pytest

_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from taskpilot.execution.events import RecordingEventSink  # noqa: E402
from taskpilot.llm.types import ModelResponse, TextBlock, ToolUseBlock, Usage  # noqa: E402

_ids = itertools.count(1)

# Scripted item that never resolves until the awaiting task is cancelled.
HANG = object()


def text_response(text, stop_reason="end_turn", usage=None):
    return ModelResponse(stop_reason=stop_reason, content=[TextBlock(text=text)],
                         usage=usage or Usage(input_tokens=10, output_tokens=5))


def tool_response(*calls, text=None):
    """Build a tool_use reply from ``(name, input)`` pairs."""
    content = [TextBlock(text=text)] if text else []
    for name, tool_input in calls:
        content.append(ToolUseBlock(id=f"toolu_{next(_ids)}", name=name, input=dict(tool_input)))
    return ModelResponse(stop_reason="tool_use", content=content, usage=Usage(input_tokens=10, output_tokens=5))


def empty_response():
    return ModelResponse(stop_reason="end_turn", content=[], usage=Usage(input_tokens=10, output_tokens=0))


def plan_response(*descriptions):
    steps = ",".join(
        f'{{"id": "{index}", "description": "{description}", "status": "pending"}}'
        for index, description in enumerate(descriptions, 1)
    )
    return text_response(f'Here is the plan:\n{{"description": "Test plan", "steps": [{steps}]}}')


class ScriptedModelClient:
    """Returns queued replies in order; queued exceptions are raised instead."""

    def __init__(self, responses=None, default_text="Done."):
        self.responses = list(responses or [])
        self.default_text = default_text
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def create_message(self, *, model, max_tokens, system, messages, tools=None, cancel_token=None):
        self.calls.append({
            "model": model,
            "system": system,
            "messages": copy.deepcopy(messages),
            "tools": [tool["name"] for tool in tools or []],
        })
        if not self.responses:
            return text_response(self.default_text)
        item = self.responses.pop(0)
        if item is HANG:
            await asyncio.Event().wait()
        if isinstance(item, BaseException):
            raise item
        return item


class StubToolExecutor:
    """Tools backed by a dict of handlers.

    A handler can be a plain value (returned as-is), an exception instance
    (raised) or a callable taking the tool input.
    """

    def __init__(self, handlers=None):
        self.handlers = dict(handlers or {})
        self.calls = []

    def get_tools(self):
        return [
            {
                "name": name,
                "description": f"{name} tool",
                "input_schema": {"type": "object", "properties": {}},
            }
            for name in self.handlers
        ]

    def execute_tool(self, name, tool_input):
        self.calls.append((name, dict(tool_input)))
        if name not in self.handlers:
            raise ValueError(f"Unknown tool: {name}")
        handler = self.handlers[name]
        if isinstance(handler, BaseException):
            raise handler
        if callable(handler):
            return handler(tool_input)
        return handler


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingEventSink()
