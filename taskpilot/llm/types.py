#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Types shared with model clients.

Messages follow the content-block shape used by the Anthropic Messages API:
``{"role": "user" | "assistant", "content": str | [block, ...]}``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Union, runtime_checkable


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class TextBlock:
    text: str
    type: str = "text"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ToolUseBlock:
    id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)
    type: str = "tool_use"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


ContentBlock = Union[TextBlock, ToolUseBlock]


@dataclass
class ModelResponse:
    """One model reply: a stop reason plus text and tool_use blocks."""

    stop_reason: Optional[str]
    content: List[ContentBlock] = field(default_factory=list)
    usage: Optional[Usage] = None

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.content if isinstance(block, TextBlock)).strip()

    @property
    def tool_uses(self) -> List[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.tool_uses

    def content_dicts(self) -> List[Dict[str, Any]]:
        return [block.to_dict() for block in self.content]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelResponse":
        """Build a response from a plain mapping (e.g. a JSON transport reply)."""
        blocks: List[ContentBlock] = []
        for raw in data.get("content") or []:
            block_type = raw.get("type")
            if block_type == "text":
                blocks.append(TextBlock(text=raw.get("text", "")))
            elif block_type == "tool_use":
                blocks.append(ToolUseBlock(id=raw.get("id", ""), name=raw.get("name", ""),
                                           input=raw.get("input") or {}))
        usage_data = data.get("usage")
        usage = None
        if usage_data:
            usage = Usage(
                input_tokens=int(usage_data.get("input_tokens", 0)),
                output_tokens=int(usage_data.get("output_tokens", 0)),
            )
        return cls(stop_reason=data.get("stop_reason"), content=blocks, usage=usage)


@runtime_checkable
class ModelClient(Protocol):
    """Anything that can produce a model reply.

    Implementations should watch ``cancel_token`` while waiting; the caller
    also aborts the awaiting coroutine when the token fires.
    """

    async def create_message(
        self,
        *,
        model: str,
        max_tokens: int,
        system: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        cancel_token: Any = None,
    ) -> ModelResponse:
        ...
