#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Task model: the unit of work handed to the executor."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TaskStatus(Enum):
    PENDING = "pending"
    PLANNING = "planning"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    AWAITING_INPUT = "awaiting_input"


class CriteriaType(Enum):
    """How a task's success is verified."""
    SHELL_COMMAND = "shell_command"
    FILE_EXISTS = "file_exists"


@dataclass
class SuccessCriteria:
    """Explicit, machine-checkable definition of "done" for goal mode."""

    type: CriteriaType
    command: Optional[str] = None
    file_paths: List[str] = field(default_factory=list)

    def describe(self) -> str:
        if self.type == CriteriaType.SHELL_COMMAND:
            return f"command `{self.command}` exits with code 0"
        return "files exist: " + ", ".join(self.file_paths)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type.value}
        if self.command is not None:
            data["command"] = self.command
        if self.file_paths:
            data["file_paths"] = list(self.file_paths)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SuccessCriteria":
        criteria_type = CriteriaType(data.get("type", CriteriaType.SHELL_COMMAND.value))
        paths = data.get("file_paths") or data.get("filePaths") or []
        if isinstance(paths, str):
            paths = [paths]
        criteria = cls(type=criteria_type, command=data.get("command"), file_paths=list(paths))
        if criteria.type == CriteriaType.SHELL_COMMAND and not criteria.command:
            raise ValueError("shell_command success criteria require a command")
        if criteria.type == CriteriaType.FILE_EXISTS and not criteria.file_paths:
            raise ValueError("file_exists success criteria require at least one path")
        return criteria


@dataclass
class Task:
    """A natural-language task plus its goal-mode bookkeeping.

    The caller owns the task. The executor only writes ``status``,
    ``current_attempt`` and ``error``.
    """

    title: str
    prompt: str
    id: str = field(default_factory=lambda: f"task-{uuid.uuid4().hex[:12]}")
    status: TaskStatus = TaskStatus.PENDING
    success_criteria: Optional[SuccessCriteria] = None
    max_attempts: int = 1
    current_attempt: int = 0
    parent_task_id: Optional[str] = None
    depth: int = 0
    error: Optional[str] = None

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @property
    def is_goal_mode(self) -> bool:
        return self.success_criteria is not None or self.max_attempts > 1

    def spawn_child(self, title: str, prompt: str, **kwargs: Any) -> "Task":
        """Create a subtask one level deeper than this task."""
        return Task(title=title, prompt=prompt, parent_task_id=self.id, depth=self.depth + 1, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "prompt": self.prompt,
            "status": self.status.value,
            "success_criteria": self.success_criteria.to_dict() if self.success_criteria else None,
            "max_attempts": self.max_attempts,
            "current_attempt": self.current_attempt,
            "parent_task_id": self.parent_task_id,
            "depth": self.depth,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Build a task from a mapping such as a parsed YAML task file."""
        prompt = data.get("prompt") or data.get("description")
        if not prompt:
            raise ValueError("task requires a prompt")

        criteria_data = data.get("success_criteria") or data.get("successCriteria")
        kwargs: Dict[str, Any] = {
            "title": data.get("title") or prompt.strip().splitlines()[0][:80],
            "prompt": prompt,
            "success_criteria": SuccessCriteria.from_dict(criteria_data) if criteria_data else None,
            "max_attempts": int(data.get("max_attempts") or data.get("maxAttempts") or 1),
            "parent_task_id": data.get("parent_task_id"),
            "depth": int(data.get("depth", 0)),
        }
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        if data.get("status"):
            kwargs["status"] = TaskStatus(data["status"])
        return cls(**kwargs)
