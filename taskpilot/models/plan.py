#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Plan and plan-step models.

A plan is an ordered sequence of steps with stable ids. Steps are only ever
added (never removed), so the index of a step stays meaningful while the plan
runs, and the step currently in progress is tracked explicitly.
"""

import re
import time
import uuid
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from taskpilot.errors import InvalidStepTransition


class StepStatus(Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.FAILED})

_VERIFICATION_PREFIX = re.compile(r"^\s*(?:\d+[.)]\s*)?verif(?:y|ication)\b", re.IGNORECASE)


def is_verification_step(description: str) -> bool:
    """True when a step description is prefixed as a verification step."""
    return bool(_VERIFICATION_PREFIX.match(description or ""))


def new_step_id(prefix: str = "step") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


class PlanStep:
    """A single unit of work with a pending -> in_progress -> terminal lifecycle."""

    def __init__(self, step_id: str, description: str):
        self.id = step_id
        self.description = description
        self.status = StepStatus.PENDING
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None
        self.error: Optional[str] = None
        self._status_listener: Optional[Callable[["PlanStep"], None]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_verification(self) -> bool:
        return is_verification_step(self.description)

    def start(self) -> None:
        if self.status != StepStatus.PENDING:
            raise InvalidStepTransition(self.id, self.status.value, StepStatus.IN_PROGRESS.value)
        self.status = StepStatus.IN_PROGRESS
        self.started_at = time.time()
        self._notify()

    def complete(self) -> None:
        if self.status != StepStatus.IN_PROGRESS:
            raise InvalidStepTransition(self.id, self.status.value, StepStatus.COMPLETED.value)
        self.status = StepStatus.COMPLETED
        self.completed_at = time.time()
        self._notify()

    def fail(self, error: str) -> None:
        if self.status != StepStatus.IN_PROGRESS:
            raise InvalidStepTransition(self.id, self.status.value, StepStatus.FAILED.value)
        self.status = StepStatus.FAILED
        self.error = error
        self.completed_at = time.time()
        self._notify()

    def reset(self) -> None:
        """Return the step to pending for another goal-mode attempt."""
        self.status = StepStatus.PENDING
        self.started_at = None
        self.completed_at = None
        self.error = None
        self._notify()

    def _notify(self) -> None:
        if self._status_listener is not None:
            self._status_listener(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error": self.error,
        }

    def __repr__(self) -> str:
        return f"PlanStep(id={self.id!r}, status={self.status.value!r}, description={self.description[:40]!r})"


class Plan:
    """Ordered, append/insert-only collection of plan steps."""

    def __init__(self, description: str, steps: Optional[List[PlanStep]] = None):
        self.description = description
        self._steps: List[PlanStep] = []
        self._positions: Dict[str, int] = {}
        self._current_id: Optional[str] = None
        for step in steps or []:
            self.append(step)

    # ---- read access -------------------------------------------------

    @property
    def steps(self) -> List[PlanStep]:
        return list(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[PlanStep]:
        return iter(list(self._steps))

    def __getitem__(self, index: int) -> PlanStep:
        return self._steps[index]

    def get(self, step_id: str) -> Optional[PlanStep]:
        position = self._positions.get(step_id)
        return self._steps[position] if position is not None else None

    def index_of(self, step_id: str) -> int:
        return self._positions[step_id]

    def current_step(self) -> Optional[PlanStep]:
        """The step currently in progress, if any."""
        return self.get(self._current_id) if self._current_id is not None else None

    def failed_steps(self) -> List[PlanStep]:
        return [step for step in self._steps if step.status == StepStatus.FAILED]

    def completed_steps(self) -> List[PlanStep]:
        return [step for step in self._steps if step.status == StepStatus.COMPLETED]

    # ---- mutation ----------------------------------------------------

    def _track(self, step: PlanStep) -> None:
        step._status_listener = self._on_step_status
        self._on_step_status(step)

    def _on_step_status(self, step: PlanStep) -> None:
        if step.status == StepStatus.IN_PROGRESS:
            self._current_id = step.id
        elif self._current_id == step.id:
            self._current_id = None

    def append(self, step: PlanStep) -> None:
        if step.id in self._positions:
            raise ValueError(f"duplicate step id: {step.id}")
        self._positions[step.id] = len(self._steps)
        self._steps.append(step)
        self._track(step)

    def insert_after(self, anchor_id: Optional[str], new_steps: List[PlanStep]) -> None:
        """Insert steps right after ``anchor_id``, or append when there is no anchor."""
        if anchor_id is None or anchor_id not in self._positions:
            for step in new_steps:
                self.append(step)
            return

        for step in new_steps:
            if step.id in self._positions:
                raise ValueError(f"duplicate step id: {step.id}")
        position = self._positions[anchor_id] + 1
        self._steps[position:position] = new_steps
        self._positions = {step.id: index for index, step in enumerate(self._steps)}
        for step in new_steps:
            self._track(step)

    def reset_all(self) -> None:
        for step in self._steps:
            step.reset()

    def get_summary(self) -> Dict[str, Any]:
        counts = {status.value: 0 for status in StepStatus}
        for step in self._steps:
            counts[step.status.value] += 1
        return {"description": self.description, "total": len(self._steps), **counts}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "steps": [step.to_dict() for step in self._steps],
        }
