#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Exceptions raised by the orchestration engine."""

from typing import Optional, Union


class TaskPilotError(Exception):
    """Base class for taskpilot errors."""


class InvalidStepTransition(TaskPilotError, ValueError):
    """A plan step was moved outside pending -> in_progress -> terminal."""

    def __init__(self, step_id: str, current: str, target: str):
        super().__init__(f"Step {step_id} cannot move from {current} to {target}")
        self.step_id = step_id
        self.current = current
        self.target = target


class BudgetExceededError(TaskPilotError):
    """A guardrail limit was reached. Never retried."""

    def __init__(self, limit_name: str, used: Union[int, float], limit: Union[int, float], message: str):
        super().__init__(message)
        self.limit_name = limit_name
        self.used = used
        self.limit = limit


class OperationCancelled(TaskPilotError):
    """An in-flight operation was aborted through its cancellation token."""

    def __init__(self, reason: Optional[str] = None):
        super().__init__(reason or "Operation cancelled")
        self.reason = reason


class AwaitingUserInputError(TaskPilotError):
    """The model asked a blocking question and the task is waiting for an answer."""

    def __init__(self, question: str):
        super().__init__(f"Awaiting user input: {question[:200]}")
        self.question = question


class TaskIncompleteError(TaskPilotError):
    """A step returned without a terminal status."""


class TaskFailedError(TaskPilotError):
    """One or more non-verification steps failed."""


class SuccessCriteriaNotMetError(TaskPilotError):
    """Goal mode ran out of attempts without meeting the success criteria."""
