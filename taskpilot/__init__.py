#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""taskpilot - Plan-and-execute task runner for tool-using language models."""

from taskpilot._version import TASKPILOT_VERSION

__version__ = TASKPILOT_VERSION

# Core models
from taskpilot.models import (
    Task,
    TaskStatus,
    SuccessCriteria,
    CriteriaType,
    Plan,
    PlanStep,
    StepStatus,
)

# Errors
from taskpilot.errors import (
    TaskPilotError,
    InvalidStepTransition,
    BudgetExceededError,
    OperationCancelled,
    AwaitingUserInputError,
)

__all__ = [
    "__version__",
    "Task",
    "TaskStatus",
    "SuccessCriteria",
    "CriteriaType",
    "Plan",
    "PlanStep",
    "StepStatus",
    "TaskPilotError",
    "InvalidStepTransition",
    "BudgetExceededError",
    "OperationCancelled",
    "AwaitingUserInputError",
]
