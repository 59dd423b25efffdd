#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Task and plan models for taskpilot."""

from taskpilot.models.task import Task, TaskStatus, SuccessCriteria, CriteriaType
from taskpilot.models.plan import Plan, PlanStep, StepStatus, is_verification_step

__all__ = [
    "Task",
    "TaskStatus",
    "SuccessCriteria",
    "CriteriaType",
    "Plan",
    "PlanStep",
    "StepStatus",
    "is_verification_step",
]
