#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Guardrail budgets: limits, usage counters and the pre-call check."""

from dataclasses import dataclass
from typing import Optional

from taskpilot import config
from taskpilot.errors import BudgetExceededError
from taskpilot.llm.types import Usage


@dataclass
class GuardrailLimits:
    """Ceilings for one task. ``None`` means unlimited."""

    max_global_turns: Optional[int] = 100
    max_iterations: Optional[int] = None
    max_tokens: Optional[int] = None
    max_cost: Optional[float] = None

    @classmethod
    def from_env(cls) -> "GuardrailLimits":
        """Build limits from configuration (0 means unlimited)."""
        return cls(
            max_global_turns=config.MAX_GLOBAL_TURNS or None,
            max_iterations=config.MAX_ITERATIONS or None,
            max_tokens=config.MAX_TOKENS_PER_TASK or None,
            max_cost=config.MAX_COST_PER_TASK or None,
        )


@dataclass
class UsageCounters:
    """Usage accumulated by the executor after each model response.

    ``iterations`` counts model calls in the current goal-mode attempt,
    ``global_turns`` counts every model call the task has made.
    """

    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    iterations: int = 0
    global_turns: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def record_response(self, usage: Optional[Usage], cost: float = 0.0) -> None:
        self.iterations += 1
        self.global_turns += 1
        if usage is not None:
            self.input_tokens += usage.input_tokens
            self.output_tokens += usage.output_tokens
        self.cost += cost

    def reset_iterations(self) -> None:
        self.iterations = 0


def estimate_cost(usage: Optional[Usage],
                  input_cost_per_mtok: float = config.INPUT_COST_PER_MTOK,
                  output_cost_per_mtok: float = config.OUTPUT_COST_PER_MTOK) -> float:
    if usage is None:
        return 0.0
    return (usage.input_tokens * input_cost_per_mtok + usage.output_tokens * output_cost_per_mtok) / 1_000_000


def check_budgets(usage: UsageCounters, limits: GuardrailLimits) -> None:
    """Raise BudgetExceededError for the first exceeded limit.

    Order: global turns, iterations, tokens, cost. Reads only.
    """
    if limits.max_global_turns is not None and usage.global_turns >= limits.max_global_turns:
        raise BudgetExceededError(
            "global_turns", usage.global_turns, limits.max_global_turns,
            f"Global turn limit exceeded: {usage.global_turns}/{limits.max_global_turns} turns. "
            "Task stopped to prevent runaway execution.",
        )

    if limits.max_iterations is not None and usage.iterations >= limits.max_iterations:
        raise BudgetExceededError(
            "iterations", usage.iterations, limits.max_iterations,
            f"Iteration limit exceeded: {usage.iterations}/{limits.max_iterations} iterations. "
            "Task stopped to prevent infinite loops.",
        )

    if limits.max_tokens is not None and usage.total_tokens >= limits.max_tokens:
        raise BudgetExceededError(
            "tokens", usage.total_tokens, limits.max_tokens,
            f"Token budget exceeded: {usage.total_tokens:,}/{limits.max_tokens:,} tokens.",
        )

    if limits.max_cost is not None and usage.cost >= limits.max_cost:
        raise BudgetExceededError(
            "cost", round(usage.cost, 4), limits.max_cost,
            f"Cost budget exceeded: ${usage.cost:.4f}/${limits.max_cost:.2f}.",
        )
