#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Single entry point for model calls made on behalf of one task.

Every call goes through the same sequence: guardrail check, request with
timeout and retries, usage accounting.
"""

from typing import Any, Callable, Dict, List, Optional

from taskpilot import config
from taskpilot.debug_logger import get_logger
from taskpilot.execution.cancellation import CancellationToken
from taskpilot.execution.guardrails import GuardrailLimits, UsageCounters, check_budgets, estimate_cost
from taskpilot.llm.retry import BackoffRetryCaller
from taskpilot.llm.types import ModelClient, ModelResponse

logger = get_logger()


class ModelGateway:
    """Wraps a ``ModelClient`` with budgets, retries and usage tracking."""

    def __init__(
        self,
        client: ModelClient,
        model: str = config.DEFAULT_MODEL,
        max_tokens: int = config.MAX_OUTPUT_TOKENS,
        limits: Optional[GuardrailLimits] = None,
        usage: Optional[UsageCounters] = None,
        retry_caller: Optional[BackoffRetryCaller] = None,
        timeout_ms: int = config.LLM_TIMEOUT_MS,
        cost_fn: Callable[..., float] = estimate_cost,
    ):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.limits = limits or GuardrailLimits.from_env()
        self.usage = usage or UsageCounters()
        self.retry_caller = retry_caller or BackoffRetryCaller()
        self.timeout_ms = timeout_ms
        self.cost_fn = cost_fn

    async def create_message(
        self,
        system: str,
        messages: List[Dict[str, Any]],
        cancel_token: CancellationToken,
        tools: Optional[List[Dict[str, Any]]] = None,
        operation: str = "model call",
    ) -> ModelResponse:
        """Check budgets, then call the model with retries.

        Raises:
            BudgetExceededError: a guardrail limit was already reached
            OperationCancelled: the token fired during the call or a backoff sleep
        """
        check_budgets(self.usage, self.limits)
        logger.log_llm_request(self.model, messages, tools)

        async def request() -> ModelResponse:
            return await cancel_token.run(
                self.client.create_message(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    system=system,
                    messages=messages,
                    tools=tools or None,
                    cancel_token=cancel_token,
                ),
                timeout=self.timeout_ms / 1000,
            )

        response = await self.retry_caller.call(request, operation, cancel_token)
        if isinstance(response, dict):
            response = ModelResponse.from_dict(response)

        self.usage.record_response(response.usage, self.cost_fn(response.usage))
        logger.log_llm_response(self.model, response)
        return response
