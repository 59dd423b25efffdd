#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Model-call contract, response types and retry handling."""

from taskpilot.llm.types import ModelClient, ModelResponse, TextBlock, ToolUseBlock, Usage
from taskpilot.llm.retry import BackoffRetryCaller, calculate_backoff_delay

__all__ = [
    "ModelClient",
    "ModelResponse",
    "TextBlock",
    "ToolUseBlock",
    "Usage",
    "BackoffRetryCaller",
    "calculate_backoff_delay",
]
