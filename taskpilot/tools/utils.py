#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Utility functions shared by the tool trackers."""

import hashlib
import json
import time
from typing import Any, Callable, Dict

Clock = Callable[[], float]


def now_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.monotonic() * 1000


def hash_args(args: Dict[str, Any]) -> str:
    """Create a stable hash of tool arguments."""
    sorted_args = json.dumps(args or {}, sort_keys=True, default=str)
    return hashlib.md5(sorted_args.encode()).hexdigest()[:16]


def stringify_result(result: Any) -> str:
    """Render a tool result as text for the model."""
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, default=str)
    except (TypeError, ValueError):
        return str(result)


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
