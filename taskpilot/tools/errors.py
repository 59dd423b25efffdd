#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Error taxonomy for tool execution failures.

Each failure message is classified against ordered pattern tables. The
classification decides how quickly the circuit breaker gives up on a tool:

- NON_RETRYABLE: quota, billing or rate-limit failures; disable on first hit
- INPUT_DEPENDENT: the model passed bad input (missing file, bad parameter)
- SYSTEMIC: anything else; the tool itself looks broken
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Pattern, Sequence


class ToolErrorType(Enum):
    """Circuit-breaker categories for tool failures."""

    NON_RETRYABLE = "non_retryable"
    INPUT_DEPENDENT = "input_dependent"
    SYSTEMIC = "systemic"


def _compile(patterns: Sequence[str]) -> Sequence[Pattern[str]]:
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


NON_RETRYABLE_PATTERNS = _compile([
    r"quota.*exceeded",
    r"exceeds?.*usage.*limit",
    r"usage.*limit",
    r"rate.*limit",
    r"exceeded.*quota",
    r"too many requests",
    r"429",
    r"432",
    r"resource.*exhausted",
    r"billing",
    r"payment.*required",
    r"upgrade your plan",
])

INPUT_DEPENDENT_PATTERNS = _compile([
    r"ENOENT",
    r"ENOTDIR",
    r"EISDIR",
    r"no such file",
    r"not found",
    r"does not exist",
    r"invalid path",
    r"path.*invalid",
    r"cannot find",
    r"permission denied",
    r"EACCES",
    r"parameter.*required",
    r"required.*not provided",
    r"invalid.*parameter",
    r"must be.*string",
    r"expected.*but received",
    r"timed out",
    r"net::ERR_",
    r"ERR_HTTP2_PROTOCOL_ERROR",
    r"syntax error",
    r"applescript execution failed",
    r"user denied",
])

# Failures that no amount of retrying inside the step will fix.
UNRECOVERABLE_PATTERNS = _compile([
    r"not currently executable",
    r"not available in this environment",
    r"unsupported (?:on|in) this (?:platform|environment)",
    r"missing (?:required )?(?:binary|dependency|prerequisite)",
])

# Tools whose input mistakes are common enough to deserve a larger budget.
INPUT_FAILURE_THRESHOLD_OVERRIDES: Dict[str, int] = {
    "run_applescript": 8,
}


def _matches(patterns: Sequence[Pattern[str]], message: str) -> bool:
    return any(pattern.search(message or "") for pattern in patterns)


def is_non_retryable_error(message: str) -> bool:
    """Quota, billing or rate-limit style failure."""
    return _matches(NON_RETRYABLE_PATTERNS, message)


def is_input_dependent_error(message: str) -> bool:
    return _matches(INPUT_DEPENDENT_PATTERNS, message)


def is_unrecoverable_error(message: str) -> bool:
    return _matches(UNRECOVERABLE_PATTERNS, message) or is_non_retryable_error(message)


def classify_tool_error(message: str) -> ToolErrorType:
    """Classify a tool failure message. Non-retryable wins over input-dependent."""
    if is_non_retryable_error(message):
        return ToolErrorType.NON_RETRYABLE
    if is_input_dependent_error(message):
        return ToolErrorType.INPUT_DEPENDENT
    return ToolErrorType.SYSTEMIC


@dataclass
class SoftFailure:
    """A tool that returned normally but reported ``success: false``."""

    error: Optional[str]
    exit_code: Optional[int] = None

    @property
    def message(self) -> str:
        if self.error:
            return self.error
        if self.exit_code is not None:
            return f"exit code {self.exit_code}"
        return "tool reported success=false"


def detect_soft_failure(result: Any) -> Optional[SoftFailure]:
    """Return a SoftFailure when ``result`` is a mapping with ``success`` false."""
    if not isinstance(result, dict) or result.get("success") is not False:
        return None
    error = result.get("error")
    exit_code = result.get("exitCode", result.get("exit_code"))
    return SoftFailure(
        error=str(error) if error else None,
        exit_code=int(exit_code) if isinstance(exit_code, (int, float)) else None,
    )
