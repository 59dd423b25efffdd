#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Per-tool circuit breaker.

Failures are counted in two buckets. Input-dependent failures (bad paths,
missing parameters) get a larger budget than systemic ones, because the model
can often correct its input on the next try. A disabled tool re-enables on its
own once the cooldown has elapsed, with every counter cleared.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from taskpilot import config
from taskpilot.debug_logger import get_logger
from taskpilot.tools.errors import INPUT_FAILURE_THRESHOLD_OVERRIDES, ToolErrorType, classify_tool_error
from taskpilot.tools.utils import Clock, now_ms

logger = get_logger()


@dataclass
class ToolFailureState:
    """Failure bookkeeping for one tool."""

    systemic_failures: int = 0
    input_failures: int = 0
    disabled_until: Optional[float] = None
    disabled_reason: Optional[str] = None
    last_error: Optional[str] = None

    @property
    def is_clear(self) -> bool:
        return (
            self.systemic_failures == 0
            and self.input_failures == 0
            and self.disabled_until is None
        )


class ToolFailureTracker:
    """Disables tools after repeated failures and re-enables them after a cooldown."""

    def __init__(
        self,
        cooldown_ms: int = config.TOOL_COOLDOWN_MS,
        systemic_threshold: int = config.SYSTEMIC_FAILURE_THRESHOLD,
        input_threshold: int = config.INPUT_FAILURE_THRESHOLD,
        clock: Clock = now_ms,
    ):
        self.cooldown_ms = cooldown_ms
        self.systemic_threshold = systemic_threshold
        self.input_threshold = input_threshold
        self._clock = clock
        self._states: Dict[str, ToolFailureState] = {}

    def _state(self, tool_name: str) -> ToolFailureState:
        if tool_name not in self._states:
            self._states[tool_name] = ToolFailureState()
        return self._states[tool_name]

    def input_threshold_for(self, tool_name: str) -> int:
        return INPUT_FAILURE_THRESHOLD_OVERRIDES.get(tool_name, self.input_threshold)

    def _disable(self, tool_name: str, reason: str) -> None:
        state = self._state(tool_name)
        state.disabled_until = self._clock() + self.cooldown_ms
        state.disabled_reason = reason
        logger.log("failure_tracker", "TOOL_DISABLED", {
            "tool": tool_name,
            "reason": reason[:200],
            "cooldown_ms": self.cooldown_ms,
        }, "WARNING")

    def record_failure(self, tool_name: str, error_message: str) -> bool:
        """Record a failure.

        Returns:
            True if this failure disabled the tool
        """
        state = self._state(tool_name)
        state.last_error = error_message
        error_type = classify_tool_error(error_message)

        if error_type is ToolErrorType.NON_RETRYABLE:
            self._disable(tool_name, error_message)
            return True

        if error_type is ToolErrorType.INPUT_DEPENDENT:
            state.input_failures += 1
            threshold = self.input_threshold_for(tool_name)
            logger.debug(f"Input-dependent error for {tool_name} ({state.input_failures}/{threshold})")
            if state.input_failures >= threshold:
                self._disable(
                    tool_name,
                    f"Model failed to provide correct parameters {state.input_failures} times: {error_message}",
                )
                return True
            return False

        state.systemic_failures += 1
        if state.systemic_failures >= self.systemic_threshold:
            self._disable(tool_name, error_message)
            return True
        return False

    def record_success(self, tool_name: str) -> None:
        """A success resets both failure buckets (a disabled tool stays disabled)."""
        state = self._states.get(tool_name)
        if state is None:
            return
        state.systemic_failures = 0
        state.input_failures = 0
        if state.is_clear:
            del self._states[tool_name]

    def is_disabled(self, tool_name: str) -> bool:
        """Check whether a tool is disabled, re-enabling it once the cooldown elapsed."""
        state = self._states.get(tool_name)
        if state is None or state.disabled_until is None:
            return False
        if self._clock() >= state.disabled_until:
            logger.log("failure_tracker", "TOOL_REENABLED", {"tool": tool_name})
            del self._states[tool_name]
            return False
        return True

    def disabled_tools(self) -> List[str]:
        return [name for name in list(self._states) if self.is_disabled(name)]

    def get_state(self, tool_name: str) -> Optional[ToolFailureState]:
        return self._states.get(tool_name)

    def get_last_error(self, tool_name: str) -> Optional[str]:
        """Disabling cause (or last error) followed by alternative-approach guidance."""
        state = self._states.get(tool_name)
        if state is None:
            return None
        base_error = state.disabled_reason or state.last_error
        if not base_error:
            return None
        guidance = alternative_approach_guidance(tool_name, base_error)
        return f"{base_error}. {guidance}" if guidance else base_error

    def reset(self) -> None:
        self._states.clear()


def alternative_approach_guidance(tool_name: str, error: str) -> Optional[str]:
    """Suggest a different strategy for common failure shapes."""
    lowered = error.lower()

    if tool_name == "run_applescript":
        if "syntax error" in lowered:
            return ("SUGGESTION: Keep AppleScript minimal and valid, and escape shell command quotes "
                    "carefully.")
        if "timed out" in lowered:
            return ("SUGGESTION: Break long operations into smaller calls and verify output "
                    "incrementally.")

    if tool_name == "edit_document" and any(word in lowered for word in ("images", "binary", "size")):
        return ("SUGGESTION: edit_document cannot preserve embedded images. Create a separate "
                "document with the new content instead.")

    if tool_name in ("copy_file", "edit_document") and "failed" in lowered:
        return "SUGGESTION: If copy+edit is not working, create the new content in a separate file."

    if "parameter" in lowered and "required" in lowered:
        return "SUGGESTION: Ensure all required parameters are provided with the exact names the tool expects."

    if "not found" in lowered or "no such file" in lowered or "enoent" in lowered:
        return "SUGGESTION: List the directory first to confirm the exact path before retrying."

    if "quota" in lowered or "rate" in lowered or "limit" in lowered:
        return "SUGGESTION: This service is limited right now. Use a different tool or continue without it."

    return None
