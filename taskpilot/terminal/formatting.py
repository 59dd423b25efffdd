#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Console rendering of the task event stream."""

import sys
from typing import Any, Dict, Optional, TextIO


class Colors:
    """ANSI color codes."""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    BRIGHT_BLACK = '\033[90m'
    BRIGHT_RED = '\033[91m'
    BRIGHT_GREEN = '\033[92m'
    BRIGHT_YELLOW = '\033[93m'
    BRIGHT_BLUE = '\033[94m'
    BRIGHT_CYAN = '\033[96m'
    BRIGHT_WHITE = '\033[97m'

    @staticmethod
    def is_tty(stream: Optional[TextIO] = None) -> bool:
        return (stream or sys.stdout).isatty()


class Symbols:
    BULLET = '●'
    HOLLOW_BULLET = '○'
    ARROW = '→'
    CHECK = '✓'
    CROSS = '✗'
    WARNING = '⚠'
    INFO = 'ℹ'
    BOX_H = '─'


def colorize(text: str, color: str, bold: bool = False, stream: Optional[TextIO] = None) -> str:
    """Colorize text when the target stream is a TTY."""
    if not Colors.is_tty(stream):
        return text
    prefix = Colors.BOLD if bold else ''
    return f"{prefix}{color}{text}{Colors.RESET}"


def create_header(title: str, width: int = 80, stream: Optional[TextIO] = None) -> str:
    separator = Symbols.BOX_H * width
    return (f"\n{colorize(title, Colors.BRIGHT_CYAN, bold=True, stream=stream)}\n"
            f"{colorize(separator, Colors.BRIGHT_BLACK, stream=stream)}")


BULLETS = {
    'bullet': (Symbols.BULLET, Colors.BRIGHT_BLUE),
    'check': (Symbols.CHECK, Colors.BRIGHT_GREEN),
    'cross': (Symbols.CROSS, Colors.BRIGHT_RED),
    'warning': (Symbols.WARNING, Colors.BRIGHT_YELLOW),
    'info': (Symbols.INFO, Colors.BRIGHT_CYAN),
    'hollow': (Symbols.HOLLOW_BULLET, Colors.BRIGHT_BLACK),
    'arrow': (Symbols.ARROW, Colors.BRIGHT_BLACK),
}


def create_bullet_item(text: str, bullet_type: str = 'bullet', indent: int = 2,
                       stream: Optional[TextIO] = None) -> str:
    symbol, color = BULLETS.get(bullet_type, BULLETS['bullet'])
    return f"{' ' * indent}{colorize(symbol, color, stream=stream)} {text}"


def _short(value: Any, limit: int = 160) -> str:
    text = str(value).replace("\n", " ")
    return text if len(text) <= limit else text[:limit - 1] + '…'


def _step_text(payload: Dict[str, Any]) -> str:
    step = payload.get("step") or {}
    return step.get("description", "") if isinstance(step, dict) else str(step)


# event type -> (bullet type, indent, line builder)
EVENT_FORMATS: Dict[str, tuple] = {
    "plan_created": ('info', 0, lambda p: "Plan created:\n" + "\n".join(
        f"    {i}. {s.get('description')}" for i, s in enumerate(p.get("plan", {}).get("steps", []), 1))),
    "plan_revised": ('info', 2, lambda p: f"Plan revised ({p.get('reason')}): +{len(p.get('new_steps', []))} step(s)"),
    "plan_revision_blocked": ('warning', 2, lambda p: f"Plan revision blocked: {_short(p.get('reason'))}"),
    "step_started": ('bullet', 0, lambda p: _step_text(p)),
    "step_completed": ('check', 2, lambda p: "Step completed"),
    "step_failed": ('cross', 2, lambda p: f"Step failed: {_short(p.get('reason'))}"),
    "step_timeout": ('cross', 2, lambda p: _short(p.get('message'))),
    "tool_call": ('arrow', 4, lambda p: f"{p.get('tool')} {_short(p.get('input'), 100)}"),
    "tool_error": ('cross', 4, lambda p: f"{p.get('tool')}: {_short(p.get('error'))}"),
    "tool_blocked": ('warning', 4, lambda p: f"{p.get('tool')} blocked ({p.get('reason')})"),
    "tool_warning": ('warning', 4, lambda p: _short(p.get('warning'))),
    "parameter_inference": ('info', 4, lambda p: f"{p.get('tool')}: {_short(p.get('inference'))}"),
    "assistant_message": ('hollow', 2, lambda p: _short(p.get('message'), 300)),
    "llm_retry": ('warning', 2, lambda p: f"Retrying model call in {p.get('delay_ms')}ms: {_short(p.get('error'))}"),
    "verification_started": ('info', 0, lambda p: "Verifying success criteria"),
    "verification_passed": ('check', 0, lambda p: f"Verification passed: {p.get('message')}"),
    "verification_failed": ('cross', 0, lambda p: f"Verification failed: {_short(p.get('message'))}"),
    "retry_started": ('info', 0, lambda p: f"Starting attempt {p.get('attempt')}/{p.get('max_attempts')}"),
    "awaiting_user_input": ('warning', 0, lambda p: f"Waiting for input: {_short(p.get('question'), 300)}"),
    "task_completed": ('check', 0, lambda p: "Task completed"),
    "task_cancelled": ('warning', 0, lambda p: f"Task cancelled: {p.get('reason')}"),
    "error": ('cross', 0, lambda p: _short(p.get('message') or p.get('error'), 300)),
}


class ConsoleEventSink:
    """Prints a readable line for each event; tool results are shown only with ``verbose``."""

    def __init__(self, stream: Optional[TextIO] = None, verbose: bool = False):
        self.stream = stream or sys.stdout
        self.verbose = verbose

    def format_event(self, event_type: str, payload: Dict[str, Any]) -> Optional[str]:
        if event_type == "tool_result":
            if not self.verbose and payload.get("success", True):
                return None
            bullet = 'check' if payload.get("success", True) else 'cross'
            detail = payload.get("error") or payload.get("result")
            return create_bullet_item(f"{payload.get('tool')}: {_short(detail)}", bullet, 4, self.stream)

        fmt = EVENT_FORMATS.get(event_type)
        if fmt is None:
            return None
        bullet, indent, build = fmt
        return create_bullet_item(build(payload), bullet, indent, self.stream)

    def log_event(self, task_id: str, event_type: str, payload: Dict[str, Any]) -> None:
        line = self.format_event(event_type, payload)
        if line:
            print(line, file=self.stream, flush=True)
