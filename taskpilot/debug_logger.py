#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Debug logging for taskpilot.

Logging is off unless ``--debug`` or ``TASKPILOT_DEBUG=1`` is given. When on,
each session writes a single log file whose entries look like
``[EVENT_NAME] {json payload}`` so a run can be replayed step by step.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from taskpilot import config


def prune_old_logs(log_dir: Path, keep: int) -> None:
    """Remove old log files beyond the configured retention limit."""

    if keep < 1 or not log_dir.exists():
        return

    log_files = sorted(
        [path for path in log_dir.glob("taskpilot_debug_*.log") if path.is_file()],
        key=lambda path: path.stat().st_mtime,
        reverse=True,
    )

    for stale_file in log_files[keep:]:
        try:
            stale_file.unlink()
        except OSError:
            continue


class DebugLogger:
    """Session-wide logger with one child logger per component."""

    _instance: Optional['DebugLogger'] = None

    def __init__(self, enabled: bool = False, log_dir: Optional[Path] = None):
        """Create the logger.

        Args:
            enabled: Whether debug logging is enabled
            log_dir: Directory for log files (defaults to .taskpilot/logs/)
        """
        self._enabled = False
        self._log_file: Optional[Path] = None
        self._loggers: Dict[str, logging.Logger] = {}

        if enabled:
            self.enable(log_dir)

    def enable(self, log_dir: Optional[Path] = None) -> None:
        """Start writing to a new session log file."""
        if self._enabled:
            return
        self._enabled = True
        log_dir = log_dir or config.LOGS_DIR
        log_dir.mkdir(exist_ok=True, parents=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self._log_file = log_dir / f"taskpilot_debug_{timestamp}.log"
        self._setup_logging()

        prune_old_logs(log_dir, config.LOG_RETENTION_LIMIT)

        self.log("system", "DEBUG_SESSION_START", {
            "timestamp": datetime.now().isoformat(),
            "log_file": str(self._log_file),
            "workspace": str(config.ROOT),
        })

    @classmethod
    def initialize(cls, enabled: bool = False, log_dir: Optional[Path] = None) -> 'DebugLogger':
        """Initialize the global instance.

        Modules grab the instance at import time, so an existing disabled
        instance is switched on in place rather than replaced.
        """
        if cls._instance is None:
            cls._instance = cls(enabled, log_dir)
        elif enabled:
            cls._instance.enable(log_dir)
        return cls._instance

    @classmethod
    def get_instance(cls) -> 'DebugLogger':
        """Get the global instance, creating a disabled one if needed."""
        if cls._instance is None:
            cls._instance = cls(enabled=config.DEBUG_ENABLED)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close and forget the global instance."""
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None

    def _setup_logging(self):
        formatter = logging.Formatter(
            '%(asctime)s | %(name)-24s | %(levelname)-8s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        file_handler = logging.FileHandler(self._log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)

        root_logger = logging.getLogger('taskpilot')
        root_logger.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)
        root_logger.propagate = False

    def get_logger(self, component: str) -> logging.Logger:
        """Get or create the logger for a component (e.g. 'executor', 'tools')."""
        if component not in self._loggers:
            self._loggers[component] = logging.getLogger(f'taskpilot.{component}')
        return self._loggers[component]

    def log(self, component: str, event: str, data: Optional[Dict[str, Any]] = None, level: str = "INFO"):
        """Log a structured event.

        Args:
            component: Component name (e.g. 'planner', 'mediator', 'executor')
            event: Event type/name
            data: Optional dictionary of event data
            level: Log level (DEBUG, INFO, WARNING, ERROR)
        """
        if not self._enabled:
            return

        message = f"[{event}]"
        if data:
            message += f" {json.dumps(data, indent=2, default=str)}"

        log_level = getattr(logging, level.upper(), logging.INFO)
        self.get_logger(component).log(log_level, message)

    def log_llm_request(self, model: str, messages: List[Dict[str, Any]], tools: Optional[list] = None):
        """Log a model request with truncated message content."""
        if not self._enabled:
            return

        data: Dict[str, Any] = {
            "model": model,
            "message_count": len(messages),
            "messages": [
                {
                    "role": msg.get("role"),
                    "content": str(msg.get("content", ""))[:500],
                }
                for msg in messages
            ],
        }
        if tools:
            data["tools"] = [tool.get("name") for tool in tools]

        self.log("llm", "LLM_REQUEST", data, "DEBUG")

    def log_llm_response(self, model: str, response: Any):
        """Log a model response summary."""
        if not self._enabled:
            return

        data: Dict[str, Any] = {
            "model": model,
            "stop_reason": getattr(response, "stop_reason", None),
        }
        text = getattr(response, "text", None)
        if text:
            data["text_preview"] = text[:500]
        tool_uses = getattr(response, "tool_uses", None) or []
        if tool_uses:
            data["tool_uses"] = [
                {"name": block.name, "input_preview": str(block.input)[:200]}
                for block in tool_uses
            ]
        usage = getattr(response, "usage", None)
        if usage is not None:
            data["usage"] = {"input_tokens": usage.input_tokens, "output_tokens": usage.output_tokens}

        self.log("llm", "LLM_RESPONSE", data, "DEBUG")

    def log_tool_execution(self, tool_name: str, arguments: Dict[str, Any], result: Any = None,
                           error: Optional[str] = None):
        """Log a tool execution."""
        if not self._enabled:
            return

        data: Dict[str, Any] = {
            "tool": tool_name,
            "arguments": {k: str(v)[:200] for k, v in (arguments or {}).items()},
        }

        if error:
            data["error"] = str(error)
            level = "ERROR"
        else:
            data["result_type"] = type(result).__name__
            data["result_preview"] = str(result)[:500] if result is not None else None
            level = "DEBUG"

        self.log("tools", "TOOL_EXECUTION", data, level)

    def log_task_status(self, task_id: str, status: str, details: Optional[Dict[str, Any]] = None):
        """Log a task status change."""
        if not self._enabled:
            return

        data: Dict[str, Any] = {"task_id": task_id, "status": status}
        if details:
            data["details"] = details

        self.log("executor", "TASK_STATUS_CHANGE", data, "INFO")

    def log_error(self, component: str, error: BaseException, context: Optional[Dict[str, Any]] = None):
        """Log an error with context."""
        if not self._enabled:
            return

        data: Dict[str, Any] = {
            "error_type": type(error).__name__,
            "error_message": str(error),
        }
        if context:
            data["context"] = context

        self.log(component, "ERROR", data, "ERROR")

    def _log_plain(self, level: str, msg: str, *args: Any, **kwargs: Any) -> None:
        if not self._enabled:
            return

        log_level = getattr(logging, level.upper(), logging.INFO)
        self.get_logger("general").log(log_level, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_plain("INFO", msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_plain("WARNING", msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_plain("ERROR", msg, *args, **kwargs)

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log_plain("DEBUG", msg, *args, **kwargs)

    @property
    def enabled(self) -> bool:
        """Check if debug logging is enabled."""
        return self._enabled

    @property
    def log_file_path(self) -> Optional[Path]:
        """Get the path to the current log file."""
        return self._log_file

    def close(self):
        """Write the session end marker and release file handlers."""
        if not self._enabled:
            return

        self.log("system", "DEBUG_SESSION_END", {"timestamp": datetime.now().isoformat()})

        root_logger = logging.getLogger('taskpilot')
        for handler in root_logger.handlers[:]:
            handler.close()
            root_logger.removeHandler(handler)
        self._enabled = False


def get_logger() -> DebugLogger:
    """Get the global debug logger instance."""
    return DebugLogger.get_instance()


def is_debug_enabled() -> bool:
    """Check if debug logging is enabled."""
    return get_logger().enabled
