#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Main entry point for the taskpilot CLI."""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from . import config
from ._version import TASKPILOT_VERSION
from .debug_logger import DebugLogger
from .execution.events import LoggingEventSink
from .execution.executor import TaskExecutor
from .llm.anthropic_client import AnthropicModelClient
from .models.task import CriteriaType, Task, TaskStatus
from .terminal.formatting import ConsoleEventSink, create_header
from .tools.workspace_tools import WorkspaceToolExecutor


def load_task_file(path: Path) -> Dict[str, Any]:
    """Read a YAML task file into a plain mapping."""
    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"Task file {path} must contain a mapping")
    return data


def build_task(args: argparse.Namespace) -> Task:
    """Combine the task file (if any) with command-line overrides."""
    data: Dict[str, Any] = {}
    if args.file:
        data = load_task_file(Path(args.file))
    if args.prompt:
        data["prompt"] = " ".join(args.prompt)
    if args.title:
        data["title"] = args.title
    if args.max_attempts:
        data["max_attempts"] = args.max_attempts

    if args.success_command:
        data["success_criteria"] = {"type": CriteriaType.SHELL_COMMAND.value, "command": args.success_command}
    elif args.require_file:
        data["success_criteria"] = {"type": CriteriaType.FILE_EXISTS.value, "file_paths": list(args.require_file)}

    return Task.from_dict(data)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="taskpilot - plan and execute tasks with a tool-using model"
    )
    parser.add_argument(
        "prompt",
        nargs="*",
        help="Task prompt (overrides the prompt of a task file)"
    )
    parser.add_argument(
        "-f", "--file",
        metavar="TASK_YAML",
        help="YAML task file with title, prompt, success_criteria and max_attempts"
    )
    parser.add_argument(
        "--title",
        help="Task title (default: first line of the prompt)"
    )
    parser.add_argument(
        "--model",
        default=config.DEFAULT_MODEL,
        help=f"Model name (default: {config.DEFAULT_MODEL})"
    )
    parser.add_argument(
        "--workspace",
        default=str(config.ROOT),
        help="Directory the tools may read, write and run commands in (default: current directory)"
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        metavar="N",
        help="Goal-mode attempts before giving up"
    )
    criteria = parser.add_mutually_exclusive_group()
    criteria.add_argument(
        "--success-command",
        metavar="CMD",
        help="Shell command that must exit 0 for the task to succeed"
    )
    criteria.add_argument(
        "--require-file",
        action="append",
        metavar="PATH",
        help="File that must exist for the task to succeed (repeatable)"
    )
    parser.add_argument(
        "--no-pause",
        action="store_true",
        help="Do not stop when the model asks a question; keep going"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Print every tool result"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=config.DEBUG_ENABLED,
        help="Write a debug log under .taskpilot/logs"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"taskpilot {TASKPILOT_VERSION}"
    )
    return parser


async def run_task(task: Task, args: argparse.Namespace) -> Task:
    workspace = Path(args.workspace).resolve()
    executor = TaskExecutor(
        task,
        AnthropicModelClient(),
        WorkspaceToolExecutor(workspace),
        event_sink=LoggingEventSink(ConsoleEventSink(verbose=args.verbose)),
        model=args.model,
        workspace=workspace,
        pause_for_questions=not args.no_pause,
    )

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, executor.cancel)
    except (NotImplementedError, RuntimeError):
        # Windows event loops do not support signal handlers.
        pass
    try:
        return await executor.execute()
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the taskpilot CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    debug_logger = DebugLogger.initialize(enabled=args.debug)
    if args.debug:
        print(f"Debug logging enabled: {debug_logger.log_file_path}")

    try:
        task = build_task(args)
    except (OSError, ValueError, yaml.YAMLError) as e:
        parser.error(str(e))

    print(create_header(f"taskpilot: {task.title}"))
    try:
        task = asyncio.run(run_task(task, args))
    except KeyboardInterrupt:
        debug_logger.log("main", "USER_INTERRUPT", {}, "WARNING")
        print("\n\nAborted by user")
        return 1
    except Exception as e:
        debug_logger.log_error("main", e, {"context": "task execution"})
        raise
    finally:
        debug_logger.close()

    if task.status == TaskStatus.COMPLETED:
        print(f"\n✅ Task completed ({task.current_attempt} attempt(s))")
        return 0
    if task.status == TaskStatus.AWAITING_INPUT:
        print("\n[?] Task is waiting for your input; answer the question and run it again.")
    elif task.status == TaskStatus.CANCELLED:
        print("\n[!] Task cancelled")
    else:
        print(f"\n❌ Task failed: {task.error}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
