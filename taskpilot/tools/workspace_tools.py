#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Small tool set confined to one workspace directory, used by the CLI."""

import asyncio
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Union

from taskpilot import config
from taskpilot.debug_logger import get_logger

logger = get_logger()

READ_RETURN_LIMIT = 60_000
LIST_LIMIT = 500
COMMAND_TIMEOUT_S = 120
EXCLUDE_DIRS = {".git", ".taskpilot", "__pycache__", "node_modules", ".venv", "venv"}

TOOL_DEFINITIONS: List[Dict[str, Any]] = [
    {
        "name": "read_file",
        "description": "Read the contents of a text file in the workspace",
        "input_schema": {
            "type": "object",
            "properties": {"path": {"type": "string", "description": "Path relative to the workspace"}},
            "required": ["path"],
        },
    },
    {
        "name": "write_file",
        "description": "Write content to a file (creates or overwrites, creating parent directories)",
        "input_schema": {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Path relative to the workspace"},
                "content": {"type": "string", "description": "File content"},
            },
            "required": ["path", "content"],
        },
    },
    {
        "name": "list_directory",
        "description": "List the entries of a directory in the workspace",
        "input_schema": {
            "type": "object",
            "properties": {"path": {"type": "string", "description": "Directory relative to the workspace"}},
            "required": ["path"],
        },
    },
    {
        "name": "run_command",
        "description": "Run a shell command in the workspace root and return its exit code and output",
        "input_schema": {
            "type": "object",
            "properties": {"command": {"type": "string", "description": "Shell command to run"}},
            "required": ["command"],
        },
    },
]


class WorkspaceToolExecutor:
    """Implements read_file, write_file, list_directory and run_command.

    File tools raise on invalid input (escaping the workspace, missing
    files); ``run_command`` reports a non-zero exit as ``success: False``.
    """

    def __init__(self, root: Union[str, Path] = config.ROOT, command_timeout: int = COMMAND_TIMEOUT_S):
        self.root = Path(root).resolve()
        self.command_timeout = command_timeout
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "read_file": self._read_file,
            "write_file": self._write_file,
            "list_directory": self._list_directory,
        }

    def get_tools(self) -> List[Dict[str, Any]]:
        return [dict(tool) for tool in TOOL_DEFINITIONS]

    async def execute_tool(self, name: str, tool_input: Dict[str, Any]) -> Any:
        if name == "run_command":
            return await self._run_command(tool_input)
        handler = self._handlers.get(name)
        if handler is None:
            raise ValueError(f"Unknown tool: {name}")
        return handler(tool_input)

    def _safe_path(self, rel: Any) -> Path:
        if not isinstance(rel, str) or not rel.strip():
            raise ValueError("Missing required parameter: path")
        candidate = Path(rel.strip())
        resolved = (candidate if candidate.is_absolute() else self.root / candidate).resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise PermissionError(f"Path escapes the workspace: {rel}")
        return resolved

    def _rel(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix() or "."

    def _read_file(self, tool_input: Dict[str, Any]) -> Dict[str, Any]:
        path = self._safe_path(tool_input.get("path"))
        if not path.exists():
            raise FileNotFoundError(f"File not found: {tool_input.get('path')}")
        if path.is_dir():
            raise IsADirectoryError(f"Path is a directory: {tool_input.get('path')}")
        content = path.read_text(encoding="utf-8", errors="replace")
        truncated = len(content) > READ_RETURN_LIMIT
        return {
            "success": True,
            "path": self._rel(path),
            "content": content[:READ_RETURN_LIMIT],
            "truncated": truncated,
        }

    def _write_file(self, tool_input: Dict[str, Any]) -> Dict[str, Any]:
        path = self._safe_path(tool_input.get("path"))
        content = tool_input.get("content")
        if not isinstance(content, str):
            raise ValueError("Missing required parameter: content")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.log("workspace_tools", "FILE_WRITTEN", {"path": self._rel(path), "bytes": len(content)})
        return {"success": True, "path": self._rel(path), "bytes_written": len(content)}

    def _list_directory(self, tool_input: Dict[str, Any]) -> Dict[str, Any]:
        path = self._safe_path(tool_input.get("path") or ".")
        if not path.is_dir():
            raise NotADirectoryError(f"Not a directory: {tool_input.get('path')}")
        entries = []
        for child in sorted(path.iterdir(), key=lambda c: (not c.is_dir(), c.name.lower())):
            if child.name in EXCLUDE_DIRS:
                continue
            entries.append({"name": child.name, "type": "dir" if child.is_dir() else "file"})
            if len(entries) >= LIST_LIMIT:
                break
        return {"success": True, "path": self._rel(path), "files": entries}

    async def _run_command(self, tool_input: Dict[str, Any]) -> Dict[str, Any]:
        command = tool_input.get("command")
        if not isinstance(command, str) or not command.strip():
            raise ValueError("Missing required parameter: command")
        try:
            proc = await asyncio.to_thread(
                subprocess.run,
                command,
                shell=True,
                cwd=str(self.root),
                text=True,
                capture_output=True,
                timeout=self.command_timeout,
                encoding="utf-8",
                errors="replace",
            )
        except subprocess.TimeoutExpired:
            raise TimeoutError(f"Command timed out after {self.command_timeout}s: {command}")

        result: Dict[str, Any] = {
            "success": proc.returncode == 0,
            "exitCode": proc.returncode,
            "stdout": (proc.stdout or "")[-READ_RETURN_LIMIT:],
            "stderr": (proc.stderr or "")[-READ_RETURN_LIMIT:],
        }
        if proc.returncode != 0 and proc.stderr:
            result["error"] = proc.stderr.strip().splitlines()[-1][:500]
        return result
