#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Success-criteria executors for goal mode."""

import asyncio
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union, runtime_checkable

from taskpilot import config
from taskpilot.debug_logger import get_logger
from taskpilot.execution.cancellation import CancellationToken
from taskpilot.models.task import CriteriaType, SuccessCriteria

logger = get_logger()

VERIFICATION_TIMEOUT_S = 300


@dataclass
class CommandResult:
    exit_code: Optional[int]
    stdout: str = ""
    stderr: str = ""


@dataclass
class VerificationResult:
    success: bool
    message: str


@runtime_checkable
class CommandRunner(Protocol):
    async def run(self, command: str, cancel_token: CancellationToken) -> CommandResult:
        ...


def _run_shell(cmd: str, cwd: Path, timeout: int) -> subprocess.CompletedProcess:
    return subprocess.run(
        cmd,
        shell=True,
        cwd=str(cwd),
        text=True,
        capture_output=True,
        timeout=timeout,
        encoding="utf-8",
        errors="replace",
    )


class SubprocessCommandRunner:
    """Runs a shell command in the workspace root on a worker thread."""

    def __init__(self, workspace: Union[str, Path] = config.ROOT, timeout: int = VERIFICATION_TIMEOUT_S):
        self.workspace = Path(workspace)
        self.timeout = timeout

    async def run(self, command: str, cancel_token: CancellationToken) -> CommandResult:
        try:
            proc = await cancel_token.run(asyncio.to_thread(_run_shell, command, self.workspace, self.timeout))
        except subprocess.TimeoutExpired:
            return CommandResult(exit_code=None, stderr=f"Command timed out after {self.timeout}s")
        return CommandResult(exit_code=proc.returncode, stdout=proc.stdout or "", stderr=proc.stderr or "")


def missing_files(file_paths, workspace: Union[str, Path] = config.ROOT):
    """Paths (relative to ``workspace`` unless absolute) that do not exist."""
    base = Path(workspace)
    return [path for path in file_paths if not (base / path).exists()]


async def verify_success_criteria(
    criteria: Optional[SuccessCriteria],
    runner: CommandRunner,
    cancel_token: CancellationToken,
    workspace: Union[str, Path] = config.ROOT,
) -> VerificationResult:
    """Check ``criteria``. A missing criteria object always passes."""
    if criteria is None:
        return VerificationResult(True, "No criteria defined")

    if criteria.type == CriteriaType.SHELL_COMMAND and criteria.command:
        try:
            result = await runner.run(criteria.command, cancel_token)
        except (OSError, subprocess.SubprocessError) as e:
            logger.log_error("verification", e, {"command": criteria.command})
            return VerificationResult(False, f"Verification command error: {e}")

        if result.exit_code == 0:
            return VerificationResult(True, "Verification command passed")
        output = (result.stderr or result.stdout or "Command failed").strip()
        return VerificationResult(False, f"Verification failed (exit code {result.exit_code}): {output[:500]}")

    if criteria.type == CriteriaType.FILE_EXISTS and criteria.file_paths:
        missing = missing_files(criteria.file_paths, workspace)
        if missing:
            return VerificationResult(False, f"Missing files: {', '.join(missing)}")
        return VerificationResult(True, "All required files exist")

    logger.warning(f"Unknown success criteria type: {criteria.type}")
    return VerificationResult(True, "Unknown criteria type")
