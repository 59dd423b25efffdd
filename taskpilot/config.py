#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Configuration constants and settings for taskpilot.

Every value can be overridden through a ``TASKPILOT_*`` environment variable.
Components read these as constructor defaults; tests pass explicit values.
"""

import os
import pathlib


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Paths
ROOT = pathlib.Path(os.getenv("TASKPILOT_WORKSPACE", os.getcwd())).resolve()
TASKPILOT_DIR = ROOT / ".taskpilot"
LOGS_DIR = TASKPILOT_DIR / "logs"
LOG_RETENTION_LIMIT = _env_int("TASKPILOT_LOG_RETENTION", 7)
DEBUG_ENABLED = _env_bool("TASKPILOT_DEBUG", False)

# Model
DEFAULT_MODEL = os.getenv("TASKPILOT_MODEL", "claude-sonnet-4-5")
MAX_OUTPUT_TOKENS = _env_int("TASKPILOT_MAX_OUTPUT_TOKENS", 4096)
LLM_TIMEOUT_MS = _env_int("TASKPILOT_LLM_TIMEOUT_MS", 120_000)

# Retry / backoff for model calls
LLM_MAX_RETRIES = _env_int("TASKPILOT_LLM_MAX_RETRIES", 3)
INITIAL_BACKOFF_MS = _env_int("TASKPILOT_INITIAL_BACKOFF_MS", 1000)
MAX_BACKOFF_MS = _env_int("TASKPILOT_MAX_BACKOFF_MS", 30_000)
BACKOFF_MULTIPLIER = _env_float("TASKPILOT_BACKOFF_MULTIPLIER", 2.0)
BACKOFF_JITTER = 0.25

# Step execution
MAX_STEP_TURNS = _env_int("TASKPILOT_MAX_STEP_TURNS", 5)
MAX_EMPTY_RESPONSES = _env_int("TASKPILOT_MAX_EMPTY_RESPONSES", 3)
STEP_TIMEOUT_MS = _env_int("TASKPILOT_STEP_TIMEOUT_MS", 5 * 60 * 1000)
TOOL_TIMEOUT_MS = _env_int("TASKPILOT_TOOL_TIMEOUT_MS", 90_000)

# Plan bounds
MAX_TOTAL_STEPS = _env_int("TASKPILOT_MAX_TOTAL_STEPS", 20)
MAX_PLAN_REVISIONS = _env_int("TASKPILOT_MAX_PLAN_REVISIONS", 5)

# Guardrails (0 means unlimited)
MAX_GLOBAL_TURNS = _env_int("TASKPILOT_MAX_GLOBAL_TURNS", 100)
MAX_ITERATIONS = _env_int("TASKPILOT_MAX_ITERATIONS", 0)
MAX_TOKENS_PER_TASK = _env_int("TASKPILOT_MAX_TOKENS_PER_TASK", 0)
MAX_COST_PER_TASK = _env_float("TASKPILOT_MAX_COST_PER_TASK", 0.0)
INPUT_COST_PER_MTOK = _env_float("TASKPILOT_INPUT_COST_PER_MTOK", 0.0)
OUTPUT_COST_PER_MTOK = _env_float("TASKPILOT_OUTPUT_COST_PER_MTOK", 0.0)

# Tool call deduplication
DEDUP_MAX_DUPLICATES = _env_int("TASKPILOT_DEDUP_MAX_DUPLICATES", 2)
DEDUP_WINDOW_MS = _env_int("TASKPILOT_DEDUP_WINDOW_MS", 60_000)
DEDUP_MAX_SEMANTIC_SIMILAR = _env_int("TASKPILOT_DEDUP_MAX_SEMANTIC_SIMILAR", 2)
DEDUP_RATE_LIMIT_PER_MINUTE = _env_int("TASKPILOT_DEDUP_RATE_LIMIT", 20)

# Circuit breaker
TOOL_COOLDOWN_MS = _env_int("TASKPILOT_TOOL_COOLDOWN_MS", 5 * 60 * 1000)
SYSTEMIC_FAILURE_THRESHOLD = _env_int("TASKPILOT_SYSTEMIC_FAILURE_THRESHOLD", 2)
INPUT_FAILURE_THRESHOLD = _env_int("TASKPILOT_INPUT_FAILURE_THRESHOLD", 4)

# Redundant file operations
FILE_READ_WINDOW_MS = _env_int("TASKPILOT_FILE_READ_WINDOW_MS", 30_000)
DIR_LIST_WINDOW_MS = _env_int("TASKPILOT_DIR_LIST_WINDOW_MS", 60_000)

# Task behaviour
PAUSE_FOR_QUESTIONS = _env_bool("TASKPILOT_PAUSE_FOR_QUESTIONS", True)
MAX_SPAWN_DEPTH = _env_int("TASKPILOT_MAX_SPAWN_DEPTH", 3)
