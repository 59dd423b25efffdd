#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Duplicate and retry-loop detection for tool calls.

Three checks run in order:

1. Rate limit: calls to one tool in the last 60s (persists across steps).
2. Exact duplicates: the same (tool, normalized input) pair within the window.
3. Semantic duplicates: for creation/copy/search tools, calls whose inputs
   differ only by a version suffix or a site modifier.
"""

import re
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from taskpilot import config
from taskpilot.debug_logger import get_logger
from taskpilot.tools.utils import Clock, hash_args, now_ms

logger = get_logger()

RATE_WINDOW_MS = 60_000

# Tools whose output depends on live external state; repeated calls are expected.
STATEFUL_TOOLS = frozenset({
    "browser_get_content",
    "browser_screenshot",
    "browser_get_text",
    "browser_evaluate",
    "canvas_push",
})

SEMANTIC_TOOLS = frozenset({
    "create_document",
    "write_file",
    "copy_file",
    "create_spreadsheet",
    "create_presentation",
    "web_search",
})

IDEMPOTENT_TOOLS = frozenset({
    "read_file",
    "read_multiple_files",
    "list_directory",
    "directory_tree",
    "search_files",
    "search_code",
    "get_file_info",
    "canvas_list",
    "canvas_checkpoints",
    "task_history",
    "channel_list_chats",
    "channel_history",
    "web_search",
})
READ_ONLY_PREFIXES = ("read_", "list_", "get_", "search_", "check_", "describe_", "query_")
READ_ONLY_SUFFIXES = ("_list", "_status", "_history")

_VERSION_RE = re.compile(r"[_-]v?\d+(\.\d+)?", re.IGNORECASE)
_SUFFIX_RE = re.compile(r"[_-](complete|final|updated|new|copy|backup|draft)", re.IGNORECASE)
_EXTENSION_RE = re.compile(r"\.[^./\\]+$")
_SITE_RE = re.compile(r"site:(twitter\.com|x\.com|reddit\.com|github\.com)", re.IGNORECASE)
_PLATFORM_RE = re.compile(r"\b(reddit|twitter|x\.com|github)\b", re.IGNORECASE)


def is_idempotent_tool(tool_name: str) -> bool:
    """Read-only tools whose repeated results can be served from cache."""
    if tool_name in IDEMPOTENT_TOOLS:
        return True
    return tool_name.startswith(READ_ONLY_PREFIXES) or tool_name.endswith(READ_ONLY_SUFFIXES)


def _strip_variants(name: str) -> str:
    name = _VERSION_RE.sub("", name)
    name = _SUFFIX_RE.sub("", name)
    return _EXTENSION_RE.sub("", name)


def semantic_signature(tool_name: str, tool_input: Optional[Dict[str, Any]]) -> str:
    """Collapse an input to the "same operation, different target" key."""
    if not tool_input:
        return tool_name

    if tool_name in ("create_document", "write_file", "create_spreadsheet", "create_presentation"):
        filename = str(tool_input.get("filename") or tool_input.get("path") or "")
        return f"{tool_name}:file:{_strip_variants(filename)}"

    if tool_name == "copy_file":
        dest = str(tool_input.get("destPath") or tool_input.get("destination") or "")
        return f"{tool_name}:copy:{_strip_variants(dest)}"

    if tool_name == "web_search":
        query = str(tool_input.get("query") or tool_input.get("search") or "").lower()
        query = _SITE_RE.sub("", query)
        query = _PLATFORM_RE.sub("", query)
        query = re.sub(r"[\"']", "", query)
        query = re.sub(r"\s+", " ", query).strip()
        return f"{tool_name}:search:{query}"

    return tool_name


@dataclass
class CallRecord:
    count: int
    last_call_time: float
    last_result: Optional[str] = None
    last_succeeded: bool = True


@dataclass
class DuplicateCheck:
    """Outcome of ``check_duplicate``.

    ``kind`` is one of "rate_limit", "exact" or "semantic" for duplicates.
    """

    is_duplicate: bool
    kind: Optional[str] = None
    reason: Optional[str] = None
    cached_result: Optional[str] = None
    previous_succeeded: bool = False


@dataclass
class _SemanticEntry:
    time: float
    input: Dict[str, Any] = field(default_factory=dict)


class ToolCallDeduplicator:
    """Detects duplicate and near-duplicate tool calls."""

    def __init__(
        self,
        max_duplicates: int = config.DEDUP_MAX_DUPLICATES,
        window_ms: int = config.DEDUP_WINDOW_MS,
        max_semantic_similar: int = config.DEDUP_MAX_SEMANTIC_SIMILAR,
        rate_limit: int = config.DEDUP_RATE_LIMIT_PER_MINUTE,
        clock: Clock = now_ms,
    ):
        self.max_duplicates = max_duplicates
        self.window_ms = window_ms
        self.max_semantic_similar = max_semantic_similar
        self.rate_limit = rate_limit
        self._clock = clock
        self._recent_calls: Dict[str, CallRecord] = {}
        self._semantic_patterns: Dict[str, List[_SemanticEntry]] = {}
        self._rate_counters: Dict[str, Deque[float]] = {}

    @staticmethod
    def call_key(tool_name: str, tool_input: Optional[Dict[str, Any]]) -> str:
        return f"{tool_name}:{hash_args(tool_input or {})}"

    # ---- eviction ----------------------------------------------------

    def _evict(self, now: float) -> None:
        expired = [key for key, record in self._recent_calls.items()
                   if now - record.last_call_time > self.window_ms]
        for key in expired:
            del self._recent_calls[key]

    def _rate_window(self, tool_name: str, now: float) -> Deque[float]:
        window = self._rate_counters.setdefault(tool_name, deque())
        while window and now - window[0] > RATE_WINDOW_MS:
            window.popleft()
        return window

    # ---- checks ------------------------------------------------------

    def _check_rate_limit(self, tool_name: str, now: float) -> DuplicateCheck:
        window = self._rate_window(tool_name, now)
        if len(window) >= self.rate_limit:
            return DuplicateCheck(
                is_duplicate=True,
                kind="rate_limit",
                reason=(f'Rate limit exceeded: "{tool_name}" called {len(window)} times in the last '
                        f"minute. Max allowed: {self.rate_limit}/min."),
            )
        return DuplicateCheck(is_duplicate=False)

    def _check_semantic(self, tool_name: str, tool_input: Dict[str, Any], now: float) -> DuplicateCheck:
        signature = semantic_signature(tool_name, tool_input)
        recent = [entry for entry in self._semantic_patterns.get(signature, [])
                  if now - entry.time <= self.window_ms]
        self._semantic_patterns[signature] = recent

        if len(recent) >= self.max_semantic_similar:
            return DuplicateCheck(
                is_duplicate=True,
                kind="semantic",
                reason=(f'Detected {len(recent) + 1} semantically similar "{tool_name}" calls within '
                        f"{self.window_ms / 1000:.0f}s. This appears to be a retry loop with slight "
                        "parameter variations. Please try a different approach or check if the "
                        "previous operation actually succeeded."),
            )
        return DuplicateCheck(is_duplicate=False)

    def check_duplicate(self, tool_name: str, tool_input: Optional[Dict[str, Any]]) -> DuplicateCheck:
        """Decide whether a call should be blocked. Does not record anything."""
        if tool_name in STATEFUL_TOOLS:
            return DuplicateCheck(is_duplicate=False)

        now = self._clock()
        tool_input = tool_input or {}

        rate_check = self._check_rate_limit(tool_name, now)
        if rate_check.is_duplicate:
            return rate_check

        self._evict(now)
        existing = self._recent_calls.get(self.call_key(tool_name, tool_input))
        if existing is not None and existing.count >= self.max_duplicates:
            return DuplicateCheck(
                is_duplicate=True,
                kind="exact",
                reason=(f'Tool "{tool_name}" called {existing.count + 1} times with identical '
                        f"parameters within {self.window_ms / 1000:.0f}s. This appears to be a "
                        "duplicate call."),
                cached_result=existing.last_result,
                previous_succeeded=existing.last_succeeded,
            )

        if tool_name in SEMANTIC_TOOLS:
            semantic_check = self._check_semantic(tool_name, tool_input, now)
            if semantic_check.is_duplicate:
                return semantic_check

        return DuplicateCheck(is_duplicate=False)

    def record_call(self, tool_name: str, tool_input: Optional[Dict[str, Any]],
                    result: Optional[str] = None, succeeded: bool = True) -> None:
        """Record a settled call (after execution finished)."""
        now = self._clock()
        tool_input = tool_input or {}
        key = self.call_key(tool_name, tool_input)

        existing = self._recent_calls.get(key)
        if existing is not None and now - existing.last_call_time <= self.window_ms:
            existing.count += 1
            existing.last_call_time = now
            existing.last_succeeded = succeeded
            if result:
                existing.last_result = result
        else:
            self._recent_calls[key] = CallRecord(
                count=1, last_call_time=now, last_result=result, last_succeeded=succeeded
            )

        signature = semantic_signature(tool_name, tool_input)
        self._semantic_patterns.setdefault(signature, []).append(_SemanticEntry(time=now, input=tool_input))

        self._rate_window(tool_name, now).append(now)

    def reset(self) -> None:
        """Clear per-step state. Rate-limit counters persist across steps."""
        self._recent_calls.clear()
        self._semantic_patterns.clear()

    def reset_all(self) -> None:
        """Clear everything, including rate-limit counters (goal-mode retry)."""
        self.reset()
        self._rate_counters.clear()

    def rate_count(self, tool_name: str) -> int:
        return len(self._rate_window(tool_name, self._clock()))
