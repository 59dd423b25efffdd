#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Tracks file reads, directory listings and file creation across a task.

Redundancy counters (reads within 30s, listings within 60s) cover one step
and are cleared by ``start_step``. What the task has learned (files read,
files created, directories explored) persists until ``reset``. It feeds the
knowledge summary handed to later steps.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from taskpilot import config
from taskpilot.debug_logger import get_logger
from taskpilot.tools.utils import Clock, now_ms

logger = get_logger()

MAX_READS_PER_FILE = 2
MAX_LISTINGS_PER_DIR = 2
DOCUMENT_EXTENSIONS = (".docx", ".pdf")


@dataclass
class ReadRecord:
    count: int
    last_read_time: float
    content_length: int = 0


@dataclass
class ListingRecord:
    files: List[str]
    last_list_time: float
    count: int


@dataclass
class FileCheck:
    """Result of a redundancy or creation check."""

    blocked: bool = False
    reason: Optional[str] = None
    suggestion: Optional[str] = None
    cached_files: Optional[List[str]] = None
    existing_path: Optional[str] = None


def normalize_path(file_path: str) -> str:
    return file_path.lower().replace("\\", "/")


def normalize_filename(filename: str) -> str:
    """Strip directory, extension, version tokens and variant suffixes."""
    name = normalize_path(filename).rsplit("/", 1)[-1]
    name = re.sub(r"\.[^.]+$", "", name)
    name = re.sub(r"[_-]v?\d+(\.\d+)?", "", name)
    name = re.sub(r"[_-](updated|final|new|copy|backup|draft|section)", "", name)
    name = re.sub(r"[_-]+", "_", name)
    return name.strip()


def are_similar_filenames(first: str, second: str) -> bool:
    """Equal, or the shorter (at least 10 chars) is contained in the longer."""
    if first == second:
        return True
    shorter, longer = sorted((first, second), key=len)
    return len(shorter) >= 10 and shorter in longer


class FileOperationTracker:
    """Suppresses redundant reads/listings and spots duplicate file creation."""

    def __init__(
        self,
        read_window_ms: int = config.FILE_READ_WINDOW_MS,
        listing_window_ms: int = config.DIR_LIST_WINDOW_MS,
        clock: Clock = now_ms,
    ):
        self.read_window_ms = read_window_ms
        self.listing_window_ms = listing_window_ms
        self._clock = clock
        self._reads: Dict[str, ReadRecord] = {}
        self._listings: Dict[str, ListingRecord] = {}
        self._created: Dict[str, str] = {}
        self._known_reads: List[str] = []
        self._known_dirs: List[str] = []
        self._operation_counts: Dict[str, int] = {}

    def _count(self, operation: str) -> None:
        self._operation_counts[operation] = self._operation_counts.get(operation, 0) + 1

    # ---- reads -------------------------------------------------------

    def check_file_read(self, file_path: str) -> FileCheck:
        existing = self._reads.get(normalize_path(file_path))
        if existing is None:
            return FileCheck()

        elapsed = self._clock() - existing.last_read_time
        if elapsed < self.read_window_ms and existing.count >= MAX_READS_PER_FILE:
            return FileCheck(
                blocked=True,
                reason=(f'File "{file_path}" was already read {existing.count} times in the last '
                        f"{self.read_window_ms / 1000:.0f}s"),
                suggestion=("Use the content from the previous read instead of reading the file again. "
                            "If you need specific parts, describe what you need."),
            )
        return FileCheck()

    def record_file_read(self, file_path: str, content_length: int = 0) -> None:
        normalized = normalize_path(file_path)
        existing = self._reads.get(normalized)
        now = self._clock()
        if existing is not None:
            existing.count += 1
            existing.last_read_time = now
            existing.content_length = content_length
        else:
            self._reads[normalized] = ReadRecord(count=1, last_read_time=now, content_length=content_length)
        if normalized not in self._known_reads:
            self._known_reads.append(normalized)
        self._count("read_file")

    # ---- listings ----------------------------------------------------

    def check_directory_listing(self, dir_path: str) -> FileCheck:
        existing = self._listings.get(normalize_path(dir_path))
        if existing is None:
            return FileCheck()

        elapsed = self._clock() - existing.last_list_time
        if elapsed < self.listing_window_ms and existing.count >= MAX_LISTINGS_PER_DIR:
            return FileCheck(
                blocked=True,
                reason=(f'Directory "{dir_path}" was already listed {existing.count} times in the last '
                        f"{self.listing_window_ms / 1000:.0f}s"),
                suggestion=("Use the cached directory listing instead of listing again. "
                            "The directory contents are unlikely to have changed."),
                cached_files=list(existing.files),
            )
        return FileCheck()

    def record_directory_listing(self, dir_path: str, files: List[str]) -> None:
        normalized = normalize_path(dir_path)
        existing = self._listings.get(normalized)
        now = self._clock()
        if existing is not None:
            existing.count += 1
            existing.last_list_time = now
            existing.files = list(files)
        else:
            self._listings[normalized] = ListingRecord(files=list(files), last_list_time=now, count=1)
        if normalized not in self._known_dirs:
            self._known_dirs.append(normalized)
        self._count("list_directory")

    def get_cached_directory_listing(self, dir_path: str) -> Optional[List[str]]:
        record = self._listings.get(normalize_path(dir_path))
        return list(record.files) if record else None

    # ---- creation ----------------------------------------------------

    def check_file_creation(self, filename: str) -> FileCheck:
        normalized = normalize_filename(filename)
        existing_path = self._created.get(normalized)
        if existing_path:
            return FileCheck(
                existing_path=existing_path,
                suggestion=(f'A similar file "{existing_path}" was already created. Consider editing '
                            "that file instead of creating a new version."),
            )

        for key, path in self._created.items():
            if are_similar_filenames(normalized, key):
                return FileCheck(
                    existing_path=path,
                    suggestion=(f'A similar file "{path}" was already created. Avoid creating multiple '
                                "versions, edit the existing file instead."),
                )
        return FileCheck()

    def record_file_creation(self, file_path: str) -> None:
        normalized = normalize_filename(file_path)
        self._created.pop(normalized, None)
        self._created[normalized] = file_path
        self._count("create_file")

    def get_last_created_document(self) -> Optional[str]:
        """Most recently created .docx/.pdf, used for parameter inference."""
        for path in reversed(list(self._created.values())):
            if path.lower().endswith(DOCUMENT_EXTENSIONS):
                return path
        return None

    def get_created_files(self) -> List[str]:
        return list(self._created.values())

    # ---- summaries and lifecycle --------------------------------------

    def get_stats(self) -> Dict[str, int]:
        return {
            "total_reads": self._operation_counts.get("read_file", 0),
            "total_creates": self._operation_counts.get("create_file", 0),
            "total_listings": self._operation_counts.get("list_directory", 0),
            "unique_files_read": len(self._known_reads),
            "files_created": len(self._created),
            "dirs_listed": len(self._known_dirs),
        }

    def get_knowledge_summary(self) -> str:
        parts = []
        if self._known_reads:
            parts.append(f"Files already read: {', '.join(self._known_reads[-10:])}")
        if self._created:
            parts.append(f"Files created: {', '.join(list(self._created.values())[-10:])}")
        if self._known_dirs:
            parts.append(f"Directories explored: {', '.join(self._known_dirs[-5:])}")
        return "\n".join(parts)

    def start_step(self) -> None:
        """Clear per-step redundancy counters, keeping task knowledge."""
        self._reads.clear()
        for record in self._listings.values():
            record.count = 0

    def reset(self) -> None:
        self._reads.clear()
        self._listings.clear()
        self._created.clear()
        self._known_reads.clear()
        self._known_dirs.clear()
        self._operation_counts.clear()

    def serialize(self) -> Dict[str, List[str]]:
        """Snapshot of what was touched (no timing data)."""
        return {
            "read_files": self._known_reads[:50],
            "created_files": list(self._created.values())[:50],
            "directories": self._known_dirs[:20],
        }

    def restore(self, state: Dict[str, Any]) -> None:
        for file_path in state.get("read_files") or []:
            normalized = normalize_path(file_path)
            if normalized not in self._known_reads:
                self._known_reads.append(normalized)
        for file_path in state.get("created_files") or []:
            self._created[normalize_filename(file_path)] = file_path
        for dir_path in state.get("directories") or []:
            normalized = normalize_path(dir_path)
            if normalized not in self._known_dirs:
                self._known_dirs.append(normalized)
        logger.log("file_tracker", "STATE_RESTORED", {
            "read_files": len(self._known_reads),
            "created_files": len(self._created),
            "directories": len(self._known_dirs),
        })
