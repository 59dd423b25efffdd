#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Fill in tool parameters that models commonly omit or misspell."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from taskpilot.tools.file_tracker import FileOperationTracker


@dataclass
class InferenceResult:
    input: Dict[str, Any]
    notes: List[str] = field(default_factory=list)

    @property
    def modified(self) -> bool:
        return bool(self.notes)

    @property
    def inference(self) -> Optional[str]:
        return "; ".join(self.notes) if self.notes else None


CANVAS_CONTENT_ALIASES = ("html", "html_content", "body", "htmlContent", "page", "markup")
CANVAS_SESSION_ALIASES = ("sessionId", "session", "canvas_id", "canvasId", "id")


def _rename_first(tool_input: Dict[str, Any], target: str, aliases, notes: List[str]) -> None:
    if tool_input.get(target):
        return
    for alias in aliases:
        if tool_input.get(alias):
            tool_input[target] = tool_input[alias]
            notes.append(f"Normalized {alias} -> {target}")
            return


def _infer_edit_document(tool_input: Dict[str, Any], tracker: FileOperationTracker, notes: List[str]) -> None:
    if tool_input.get("sourcePath"):
        return
    last_doc = tracker.get_last_created_document()
    if last_doc:
        tool_input["sourcePath"] = last_doc
        notes.append(f'Inferred sourcePath="{last_doc}" from recently created document')


def _infer_copy_file(tool_input: Dict[str, Any], tracker: FileOperationTracker, notes: List[str]) -> None:
    _rename_first(tool_input, "sourcePath", ("source",), notes)
    _rename_first(tool_input, "destPath", ("destination",), notes)


def _infer_canvas_push(tool_input: Dict[str, Any], tracker: FileOperationTracker, notes: List[str]) -> None:
    _rename_first(tool_input, "content", CANVAS_CONTENT_ALIASES, notes)
    _rename_first(tool_input, "session_id", CANVAS_SESSION_ALIASES, notes)


InferenceRule = Callable[[Dict[str, Any], FileOperationTracker, List[str]], None]

INFERENCE_RULES: Dict[str, InferenceRule] = {
    "edit_document": _infer_edit_document,
    "copy_file": _infer_copy_file,
    "canvas_push": _infer_canvas_push,
}


def infer_missing_parameters(tool_name: str, tool_input: Optional[Dict[str, Any]],
                             tracker: FileOperationTracker) -> InferenceResult:
    """Apply the rule for ``tool_name``; the input is copied, never mutated in place."""
    updated = dict(tool_input or {})
    notes: List[str] = []
    rule = INFERENCE_RULES.get(tool_name)
    if rule is not None:
        rule(updated, tracker, notes)
    return InferenceResult(input=updated, notes=notes)
