#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Cheap keyword classification of a task prompt.

The result only enriches the planning prompt; nothing downstream branches on it.
"""

import re
from dataclasses import dataclass

CODE_TASK_RE = re.compile(
    r"\b(code|function|class|module|api|bug|test|refactor|debug|lint|build|compile|deploy|"
    r"security|audit|review|implement|fix|feature|component|endpoint|database|schema|migration|"
    r"typescript|javascript|python|react|node)\b"
)
DOC_FORMAT_RE = re.compile(r"\b(docx|word|pdf|powerpoint|pptx|excel|xlsx|spreadsheet)\b")
DOC_FILE_RE = re.compile(r"\.(docx|pdf|xlsx|pptx)\b")
RESEARCH_RE = re.compile(r"\b(research|find out|look up|search for|compare|latest|news|sources?)\b")

MODIFY_WORDS = ("modify", "edit", "update", "change", "add to", "append", "duplicate", "copy", "version")
CREATE_PHRASES = ("write a document", "create a document", "write a word", "create a pdf", "make a pdf")

HINTS = {
    "code": "Inspect the relevant files before editing them, and run the project's tests or build "
            "to confirm each change.",
    "document_modification": "Read the source document first, copy it to a new version before "
                             "editing, and edit that copy rather than recreating the document.",
    "document_creation": "Gather the content first, then create the document in a single call "
                         "with a clear filename.",
    "research": "Search for sources first, extract the relevant facts from each, then compile them "
                "into the final answer.",
    "general": "",
}


@dataclass
class TaskAnalysis:
    task_type: str
    hint: str = ""


def analyze_task(prompt: str) -> TaskAnalysis:
    """Classify as code, document_modification, document_creation, research or general."""
    text = (prompt or "").lower()
    is_code = bool(CODE_TASK_RE.search(text))
    mentions_format = bool(DOC_FORMAT_RE.search(text))
    mentions_file = bool(DOC_FILE_RE.search(text))

    if not is_code and (mentions_format or mentions_file) and any(word in text for word in MODIFY_WORDS):
        task_type = "document_modification"
    elif not is_code and (mentions_format or mentions_file or any(p in text for p in CREATE_PHRASES)):
        task_type = "document_creation"
    elif is_code:
        task_type = "code"
    elif RESEARCH_RE.search(text):
        task_type = "research"
    else:
        task_type = "general"

    return TaskAnalysis(task_type=task_type, hint=HINTS[task_type])
