#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Text classifiers used by the step loop.

Each classifier is a pure function over a pattern table so rules can be
tested one at a time:

- ``is_asking_question``: does a model reply block on the user?
- ``is_recovery_intent``: does a failure (or request) call for a new strategy?
- ``normalize_failure_signature``: stable key for "the same failure again"
- ``normalize_tool_name``: strip ``namespace.`` prefixes from tool names
"""

import re
from typing import Pattern, Sequence


def _compile(patterns: Sequence[str]) -> Sequence[Pattern[str]]:
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


# ---- question detection ------------------------------------------------

NON_BLOCKING_QUESTION_PATTERNS = _compile([
    r"\bwhat\s+(?:else\s+)?can\s+i\s+help\b",
    r"\bhow\s+can\s+i\s+help\b",
    r"\bis\s+there\s+anything\s+else\s+(?:i\s+can\s+help|you\s+need|you'd\s+like)\b",
    r"\banything\s+else\s+(?:i\s+can\s+help|you\s+need|you'd\s+like|to\s+work\s+on)\b",
    r"\bwhat\s+would\s+you\s+like\s+to\s+(?:do|work\s+on|try|build)\b",
    r"\bwhat\s+should\s+we\s+do\s+next\b",
    r"\bcan\s+i\s+help\s+with\s+anything\s+else\b",
    r"\bdoes\s+that\s+(?:help|make\s+sense)\b",
])

BLOCKING_CUE_PATTERNS = _compile([
    r"(?:need|required)\s+(?:your|a|the)\b",
    r"before\s+i\s+can\s+(?:proceed|continue)\b",
    r"to\s+(?:proceed|continue|move\s+forward)\b",
    r"i\s+can(?:not|'t)\s+(?:proceed|continue)\b",
    r"\bawaiting\s+your\b",
])

EXPLICIT_PROCEED_PATTERNS = _compile([
    r"\bi(?:\s+will|'ll)\s+(?:proceed|continue|go\s+ahead|move\s+forward)\b",
    r"\bi\s+can\s+(?:proceed|continue|move\s+forward)\b",
    r"\bi(?:\s+will|'ll)\s+assume\b",
    r"\bif\s+you\s+do\s+not\s+(?:respond|answer|reply)\b",
    r"\bif\s+you\s+don't\s+(?:respond|answer|reply)\b",
])

QUESTION_WORD_PATTERNS = _compile([
    r"^(?:who|what|where|when|why|how|which)\b",
])

IMPERATIVE_PATTERNS = _compile([
    r"^(?:please\s+)?(?:provide|share|send|upload|enter|paste|specify|clarify|confirm|choose|pick|select|list|tell|give)\b",
])

DECISION_PATTERNS = _compile([
    r"^(?:do\s+you\s+want|do\s+you\s+prefer|would\s+you\s+like|would\s+you\s+prefer|should\s+i|is\s+it\s+(?:ok|okay|alright)\s+if\s+i)\b",
])

MAX_QUESTION_SAMPLE = 4000
_LIST_MARKER = re.compile(r"^[-*]?\s*\d*[).]?\s*")
_LAST_SENTENCE = re.compile(r"[^.!?]+[.!?]*$")


def _any(patterns: Sequence[Pattern[str]], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def is_asking_question(text: str) -> bool:
    """Heuristically decide whether ``text`` waits on an answer from the user.

    A blocking cue anywhere wins. Otherwise only the last two lines matter:
    an imperative request or a decision prompt blocks; a trailing question
    blocks unless it is conversational filler or the text says it will go on
    without an answer.
    """
    sample = (text or "").strip()[:MAX_QUESTION_SAMPLE]
    if not sample:
        return False

    if _any(BLOCKING_CUE_PATTERNS, sample):
        return True

    lines = [line.strip() for line in sample.splitlines() if line.strip()]
    if not lines:
        return False

    last_line = lines[-1]
    sentence = _LAST_SENTENCE.search(last_line)
    last_sentence = sentence.group(0).strip() if sentence else last_line
    non_blocking_tail = _any(NON_BLOCKING_QUESTION_PATTERNS, last_sentence)
    explicit_proceed = _any(EXPLICIT_PROCEED_PATTERNS, sample)

    tail_question = False
    tail_imperative = False
    for line in lines[-2:]:
        normalized = _LIST_MARKER.sub("", line, count=1).strip()
        if not normalized or _any(NON_BLOCKING_QUESTION_PATTERNS, normalized):
            continue
        if _any(IMPERATIVE_PATTERNS, normalized) or _any(DECISION_PATTERNS, normalized):
            tail_imperative = True
        if normalized.endswith("?") or _any(QUESTION_WORD_PATTERNS, normalized):
            tail_question = True

    if tail_imperative:
        return True
    if tail_question:
        return not (non_blocking_tail or explicit_proceed)
    return False


# ---- recovery intent ---------------------------------------------------

RECOVERY_INTENT_PATTERNS = _compile([
    r"\bfind\s+(?:another|a\s+different|an\s+alternative|a\s+new)\s+way\b",
    r"\b(?:use|try|need|find)\s+(?:a\s+|an\s+)?workaround\b",
    r"\bcan(?:not|'t|\s+not)\s+(?:do|complete|finish|proceed\s+with)\s+(?:this|that|it|the\s+task)\b",
    r"\b(?:current|this)\s+approach\s+(?:is|was)\s+(?:blocked|not\s+working)\b",
    r"\bno\s+(?:viable|working)\s+(?:path|approach|option)\b",
    r"\btry\s+(?:a\s+)?different\s+(?:approach|strategy|toolchain)\b",
])


def is_recovery_intent(text: str) -> bool:
    """True for explicit workaround requests or "this approach is blocked" phrasing."""
    return _any(RECOVERY_INTENT_PATTERNS, text or "")


# ---- signatures and names ---------------------------------------------

MAX_SIGNATURE_LENGTH = 160


def normalize_failure_signature(text: str) -> str:
    """Lowercase, mask numbers, collapse whitespace and truncate."""
    signature = (text or "").lower()
    signature = re.sub(r"\d+", "#", signature)
    signature = re.sub(r"\s+", " ", signature).strip()
    return signature[:MAX_SIGNATURE_LENGTH]


def normalize_tool_name(name: str) -> str:
    """``functions.web_search`` -> ``web_search``."""
    name = (name or "").strip()
    if "." in name:
        return name.rsplit(".", 1)[-1]
    return name
