#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Bounded mutation of a running plan.

``PlanRevisionManager`` accepts or rejects new steps proposed mid-execution.
``RecoveryEscalator`` uses it to add two generic recovery steps when a step
fails in a way that calls for a different strategy.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from taskpilot import config
from taskpilot.debug_logger import get_logger
from taskpilot.execution.classifiers import is_recovery_intent, normalize_failure_signature
from taskpilot.execution.events import EventType
from taskpilot.models.plan import Plan, PlanStep, new_step_id

logger = get_logger()

SIMILARITY_PREFIX_LENGTH = 30
SHARED_ACTION_KEYWORDS = ("copy", "edit", "verify")


@dataclass
class RevisionResult:
    accepted: bool
    added_steps: List[PlanStep]
    reason: Optional[str] = None
    truncated: bool = False


def is_similar_to_failed(new_description: str, failed_description: str) -> bool:
    """Prefix overlap, or both mention the same risky action keyword."""
    new_desc = new_description.lower()
    failed_desc = failed_description.lower()
    if failed_desc[:SIMILARITY_PREFIX_LENGTH] in new_desc or new_desc[:SIMILARITY_PREFIX_LENGTH] in failed_desc:
        return True
    return any(keyword in failed_desc and keyword in new_desc for keyword in SHARED_ACTION_KEYWORDS)


def _proposal_descriptions(new_steps: Sequence[Union[str, Dict[str, Any]]]) -> List[str]:
    descriptions = []
    for raw in new_steps:
        if isinstance(raw, dict):
            raw = raw.get("description") or raw.get("step") or ""
        text = str(raw).strip()
        if text:
            descriptions.append(text)
    return descriptions


class PlanRevisionManager:
    """Applies revisions to one plan, within revision and size limits."""

    def __init__(
        self,
        emit,
        max_revisions: int = config.MAX_PLAN_REVISIONS,
        max_total_steps: int = config.MAX_TOTAL_STEPS,
    ):
        self.emit = emit
        self.max_revisions = max_revisions
        self.max_total_steps = max_total_steps
        self.revision_count = 0

    @property
    def revisions_remaining(self) -> int:
        return max(self.max_revisions - self.revision_count, 0)

    def reset(self) -> None:
        self.revision_count = 0

    def _block(self, reason: str, **details: Any) -> RevisionResult:
        logger.log("plan_revision", "REVISION_BLOCKED", {"reason": reason, **details}, "WARNING")
        self.emit(EventType.PLAN_REVISION_BLOCKED, {"reason": reason, **details})
        return RevisionResult(accepted=False, added_steps=[], reason=reason)

    def revise(
        self,
        plan: Plan,
        new_steps: Sequence[Union[str, Dict[str, Any]]],
        reason: str,
        check_failed_similarity: bool = True,
        id_prefix: str = "revised",
    ) -> RevisionResult:
        """Insert ``new_steps`` after the in-progress step (or append).

        Never raises for a rejected proposal; the rejection is logged and
        emitted as ``plan_revision_blocked``.
        """
        descriptions = _proposal_descriptions(new_steps)
        if not descriptions:
            return self._block("Revision contained no steps.", attempted_revision=reason)

        if self.revision_count >= self.max_revisions:
            return self._block(
                f"Maximum plan revisions ({self.max_revisions}) reached. The current approach may not be "
                "working; complete with available results or try a fundamentally different strategy.",
                attempted_revision=reason,
                revision_count=self.revision_count,
            )

        if check_failed_similarity:
            failed = plan.failed_steps()
            if any(is_similar_to_failed(desc, step.description) for step in failed for desc in descriptions):
                return self._block(
                    "Similar steps have already failed. The current approach is not working; "
                    "try a fundamentally different strategy.",
                    attempted_revision=reason,
                    failed_steps=[step.description for step in failed],
                )

        truncated = False
        allowed = self.max_total_steps - len(plan)
        if len(descriptions) > allowed:
            if allowed <= 0:
                return self._block(
                    f"Maximum total steps ({self.max_total_steps}) reached. Complete the task with "
                    "current progress or simplify the approach.",
                    attempted_steps=len(descriptions),
                    current_steps=len(plan),
                )
            logger.warning(f"Truncating revision from {len(descriptions)} to {allowed} steps")
            descriptions = descriptions[:allowed]
            truncated = True

        added = [PlanStep(new_step_id(id_prefix), desc) for desc in descriptions]
        current = plan.current_step()
        plan.insert_after(current.id if current else None, added)
        self.revision_count += 1

        self.emit(EventType.PLAN_REVISED, {
            "reason": reason,
            "new_steps": descriptions,
            "total_steps": len(plan),
            "revision_number": self.revision_count,
            "revisions_remaining": self.revisions_remaining,
            "truncated": truncated,
        })
        logger.log("plan_revision", "PLAN_REVISED", {
            "revision": f"{self.revision_count}/{self.max_revisions}",
            "added": len(added),
            "reason": reason,
        })
        return RevisionResult(accepted=True, added_steps=added, truncated=truncated)


RECOVERY_REASON = "Recovery escalation after a blocked step"


def recovery_step_descriptions(step: PlanStep) -> List[str]:
    return [
        f"Try an alternative toolchain or different input strategy for: {step.description}",
        "If normal tools are blocked, implement the smallest safe code/feature change needed to "
        "continue and complete the goal.",
    ]


class RecoveryEscalator:
    """Adds recovery steps once per distinct failure signature of a step."""

    def __init__(self, revision_manager: PlanRevisionManager):
        self.revision_manager = revision_manager
        self.recovery_requested = False
        self._last_signatures: Dict[str, str] = {}

    def should_escalate(self, step: PlanStep, error: str) -> bool:
        if not (self.recovery_requested or is_recovery_intent(error)):
            return False
        return self._last_signatures.get(step.id) != normalize_failure_signature(error)

    def maybe_escalate(self, plan: Plan, step: PlanStep, error: Optional[str]) -> Optional[RevisionResult]:
        """Append recovery steps for ``step`` when its failure warrants it."""
        error = error or ""
        if not self.should_escalate(step, error):
            return None

        self._last_signatures[step.id] = normalize_failure_signature(error)
        result = self.revision_manager.revise(
            plan,
            recovery_step_descriptions(step),
            RECOVERY_REASON,
            check_failed_similarity=False,
            id_prefix="recovery",
        )
        logger.log("plan_revision", "RECOVERY_ESCALATION", {
            "step_id": step.id,
            "accepted": result.accepted,
            "error": error[:200],
        })
        return result
