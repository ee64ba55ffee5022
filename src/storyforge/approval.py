from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .models import Story
from .state import StoryStatus
from .storage import get_tenant_threshold, transition_story
from .utils import log_event

DEFAULT_APPROVAL_THRESHOLD = 60.0


@dataclass(frozen=True)
class ApprovalDecision:
    promote: bool
    quality_score: float | None
    threshold: float
    reason: str


def evaluate(quality_score: float | None, threshold: float) -> ApprovalDecision:
    if quality_score is None:
        return ApprovalDecision(False, None, threshold, "no_quality_score")
    if quality_score >= threshold:
        return ApprovalDecision(True, quality_score, threshold, "meets_threshold")
    return ApprovalDecision(False, quality_score, threshold, "below_threshold")


def apply_auto_approval(
    conn: Any,
    story: Story,
    default_threshold: float = DEFAULT_APPROVAL_THRESHOLD,
    logger: logging.Logger | None = None,
) -> ApprovalDecision:
    """Promote a draft story to ready when its score clears the tenant threshold."""
    threshold = get_tenant_threshold(conn, story.tenant_id, default_threshold)
    decision = evaluate(story.quality_score, threshold)
    promoted = False
    if decision.promote and story.status == StoryStatus.DRAFT:
        promoted = transition_story(conn, story.id, StoryStatus.DRAFT, StoryStatus.READY)
    if logger is not None:
        log_event(
            logger,
            logging.INFO,
            "auto_approval",
            story_id=story.id,
            score=story.quality_score,
            threshold=threshold,
            reason=decision.reason,
            promoted=promoted,
        )
    return decision
