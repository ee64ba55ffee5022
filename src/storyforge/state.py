"""Lifecycle states for processing jobs, content items and stories.

Every status change in storage goes through ``check_transition`` first, and
the matching UPDATE is guarded by the current status, so a row that moved on
underneath a worker is never silently overwritten.
"""

from __future__ import annotations

from enum import Enum


class InvalidTransition(ValueError):
    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(f"invalid {entity} transition {current} -> {target}")
        self.entity = entity
        self.current = current
        self.target = target


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ItemStatus(str, Enum):
    NEW = "new"
    QUEUED = "queued"
    PROCESSED = "processed"
    DISCARDED = "discarded"


class StoryStatus(str, Enum):
    DRAFT = "draft"
    READY = "ready"
    PUBLISHED = "published"


JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.COMPLETED, JobStatus.PENDING, JobStatus.FAILED}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}

ITEM_TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
    ItemStatus.NEW: frozenset({ItemStatus.QUEUED, ItemStatus.DISCARDED}),
    ItemStatus.QUEUED: frozenset({ItemStatus.PROCESSED, ItemStatus.NEW}),
    ItemStatus.PROCESSED: frozenset({ItemStatus.NEW}),
    ItemStatus.DISCARDED: frozenset({ItemStatus.NEW}),
}

STORY_TRANSITIONS: dict[StoryStatus, frozenset[StoryStatus]] = {
    StoryStatus.DRAFT: frozenset({StoryStatus.READY}),
    StoryStatus.READY: frozenset({StoryStatus.PUBLISHED, StoryStatus.DRAFT}),
    StoryStatus.PUBLISHED: frozenset(),
}

# Stories in these states count as finished work for idempotency checks.
TERMINAL_STORY_STATES = (StoryStatus.READY, StoryStatus.PUBLISHED)


def check_transition(current: Enum, target: Enum) -> None:
    if isinstance(current, JobStatus):
        table, entity = JOB_TRANSITIONS, "job"
    elif isinstance(current, ItemStatus):
        table, entity = ITEM_TRANSITIONS, "item"
    elif isinstance(current, StoryStatus):
        table, entity = STORY_TRANSITIONS, "story"
    else:
        raise TypeError(f"unsupported state type {type(current).__name__}")
    if target not in table[current]:
        raise InvalidTransition(entity, current.value, target.value)
