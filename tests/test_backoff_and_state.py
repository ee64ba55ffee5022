import pytest

from storyforge.backoff import BackoffPolicy
from storyforge.state import (
    InvalidTransition,
    ItemStatus,
    JobStatus,
    StoryStatus,
    check_transition,
)


def test_acquisition_backoff_is_capped():
    policy = BackoffPolicy(base_seconds=1.0, cap_seconds=10.0)
    assert policy.schedule(5) == [1.0, 2.0, 4.0, 8.0, 10.0]


def test_queue_backoff_is_minutes_power_of_two():
    policy = BackoffPolicy(base_seconds=60.0)
    assert policy.delay(1) == 120.0
    assert policy.delay(2) == 240.0


def test_backoff_rejects_negative_attempt():
    with pytest.raises(ValueError):
        BackoffPolicy(base_seconds=1.0).delay(-1)


def test_valid_job_transitions():
    check_transition(JobStatus.PENDING, JobStatus.PROCESSING)
    check_transition(JobStatus.PROCESSING, JobStatus.COMPLETED)
    check_transition(JobStatus.PROCESSING, JobStatus.PENDING)


def test_invalid_job_transition_raises():
    with pytest.raises(InvalidTransition) as excinfo:
        check_transition(JobStatus.COMPLETED, JobStatus.PENDING)
    assert excinfo.value.entity == "job"
    assert excinfo.value.current == "completed"
    assert excinfo.value.target == "pending"


def test_pending_job_cannot_complete_without_claim():
    with pytest.raises(InvalidTransition):
        check_transition(JobStatus.PENDING, JobStatus.COMPLETED)


def test_story_and_item_transitions():
    check_transition(StoryStatus.DRAFT, StoryStatus.READY)
    check_transition(ItemStatus.QUEUED, ItemStatus.NEW)
    with pytest.raises(InvalidTransition):
        check_transition(StoryStatus.PUBLISHED, StoryStatus.DRAFT)
    with pytest.raises(InvalidTransition):
        check_transition(ItemStatus.NEW, ItemStatus.PROCESSED)
