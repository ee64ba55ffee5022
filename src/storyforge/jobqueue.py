from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from .approval import apply_auto_approval
from .backoff import BackoffPolicy
from .config import Config, QueueConfig
from .generator import GenerationRequest, Generator
from .models import ProcessingJob
from .params import SLIDES, InvalidJobParams, default_params, parse_job_params
from .state import InvalidTransition, ItemStatus, JobStatus, StoryStatus
from .storage import (
    abandon_and_requeue,
    claim_job,
    complete_job,
    enqueue_job,
    fail_job,
    find_terminal_story,
    get_content_item,
    get_job,
    get_tenant,
    list_claimable_jobs,
    list_exhausted_pending_jobs,
    list_new_items_for_enqueue,
    list_tenants,
    recover_stale_jobs,
    retry_job,
    set_item_status,
    skip_job,
    upsert_story,
)
from .utils import log_event


@dataclass(frozen=True)
class QueueRunRequest:
    job_kind: str | None = None
    limit: int | None = None


@dataclass(frozen=True)
class JobOutcome:
    job_id: str
    target_id: int
    success: bool
    slide_count: int | None = None
    error: str | None = None
    skipped: bool = False
    retry_scheduled: bool = False
    abandoned: bool = False

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "job_id": self.job_id,
            "target_id": self.target_id,
            "success": self.success,
        }
        if self.slide_count is not None:
            data["slide_count"] = self.slide_count
        if self.error is not None:
            data["error"] = self.error
        if self.skipped:
            data["skipped"] = True
        if self.retry_scheduled:
            data["retry_scheduled"] = True
        if self.abandoned:
            data["abandoned"] = True
        return data


@dataclass(frozen=True)
class QueueRunResult:
    success: bool
    processed: int
    results: list[JobOutcome] = field(default_factory=list)
    recovered: int = 0
    abandoned: int = 0
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "success": self.success,
            "processed": self.processed,
            "results": [outcome.as_dict() for outcome in self.results],
            "recovered": self.recovered,
            "abandoned": self.abandoned,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


class JobQueueManager:
    """Claims pending generation jobs and drives each one to a terminal state.

    Every status change is a conditional single-row update, so overlapping
    runs never process the same job twice.
    """

    def __init__(
        self,
        conn: Any,
        generator: Generator,
        config: QueueConfig,
        logger: logging.Logger,
        approval_threshold: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.conn = conn
        self.generator = generator
        self.config = config
        self.logger = logger
        self.approval_threshold = approval_threshold
        self.sleep = sleep
        self.clock = clock
        self.backoff = BackoffPolicy(base_seconds=config.retry_base_minutes * 60)

    def run(self, request: QueueRunRequest | None = None) -> QueueRunResult:
        request = request or QueueRunRequest()
        try:
            return self._run(request)
        except Exception as exc:  # noqa: BLE001
            log_event(self.logger, logging.ERROR, "queue_run_failed", error=str(exc))
            return QueueRunResult(success=False, processed=0, error=str(exc))

    def _run(self, request: QueueRunRequest) -> QueueRunResult:
        started = self.clock()
        recovered = recover_stale_jobs(self.conn, self.config.stale_after_seconds)
        if recovered:
            log_event(self.logger, logging.WARNING, "queue_stale_recovered", count=recovered)

        abandoned = 0
        for job in list_exhausted_pending_jobs(self.conn):
            if abandon_and_requeue(
                self.conn, job.id, job.content_item_id, expected_status=JobStatus.PENDING
            ):
                abandoned += 1
                log_event(
                    self.logger,
                    logging.WARNING,
                    "queue_job_abandoned",
                    job_id=job.id,
                    target_id=job.content_item_id,
                    attempts=job.attempts,
                    reason="exhausted_while_pending",
                )

        limit = request.limit or self.config.batch_size
        candidates = list_claimable_jobs(self.conn, limit, kind=request.job_kind)
        results: list[JobOutcome] = []
        for candidate in candidates:
            if self.clock() - started >= self.config.run_budget_seconds:
                log_event(
                    self.logger,
                    logging.WARNING,
                    "queue_budget_exhausted",
                    processed=len(results),
                )
                break
            if results and self.config.inter_job_delay_seconds > 0:
                self.sleep(self.config.inter_job_delay_seconds)
            job = claim_job(self.conn, candidate.id)
            if job is None:
                log_event(self.logger, logging.INFO, "queue_claim_lost", job_id=candidate.id)
                continue
            results.append(self.process_job(job))

        abandoned += sum(1 for outcome in results if outcome.abandoned)
        log_event(
            self.logger,
            logging.INFO,
            "queue_run_complete",
            processed=len(results),
            recovered=recovered,
            abandoned=abandoned,
        )
        return QueueRunResult(
            success=True,
            processed=len(results),
            results=results,
            recovered=recovered,
            abandoned=abandoned,
        )

    def process_job(self, job: ProcessingJob) -> JobOutcome:
        try:
            return self._process(job)
        except InvalidTransition as exc:
            # another worker or a stale reset moved the job; its result is discarded
            log_event(
                self.logger,
                logging.WARNING,
                "queue_job_transition_lost",
                job_id=job.id,
                current=exc.current,
                target=exc.target,
            )
            return JobOutcome(job.id, job.content_item_id, success=False, error=str(exc))

    def _process(self, job: ProcessingJob) -> JobOutcome:
        try:
            params = parse_job_params(job.kind, job.params)
        except InvalidJobParams as exc:
            error = f"invalid params: {exc}"
            fail_job(self.conn, job.id, error)
            log_event(self.logger, logging.ERROR, "queue_job_invalid", job_id=job.id, error=error)
            return JobOutcome(job.id, job.content_item_id, success=False, error=error)

        existing = find_terminal_story(self.conn, job.content_item_id)
        if existing is not None:
            skip_job(self.conn, job.id, reason=f"story {existing.id} already {existing.status.value}")
            set_item_status(self.conn, job.content_item_id, ItemStatus.QUEUED, ItemStatus.PROCESSED)
            log_event(
                self.logger,
                logging.INFO,
                "queue_job_skipped",
                job_id=job.id,
                story_id=existing.id,
            )
            return JobOutcome(
                job.id,
                job.content_item_id,
                success=True,
                slide_count=existing.slide_count,
                skipped=True,
            )

        item = get_content_item(self.conn, job.content_item_id)
        if item is None:
            error = f"content item {job.content_item_id} not found"
            fail_job(self.conn, job.id, error)
            log_event(self.logger, logging.ERROR, "queue_job_orphaned", job_id=job.id)
            return JobOutcome(job.id, job.content_item_id, success=False, error=error)

        try:
            result = self.generator(
                GenerationRequest(
                    job_id=job.id,
                    content_item_id=item.id,
                    tenant_id=job.tenant_id,
                    url=item.url,
                    title=item.title,
                    params=params,
                )
            )
        except Exception as exc:  # noqa: BLE001
            return self._handle_failure(job, str(exc))

        complete_job(self.conn, job.id, result.as_dict())
        story = upsert_story(
            self.conn,
            result.story_id,
            job.content_item_id,
            job.tenant_id,
            job.id,
            result.slide_count,
            result.quality_score,
            status=StoryStatus.DRAFT,
        )
        set_item_status(self.conn, job.content_item_id, ItemStatus.QUEUED, ItemStatus.PROCESSED)
        apply_auto_approval(self.conn, story, self.approval_threshold, logger=self.logger)
        log_event(
            self.logger,
            logging.INFO,
            "queue_job_completed",
            job_id=job.id,
            story_id=story.id,
            slide_count=result.slide_count,
            attempts=job.attempts,
        )
        return JobOutcome(job.id, job.content_item_id, success=True, slide_count=result.slide_count)

    def _handle_failure(self, job: ProcessingJob, error: str) -> JobOutcome:
        # job.attempts already counts the claim that just failed
        if job.attempts < job.max_attempts:
            delay = self.backoff.delay(job.attempts)
            retry_job(self.conn, job.id, error, delay)
            log_event(
                self.logger,
                logging.WARNING,
                "queue_job_retry",
                job_id=job.id,
                attempts=job.attempts,
                max_attempts=job.max_attempts,
                delay_seconds=delay,
                error=error,
            )
            return JobOutcome(
                job.id, job.content_item_id, success=False, error=error, retry_scheduled=True
            )

        if not abandon_and_requeue(self.conn, job.id, job.content_item_id):
            current = get_job(self.conn, job.id)
            raise InvalidTransition(
                "job", current.status.value if current else "missing", "abandoned"
            )
        log_event(
            self.logger,
            logging.ERROR,
            "queue_job_abandoned",
            job_id=job.id,
            target_id=job.content_item_id,
            attempts=job.attempts,
            error=error,
        )
        return JobOutcome(job.id, job.content_item_id, success=False, error=error, abandoned=True)


def enqueue_new_items(
    conn: Any,
    config: Config,
    logger: logging.Logger,
    tenant_id: str | None = None,
) -> dict[str, Any]:
    """Queue ``new`` items for auto-simplify tenants, capped per tenant."""
    if tenant_id:
        tenant = get_tenant(conn, tenant_id)
        if tenant is None:
            return {"success": False, "error": f"tenant not found: {tenant_id}"}
        tenants = [tenant]
    else:
        tenants = list_tenants(conn, auto_simplify_only=True)

    summary: list[dict[str, Any]] = []
    total = 0
    for tenant in tenants:
        threshold = (
            tenant.auto_approve_threshold
            if tenant.auto_approve_threshold is not None
            else config.approval.default_threshold
        )
        items = list_new_items_for_enqueue(
            conn, tenant.id, threshold, config.queue.auto_enqueue_limit
        )
        params = default_params(SLIDES, tenant.default_slide_type)
        queued = 0
        for item in items:
            if enqueue_job(
                conn,
                item.id,
                tenant.id,
                SLIDES,
                params,
                max_attempts=config.queue.max_attempts,
            ):
                queued += 1
        total += queued
        summary.append({"tenant_id": tenant.id, "queued": queued, "threshold": threshold})
        log_event(
            logger,
            logging.INFO,
            "queue_auto_enqueue",
            tenant_id=tenant.id,
            candidates=len(items),
            queued=queued,
        )
    return {"success": True, "queued": total, "tenants": summary}
