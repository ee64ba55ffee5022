from __future__ import annotations

import json
import uuid
from datetime import timedelta
from typing import Any, Iterable

from .db import connect_db
from .models import ContentItem, ExtractedItem, ProcessingJob, Source, Story, Tenant
from .state import (
    InvalidTransition,
    ItemStatus,
    JobStatus,
    StoryStatus,
    TERMINAL_STORY_STATES,
    check_transition,
)
from .utils import (
    json_dumps,
    json_loads_or,
    normalize_url,
    parse_iso,
    stable_id_from_url,
    utc_now_iso,
    utc_now_iso_offset,
)

_SOURCE_COLUMNS = """
    id, name, address, source_type, tenant_id, topic_id, region, active,
    frequency_minutes, scraping_method, success_rate, last_successful_method,
    last_method_execution_ms, quality_metrics_json, articles_scraped, last_acquired_at
"""

_JOB_COLUMNS = """
    id, content_item_id, tenant_id, kind, status, attempts, max_attempts,
    scheduled_at, started_at, completed_at, params_json, result_json,
    error_message, created_at
"""

_ITEM_COLUMNS = """
    id, source_id, tenant_id, stable_id, url, title, word_count, quality_score,
    processing_status
"""

_STORY_COLUMNS = """
    id, content_item_id, tenant_id, job_id, slide_count, quality_score, status
"""


def init_db(path: str | None = None):
    return connect_db(path)


def get_setting(conn: Any, key: str, default: object) -> object:
    cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
    row = cursor.fetchone()
    if not row:
        return default
    try:
        return json.loads(row[0])
    except json.JSONDecodeError:
        return default


def set_setting(conn: Any, key: str, value: object) -> None:
    payload = json_dumps(value)
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO settings (key, value, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
        """,
        (key, payload, now),
    )
    conn.commit()


def upsert_tenant(conn: Any, tenant_dict: dict[str, object]) -> None:
    tenant_id = str(tenant_dict["id"])
    threshold = tenant_dict.get("auto_approve_threshold")
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO tenants
            (id, name, auto_approve_threshold, auto_simplify_enabled, default_slide_type,
             created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name=excluded.name,
            auto_approve_threshold=excluded.auto_approve_threshold,
            auto_simplify_enabled=excluded.auto_simplify_enabled,
            default_slide_type=excluded.default_slide_type,
            updated_at=excluded.updated_at
        """,
        (
            tenant_id,
            str(tenant_dict.get("name") or tenant_id),
            float(threshold) if threshold is not None else None,
            1 if tenant_dict.get("auto_simplify_enabled") else 0,
            str(tenant_dict.get("default_slide_type") or "tabloid"),
            now,
            now,
        ),
    )
    conn.commit()


def get_tenant(conn: Any, tenant_id: str) -> Tenant | None:
    cursor = conn.execute(
        """
        SELECT id, name, auto_approve_threshold, auto_simplify_enabled, default_slide_type
        FROM tenants
        WHERE id = ?
        """,
        (tenant_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_tenant(row)


def list_tenants(conn: Any, auto_simplify_only: bool = False) -> list[Tenant]:
    clause = "WHERE auto_simplify_enabled = 1" if auto_simplify_only else ""
    cursor = conn.execute(
        f"""
        SELECT id, name, auto_approve_threshold, auto_simplify_enabled, default_slide_type
        FROM tenants
        {clause}
        ORDER BY id
        """
    )
    return [_row_to_tenant(row) for row in cursor.fetchall()]


def get_tenant_threshold(conn: Any, tenant_id: str | None, default: float) -> float:
    if not tenant_id:
        return default
    tenant = get_tenant(conn, tenant_id)
    if tenant is None or tenant.auto_approve_threshold is None:
        return default
    return tenant.auto_approve_threshold


def upsert_source(conn: Any, source_dict: dict[str, object]) -> None:
    source_id = str(source_dict["id"])
    address = str(source_dict.get("address") or source_dict.get("url") or "")
    now = utc_now_iso()
    conn.execute(
        """
        INSERT INTO sources
            (id, name, address, source_type, tenant_id, topic_id, region, active,
             frequency_minutes, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name=excluded.name,
            address=excluded.address,
            source_type=excluded.source_type,
            tenant_id=excluded.tenant_id,
            topic_id=excluded.topic_id,
            region=excluded.region,
            active=excluded.active,
            frequency_minutes=excluded.frequency_minutes,
            updated_at=excluded.updated_at
        """,
        (
            source_id,
            str(source_dict.get("name") or source_id),
            address,
            source_dict.get("source_type"),
            source_dict.get("tenant_id"),
            source_dict.get("topic_id"),
            source_dict.get("region"),
            0 if source_dict.get("active") is False else 1,
            int(source_dict.get("frequency_minutes") or 60),
            now,
            now,
        ),
    )
    conn.commit()


def set_source_active(conn: Any, source_id: str, active: bool) -> None:
    conn.execute(
        "UPDATE sources SET active = ?, updated_at = ? WHERE id = ?",
        (1 if active else 0, utc_now_iso(), source_id),
    )
    conn.commit()


def get_source(conn: Any, source_id: str) -> Source | None:
    cursor = conn.execute(
        f"SELECT {_SOURCE_COLUMNS} FROM sources WHERE id = ?",
        (source_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_source(row)


def list_sources(
    conn: Any,
    active_only: bool = True,
    region: str | None = None,
    topic_id: str | None = None,
) -> list[Source]:
    clauses: list[str] = []
    params: list[object] = []
    if active_only:
        clauses.append("active = 1")
    if region:
        clauses.append("region = ?")
        params.append(region)
    if topic_id:
        clauses.append("topic_id = ?")
        params.append(topic_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    cursor = conn.execute(
        f"SELECT {_SOURCE_COLUMNS} FROM sources {where} ORDER BY id",
        tuple(params),
    )
    return [_row_to_source(row) for row in cursor.fetchall()]


def list_due_sources(
    conn: Any,
    now_iso: str,
    region: str | None = None,
    topic_id: str | None = None,
) -> list[Source]:
    now_dt = parse_iso(now_iso)
    due: list[Source] = []
    for source in list_sources(conn, active_only=True, region=region, topic_id=topic_id):
        if not source.last_acquired_at:
            due.append(source)
            continue
        last_dt = parse_iso(source.last_acquired_at)
        if last_dt + timedelta(minutes=source.frequency_minutes) <= now_dt:
            due.append(source)
    return due


def get_method_success_rates(conn: Any) -> dict[str, float]:
    """Average stored success rate per method across every source that used it."""
    cursor = conn.execute(
        """
        SELECT scraping_method, AVG(success_rate)
        FROM sources
        WHERE scraping_method IS NOT NULL AND success_rate IS NOT NULL
        GROUP BY scraping_method
        """
    )
    return {row[0]: float(row[1]) for row in cursor.fetchall()}


def record_acquisition_success(
    conn: Any,
    source_id: str,
    method: str,
    execution_ms: int,
    items_found: int,
    quality_metrics: dict[str, object] | None,
) -> None:
    # Single statement so concurrent runs never read-modify-write the rate.
    now = utc_now_iso()
    conn.execute(
        """
        UPDATE sources
        SET success_rate = MIN(100.0, MAX(COALESCE(success_rate, 0) * 0.8 + 20,
                                          COALESCE(success_rate, 0) + 5)),
            scraping_method = ?,
            last_successful_method = ?,
            last_method_execution_ms = ?,
            quality_metrics_json = COALESCE(?, quality_metrics_json),
            articles_scraped = articles_scraped + ?,
            last_acquired_at = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (
            method,
            method,
            int(execution_ms),
            json_dumps(quality_metrics) if quality_metrics is not None else None,
            int(items_found),
            now,
            now,
            source_id,
        ),
    )
    conn.commit()


def record_acquisition_failure(conn: Any, source_id: str, last_method: str | None) -> None:
    now = utc_now_iso()
    conn.execute(
        """
        UPDATE sources
        SET success_rate = MAX(0.0, COALESCE(success_rate, 0) * 0.9 - 10),
            scraping_method = COALESCE(?, scraping_method),
            last_acquired_at = ?,
            updated_at = ?
        WHERE id = ?
        """,
        (last_method, now, now, source_id),
    )
    conn.commit()


def record_acquisition_error(
    conn: Any,
    source_id: str,
    method: str,
    attempt: int,
    classification: dict[str, object],
    error: str,
) -> None:
    conn.execute(
        """
        INSERT INTO acquisition_errors
            (source_id, method, attempt, category, severity, retryable, error, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            source_id,
            method,
            attempt,
            str(classification.get("category")),
            str(classification.get("severity")),
            1 if classification.get("retryable") else 0,
            error,
            utc_now_iso(),
        ),
    )
    conn.commit()


def list_acquisition_errors(conn: Any, source_id: str, limit: int = 50) -> list[dict[str, object]]:
    cursor = conn.execute(
        """
        SELECT method, attempt, category, severity, retryable, error, created_at
        FROM acquisition_errors
        WHERE source_id = ?
        ORDER BY id DESC
        LIMIT ?
        """,
        (source_id, limit),
    )
    return [
        {
            "method": row[0],
            "attempt": row[1],
            "category": row[2],
            "severity": row[3],
            "retryable": bool(row[4]),
            "error": row[5],
            "created_at": row[6],
        }
        for row in cursor.fetchall()
    ]


def record_acquisition_run(
    conn: Any,
    source_id: str,
    started_at: str,
    status: str,
    method_used: str | None,
    attempts_made: int,
    items_found: int,
    items_imported: int,
    execution_ms: int,
    error: str | None = None,
) -> None:
    conn.execute(
        """
        INSERT INTO acquisition_runs
            (source_id, started_at, finished_at, status, method_used, attempts_made,
             items_found, items_imported, execution_ms, error)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            source_id,
            started_at,
            utc_now_iso(),
            status,
            method_used,
            attempts_made,
            items_found,
            items_imported,
            execution_ms,
            error,
        ),
    )
    conn.commit()


def get_last_acquisition_run(conn: Any, source_id: str) -> dict[str, object] | None:
    cursor = conn.execute(
        """
        SELECT status, method_used, attempts_made, items_found, items_imported,
               execution_ms, error, started_at, finished_at
        FROM acquisition_runs
        WHERE source_id = ?
        ORDER BY id DESC
        LIMIT 1
        """,
        (source_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return {
        "status": row[0],
        "method_used": row[1],
        "attempts_made": row[2],
        "items_found": row[3],
        "items_imported": row[4],
        "execution_ms": row[5],
        "error": row[6],
        "started_at": row[7],
        "finished_at": row[8],
    }


def insert_content_items(
    conn: Any, source: Source, items: Iterable[ExtractedItem]
) -> list[int]:
    """Store extracted items, skipping any already known for the source.

    Returns the ids of the rows that were actually inserted.
    """
    inserted: list[int] = []
    now = utc_now_iso()
    for item in items:
        normalized = normalize_url(item.url)
        stable_id = stable_id_from_url(normalized)
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO content_items
                (source_id, tenant_id, stable_id, url, normalized_url, title, body,
                 published_at, word_count, is_snippet, quality_score, processing_status,
                 created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source.id,
                source.tenant_id,
                stable_id,
                item.url,
                normalized,
                item.title,
                item.body,
                item.published_at,
                item.word_count,
                1 if item.is_snippet else 0,
                item.quality_score,
                ItemStatus.NEW.value,
                now,
                now,
            ),
        )
        if cursor.rowcount == 1:
            inserted.append(int(cursor.lastrowid))
    conn.commit()
    return inserted


def get_content_item(conn: Any, item_id: int) -> ContentItem | None:
    cursor = conn.execute(
        f"SELECT {_ITEM_COLUMNS} FROM content_items WHERE id = ?",
        (item_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_item(row)


def list_new_items_for_enqueue(
    conn: Any, tenant_id: str, min_quality: float, limit: int
) -> list[ContentItem]:
    cursor = conn.execute(
        f"""
        SELECT {_ITEM_COLUMNS}
        FROM content_items ci
        WHERE ci.tenant_id = ?
          AND ci.processing_status = 'new'
          AND (ci.quality_score IS NULL OR ci.quality_score >= ?)
          AND NOT EXISTS (
              SELECT 1 FROM generation_jobs j
              WHERE j.content_item_id = ci.id AND j.status IN ('pending', 'processing')
          )
          AND NOT EXISTS (
              SELECT 1 FROM stories s WHERE s.content_item_id = ci.id
          )
        ORDER BY ci.created_at ASC, ci.id ASC
        LIMIT ?
        """,
        (tenant_id, min_quality, limit),
    )
    return [_row_to_item(row) for row in cursor.fetchall()]


def set_item_status(conn: Any, item_id: int, current: ItemStatus, target: ItemStatus) -> bool:
    check_transition(current, target)
    cursor = conn.execute(
        """
        UPDATE content_items
        SET processing_status = ?, updated_at = ?
        WHERE id = ? AND processing_status = ?
        """,
        (target.value, utc_now_iso(), item_id, current.value),
    )
    conn.commit()
    return cursor.rowcount == 1


def enqueue_job(
    conn: Any,
    content_item_id: int,
    tenant_id: str | None,
    kind: str,
    params: dict[str, object],
    max_attempts: int = 3,
) -> str | None:
    """Queue one job for an item and mark the item queued.

    Returns ``None`` when the item already has an active job.
    """
    check_transition(ItemStatus.NEW, ItemStatus.QUEUED)
    job_id = _new_job_id()
    now = utc_now_iso()
    with conn.transaction():
        cursor = conn.execute(
            """
            SELECT 1 FROM generation_jobs
            WHERE content_item_id = ? AND status IN ('pending', 'processing')
            LIMIT 1
            """,
            (content_item_id,),
        )
        if cursor.fetchone() is not None:
            return None
        conn.execute(
            """
            INSERT INTO generation_jobs
                (id, content_item_id, tenant_id, kind, status, attempts, max_attempts,
                 scheduled_at, params_json, created_at)
            VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?, ?)
            """,
            (
                job_id,
                content_item_id,
                tenant_id,
                kind,
                JobStatus.PENDING.value,
                max_attempts,
                now,
                json_dumps(params),
                now,
            ),
        )
        conn.execute(
            """
            UPDATE content_items
            SET processing_status = ?, updated_at = ?
            WHERE id = ? AND processing_status = ?
            """,
            (ItemStatus.QUEUED.value, now, content_item_id, ItemStatus.NEW.value),
        )
    return job_id


def get_job(conn: Any, job_id: str) -> ProcessingJob | None:
    cursor = conn.execute(
        f"SELECT {_JOB_COLUMNS} FROM generation_jobs WHERE id = ?",
        (job_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_job(row)


def list_jobs(
    conn: Any, status: str | None = None, limit: int = 50
) -> list[ProcessingJob]:
    if status:
        cursor = conn.execute(
            f"""
            SELECT {_JOB_COLUMNS} FROM generation_jobs
            WHERE status = ?
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (status, limit),
        )
    else:
        cursor = conn.execute(
            f"""
            SELECT {_JOB_COLUMNS} FROM generation_jobs
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (limit,),
        )
    return [_row_to_job(row) for row in cursor.fetchall()]


def recover_stale_jobs(conn: Any, stale_after_seconds: int) -> int:
    """Reset processing jobs whose worker vanished; attempts are left alone."""
    check_transition(JobStatus.PROCESSING, JobStatus.PENDING)
    cutoff = utc_now_iso_offset(seconds=-stale_after_seconds)
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE generation_jobs
        SET status = 'pending',
            started_at = NULL,
            scheduled_at = ?,
            error_message = 'stale_processing_reset'
        WHERE status = 'processing' AND started_at IS NOT NULL AND started_at < ?
        """,
        (now, cutoff),
    )
    conn.commit()
    return cursor.rowcount


def list_exhausted_pending_jobs(conn: Any, limit: int = 50) -> list[ProcessingJob]:
    cursor = conn.execute(
        f"""
        SELECT {_JOB_COLUMNS} FROM generation_jobs
        WHERE status = 'pending' AND attempts >= max_attempts
        ORDER BY created_at ASC
        LIMIT ?
        """,
        (limit,),
    )
    return [_row_to_job(row) for row in cursor.fetchall()]


def list_claimable_jobs(
    conn: Any, limit: int, kind: str | None = None, now_iso: str | None = None
) -> list[ProcessingJob]:
    now = now_iso or utc_now_iso()
    params: list[object] = [now]
    kind_clause = ""
    if kind:
        kind_clause = " AND kind = ?"
        params.append(kind)
    params.append(limit)
    cursor = conn.execute(
        f"""
        SELECT {_JOB_COLUMNS} FROM generation_jobs
        WHERE status = 'pending'
          AND attempts < max_attempts
          AND (scheduled_at IS NULL OR scheduled_at <= ?){kind_clause}
        ORDER BY created_at ASC
        LIMIT ?
        """,
        tuple(params),
    )
    return [_row_to_job(row) for row in cursor.fetchall()]


def claim_job(conn: Any, job_id: str) -> ProcessingJob | None:
    """Compare-and-swap a pending job into processing.

    Returns the claimed job, or ``None`` when another worker got there first.
    """
    check_transition(JobStatus.PENDING, JobStatus.PROCESSING)
    now = utc_now_iso()
    cursor = conn.execute(
        f"""
        UPDATE generation_jobs
        SET status = 'processing', started_at = ?, attempts = attempts + 1
        WHERE id = ? AND status = 'pending' AND attempts < max_attempts
        RETURNING {_JOB_COLUMNS}
        """,
        (now, job_id),
    )
    rows = cursor.fetchall()
    conn.commit()
    if not rows:
        return None
    return _row_to_job(rows[0])


def complete_job(conn: Any, job_id: str, result: dict[str, object] | None = None) -> None:
    _finish_job(conn, job_id, JobStatus.COMPLETED, result=result, error=None)


def skip_job(conn: Any, job_id: str, reason: str) -> None:
    _finish_job(
        conn, job_id, JobStatus.COMPLETED, result={"skipped": True, "reason": reason}, error=None
    )


def fail_job(conn: Any, job_id: str, error: str) -> None:
    _finish_job(conn, job_id, JobStatus.FAILED, result=None, error=error)


def _finish_job(
    conn: Any,
    job_id: str,
    target: JobStatus,
    result: dict[str, object] | None,
    error: str | None,
) -> None:
    check_transition(JobStatus.PROCESSING, target)
    now = utc_now_iso()
    cursor = conn.execute(
        """
        UPDATE generation_jobs
        SET status = ?, completed_at = ?, result_json = ?, error_message = ?
        WHERE id = ? AND status = 'processing'
        """,
        (target.value, now, json_dumps(result) if result is not None else None, error, job_id),
    )
    conn.commit()
    if cursor.rowcount != 1:
        _raise_lost_transition(conn, job_id, target)


def retry_job(conn: Any, job_id: str, error: str, delay_seconds: float) -> None:
    check_transition(JobStatus.PROCESSING, JobStatus.PENDING)
    cursor = conn.execute(
        """
        UPDATE generation_jobs
        SET status = 'pending', started_at = NULL, scheduled_at = ?, error_message = ?
        WHERE id = ? AND status = 'processing'
        """,
        (utc_now_iso_offset(seconds=delay_seconds), error, job_id),
    )
    conn.commit()
    if cursor.rowcount != 1:
        _raise_lost_transition(conn, job_id, JobStatus.PENDING)


def _raise_lost_transition(conn: Any, job_id: str, target: JobStatus) -> None:
    """Report a guarded job update that matched no row as the transition it attempted."""
    row = conn.execute("SELECT status FROM generation_jobs WHERE id = ?", (job_id,)).fetchone()
    current = row[0] if row else "missing"
    raise InvalidTransition("job", current, target.value)


def abandon_and_requeue(
    conn: Any,
    job_id: str,
    content_item_id: int,
    expected_status: JobStatus = JobStatus.PROCESSING,
) -> bool:
    """Drop an exhausted job and hand its item back to the pipeline as ``new``.

    Both writes happen in one transaction; if the job row is no longer in
    ``expected_status`` nothing is changed.
    """
    now = utc_now_iso()
    with conn.transaction():
        cursor = conn.execute(
            "DELETE FROM generation_jobs WHERE id = ? AND status = ?",
            (job_id, expected_status.value),
        )
        if cursor.rowcount != 1:
            return False
        conn.execute(
            """
            UPDATE content_items
            SET processing_status = ?, updated_at = ?
            WHERE id = ? AND processing_status IN (?, ?, ?)
            """,
            (
                ItemStatus.NEW.value,
                now,
                content_item_id,
                ItemStatus.QUEUED.value,
                ItemStatus.PROCESSED.value,
                ItemStatus.DISCARDED.value,
            ),
        )
    return True


def find_terminal_story(conn: Any, content_item_id: int) -> Story | None:
    placeholders = ",".join(["?"] * len(TERMINAL_STORY_STATES))
    cursor = conn.execute(
        f"""
        SELECT {_STORY_COLUMNS} FROM stories
        WHERE content_item_id = ? AND status IN ({placeholders})
        ORDER BY updated_at DESC
        LIMIT 1
        """,
        (content_item_id, *[state.value for state in TERMINAL_STORY_STATES]),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_story(row)


def get_story(conn: Any, story_id: str) -> Story | None:
    cursor = conn.execute(
        f"SELECT {_STORY_COLUMNS} FROM stories WHERE id = ?",
        (story_id,),
    )
    row = cursor.fetchone()
    if not row:
        return None
    return _row_to_story(row)


def upsert_story(
    conn: Any,
    story_id: str,
    content_item_id: int,
    tenant_id: str | None,
    job_id: str | None,
    slide_count: int,
    quality_score: float | None,
    status: StoryStatus = StoryStatus.DRAFT,
) -> Story:
    now = utc_now_iso()
    cursor = conn.execute(
        f"""
        INSERT INTO stories
            (id, content_item_id, tenant_id, job_id, slide_count, quality_score, status,
             created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            job_id=excluded.job_id,
            slide_count=excluded.slide_count,
            quality_score=excluded.quality_score,
            updated_at=excluded.updated_at
        RETURNING {_STORY_COLUMNS}
        """,
        (
            story_id,
            content_item_id,
            tenant_id,
            job_id,
            slide_count,
            quality_score,
            status.value,
            now,
            now,
        ),
    )
    rows = cursor.fetchall()
    conn.commit()
    if not rows:
        raise RuntimeError(f"story {story_id} was not written")
    return _row_to_story(rows[0])


def transition_story(
    conn: Any, story_id: str, current: StoryStatus, target: StoryStatus
) -> bool:
    check_transition(current, target)
    cursor = conn.execute(
        "UPDATE stories SET status = ?, updated_at = ? WHERE id = ? AND status = ?",
        (target.value, utc_now_iso(), story_id, current.value),
    )
    conn.commit()
    return cursor.rowcount == 1


def count_jobs_by_status(conn: Any) -> dict[str, int]:
    cursor = conn.execute("SELECT status, COUNT(*) FROM generation_jobs GROUP BY status")
    return {row[0]: int(row[1]) for row in cursor.fetchall()}


def _row_to_tenant(row: tuple) -> Tenant:
    tenant_id, name, threshold, auto_simplify, slide_type = row
    return Tenant(
        id=tenant_id,
        name=name,
        auto_approve_threshold=float(threshold) if threshold is not None else None,
        auto_simplify_enabled=bool(auto_simplify),
        default_slide_type=slide_type,
    )


def _row_to_source(row: tuple) -> Source:
    (
        source_id,
        name,
        address,
        source_type,
        tenant_id,
        topic_id,
        region,
        active,
        frequency_minutes,
        scraping_method,
        success_rate,
        last_successful_method,
        last_method_execution_ms,
        quality_metrics_json,
        articles_scraped,
        last_acquired_at,
    ) = row
    return Source(
        id=source_id,
        name=name,
        address=address,
        source_type=source_type,
        tenant_id=tenant_id,
        topic_id=topic_id,
        region=region,
        active=bool(active),
        frequency_minutes=int(frequency_minutes),
        scraping_method=scraping_method,
        success_rate=float(success_rate) if success_rate is not None else None,
        last_successful_method=last_successful_method,
        last_method_execution_ms=last_method_execution_ms,
        quality_metrics=json_loads_or(quality_metrics_json, {}),
        articles_scraped=int(articles_scraped or 0),
        last_acquired_at=last_acquired_at,
    )


def _row_to_item(row: tuple) -> ContentItem:
    (
        item_id,
        source_id,
        tenant_id,
        stable_id,
        url,
        title,
        word_count,
        quality_score,
        processing_status,
    ) = row
    return ContentItem(
        id=int(item_id),
        source_id=source_id,
        tenant_id=tenant_id,
        stable_id=stable_id,
        url=url,
        title=title,
        word_count=int(word_count or 0),
        quality_score=float(quality_score) if quality_score is not None else None,
        processing_status=processing_status,
    )


def _row_to_job(row: tuple) -> ProcessingJob:
    (
        job_id,
        content_item_id,
        tenant_id,
        kind,
        status,
        attempts,
        max_attempts,
        scheduled_at,
        started_at,
        completed_at,
        params_json,
        result_json,
        error_message,
        created_at,
    ) = row
    params = json_loads_or(params_json, None)
    return ProcessingJob(
        id=job_id,
        content_item_id=int(content_item_id),
        tenant_id=tenant_id,
        kind=kind,
        status=JobStatus(status),
        attempts=int(attempts),
        max_attempts=int(max_attempts),
        scheduled_at=scheduled_at,
        started_at=started_at,
        completed_at=completed_at,
        # unparseable params are kept raw so the queue can fail the job
        params=params if isinstance(params, dict) else {"_raw": params_json},
        result=json_loads_or(result_json, None),
        error_message=error_message,
        created_at=created_at,
    )


def _row_to_story(row: tuple) -> Story:
    story_id, content_item_id, tenant_id, job_id, slide_count, quality_score, status = row
    return Story(
        id=story_id,
        content_item_id=int(content_item_id),
        tenant_id=tenant_id,
        job_id=job_id,
        slide_count=int(slide_count or 0),
        quality_score=float(quality_score) if quality_score is not None else None,
        status=StoryStatus(status),
    )


def _new_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"
