from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable, Mapping, Sequence

from .backoff import BackoffPolicy
from .classifier import ErrorClassification, classify_error
from .config import Config
from .extractors import ExtractionError, Extractor
from .models import AcquisitionAttempt, AcquisitionResult, ExtractedItem, ExtractionRequest, Source
from .params import SLIDES, default_params
from .storage import (
    enqueue_job,
    get_method_success_rates,
    get_source,
    get_tenant,
    insert_content_items,
    list_due_sources,
    record_acquisition_error,
    record_acquisition_failure,
    record_acquisition_run,
    record_acquisition_success,
)
from .strategy import StrategySelection, select_strategy
from .utils import log_event, utc_now_iso

QUALITY_EMA_ALPHA = 0.3


class AcquisitionFailed(RuntimeError):
    def __init__(
        self,
        source_id: str,
        methods_tried: list[str],
        attempts: list[AcquisitionAttempt],
        last_classification: ErrorClassification | None,
        last_error: str | None,
    ) -> None:
        tried = ", ".join(methods_tried) if methods_tried else "none"
        super().__init__(
            f"all methods failed for {source_id} (tried: {tried}): {last_error or 'no method available'}"
        )
        self.source_id = source_id
        self.methods_tried = methods_tried
        self.attempts = attempts
        self.last_classification = last_classification
        self.last_error = last_error


class AcquisitionExecutor:
    """Walks a method chain for one source until some extractor yields items.

    At most ``max_attempts`` extractor calls are made across the whole chain.
    The source's performance record is written exactly once per ``execute``.
    """

    def __init__(
        self,
        conn: Any,
        extractors: Mapping[str, Extractor],
        logger: logging.Logger,
        max_attempts: int = 3,
        backoff: BackoffPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.conn = conn
        self.extractors = extractors
        self.logger = logger
        self.max_attempts = max_attempts
        self.backoff = backoff or BackoffPolicy(base_seconds=1.0, cap_seconds=10.0)
        self.sleep = sleep
        self.clock = clock

    def execute(
        self,
        source: Source,
        chain: Sequence[str],
        request: ExtractionRequest | None = None,
    ) -> AcquisitionResult:
        request = request or ExtractionRequest(
            address=source.address,
            source_id=source.id,
            region=source.region,
            topic_id=source.topic_id,
        )
        started = self.clock()
        attempts: list[AcquisitionAttempt] = []
        tried: list[str] = []
        last_classification: ErrorClassification | None = None
        last_error: str | None = None

        for index, method in enumerate(chain):
            if len(attempts) >= self.max_attempts:
                break
            extractor = self.extractors.get(method)
            if extractor is None:
                log_event(
                    self.logger,
                    logging.WARNING,
                    "acquisition_method_unavailable",
                    source_id=source.id,
                    method=method,
                )
                continue
            ordinal = len(attempts) + 1
            tried.append(method)
            attempt_started_at = utc_now_iso()
            method_started = self.clock()
            try:
                items = extractor(request)
                if not items:
                    raise ExtractionError("no content extracted")
            except Exception as exc:  # noqa: BLE001
                classification = classify_error(exc)
                last_classification = classification
                last_error = str(exc)
                attempts.append(
                    AcquisitionAttempt(
                        method=method,
                        attempt=ordinal,
                        started_at=attempt_started_at,
                        success=False,
                        classification=classification.as_dict(),
                        error=last_error,
                    )
                )
                log_event(
                    self.logger,
                    logging.WARNING,
                    "acquisition_attempt_failed",
                    source_id=source.id,
                    method=method,
                    attempt=ordinal,
                    category=classification.category.value,
                    severity=classification.severity.value,
                    retryable=classification.retryable,
                    error=last_error,
                )
                record_acquisition_error(
                    self.conn,
                    source.id,
                    method,
                    ordinal,
                    classification.as_dict(),
                    last_error,
                )
                has_next = index < len(chain) - 1
                if classification.retryable and has_next and len(attempts) < self.max_attempts:
                    delay = self.backoff.delay(ordinal - 1)
                    log_event(
                        self.logger,
                        logging.INFO,
                        "acquisition_backoff",
                        source_id=source.id,
                        delay_seconds=delay,
                    )
                    self.sleep(delay)
                continue

            method_ms = int((self.clock() - method_started) * 1000)
            attempts.append(
                AcquisitionAttempt(
                    method=method,
                    attempt=ordinal,
                    started_at=attempt_started_at,
                    success=True,
                    items=len(items),
                )
            )
            record_acquisition_success(
                self.conn,
                source.id,
                method,
                method_ms,
                len(items),
                update_quality_metrics(source.quality_metrics, items, utc_now_iso()),
            )
            execution_ms = int((self.clock() - started) * 1000)
            log_event(
                self.logger,
                logging.INFO,
                "acquisition_succeeded",
                source_id=source.id,
                method=method,
                attempts=ordinal,
                items=len(items),
                execution_ms=execution_ms,
            )
            return AcquisitionResult(
                source_id=source.id,
                method_used=method,
                attempts_made=ordinal,
                execution_ms=execution_ms,
                items=list(items),
                attempts=attempts,
            )

        record_acquisition_failure(self.conn, source.id, tried[-1] if tried else None)
        log_event(
            self.logger,
            logging.ERROR,
            "acquisition_exhausted",
            source_id=source.id,
            methods=",".join(tried),
            attempts=len(attempts),
            error=last_error,
        )
        raise AcquisitionFailed(source.id, tried, attempts, last_classification, last_error)


def update_quality_metrics(
    previous: Mapping[str, Any] | None,
    items: Sequence[ExtractedItem],
    now_iso: str,
    alpha: float = QUALITY_EMA_ALPHA,
) -> dict[str, Any]:
    """Fold one batch into the source's exponential moving averages."""
    count = len(items)
    avg_words = sum(item.word_count for item in items) / count if count else 0.0
    snippet_rate = 100.0 * sum(1 for item in items if item.is_snippet) / count if count else 0.0
    previous = previous or {}
    tracked = int(previous.get("total_scrapes_tracked") or 0)
    if tracked:
        avg_words = alpha * avg_words + (1 - alpha) * float(previous.get("avg_word_count") or 0)
        snippet_rate = alpha * snippet_rate + (1 - alpha) * float(previous.get("snippet_rate") or 0)
    return {
        "avg_word_count": round(avg_words, 2),
        "snippet_rate": round(snippet_rate, 2),
        "total_scrapes_tracked": tracked + 1,
        "last_updated": now_iso,
    }


def run_acquisition(
    conn: Any,
    executor: AcquisitionExecutor,
    config: Config,
    logger: logging.Logger,
    source_id: str | None = None,
    force_method: str | None = None,
    region: str | None = None,
    topic_id: str | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> dict[str, Any]:
    """Acquire one named source, or every due source within the run budget."""
    if source_id:
        source = get_source(conn, source_id)
        if source is None:
            return {"success": False, "error": f"source not found: {source_id}"}
        return acquire_source(conn, executor, config, logger, source, force_method, region, topic_id)

    started = clock()
    sources = list_due_sources(conn, utc_now_iso(), region=region, topic_id=topic_id)
    results: list[dict[str, Any]] = []
    deferred = 0
    for source in sources:
        if clock() - started >= config.acquisition.run_budget_seconds:
            deferred += 1
            continue
        results.append(
            acquire_source(conn, executor, config, logger, source, force_method, region, topic_id)
        )
    if deferred:
        log_event(logger, logging.WARNING, "acquisition_budget_exhausted", deferred=deferred)
    return {
        "success": all(result["success"] for result in results),
        "processed": len(results),
        "deferred": deferred,
        "articles_imported": sum(int(result.get("articles_imported") or 0) for result in results),
        "results": results,
    }


def acquire_source(
    conn: Any,
    executor: AcquisitionExecutor,
    config: Config,
    logger: logging.Logger,
    source: Source,
    force_method: str | None = None,
    region: str | None = None,
    topic_id: str | None = None,
) -> dict[str, Any]:
    started_at = utc_now_iso()
    selection = select_strategy(
        source,
        get_method_success_rates(conn),
        forced_method=force_method,
        logger=logger,
    )
    request = ExtractionRequest(
        address=source.address,
        source_id=source.id,
        region=region or source.region,
        topic_id=topic_id or source.topic_id,
    )
    try:
        result = executor.execute(source, selection.chain, request)
    except AcquisitionFailed as exc:
        record_acquisition_run(
            conn,
            source.id,
            started_at,
            status="failed",
            method_used=None,
            attempts_made=len(exc.attempts),
            items_found=0,
            items_imported=0,
            execution_ms=0,
            error=str(exc),
        )
        return {
            "success": False,
            "source_id": source.id,
            "error": str(exc),
            "methods_tried": exc.methods_tried,
            "strategy_info": _strategy_info(selection),
        }

    inserted = insert_content_items(conn, source, result.items)
    queued = enqueue_items(conn, config, source, inserted)
    record_acquisition_run(
        conn,
        source.id,
        started_at,
        status="ok",
        method_used=result.method_used,
        attempts_made=result.attempts_made,
        items_found=len(result.items),
        items_imported=len(inserted),
        execution_ms=result.execution_ms,
    )
    log_event(
        logger,
        logging.INFO,
        "acquisition_stored",
        source_id=source.id,
        found=len(result.items),
        imported=len(inserted),
        queued=queued,
    )
    return {
        "success": True,
        "source_id": source.id,
        "articles_imported": len(inserted),
        "jobs_queued": queued,
        "method_used": result.method_used,
        "attempts_made": result.attempts_made,
        "execution_ms": result.execution_ms,
        "strategy_info": _strategy_info(selection),
    }


def enqueue_items(conn: Any, config: Config, source: Source, item_ids: Iterable[int]) -> int:
    slide_type = None
    if source.tenant_id:
        tenant = get_tenant(conn, source.tenant_id)
        slide_type = tenant.default_slide_type if tenant else None
    params = default_params(SLIDES, slide_type)
    queued = 0
    for item_id in item_ids:
        job_id = enqueue_job(
            conn,
            item_id,
            source.tenant_id,
            SLIDES,
            params,
            max_attempts=config.queue.max_attempts,
        )
        if job_id:
            queued += 1
    return queued


def _strategy_info(selection: StrategySelection) -> dict[str, object]:
    return selection.as_dict()
