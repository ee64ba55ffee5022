from __future__ import annotations

import logging
from datetime import datetime, timezone
from importlib import metadata
from typing import Any, Iterator

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .acquisition import AcquisitionExecutor, run_acquisition
from .backoff import BackoffPolicy
from .config import (
    EXTRACTOR,
    GENERATOR,
    Config,
    ConfigError,
    Settings,
    bootstrap_runtime_config,
    load_runtime_config,
    load_settings,
)
from .db import DBConn
from .extractors import Extractor, build_default_extractors
from .generator import Generator, HttpGenerator
from .jobqueue import JobQueueManager, QueueRunRequest, enqueue_new_items
from .storage import count_jobs_by_status, get_last_acquisition_run, init_db, list_jobs, list_sources
from .utils import configure_logging, log_event

app = FastAPI(title="storyforge pipeline API")

LOGGER_NAME = "storyforge.api"


class AcquisitionRunRequest(BaseModel):
    source_id: str | None = None
    force_method: str | None = None
    region: str | None = None
    topic_id: str | None = None


class QueueRunBody(BaseModel):
    job_kind: str | None = None
    limit: int | None = Field(default=None, ge=1, le=100)


class EnqueueNewRequest(BaseModel):
    tenant_id: str | None = None


def get_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        settings = load_settings()
        request.app.state.settings = settings
    return settings


def get_conn(settings: Settings = Depends(get_settings)) -> Iterator[DBConn]:
    conn = init_db(settings.db_path)
    try:
        bootstrap_runtime_config(conn)
        yield conn
    finally:
        conn.close()


def get_config(conn: DBConn = Depends(get_conn)) -> Config:
    try:
        return load_runtime_config(conn)
    except ConfigError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def get_extractors(
    settings: Settings = Depends(get_settings), config: Config = Depends(get_config)
) -> dict[str, Extractor]:
    return build_default_extractors(settings, config, logging.getLogger("storyforge.extractors"))


def get_generator(
    settings: Settings = Depends(get_settings), config: Config = Depends(get_config)
) -> Generator:
    if not settings.generator_url or not settings.generator_api_key:
        raise HTTPException(status_code=500, detail="generator is not configured")
    return HttpGenerator(
        settings.generator_url,
        settings.generator_api_key,
        timeout_seconds=config.queue.generator_timeout_seconds,
    )


@app.on_event("startup")
def _startup() -> None:
    logger = configure_logging(LOGGER_NAME)
    # missing collaborator credentials abort startup
    settings = load_settings(require=[EXTRACTOR, GENERATOR])
    app.state.settings = settings
    conn = init_db(settings.db_path)
    try:
        bootstrap_runtime_config(conn)
        load_runtime_config(conn)
    finally:
        conn.close()
    log_event(logger, logging.INFO, "api_started")


@app.get("/health")
def health() -> dict[str, object]:
    return {
        "ok": True,
        "version": _get_version(),
        "time": datetime.now(tz=timezone.utc).isoformat(),
    }


@app.get("/sources")
def sources_list(conn: DBConn = Depends(get_conn)) -> list[dict[str, object]]:
    rows: list[dict[str, object]] = []
    for source in list_sources(conn, active_only=False):
        rows.append(
            {
                "id": source.id,
                "name": source.name,
                "address": source.address,
                "active": source.active,
                "scraping_method": source.scraping_method,
                "success_rate": source.success_rate,
                "last_successful_method": source.last_successful_method,
                "last_method_execution_ms": source.last_method_execution_ms,
                "articles_scraped": source.articles_scraped,
                "quality_metrics": source.quality_metrics,
                "last_acquired_at": source.last_acquired_at,
                "last_run": get_last_acquisition_run(conn, source.id),
            }
        )
    return rows


@app.get("/jobs")
def jobs(
    status: str | None = None, limit: int = 20, conn: DBConn = Depends(get_conn)
) -> dict[str, object]:
    rows = []
    for job in list_jobs(conn, status=status, limit=limit):
        rows.append(
            {
                "id": job.id,
                "content_item_id": job.content_item_id,
                "kind": job.kind,
                "status": job.status.value,
                "attempts": job.attempts,
                "max_attempts": job.max_attempts,
                "scheduled_at": job.scheduled_at,
                "started_at": job.started_at,
                "completed_at": job.completed_at,
                "error": job.error_message,
                "result": job.result or {},
            }
        )
    return {"jobs": rows, "counts": count_jobs_by_status(conn)}


@app.post("/acquisition/run")
def acquisition_run(
    payload: AcquisitionRunRequest | None = None,
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
    extractors: dict[str, Extractor] = Depends(get_extractors),
):
    logger = logging.getLogger(LOGGER_NAME)
    payload = payload or AcquisitionRunRequest()
    executor = AcquisitionExecutor(
        conn,
        extractors,
        logging.getLogger("storyforge.acquisition"),
        max_attempts=config.acquisition.max_attempts,
        backoff=BackoffPolicy(
            base_seconds=config.acquisition.backoff_base_ms / 1000,
            cap_seconds=config.acquisition.backoff_cap_ms / 1000,
        ),
    )
    try:
        result = run_acquisition(
            conn,
            executor,
            config,
            logging.getLogger("storyforge.acquisition"),
            source_id=payload.source_id,
            force_method=payload.force_method,
            region=payload.region,
            topic_id=payload.topic_id,
        )
    except Exception as exc:  # noqa: BLE001
        log_event(logger, logging.ERROR, "acquisition_run_failed", error=str(exc))
        return JSONResponse({"success": False, "error": str(exc)}, status_code=500)
    if payload.source_id and not result["success"] and "source_id" not in result:
        return JSONResponse(result, status_code=404)
    return result


@app.post("/queue/run")
def queue_run(
    payload: QueueRunBody | None = None,
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
    generator: Generator = Depends(get_generator),
):
    payload = payload or QueueRunBody()
    manager = JobQueueManager(
        conn,
        generator,
        config.queue,
        logging.getLogger("storyforge.queue"),
        approval_threshold=config.approval.default_threshold,
    )
    result = manager.run(QueueRunRequest(job_kind=payload.job_kind, limit=payload.limit))
    if not result.success:
        return JSONResponse(result.as_dict(), status_code=500)
    return result.as_dict()


@app.post("/queue/enqueue-new")
def queue_enqueue_new(
    payload: EnqueueNewRequest | None = None,
    conn: DBConn = Depends(get_conn),
    config: Config = Depends(get_config),
) -> Any:
    payload = payload or EnqueueNewRequest()
    result = enqueue_new_items(
        conn, config, logging.getLogger("storyforge.queue"), tenant_id=payload.tenant_id
    )
    if not result["success"]:
        return JSONResponse(result, status_code=404)
    return result


def _get_version() -> str:
    try:
        return metadata.version("storyforge")
    except metadata.PackageNotFoundError:
        return "unknown"
