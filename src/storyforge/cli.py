from __future__ import annotations

import argparse
import logging
import sys

from pydantic import ValidationError

from .acquisition import run_acquisition
from .config import (
    EXTRACTOR,
    GENERATOR,
    ConfigError,
    load_catalog_file,
    load_runtime_config,
    load_settings,
)
from .jobqueue import QueueRunRequest, enqueue_new_items
from .methods import METHODS
from .params import SlidesParams
from .storage import init_db, list_jobs, list_sources, upsert_source, upsert_tenant
from .utils import configure_logging, json_dumps, log_event
from .worker import build_executor, build_queue_manager


def _setup_logging() -> logging.Logger:
    return configure_logging("storyforge")


def _emit(result: dict[str, object]) -> None:
    sys.stdout.write(json_dumps(result) + "\n")


def _cmd_acquire(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = None
    try:
        settings = load_settings(require=[EXTRACTOR])
        conn = init_db(settings.db_path)
        config = load_runtime_config(conn)
        result = run_acquisition(
            conn,
            build_executor(conn, settings, config, logger),
            config,
            logger,
            source_id=args.source_id,
            force_method=args.force_method,
            region=args.region,
            topic_id=args.topic_id,
        )
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    finally:
        if conn is not None:
            conn.close()
    _emit(result)
    return 0 if result.get("success") else 2


def _cmd_queue_run(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = None
    try:
        settings = load_settings(require=[GENERATOR])
        conn = init_db(settings.db_path)
        config = load_runtime_config(conn)
        manager = build_queue_manager(conn, settings, config, logger)
        result = manager.run(QueueRunRequest(job_kind=args.job_kind, limit=args.limit))
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    finally:
        if conn is not None:
            conn.close()
    _emit(result.as_dict())
    return 0 if result.success else 2


def _cmd_queue_enqueue_new(args: argparse.Namespace, logger: logging.Logger) -> int:
    conn = None
    try:
        settings = load_settings()
        conn = init_db(settings.db_path)
        config = load_runtime_config(conn)
        result = enqueue_new_items(conn, config, logger, tenant_id=args.tenant_id)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1
    finally:
        if conn is not None:
            conn.close()
    _emit(result)
    return 0 if result.get("success") else 2


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    settings = load_settings()
    init_db(settings.db_path).close()
    log_event(logger, logging.INFO, "db_migrated", path=settings.db_path)
    return 0


def _cmd_sources_import(args: argparse.Namespace, logger: logging.Logger) -> int:
    settings = load_settings()
    try:
        catalog = load_catalog_file(args.path)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "sources_import_error", error=str(exc))
        return 1
    if not catalog["sources"] and not catalog["tenants"]:
        log_event(logger, logging.ERROR, "sources_import_error", error="catalog is empty")
        return 1

    for tenant in catalog["tenants"]:
        slide_type = tenant.get("default_slide_type")
        try:
            if slide_type:
                SlidesParams(slide_type=slide_type)
        except ValidationError:
            log_event(
                logger,
                logging.ERROR,
                "sources_import_error",
                tenant_id=tenant.get("id"),
                error=f"unknown slide type {slide_type}",
            )
            return 1
    for source in catalog["sources"]:
        method = source.get("scraping_method")
        if method and method not in METHODS:
            log_event(
                logger,
                logging.ERROR,
                "sources_import_error",
                source_id=source.get("id"),
                error=f"unknown method {method}",
            )
            return 1

    conn = init_db(settings.db_path)
    try:
        for tenant in catalog["tenants"]:
            upsert_tenant(conn, tenant)
        for source in catalog["sources"]:
            upsert_source(conn, source)
    finally:
        conn.close()

    log_event(
        logger,
        logging.INFO,
        "sources_imported",
        tenants=len(catalog["tenants"]),
        sources=len(catalog["sources"]),
    )
    return 0


def _cmd_sources_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    settings = load_settings()
    conn = init_db(settings.db_path)
    try:
        sources = list_sources(conn, active_only=False)
    finally:
        conn.close()
    if not sources:
        log_event(
            logger,
            logging.WARNING,
            "no_sources",
            hint="Import sources with `storyforge sources import catalog.yml`",
        )
        return 1
    for source in sources:
        log_event(
            logger,
            logging.INFO,
            "source",
            source_id=source.id,
            active=source.active,
            address=source.address,
            method=source.scraping_method,
            success_rate=source.success_rate,
            remembered=source.last_successful_method,
        )
    log_event(logger, logging.INFO, "sources_listed", count=len(sources))
    return 0


def _cmd_jobs_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    settings = load_settings()
    conn = init_db(settings.db_path)
    try:
        jobs = list_jobs(conn, status=args.status, limit=args.limit)
    finally:
        conn.close()
    for job in jobs:
        log_event(
            logger,
            logging.INFO,
            "job",
            job_id=job.id,
            target_id=job.content_item_id,
            kind=job.kind,
            status=job.status.value,
            attempts=f"{job.attempts}/{job.max_attempts}",
            scheduled_at=job.scheduled_at,
            error=job.error_message,
        )
    return 0


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    uvicorn.run("storyforge.api:app", host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="storyforge", description="storyforge pipeline CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    acquire = subparsers.add_parser("acquire", help="Acquire one source or every due source")
    acquire.add_argument("--source-id", default=None)
    acquire.add_argument("--force-method", choices=sorted(METHODS), default=None)
    acquire.add_argument("--region", default=None)
    acquire.add_argument("--topic-id", default=None)
    acquire.set_defaults(func=_cmd_acquire)

    queue_parser = subparsers.add_parser("queue", help="Generation queue commands")
    queue_subparsers = queue_parser.add_subparsers(dest="queue_command", required=True)
    queue_run = queue_subparsers.add_parser("run", help="Process one batch of pending jobs")
    queue_run.add_argument("--job-kind", default=None)
    queue_run.add_argument("--limit", type=int, default=None)
    queue_run.set_defaults(func=_cmd_queue_run)
    queue_enqueue = queue_subparsers.add_parser(
        "enqueue-new", help="Queue new items for auto-simplify tenants"
    )
    queue_enqueue.add_argument("--tenant-id", default=None)
    queue_enqueue.set_defaults(func=_cmd_queue_enqueue_new)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)
    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    sources_parser = subparsers.add_parser("sources", help="Manage sources")
    sources_subparsers = sources_parser.add_subparsers(dest="sources_command", required=True)
    sources_import = sources_subparsers.add_parser("import", help="Import tenants and sources from YAML")
    sources_import.add_argument("path")
    sources_import.set_defaults(func=_cmd_sources_import)
    sources_list = sources_subparsers.add_parser("list", help="List sources")
    sources_list.set_defaults(func=_cmd_sources_list)

    jobs_parser = subparsers.add_parser("jobs", help="Inspect generation jobs")
    jobs_subparsers = jobs_parser.add_subparsers(dest="jobs_command", required=True)
    jobs_list = jobs_subparsers.add_parser("list", help="List recent jobs")
    jobs_list.add_argument("--status", default=None)
    jobs_list.add_argument("--limit", type=int, default=20)
    jobs_list.set_defaults(func=_cmd_jobs_list)

    serve = subparsers.add_parser("serve", help="Run the HTTP trigger API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.set_defaults(func=_cmd_serve)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
