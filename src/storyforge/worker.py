from __future__ import annotations

import argparse
import logging
import os
import time
from typing import Any

from .acquisition import AcquisitionExecutor, run_acquisition
from .backoff import BackoffPolicy
from .config import EXTRACTOR, GENERATOR, Config, ConfigError, Settings, load_runtime_config, load_settings
from .extractors import build_default_extractors
from .generator import HttpGenerator
from .jobqueue import JobQueueManager, QueueRunRequest, enqueue_new_items
from .storage import init_db
from .utils import configure_logging, log_event

PHASES = ["acquire", "enqueue", "queue"]


def _setup_logging() -> logging.Logger:
    return configure_logging("storyforge.worker")


def build_executor(
    conn: Any, settings: Settings, config: Config, logger: logging.Logger
) -> AcquisitionExecutor:
    return AcquisitionExecutor(
        conn,
        build_default_extractors(settings, config, logger),
        logger,
        max_attempts=config.acquisition.max_attempts,
        backoff=BackoffPolicy(
            base_seconds=config.acquisition.backoff_base_ms / 1000,
            cap_seconds=config.acquisition.backoff_cap_ms / 1000,
        ),
    )


def build_queue_manager(
    conn: Any, settings: Settings, config: Config, logger: logging.Logger
) -> JobQueueManager:
    if not settings.generator_url or not settings.generator_api_key:
        raise ConfigError("generator is not configured")
    generator = HttpGenerator(
        settings.generator_url,
        settings.generator_api_key,
        timeout_seconds=config.queue.generator_timeout_seconds,
    )
    return JobQueueManager(
        conn,
        generator,
        config.queue,
        logger,
        approval_threshold=config.approval.default_threshold,
    )


def run_once(phases: list[str] | None = None) -> int:
    logger = _setup_logging()
    phases = phases or PHASES
    try:
        settings = load_settings(require=[EXTRACTOR, GENERATOR])
        conn = init_db(settings.db_path)
        config = load_runtime_config(conn)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return 1

    try:
        if "acquire" in phases:
            result = run_acquisition(conn, build_executor(conn, settings, config, logger), config, logger)
            log_event(
                logger,
                logging.INFO,
                "worker_acquire_done",
                processed=result.get("processed"),
                imported=result.get("articles_imported"),
            )
        if "enqueue" in phases:
            result = enqueue_new_items(conn, config, logger)
            log_event(logger, logging.INFO, "worker_enqueue_done", queued=result.get("queued"))
        if "queue" in phases:
            manager = build_queue_manager(conn, settings, config, logger)
            outcome = manager.run(QueueRunRequest())
            log_event(
                logger,
                logging.INFO,
                "worker_queue_done",
                success=outcome.success,
                processed=outcome.processed,
            )
    finally:
        conn.close()
    return 0


def run_loop(sleep_seconds: int, phases: list[str] | None = None) -> int:
    logger = _setup_logging()
    while True:
        try:
            if run_once(phases) == 1:
                return 1
        except Exception as exc:  # noqa: BLE001
            log_event(logger, logging.ERROR, "worker_tick_failed", error=str(exc))
        time.sleep(sleep_seconds)


def _parse_phases(value: str | None) -> list[str] | None:
    if not value:
        return None
    phases = [item.strip() for item in value.split(",") if item.strip()]
    unknown = [phase for phase in phases if phase not in PHASES]
    if unknown:
        raise argparse.ArgumentTypeError(f"unknown phases: {', '.join(unknown)}")
    return phases


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="storyforge-worker")
    parser.add_argument("--once", action="store_true", help="Run one tick and exit")
    parser.add_argument(
        "--sleep",
        type=int,
        default=int(os.environ.get("SF_WORKER_SLEEP", "60")),
        help="Sleep seconds between ticks",
    )
    parser.add_argument(
        "--only",
        type=_parse_phases,
        default=os.environ.get("SF_WORKER_PHASES", ""),
        help="Comma-separated phases to run (acquire,enqueue,queue)",
    )
    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    phases = args.only if isinstance(args.only, list) else _parse_phases(args.only)
    if args.once:
        return run_once(phases)
    return run_loop(args.sleep, phases)


if __name__ == "__main__":
    raise SystemExit(main())
