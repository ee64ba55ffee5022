from __future__ import annotations

import logging
import sqlite3
from typing import Callable

from .utils import utc_now_iso

Migration = Callable[[sqlite3.Connection], None]


def apply_migrations(conn: sqlite3.Connection) -> None:
    logger = logging.getLogger("storyforge.migrations")
    if conn.in_transaction:
        conn.commit()
    conn.execute("BEGIN IMMEDIATE")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, utc_now_iso()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_initial_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS tenants (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            auto_approve_threshold REAL NULL,
            auto_simplify_enabled INTEGER NOT NULL DEFAULT 0,
            default_slide_type TEXT NOT NULL DEFAULT 'tabloid',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sources (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            address TEXT NOT NULL,
            source_type TEXT NULL,
            tenant_id TEXT NULL REFERENCES tenants(id),
            topic_id TEXT NULL,
            region TEXT NULL,
            active INTEGER NOT NULL DEFAULT 1,
            frequency_minutes INTEGER NOT NULL DEFAULT 60,
            scraping_method TEXT NULL,
            success_rate REAL NULL,
            last_successful_method TEXT NULL,
            last_method_execution_ms INTEGER NULL,
            quality_metrics_json TEXT NULL,
            articles_scraped INTEGER NOT NULL DEFAULT 0,
            last_acquired_at TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_sources_method ON sources(scraping_method)"
    )


def _migration_content_items(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS content_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_id TEXT NOT NULL REFERENCES sources(id),
            tenant_id TEXT NULL,
            stable_id TEXT NOT NULL,
            url TEXT NOT NULL,
            normalized_url TEXT NOT NULL,
            title TEXT NOT NULL,
            body TEXT NULL,
            published_at TEXT NULL,
            word_count INTEGER NOT NULL DEFAULT 0,
            is_snippet INTEGER NOT NULL DEFAULT 0,
            quality_score REAL NULL,
            processing_status TEXT NOT NULL DEFAULT 'new',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(source_id, stable_id)
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_content_items_status ON content_items(processing_status, tenant_id)"
    )


def _migration_generation_jobs(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS generation_jobs (
            id TEXT PRIMARY KEY,
            content_item_id INTEGER NOT NULL,
            tenant_id TEXT NULL,
            kind TEXT NOT NULL,
            status TEXT NOT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 3,
            scheduled_at TEXT NULL,
            started_at TEXT NULL,
            completed_at TEXT NULL,
            params_json TEXT NULL,
            result_json TEXT NULL,
            error_message TEXT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_generation_jobs_status_created ON generation_jobs(status, created_at)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_generation_jobs_item ON generation_jobs(content_item_id)"
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS stories (
            id TEXT PRIMARY KEY,
            content_item_id INTEGER NOT NULL,
            tenant_id TEXT NULL,
            job_id TEXT NULL,
            slide_count INTEGER NOT NULL DEFAULT 0,
            quality_score REAL NULL,
            status TEXT NOT NULL DEFAULT 'draft',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_stories_item ON stories(content_item_id, status)"
    )


def _migration_acquisition_logs(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS acquisition_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_id TEXT NOT NULL,
            started_at TEXT NOT NULL,
            finished_at TEXT NOT NULL,
            status TEXT NOT NULL,
            method_used TEXT NULL,
            attempts_made INTEGER NOT NULL DEFAULT 0,
            items_found INTEGER NOT NULL DEFAULT 0,
            items_imported INTEGER NOT NULL DEFAULT 0,
            execution_ms INTEGER NOT NULL DEFAULT 0,
            error TEXT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_acquisition_runs_source ON acquisition_runs(source_id, started_at)"
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS acquisition_errors (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            source_id TEXT NOT NULL,
            method TEXT NOT NULL,
            attempt INTEGER NOT NULL,
            category TEXT NOT NULL,
            severity TEXT NOT NULL,
            retryable INTEGER NOT NULL,
            error TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_acquisition_errors_source ON acquisition_errors(source_id, created_at)"
    )


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_initial_schema", _migration_initial_schema),
        ("002_content_items", _migration_content_items),
        ("003_generation_jobs", _migration_generation_jobs),
        ("004_acquisition_logs", _migration_acquisition_logs),
    ]
