from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Mapping

from .migrations import apply_migrations

DEFAULT_DATA_DIR = "/data"


def get_db_path(environ: Mapping[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    path = env.get("SF_DB_PATH", "").strip()
    if path:
        return path
    data_dir = env.get("SF_DATA_DIR", DEFAULT_DATA_DIR)
    return os.path.join(data_dir, "storyforge.sqlite3")


class DBConn:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def execute(self, sql: str, params: tuple | list | None = None) -> sqlite3.Cursor:
        return self._conn.execute(sql, params or ())

    def executemany(self, sql: str, seq_of_params) -> sqlite3.Cursor:
        return self._conn.executemany(sql, seq_of_params)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator["DBConn"]:
        # BEGIN IMMEDIATE takes the write lock up front so two workers cannot
        # interleave inside a multi-statement change.
        if self._conn.in_transaction:
            self._conn.commit()
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield self
        except Exception:
            self._conn.rollback()
            raise
        self._conn.commit()

    def __getattr__(self, name: str):
        return getattr(self._conn, name)


def connect_db(path: str | None = None) -> DBConn:
    path = path or get_db_path()
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    # request handlers and their dependencies may run on different threadpool workers
    raw = sqlite3.connect(path, timeout=5.0, check_same_thread=False)
    raw.execute("PRAGMA journal_mode=WAL")
    raw.execute("PRAGMA synchronous=NORMAL")
    raw.execute("PRAGMA busy_timeout=5000")
    apply_migrations(raw)
    return DBConn(raw)
