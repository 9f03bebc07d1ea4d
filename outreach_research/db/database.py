"""SQLite connection manager for research storage (WAL mode, row factory)."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

_DEFAULT_DB = ".outreach_research.db"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Fixed-width UTC ISO string so stored timestamps compare lexicographically."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


class Database:
    """Thin wrapper around sqlite3 with WAL mode and row-factory helpers."""

    def __init__(self, db_path: str = _DEFAULT_DB):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        self.conn = sqlite3.connect(self.db_path, timeout=10, check_same_thread=False)
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        assert self.conn, "Database not connected"
        return self.conn.execute(sql, params)

    def executemany(self, sql: str, params_list: list[tuple]) -> sqlite3.Cursor:
        assert self.conn, "Database not connected"
        return self.conn.executemany(sql, params_list)

    def executescript(self, sql: str) -> None:
        assert self.conn, "Database not connected"
        self.conn.executescript(sql)

    def commit(self) -> None:
        assert self.conn, "Database not connected"
        self.conn.commit()

    def rollback(self) -> None:
        assert self.conn, "Database not connected"
        self.conn.rollback()

    def fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def insert(self, sql: str, params: tuple = ()) -> int:
        try:
            cur = self.execute(sql, params)
        except sqlite3.Error:
            self.rollback()
            raise
        self.commit()
        return cur.lastrowid  # type: ignore[return-value]

    def update(self, sql: str, params: tuple = ()) -> int:
        try:
            cur = self.execute(sql, params)
        except sqlite3.Error:
            self.rollback()
            raise
        self.commit()
        return cur.rowcount

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Run a block under a write lock (BEGIN IMMEDIATE); commit or roll back.

        Use execute()/fetchone() inside the block: insert()/update() commit
        on their own and would end the transaction early.
        """
        assert self.conn, "Database not connected"
        if self.conn.in_transaction:
            self.conn.commit()
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()
