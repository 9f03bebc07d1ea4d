"""Applies the numbered ``.sql`` files under ``migrations/`` once each, in name order.

Each file runs in one transaction together with its ledger row, so a
migration that fails halfway leaves neither tables nor a record behind.
"""

from __future__ import annotations

import hashlib
import logging
import sqlite3
from pathlib import Path

from outreach_research.db.database import Database, to_iso, utc_now

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_LEDGER = """
CREATE TABLE IF NOT EXISTS _migrations (
    filename TEXT PRIMARY KEY,
    checksum TEXT NOT NULL,
    applied_at TEXT NOT NULL
);
"""


def _checksum(path: Path) -> str:
    return hashlib.sha256(path.read_bytes()).hexdigest()[:16]


def _sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def pending_migrations(db: Database, directory: Path = MIGRATIONS_DIR) -> list[Path]:
    """Migration files not yet recorded in the ledger, in apply order."""
    db.executescript(_LEDGER)
    recorded = {
        row["filename"]: row["checksum"]
        for row in db.fetchall("SELECT filename, checksum FROM _migrations")
    }
    pending = []
    for path in sorted(directory.glob("*.sql")):
        checksum = recorded.get(path.name)
        if checksum is None:
            pending.append(path)
        elif checksum != _checksum(path):
            logger.warning("Migration %s was edited after it was applied", path.name)
    return pending


def run_migrations(db: Database, directory: Path = MIGRATIONS_DIR) -> list[str]:
    """Apply every pending migration. Returns the filenames applied."""
    applied: list[str] = []
    for path in pending_migrations(db, directory):
        record = (
            "INSERT INTO _migrations (filename, checksum, applied_at) VALUES ("
            f"{_sql_literal(path.name)}, {_sql_literal(_checksum(path))}, "
            f"{_sql_literal(to_iso(utc_now()))});"
        )
        script = f"BEGIN;\n{path.read_text(encoding='utf-8')}\n{record}\nCOMMIT;"
        try:
            db.executescript(script)
        except sqlite3.Error:
            db.rollback()
            logger.error("Migration %s failed, rolled back", path.name)
            raise
        logger.debug("Applied migration %s", path.name)
        applied.append(path.name)
    if applied:
        logger.info("Applied %d migration(s): %s", len(applied), ", ".join(applied))
    return applied
