"""
SQLite database initialization and connection management.

Single responsibility: own the connection and create tables. All queries
live in Repository.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Default DB lives at the repo root unless FOCUSCYCLE_DB points elsewhere
DEFAULT_DB_PATH = Path(__file__).resolve().parent.parent.parent / "focuscycle.db"
DB_PATH_ENV = "FOCUSCYCLE_DB"

SCHEMA_SQL = """
-- Session history (append-only; rows are never updated) ---------------------
CREATE TABLE IF NOT EXISTS sessions (
    id                  TEXT    PRIMARY KEY,
    session_type        TEXT    NOT NULL,
    planned_duration_s  INTEGER NOT NULL,
    start_time          TEXT    NOT NULL,
    end_time            TEXT    NOT NULL,
    outcome             TEXT    NOT NULL,
    task_label          TEXT,
    tags_json           TEXT    NOT NULL DEFAULT '[]',
    icon                TEXT,
    usage_json          TEXT,
    energy_level        INTEGER,
    mood_state          TEXT,
    base_duration_s     INTEGER,
    adaptation_reason   TEXT,
    committed_at        TEXT    NOT NULL DEFAULT (datetime('now'))
);

-- Key-value byte store (background timer state, counters, config) -----------
CREATE TABLE IF NOT EXISTS kv_store (
    key         TEXT    PRIMARY KEY,
    value       BLOB    NOT NULL,
    updated_at  TEXT    NOT NULL DEFAULT (datetime('now'))
);

-- Indexes for common queries -------------------------------------------------
CREATE INDEX IF NOT EXISTS idx_sessions_start   ON sessions(start_time);
CREATE INDEX IF NOT EXISTS idx_sessions_type    ON sessions(session_type);
"""


def resolve_db_path(explicit: Optional[Path] = None) -> Path:
    """--db flag, then $FOCUSCYCLE_DB, then the default file."""
    if explicit is not None:
        return Path(explicit)
    env = os.environ.get(DB_PATH_ENV)
    if env:
        return Path(env).expanduser()
    return DEFAULT_DB_PATH


class Database:
    """Thin wrapper around a SQLite connection."""

    def __init__(self, db_path: Optional[Path] = None) -> None:
        self.db_path = resolve_db_path(db_path)
        self.conn: Optional[sqlite3.Connection] = None

    # -- lifecycle -----------------------------------------------------------

    def connect(self) -> sqlite3.Connection:
        """Open (or return existing) connection and ensure schema exists."""
        if self.conn is not None:
            return self.conn
        logger.info("Connecting to SQLite at %s", self.db_path)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        if str(self.db_path) != ":memory:":
            self.conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()
        return self.conn

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed.")

    # -- internal ------------------------------------------------------------

    def _create_tables(self) -> None:
        assert self.conn is not None
        self.conn.executescript(SCHEMA_SQL)
        self.conn.commit()
        logger.debug("Database schema ensured.")


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Opens the SQLite file and makes sure both tables exist.
#
# Key pieces:
#   - sessions: the history. Primary key is the session's own id, so
#     inserting the same closed session twice is a no-op (INSERT OR IGNORE).
#     That's what makes a crash between "commit" and "clear state" safe.
#   - kv_store: a tiny byte store. The timer's background state is one JSON
#     blob here, replaced whole on every write, never patched.
#
# Data flow:
#   main.py → Database.connect() → tables created → Repository uses conn
#
# Interviewer-friendly talking points:
#   1. WAL mode lets the `watch` loop read while a one-shot CLI command
#      writes to the same file.
#   2. The DB path comes from a flag or an env var, so tests and multiple
#      profiles never collide with the real file.
#   3. Whole-object replacement of the state blob means a crash mid-write
#      leaves either the old or the new state, never half of each.
