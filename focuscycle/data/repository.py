"""
Repository — the single place where SQL lives.

Two concerns: the append-only session history and a small key-value byte
store (background timer state, focus-period counters, config). Every
sqlite3 error is turned into StoreIOError here so nothing above this layer
has to know it is talking to SQLite.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import List, Optional

from .errors import StoreIOError
from .models import (
    FocusPeriodCounters,
    MoodState,
    SessionOutcome,
    SessionRecord,
    SessionType,
    TimerConfig,
)

logger = logging.getLogger(__name__)

CONFIG_KEY = "timer-config"
COUNTERS_KEY = "focus-period"

# helper: parse ISO datetime strings from SQLite
_parse_dt = lambda s: datetime.fromisoformat(s) if s else None


class Repository:
    """Data-access layer wrapping a sqlite3 connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    # ── Session history ─────────────────────────────────────────────────────

    def add_session(self, record: SessionRecord) -> bool:
        """Append a closed session. Returns False if the id is already stored."""
        if not record.is_closed:
            raise ValueError(f"Session {record.id} is still open.")
        try:
            cur = self.conn.execute(
                """INSERT OR IGNORE INTO sessions (
                    id, session_type, planned_duration_s, start_time, end_time,
                    outcome, task_label, tags_json, icon, usage_json,
                    energy_level, mood_state, base_duration_s, adaptation_reason
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.id,
                    record.type.value,
                    record.planned_duration,
                    record.start_time.isoformat(),
                    record.end_time.isoformat(),
                    record.outcome.value,
                    record.task_label,
                    json.dumps(record.tags),
                    record.icon,
                    json.dumps(record.usage_attachment, default=str)
                    if record.usage_attachment is not None else None,
                    record.energy_level,
                    record.mood_state.value if record.mood_state else None,
                    record.base_duration,
                    record.adaptation_reason,
                ),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreIOError(f"Could not append session {record.id}: {e}") from e
        return cur.rowcount == 1

    def has_session(self, session_id: str) -> bool:
        row = self._fetchone("SELECT 1 FROM sessions WHERE id = ?", (session_id,))
        return row is not None

    def list_sessions(self, limit: Optional[int] = None) -> List[SessionRecord]:
        """Closed sessions, oldest first (limit keeps the most recent N)."""
        query = "SELECT * FROM sessions ORDER BY start_time DESC, committed_at DESC"
        params: list = []
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        rows = self._fetchall(query, params)
        return [self._row_to_session(r) for r in reversed(rows)]

    def delete_session(self, session_id: str) -> bool:
        try:
            cur = self.conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreIOError(f"Could not delete session {session_id}: {e}") from e
        logger.info("Deleted session %s", session_id)
        return cur.rowcount > 0

    def delete_all_sessions(self) -> int:
        try:
            cur = self.conn.execute("DELETE FROM sessions")
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreIOError(f"Could not clear history: {e}") from e
        logger.warning("Session history cleared (%d rows).", cur.rowcount)
        return cur.rowcount

    # ── Key-value byte store ────────────────────────────────────────────────

    def get_value(self, key: str) -> Optional[bytes]:
        row = self._fetchone("SELECT value FROM kv_store WHERE key = ?", (key,))
        if row is None:
            return None
        value = row["value"]
        return value.encode("utf-8") if isinstance(value, str) else bytes(value)

    def set_value(self, key: str, value: bytes) -> None:
        try:
            self.conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value, updated_at) "
                "VALUES (?, ?, ?)",
                (key, sqlite3.Binary(value), datetime.now().isoformat()),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreIOError(f"Could not write '{key}': {e}") from e

    def delete_value(self, key: str) -> None:
        try:
            self.conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            self.conn.commit()
        except sqlite3.Error as e:
            raise StoreIOError(f"Could not delete '{key}': {e}") from e

    # byte-store protocol aliases (get / set / delete)
    get = get_value
    set = set_value
    delete = delete_value

    # ── Config & counters (JSON documents in the byte store) ────────────────

    def load_config(self) -> TimerConfig:
        data = self._load_json(CONFIG_KEY)
        if data is None:
            return TimerConfig()
        try:
            return TimerConfig.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.warning("Stored config is invalid (%s); using defaults.", e)
            return TimerConfig()

    def save_config(self, config: TimerConfig) -> None:
        self._save_json(CONFIG_KEY, config.to_dict())

    def load_counters(self) -> FocusPeriodCounters:
        data = self._load_json(COUNTERS_KEY)
        if data is None:
            return FocusPeriodCounters()
        try:
            return FocusPeriodCounters.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.warning("Stored focus-period counters are invalid (%s); resetting.", e)
            return FocusPeriodCounters()

    def save_counters(self, counters: FocusPeriodCounters) -> None:
        self._save_json(COUNTERS_KEY, counters.to_dict())

    def _load_json(self, key: str) -> Optional[dict]:
        raw = self.get_value(key)
        if raw is None:
            return None
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Discarding unreadable '%s' entry: %s", key, e)
            return None
        return data if isinstance(data, dict) else None

    def _save_json(self, key: str, data: dict) -> None:
        self.set_value(key, json.dumps(data).encode("utf-8"))

    # ── Internal ────────────────────────────────────────────────────────────

    def _fetchone(self, query: str, params: tuple | list = ()) -> Optional[sqlite3.Row]:
        try:
            return self.conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            raise StoreIOError(str(e)) from e

    def _fetchall(self, query: str, params: tuple | list = ()) -> List[sqlite3.Row]:
        try:
            return self.conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise StoreIOError(str(e)) from e

    # ── Row mappers ─────────────────────────────────────────────────────────

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> SessionRecord:
        return SessionRecord(
            id=row["id"],
            type=SessionType(row["session_type"]),
            planned_duration=row["planned_duration_s"],
            start_time=_parse_dt(row["start_time"]),
            end_time=_parse_dt(row["end_time"]),
            outcome=SessionOutcome(row["outcome"]),
            task_label=row["task_label"],
            tags=json.loads(row["tags_json"] or "[]"),
            icon=row["icon"],
            usage_attachment=json.loads(row["usage_json"]) if row["usage_json"] else None,
            energy_level=row["energy_level"],
            mood_state=MoodState(row["mood_state"]) if row["mood_state"] else None,
            base_duration=row["base_duration_s"],
            adaptation_reason=row["adaptation_reason"],
        )


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The only place with SQL. Services call add_session(), get_value(), etc.
#   This is the "Repository Pattern."
#
# Key methods:
#   - add_session(): INSERT OR IGNORE keyed by session id. Appending the
#     same session twice changes nothing and returns False, so callers can
#     tell "newly recorded" from "already recorded".
#   - get/set/delete: the byte-store contract the RecoveryStore is written
#     against. Values are whole blobs, replaced atomically.
#   - load_config()/load_counters(): JSON documents with safe fallbacks;
#     a bad entry means defaults plus a warning, never a crash.
#
# Data flow:
#   Service layer → Repository.method() → SQL → sqlite3.Row → dataclass model
#
# Interviewer-friendly talking points:
#   1. Error translation at the boundary: sqlite3.Error becomes StoreIOError,
#      so the engine's recovery policy doesn't depend on the database driver.
#   2. History rows are never UPDATEd. Closed sessions are immutable by
#      construction, not by convention.
#   3. list_sessions() orders DESC with LIMIT and then reverses: "the last N
#      sessions, in chronological order" in one query.
