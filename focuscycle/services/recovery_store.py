"""
Recovery Store — reads and writes the background timer state.

The state is one versioned JSON document under a single key of an external
byte store. Writes replace the whole document. Failures never crash the
timer: a failed write is logged (the caller keeps its in-memory copy), and
a document that can't be decoded is deleted and treated as absent.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Protocol

from focuscycle.data.errors import CorruptStateError, StoreIOError
from focuscycle.data.models import (
    BackgroundState,
    MachineState,
    SessionRecord,
    SessionType,
)

logger = logging.getLogger(__name__)

STATE_KEY = "background-timer-state"
SCHEMA_VERSION = 1


class ByteStore(Protocol):
    """get / set / delete on raw bytes; failures raise StoreIOError."""

    def get(self, key: str) -> Optional[bytes]: ...

    def set(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> None: ...


class RecoveryStore:
    """Persists exactly one BackgroundState (or nothing, when idle)."""

    def __init__(self, backend: ByteStore, key: str = STATE_KEY) -> None:
        self.backend = backend
        self.key = key

    def save(self, state: BackgroundState) -> bool:
        try:
            self.backend.set(self.key, encode(state))
        except StoreIOError as e:
            logger.error("Failed to save background timer state: %s", e)
            return False
        return True

    def load(self) -> Optional[BackgroundState]:
        """
        Fresh read of the stored state.

        Raises StoreIOError if the store is unreachable, so the caller can
        decide to trust its in-memory copy instead.
        """
        payload = self.backend.get(self.key)
        if payload is None:
            return None
        try:
            return decode(payload)
        except CorruptStateError as e:
            logger.warning("Discarding corrupt background timer state: %s", e)
            self.clear()
            return None

    def clear(self) -> bool:
        try:
            self.backend.delete(self.key)
        except StoreIOError as e:
            logger.error("Failed to clear background timer state: %s", e)
            return False
        return True


# ── Codec ───────────────────────────────────────────────────────────────────

def encode(state: BackgroundState) -> bytes:
    doc = {
        "version": SCHEMA_VERSION,
        "machine_state": state.machine_state.value,
        "start_timestamp": state.start_timestamp.isoformat(),
        "end_timestamp": state.end_timestamp.isoformat(),
        "paused_remainder": state.paused_remainder,
        "session": state.session.to_dict(),
    }
    return json.dumps(doc, default=str).encode("utf-8")


def decode(payload: bytes) -> BackgroundState:
    try:
        doc = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptStateError(f"not valid JSON: {e}") from e
    if not isinstance(doc, dict):
        raise CorruptStateError("top-level value is not an object")

    version = doc.get("version")
    if version is None and "startTimestamp" in doc:
        doc = _upgrade_legacy(doc)
        version = SCHEMA_VERSION
    if version != SCHEMA_VERSION:
        raise CorruptStateError(f"unsupported schema version {version!r}")

    try:
        remainder = doc.get("paused_remainder")
        return BackgroundState(
            session=SessionRecord.from_dict(doc["session"]),
            start_timestamp=datetime.fromisoformat(doc["start_timestamp"]),
            end_timestamp=datetime.fromisoformat(doc["end_timestamp"]),
            machine_state=MachineState(doc["machine_state"]),
            paused_remainder=int(remainder) if remainder is not None else None,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise CorruptStateError(f"malformed field: {e!r}") from e


def _upgrade_legacy(doc: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert the unversioned layout written by earlier releases: epoch
    milliseconds, camelCase session fields, `state` and
    `timeRemainingWhenPaused`.
    """
    try:
        session = doc["session"]
        start = _from_millis(doc["startTimestamp"])
        end = _from_millis(doc["endTimestamp"])
        session_start = session.get("startTime")
        return {
            "version": SCHEMA_VERSION,
            "machine_state": doc["state"],
            "start_timestamp": start.isoformat(),
            "end_timestamp": end.isoformat(),
            "paused_remainder": doc.get("timeRemainingWhenPaused"),
            "session": {
                "id": session["id"],
                "type": SessionType(session["type"]).value,
                "planned_duration": session["duration"],
                "start_time": _legacy_dt(session_start, start).isoformat(),
                "task_label": session.get("taskName"),
                "tags": session.get("tags") or [],
                "icon": session.get("taskIcon"),
                "energy_level": session.get("energyLevel"),
                "mood_state": session.get("moodState"),
            },
        }
    except (KeyError, TypeError, ValueError, AttributeError, OverflowError, OSError) as e:
        raise CorruptStateError(f"unreadable legacy state: {e!r}") from e


def _from_millis(value: Any) -> datetime:
    return datetime.fromtimestamp(float(value) / 1000.0)


def _legacy_dt(value: Any, fallback: datetime) -> datetime:
    if isinstance(value, (int, float)):
        return _from_millis(value)
    if isinstance(value, str) and value:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is not None:
            # stored in UTC; everything else here is naive local time
            parsed = parsed.astimezone().replace(tzinfo=None)
        return parsed
    return fallback


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Serializes the "background state" (the open session plus its absolute
#   start/end instants) so a timer survives the process being killed.
#
# Key pieces:
#   - RecoveryStore.save/clear swallow StoreIOError and return a bool. The
#     engine remembers the failure and retries on the next sync().
#   - RecoveryStore.load deletes corrupt entries and returns None. A bad
#     blob should cost the user one session, not brick the app forever.
#   - encode/decode: explicit fields plus a "version". Unknown versions are
#     rejected instead of guessed at; the one older layout we know about is
#     upgraded by _upgrade_legacy().
#
# Data flow:
#   TimerEngine.start/pause/resume → save() → bytes in kv_store
#   TimerEngine.sync() → load() → BackgroundState → remaining(now)
#
# Interviewer-friendly talking points:
#   1. Versioned schema: the first thing decode() checks. Best-effort
#      parsing of unknown formats is how you get silent data corruption.
#   2. The store is a Protocol (get/set/delete on bytes). SQLite today,
#      anything tomorrow; the codec doesn't change.
#   3. load() lets StoreIOError through on purpose: "store unreachable" and
#      "nothing stored" must not look the same to the caller.
