"""Tests for the persisted background timer state."""

import json
import pytest
from datetime import datetime, timedelta

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from focuscycle.data.errors import CorruptStateError, StoreIOError
from focuscycle.data.models import (
    BackgroundState,
    MachineState,
    MoodState,
    SessionRecord,
    SessionType,
)
from focuscycle.services.recovery_store import (
    SCHEMA_VERSION,
    STATE_KEY,
    RecoveryStore,
    decode,
    encode,
)

T0 = datetime(2024, 3, 4, 9, 0, 0)


def running_state(**meta):
    rec = SessionRecord.create(SessionType.WORK, 1500, T0, **meta)
    return BackgroundState.begin(rec, T0)


class TestCodec:
    def test_encode_is_versioned_json(self):
        doc = json.loads(encode(running_state()))
        assert doc["version"] == SCHEMA_VERSION
        assert doc["machine_state"] == "running"

    def test_paused_state_survives(self):
        state = running_state(task_label="Essay", tags=["uni"], energy_level=4,
                              mood_state=MoodState.MOTIVATED)
        state.pause(T0 + timedelta(minutes=5))
        assert decode(encode(state)) == state

    def test_unknown_version_rejected(self):
        doc = json.loads(encode(running_state()))
        doc["version"] = 99
        with pytest.raises(CorruptStateError, match="version"):
            decode(json.dumps(doc).encode())

    @pytest.mark.parametrize("payload", [b"", b"not json", b"[1, 2]", b"\xff\xfe"])
    def test_garbage_rejected(self, payload):
        with pytest.raises(CorruptStateError):
            decode(payload)

    def test_missing_field_rejected(self):
        doc = json.loads(encode(running_state()))
        del doc["end_timestamp"]
        with pytest.raises(CorruptStateError):
            decode(json.dumps(doc).encode())

    def test_legacy_layout_upgraded(self):
        start_ms = int(T0.timestamp() * 1000)
        legacy = {
            "session": {
                "id": "abc",
                "type": "work",
                "duration": 1500,
                "startTime": start_ms,
                "taskName": "Old task",
                "tags": ["legacy"],
                "energyLevel": 2,
            },
            "startTimestamp": start_ms,
            "endTimestamp": start_ms + 1500 * 1000,
            "state": "paused",
            "timeRemainingWhenPaused": 600,
        }
        state = decode(json.dumps(legacy).encode())
        assert state.session.id == "abc"
        assert state.session.task_label == "Old task"
        assert state.machine_state is MachineState.PAUSED
        assert state.start_timestamp == T0
        assert state.remaining(T0 + timedelta(hours=1)) == 600


class TestRecoveryStore:
    def test_save_load_clear(self, backend):
        store = RecoveryStore(backend)
        assert store.load() is None
        state = running_state()
        assert store.save(state) is True
        assert store.load() == state
        assert store.clear() is True
        assert store.load() is None

    def test_corrupt_entry_cleared_and_treated_as_absent(self, backend, repo):
        repo.set(STATE_KEY, b"{garbage")
        store = RecoveryStore(backend)
        assert store.load() is None
        assert repo.get(STATE_KEY) is None

    def test_write_failures_are_reported_not_raised(self, backend):
        store = RecoveryStore(backend)
        backend.fail_writes = True
        assert store.save(running_state()) is False
        assert store.clear() is False

    def test_read_failure_propagates(self, backend):
        store = RecoveryStore(backend)
        backend.fail_reads = True
        with pytest.raises(StoreIOError):
            store.load()
