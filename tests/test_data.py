"""Unit tests for the data layer (database, repository, models)."""

import sqlite3
import pytest
from datetime import datetime, timedelta

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from focuscycle.data.database import DB_PATH_ENV, Database, resolve_db_path
from focuscycle.data.errors import StoreIOError
from focuscycle.data.models import (
    AdaptiveMode,
    BackgroundState,
    FocusPeriodCounters,
    MachineState,
    MoodState,
    SessionOutcome,
    SessionRecord,
    SessionType,
    TimerConfig,
)
from focuscycle.data.repository import CONFIG_KEY, Repository

T0 = datetime(2024, 3, 4, 9, 0, 0)


def closed(session_type=SessionType.WORK, start=T0, seconds=1500,
           outcome=SessionOutcome.COMPLETED, **meta):
    rec = SessionRecord.create(session_type, seconds, start, **meta)
    rec.close(outcome, start + timedelta(seconds=seconds))
    return rec


class TestSessionRecord:
    def test_create_assigns_unique_ids(self):
        a = SessionRecord.create(SessionType.WORK, 1500, T0)
        b = SessionRecord.create(SessionType.WORK, 1500, T0)
        assert a.id != b.id
        assert not a.is_closed

    def test_close_only_once(self):
        rec = SessionRecord.create(SessionType.WORK, 1500, T0)
        rec.close(SessionOutcome.STOPPED, T0 + timedelta(minutes=3))
        with pytest.raises(RuntimeError, match="already closed"):
            rec.close(SessionOutcome.COMPLETED, T0 + timedelta(minutes=4))
        assert rec.outcome is SessionOutcome.STOPPED
        assert rec.elapsed_seconds() == 180

    def test_usage_only_attached_to_work(self):
        brk = SessionRecord.create(SessionType.SHORT_BREAK, 300, T0)
        brk.close(SessionOutcome.COMPLETED, T0 + timedelta(minutes=5), usage={"code": 10})
        assert brk.usage_attachment is None

        work = SessionRecord.create(SessionType.WORK, 300, T0)
        work.close(SessionOutcome.COMPLETED, T0 + timedelta(minutes=5), usage={"code": 10})
        assert work.usage_attachment == {"code": 10}

    def test_metadata_edits(self):
        rec = SessionRecord.create(SessionType.WORK, 1500, T0)
        rec.rename("Write report")
        rec.set_icon("📝")
        rec.add_tag("writing")
        rec.add_tag("writing")
        rec.add_tag("q1")
        rec.remove_tag("q1")
        assert rec.task_label == "Write report"
        assert rec.icon == "📝"
        assert rec.tags == ["writing"]

    def test_closed_record_is_read_only(self):
        rec = closed()
        with pytest.raises(RuntimeError, match="closed"):
            rec.rename("late")
        with pytest.raises(RuntimeError):
            rec.add_tag("late")

    def test_dict_round_trip(self):
        rec = closed(task_label="Deep work", tags=["a", "b"], energy_level=2,
                     mood_state=MoodState.STRUGGLING, base_duration=1500,
                     adaptation_reason="Standard duration")
        assert SessionRecord.from_dict(rec.to_dict()) == rec

    def test_from_dict_rejects_missing_fields(self):
        with pytest.raises(KeyError):
            SessionRecord.from_dict({"type": "work", "planned_duration": 60,
                                     "start_time": T0.isoformat()})


class TestBackgroundState:
    def _state(self, seconds=1500):
        return BackgroundState.begin(SessionRecord.create(SessionType.WORK, seconds, T0), T0)

    def test_remaining_from_timestamps(self):
        state = self._state()
        assert state.remaining(T0) == 1500
        assert state.remaining(T0 + timedelta(seconds=10)) == 1490
        assert state.remaining(T0 + timedelta(seconds=10.5)) == 1489

    def test_remaining_never_negative(self):
        assert self._state().remaining(T0 + timedelta(hours=3)) == 0

    def test_clock_going_backwards_adds_nothing(self):
        assert self._state().remaining(T0 - timedelta(minutes=10)) == 1500

    def test_pause_resume_preserves_remaining(self):
        state = self._state()
        assert state.pause(T0 + timedelta(seconds=100)) == 1400
        assert state.machine_state is MachineState.PAUSED
        # time passes while paused
        assert state.remaining(T0 + timedelta(hours=1)) == 1400
        resumed_at = T0 + timedelta(hours=1)
        assert state.resume(resumed_at) == 1400
        assert state.end_timestamp == resumed_at + timedelta(seconds=1400)
        assert state.remaining(resumed_at) == 1400

    def test_completed_state_is_not_live(self):
        state = self._state()
        state.machine_state = MachineState.COMPLETED
        assert not state.is_live


class TestTimerConfig:
    def test_defaults_are_valid(self):
        cfg = TimerConfig().validate()
        assert cfg.work_minutes == 25
        assert cfg.long_break_interval == 4

    def test_from_dict_coerces_strings(self):
        cfg = TimerConfig.from_dict({
            "work_minutes": "30",
            "auto_start_breaks": "yes",
            "adaptive_mode": "mood-based",
            "unknown_key": 1,
        })
        assert cfg.work_minutes == 30
        assert cfg.auto_start_breaks is True
        assert cfg.adaptive_mode is AdaptiveMode.MOOD_BASED

    def test_invalid_values_rejected(self):
        with pytest.raises(ValueError):
            TimerConfig.from_dict({"work_minutes": 0})
        with pytest.raises(ValueError):
            TimerConfig.from_dict({"auto_start_work": "perhaps"})
        with pytest.raises(ValueError):
            TimerConfig.from_dict({"min_work_minutes": 50, "max_work_minutes": 20})

    def test_with_changes_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="Unknown config key"):
            TimerConfig().with_changes(colour="blue")

    def test_to_dict_round_trip(self):
        cfg = TimerConfig(auto_start_work=True, default_mood_state=MoodState.MOTIVATED)
        assert TimerConfig.from_dict(cfg.to_dict()) == cfg


class TestFocusPeriodCounters:
    def test_round_trip(self):
        c = FocusPeriodCounters("fp1", 2, 7, 4, SessionType.LONG_BREAK)
        assert FocusPeriodCounters.from_dict(c.to_dict()) == c

    def test_focus_period_complete(self):
        c = FocusPeriodCounters(focus_period_id="fp", target_rounds=2)
        assert not c.focus_period_complete
        c.current_focus_period_session_count = 2
        assert c.focus_period_complete


class TestRepository:
    def test_add_session_is_idempotent(self, repo: Repository):
        rec = closed(tags=["x"])
        assert repo.add_session(rec) is True
        assert repo.add_session(rec) is False
        assert repo.list_sessions() == [rec]

    def test_open_session_rejected(self, repo: Repository):
        with pytest.raises(ValueError, match="still open"):
            repo.add_session(SessionRecord.create(SessionType.WORK, 60, T0))

    def test_list_sessions_oldest_first(self, repo: Repository):
        recs = [closed(start=T0 + timedelta(hours=i)) for i in range(4)]
        for rec in reversed(recs):
            repo.add_session(rec)
        assert [s.id for s in repo.list_sessions()] == [r.id for r in recs]
        # limit keeps the most recent
        assert [s.id for s in repo.list_sessions(limit=2)] == [r.id for r in recs[2:]]

    def test_delete_session(self, repo: Repository):
        rec = closed()
        repo.add_session(rec)
        assert repo.delete_session(rec.id) is True
        assert repo.delete_session(rec.id) is False
        assert not repo.has_session(rec.id)

    def test_delete_all_sessions(self, repo: Repository):
        for i in range(3):
            repo.add_session(closed(start=T0 + timedelta(hours=i)))
        assert repo.delete_all_sessions() == 3
        assert repo.list_sessions() == []

    def test_byte_store(self, repo: Repository):
        assert repo.get("k") is None
        repo.set("k", b"\x00\x01payload")
        assert repo.get("k") == b"\x00\x01payload"
        repo.set("k", b"v2")
        assert repo.get("k") == b"v2"
        repo.delete("k")
        assert repo.get("k") is None

    def test_config_round_trip(self, repo: Repository):
        assert repo.load_config() == TimerConfig()
        cfg = TimerConfig(work_minutes=50, auto_start_breaks=True)
        repo.save_config(cfg)
        assert repo.load_config() == cfg

    def test_corrupt_config_falls_back_to_defaults(self, repo: Repository):
        repo.set(CONFIG_KEY, b"{not json")
        assert repo.load_config() == TimerConfig()
        repo.set(CONFIG_KEY, b'{"work_minutes": -5}')
        assert repo.load_config() == TimerConfig()

    def test_counters_round_trip(self, repo: Repository):
        assert repo.load_counters() == FocusPeriodCounters()
        c = FocusPeriodCounters("fp", 1, 3, 4, SessionType.WORK)
        repo.save_counters(c)
        assert repo.load_counters() == c

    def test_closed_connection_raises_store_io_error(self, repo: Repository):
        repo.conn.close()
        with pytest.raises(StoreIOError):
            repo.get("k")
        with pytest.raises(StoreIOError):
            repo.set("k", b"v")
        with pytest.raises(StoreIOError):
            repo.add_session(closed())


class TestDatabase:
    def test_creates_schema(self, tmp_path):
        db = Database(db_path=tmp_path / "t.db")
        conn = db.connect()
        tables = {r[0] for r in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'")}
        assert {"sessions", "kv_store"} <= tables
        assert db.connect() is conn
        db.close()
        assert db.conn is None

    def test_db_path_resolution(self, tmp_path, monkeypatch):
        monkeypatch.setenv(DB_PATH_ENV, str(tmp_path / "env.db"))
        assert resolve_db_path() == tmp_path / "env.db"
        assert resolve_db_path(tmp_path / "flag.db") == tmp_path / "flag.db"
        monkeypatch.delenv(DB_PATH_ENV)
        assert resolve_db_path().name == "focuscycle.db"
