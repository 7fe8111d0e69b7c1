"""
Data models for FocusCycle.

Plain dataclasses and enums shared by every layer. SessionRecord is the row
that ends up in history; BackgroundState is the small blob that lets a brand
new process pick up a running timer from wall-clock timestamps.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

# Defaults (minutes unless noted), overridden by the persisted TimerConfig
DEFAULT_WORK_MINUTES = 25
DEFAULT_SHORT_BREAK_MINUTES = 5
DEFAULT_LONG_BREAK_MINUTES = 15
DEFAULT_LONG_BREAK_INTERVAL = 4
DEFAULT_MIN_WORK_MINUTES = 10
DEFAULT_MAX_WORK_MINUTES = 60
DEFAULT_TRACKING_INTERVAL = 5  # seconds
DEFAULT_ENERGY_LEVEL = 3


@dataclass(frozen=True)
class Preset:
    label: str
    description: str
    settings: Dict[str, Any]


def _preset(label, description, work, short, long, interval, auto=False):
    return Preset(label, description, {
        "work_minutes": work,
        "short_break_minutes": short,
        "long_break_minutes": long,
        "long_break_interval": interval,
        "auto_start_breaks": auto,
        "auto_start_work": auto,
    })


# Named TimerConfig overrides, applied through TimerEngine.apply_preset
PRESETS: Dict[str, Preset] = {
    "classic": _preset("Classic Pomodoro", "Traditional 25/5/15 minute intervals",
                       25, 5, 15, 4),
    "extended": _preset("Extended Focus", "Longer work sessions for deep work",
                        45, 10, 30, 3),
    "short-burst": _preset("Short Bursts", "Quick sessions for high-energy tasks",
                           15, 3, 10, 5, auto=True),
    "study-session": _preset("Study Session", "Optimized for learning and retention",
                             30, 5, 20, 3),
    "creative-flow": _preset("Creative Flow",
                             "Longer sessions with extended breaks for creativity",
                             90, 15, 45, 2),
}

# helper: parse / format ISO datetimes for JSON and SQLite
_parse_dt = lambda s: datetime.fromisoformat(s) if s else None
_fmt_dt = lambda d: d.isoformat() if d else None


class SessionType(str, Enum):
    WORK = "work"
    SHORT_BREAK = "short_break"
    LONG_BREAK = "long_break"

    @property
    def is_break(self) -> bool:
        return self is not SessionType.WORK

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


class MachineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"


class SessionOutcome(str, Enum):
    COMPLETED = "completed"
    STOPPED = "stopped"
    SKIPPED = "skipped"


class MoodState(str, Enum):
    MOTIVATED = "motivated"
    NEUTRAL = "neutral"
    STRUGGLING = "struggling"
    HYPERFOCUS = "hyperfocus"


class AdaptiveMode(str, Enum):
    ENERGY_BASED = "energy-based"
    MOOD_BASED = "mood-based"
    FOCUS_BASED = "focus-based"


@dataclass
class SessionRecord:
    """
    One Work / ShortBreak / LongBreak interval.

    Mutable only while it is the current session. Once `outcome` is set the
    record is closed and only ever read (it lives in history from then on).
    """
    id: str
    type: SessionType
    planned_duration: int  # seconds, post-adaptation
    start_time: datetime
    end_time: Optional[datetime] = None
    outcome: Optional[SessionOutcome] = None
    task_label: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    icon: Optional[str] = None
    usage_attachment: Optional[Dict[str, Any]] = None
    energy_level: Optional[int] = None
    mood_state: Optional[MoodState] = None
    base_duration: Optional[int] = None
    adaptation_reason: Optional[str] = None

    @classmethod
    def create(
        cls,
        session_type: SessionType,
        planned_duration: int,
        start_time: datetime,
        **metadata: Any,
    ) -> "SessionRecord":
        return cls(
            id=uuid.uuid4().hex,
            type=SessionType(session_type),
            planned_duration=int(planned_duration),
            start_time=start_time,
            **metadata,
        )

    @property
    def is_closed(self) -> bool:
        return self.outcome is not None

    def elapsed_seconds(self, at: Optional[datetime] = None) -> float:
        """Seconds from start to closure (or to `at` while still open)."""
        end = self.end_time or at
        if end is None:
            return 0.0
        return (end - self.start_time).total_seconds()

    def close(
        self,
        outcome: SessionOutcome,
        at: datetime,
        usage: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.is_closed:
            raise RuntimeError(
                f"Session {self.id} is already closed ({self.outcome.value})."
            )
        self.end_time = at
        self.outcome = SessionOutcome(outcome)
        if usage is not None and self.type is SessionType.WORK:
            self.usage_attachment = dict(usage)

    # ── Metadata edits (open sessions only) ────────────────────────────────

    def rename(self, label: Optional[str]) -> None:
        self._require_open("rename")
        self.task_label = label or None

    def set_icon(self, icon: Optional[str]) -> None:
        self._require_open("change the icon of")
        self.icon = icon or None

    def add_tag(self, tag: str) -> None:
        self._require_open("tag")
        if tag and tag not in self.tags:
            self.tags.append(tag)

    def remove_tag(self, tag: str) -> None:
        self._require_open("untag")
        self.tags = [t for t in self.tags if t != tag]

    def _require_open(self, action: str) -> None:
        if self.is_closed:
            raise RuntimeError(f"Cannot {action} session {self.id}: it is closed.")

    # ── Serialization ──────────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "planned_duration": self.planned_duration,
            "start_time": _fmt_dt(self.start_time),
            "end_time": _fmt_dt(self.end_time),
            "outcome": self.outcome.value if self.outcome else None,
            "task_label": self.task_label,
            "tags": list(self.tags),
            "icon": self.icon,
            "usage_attachment": self.usage_attachment,
            "energy_level": self.energy_level,
            "mood_state": self.mood_state.value if self.mood_state else None,
            "base_duration": self.base_duration,
            "adaptation_reason": self.adaptation_reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionRecord":
        """Strict inverse of to_dict(); raises KeyError/ValueError/TypeError."""
        start_time = _parse_dt(data["start_time"])
        if start_time is None:
            raise ValueError("session has no start_time")
        outcome = data.get("outcome")
        mood = data.get("mood_state")
        tags = data.get("tags") or []
        if not isinstance(tags, list):
            raise TypeError("tags must be a list")
        return cls(
            id=str(data["id"]),
            type=SessionType(data["type"]),
            planned_duration=int(data["planned_duration"]),
            start_time=start_time,
            end_time=_parse_dt(data.get("end_time")),
            outcome=SessionOutcome(outcome) if outcome else None,
            task_label=data.get("task_label"),
            tags=[str(t) for t in tags],
            icon=data.get("icon"),
            usage_attachment=data.get("usage_attachment"),
            energy_level=data.get("energy_level"),
            mood_state=MoodState(mood) if mood else None,
            base_duration=data.get("base_duration"),
            adaptation_reason=data.get("adaptation_reason"),
        )


@dataclass
class BackgroundState:
    """
    What survives a process restart: the open session plus the absolute
    instants of its Running interval.

    `end_timestamp` is only meaningful while RUNNING; while PAUSED the
    remaining time lives in `paused_remainder`.
    """
    session: SessionRecord
    start_timestamp: datetime
    end_timestamp: datetime
    machine_state: MachineState = MachineState.RUNNING
    paused_remainder: Optional[int] = None

    @classmethod
    def begin(cls, session: SessionRecord, now: datetime) -> "BackgroundState":
        return cls(
            session=session,
            start_timestamp=now,
            end_timestamp=now + timedelta(seconds=session.planned_duration),
            machine_state=MachineState.RUNNING,
        )

    @property
    def is_live(self) -> bool:
        """False for unstarted / errored states that only reset() clears."""
        if self.machine_state is MachineState.RUNNING:
            return self.end_timestamp >= self.start_timestamp
        if self.machine_state is MachineState.PAUSED:
            return self.paused_remainder is not None and self.paused_remainder >= 0
        return False

    def remaining(self, now: datetime) -> int:
        """Whole seconds left; never negative, never above the interval."""
        if self.machine_state is MachineState.PAUSED:
            return max(0, int(self.paused_remainder or 0))
        # a clock that went backwards must not add time
        now = max(now, self.start_timestamp)
        return max(0, math.floor((self.end_timestamp - now).total_seconds()))

    def pause(self, now: datetime) -> int:
        remaining = self.remaining(now)
        self.machine_state = MachineState.PAUSED
        self.paused_remainder = remaining
        return remaining

    def resume(self, now: datetime) -> int:
        remaining = max(0, int(self.paused_remainder or 0))
        self.end_timestamp = now + timedelta(seconds=remaining)
        self.paused_remainder = None
        self.machine_state = MachineState.RUNNING
        return remaining


@dataclass
class FocusPeriodCounters:
    """Plain counters; saved next to (not inside) the BackgroundState."""
    focus_period_id: Optional[str] = None
    current_focus_period_session_count: int = 0
    session_count: int = 0
    target_rounds: int = 1
    last_closed_type: Optional[SessionType] = None

    @property
    def focus_period_complete(self) -> bool:
        return (
            self.focus_period_id is not None
            and self.current_focus_period_session_count >= self.target_rounds
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_closed_type"] = (
            self.last_closed_type.value if self.last_closed_type else None
        )
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FocusPeriodCounters":
        last = data.get("last_closed_type")
        return cls(
            focus_period_id=data.get("focus_period_id"),
            current_focus_period_session_count=int(
                data.get("current_focus_period_session_count", 0)
            ),
            session_count=int(data.get("session_count", 0)),
            target_rounds=max(1, int(data.get("target_rounds", 1))),
            last_closed_type=SessionType(last) if last else None,
        )


@dataclass
class AggregateStats:
    """Totals recomputed from history after every commit."""
    total_sessions: int = 0
    completed_sessions: int = 0
    total_work_time: int = 0    # seconds
    total_break_time: int = 0   # seconds
    streak_count: int = 0
    todays_sessions: int = 0
    week_sessions: int = 0
    month_sessions: int = 0
    completion_rate: float = 0.0       # percent
    average_work_minutes: float = 0.0


_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


@dataclass
class TimerConfig:
    """User preferences for durations, auto-start and adaptive timers."""
    work_minutes: int = DEFAULT_WORK_MINUTES
    short_break_minutes: int = DEFAULT_SHORT_BREAK_MINUTES
    long_break_minutes: int = DEFAULT_LONG_BREAK_MINUTES
    long_break_interval: int = DEFAULT_LONG_BREAK_INTERVAL
    auto_start_breaks: bool = False
    auto_start_work: bool = False
    enable_notifications: bool = True
    enable_application_tracking: bool = False
    tracking_interval: int = DEFAULT_TRACKING_INTERVAL
    enable_adaptive_timers: bool = False
    adaptive_mode: AdaptiveMode = AdaptiveMode.ENERGY_BASED
    min_work_minutes: int = DEFAULT_MIN_WORK_MINUTES
    max_work_minutes: int = DEFAULT_MAX_WORK_MINUTES
    default_energy_level: int = DEFAULT_ENERGY_LEVEL
    default_mood_state: MoodState = MoodState.NEUTRAL
    enable_reward_system: bool = True
    enable_hyperfocus_detection: bool = True

    def validate(self) -> "TimerConfig":
        for name in ("work_minutes", "short_break_minutes", "long_break_minutes",
                     "min_work_minutes", "max_work_minutes"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.min_work_minutes > self.max_work_minutes:
            raise ValueError("min_work_minutes cannot exceed max_work_minutes")
        if self.long_break_interval < 1:
            raise ValueError("long_break_interval must be >= 1")
        if self.tracking_interval < 1:
            raise ValueError("tracking_interval must be >= 1")
        if not 1 <= self.default_energy_level <= 5:
            raise ValueError("default_energy_level must be between 1 and 5")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            f.name: (v.value if isinstance(v, Enum) else v)
            for f in fields(self)
            for v in (getattr(self, f.name),)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimerConfig":
        """Build from stored / user-typed values. Unknown keys are ignored."""
        defaults = cls()
        values = {}
        for f in fields(cls):
            if f.name in data:
                values[f.name] = _coerce(getattr(defaults, f.name), data[f.name], f.name)
        return cls(**values).validate()

    def with_changes(self, **changes: Any) -> "TimerConfig":
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ValueError(f"Unknown config key(s): {', '.join(sorted(unknown))}")
        merged = self.to_dict()
        merged.update(changes)
        return TimerConfig.from_dict(merged)


def _coerce(default: Any, value: Any, name: str) -> Any:
    """Convert `value` to the type of `default` (strings come from the CLI)."""
    try:
        if isinstance(default, bool):
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in _TRUE_STRINGS:
                return True
            if text in _FALSE_STRINGS:
                return False
            raise ValueError(value)
        if isinstance(default, Enum):
            return type(default)(value)
        if isinstance(default, int):
            return int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid value for {name}: {value!r}") from e
    return value


@dataclass(frozen=True)
class Continuation:
    """What should follow a completed session."""
    auto_start: bool
    next_type: SessionType


@dataclass
class ClosureResult:
    """Returned by stop / complete / skip and by sync-detected completions."""
    record: SessionRecord
    kept: bool
    stats: AggregateStats
    continuation: Optional[Continuation] = None


@dataclass
class CurrentView:
    """Snapshot handed to the presentation layer by sync()."""
    machine_state: MachineState
    remaining_seconds: int
    current_session: Optional[SessionRecord]
    next_session_type: SessionType = SessionType.WORK


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Defines the "shape" of everything the timer engine passes around:
#   session records, the persisted background state, counters, stats and
#   user configuration.
#
# Key classes and why they exist:
#   - SessionRecord: one timed interval. close() can only run once. That is
#     the guard against double-closing a session when a sync and a user
#     action race each other.
#   - BackgroundState: the crash-proof part. Instead of a countdown integer
#     we store absolute start/end instants, so any process can compute
#     remaining = end - now without knowing how many ticks already ran.
#   - FocusPeriodCounters: how many work rounds are done (for long-break
#     arithmetic and the user's round goal).
#   - TimerConfig: preferences with validation; from_dict() also parses the
#     strings typed on the command line.
#
# Data flow:
#   start() → SessionRecord.create + BackgroundState.begin → saved as JSON
#   sync() → BackgroundState loaded → remaining(now) → close() → history
#
# Interviewer-friendly talking points:
#   1. Timestamps over counters: a killed process loses nothing because the
#      only state is "when does it end", not "how much is left".
#   2. remaining() floors and clamps: never negative, and a clock that jumps
#      backwards can't make a session longer than it was planned.
#   3. Enums subclass str so they serialize to JSON/SQLite as plain strings
#      and compare equal to the stored values.
