from .database import Database
from .errors import CorruptStateError, StoreIOError
from .models import (
    AggregateStats,
    BackgroundState,
    FocusPeriodCounters,
    MachineState,
    SessionOutcome,
    SessionRecord,
    SessionType,
    TimerConfig,
)
from .repository import Repository

__all__ = [
    "Database", "Repository", "StoreIOError", "CorruptStateError",
    "AggregateStats", "BackgroundState", "FocusPeriodCounters", "MachineState",
    "SessionOutcome", "SessionRecord", "SessionType", "TimerConfig",
]
