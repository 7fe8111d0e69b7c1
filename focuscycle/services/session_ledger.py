"""
Session Ledger — decides which closed sessions count and keeps the totals.

A session shorter than MIN_SESSION_SECONDS is treated as an accidental tap:
it never reaches history and never moves a counter, whatever its outcome.
Everything else is appended to history (once per session id) and the
aggregate stats are recomputed from scratch.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, List, Optional

import numpy as np

from focuscycle.data.models import (
    AggregateStats,
    MoodState,
    SessionOutcome,
    SessionRecord,
    SessionType,
)
from focuscycle.data.repository import Repository

logger = logging.getLogger(__name__)

MIN_SESSION_SECONDS = 40


class SessionLedger:
    """Append-only history of closed sessions plus derived statistics."""

    def __init__(self, repo: Repository, clock: Callable[[], datetime] = datetime.now) -> None:
        self.repo = repo
        self._clock = clock

    # ── Policy ──────────────────────────────────────────────────────────────

    @staticmethod
    def should_keep(record: SessionRecord) -> bool:
        """True when the session lasted long enough to be a real attempt."""
        if record.end_time is None:
            return False
        return record.elapsed_seconds() >= MIN_SESSION_SECONDS

    # ── Writes ──────────────────────────────────────────────────────────────

    def commit(self, record: SessionRecord) -> AggregateStats:
        """Append `record` if it should be kept; return fresh totals."""
        if self.should_keep(record):
            if self.repo.add_session(record):
                logger.info(
                    "Recorded %s session %s (%s, %.0fs).",
                    record.type.value, record.id, record.outcome.value,
                    record.elapsed_seconds(),
                )
            else:
                logger.info("Session %s already recorded; ignoring.", record.id)
        else:
            logger.info(
                "Session %s too short to keep (%.0fs < %ds).",
                record.id, record.elapsed_seconds(), MIN_SESSION_SECONDS,
            )
        return self.aggregate_stats()

    def delete_session(self, session_id: str) -> AggregateStats:
        self.repo.delete_session(session_id)
        return self.aggregate_stats()

    def clear_history(self) -> AggregateStats:
        self.repo.delete_all_sessions()
        return self.aggregate_stats()

    # ── Reads ───────────────────────────────────────────────────────────────

    def contains(self, session_id: str) -> bool:
        return self.repo.has_session(session_id)

    def history(self, limit: Optional[int] = None) -> List[SessionRecord]:
        return self.repo.list_sessions(limit=limit)

    def aggregate_stats(self) -> AggregateStats:
        return calculate_stats(self.history(), self._clock().date())


# ── Pure helpers ────────────────────────────────────────────────────────────

def calculate_stats(history: List[SessionRecord], today: date) -> AggregateStats:
    completed = [s for s in history if s.outcome is SessionOutcome.COMPLETED]
    work = [s for s in completed if s.type is SessionType.WORK]
    breaks = [s for s in completed if s.type is not SessionType.WORK]

    # weeks run Sunday to Saturday
    week_start = today - timedelta(days=(today.weekday() + 1) % 7)
    month_start = today.replace(day=1)
    started = [s.start_time.date() for s in completed]

    return AggregateStats(
        total_sessions=len(history),
        completed_sessions=len(completed),
        total_work_time=sum(s.planned_duration for s in work),
        total_break_time=sum(s.planned_duration for s in breaks),
        streak_count=calculate_streak(started, today),
        todays_sessions=sum(1 for d in started if d == today),
        week_sessions=sum(1 for d in started if week_start <= d <= today),
        month_sessions=sum(1 for d in started if month_start <= d <= today),
        completion_rate=(
            float(len(completed) / len(history) * 100.0) if history else 0.0
        ),
        average_work_minutes=(
            float(np.mean([s.planned_duration for s in work])) / 60.0 if work else 0.0
        ),
    )


def calculate_streak(dates: Iterable[date], today: date) -> int:
    """Consecutive calendar days with a completed session, ending today."""
    ordered = sorted(set(d for d in dates if d <= today), reverse=True)
    if not ordered or ordered[0] != today:
        return 0
    gaps = np.diff(np.array([d.toordinal() for d in ordered], dtype=np.int64))
    # gaps are negative (descending); the run ends at the first gap != -1
    breaks = np.flatnonzero(gaps != -1)
    return int(breaks[0]) + 1 if breaks.size else len(ordered)


def calculate_session_points(record: SessionRecord) -> int:
    """Reward amount handed to the rewards collaborator."""
    points = 10
    if record.outcome is SessionOutcome.COMPLETED:
        points += round(record.planned_duration / 60) * 2
        if record.energy_level is not None and record.energy_level <= 2:
            points += 20
        if record.mood_state is MoodState.STRUGGLING:
            points += 30
    return points


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The bookkeeper. Every closed session passes through commit(), which
#   applies the "too short to count" rule and refreshes the dashboard totals.
#
# Key pieces:
#   - should_keep(): measured from start to *closure* time, not to "now".
#     A session restored three hours late is judged by how long it actually
#     ran, not by how long the computer was asleep.
#   - commit(): idempotent per id (the Repository ignores duplicates), so
#     re-closing after a crash can't double-count.
#   - calculate_streak(): numpy diff over day ordinals; the streak is the
#     length of the leading run of -1 steps, and 0 unless that run
#     includes today.
#
# Data flow:
#   TimerEngine closure → commit(record) → Repository.add_session →
#   calculate_stats(history) → AggregateStats back to the engine / CLI
#
# Interviewer-friendly talking points:
#   1. Stats are recomputed, not incrementally patched. History is small
#      (hundreds of rows), and recomputation can't drift out of sync.
#   2. Weeks start on Sunday (US calendar convention), so Sunday sessions
#      count toward the week that follows.
#   3. Averages via numpy, same as the rest of the numeric code.
