"""
Continuation Planner — what comes after a completed session.

decide() is the rule (Work → short/long break, break → Work). The planner
object owns the delayed auto-start: it is armed only outside reconciliation,
can be cancelled by any user action, and re-checks the engine before acting
because a lot can happen in two seconds.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol

from focuscycle.data.models import Continuation, SessionRecord, SessionType, TimerConfig

logger = logging.getLogger(__name__)

AUTO_START_DELAY = 2.0  # seconds


def decide(
    completed_type: SessionType,
    focus_period_count: int,
    config: TimerConfig,
) -> Continuation:
    """
    `focus_period_count` is the number of kept Work sessions *before* the
    one that just completed.
    """
    if SessionType(completed_type) is SessionType.WORK:
        return Continuation(
            auto_start=bool(config.auto_start_breaks),
            next_type=_break_after(focus_period_count + 1, config.long_break_interval),
        )
    return Continuation(auto_start=bool(config.auto_start_work), next_type=SessionType.WORK)


def next_session_type(
    last_closed_type: Optional[SessionType],
    session_count: int,
    config: TimerConfig,
) -> SessionType:
    """The stage to offer next, given the last closed session."""
    if last_closed_type is None or SessionType(last_closed_type).is_break:
        return SessionType.WORK
    return _break_after(session_count, config.long_break_interval)


def _break_after(work_sessions_done: int, interval: int) -> SessionType:
    if interval > 0 and work_sessions_done > 0 and work_sessions_done % interval == 0:
        return SessionType.LONG_BREAK
    return SessionType.SHORT_BREAK


class AutoStartHost(Protocol):
    """The bits of TimerEngine the delayed callback needs to look at."""

    reconciling: bool
    current_session: Optional[SessionRecord]
    last_completed_id: Optional[str]

    def start(self, session_type: SessionType, *, auto: bool = False, **kwargs: Any) -> Any: ...


class ContinuationPlanner:
    """Arms, fires and cancels the delayed auto-start."""

    def __init__(self, scheduler: Any, delay: float = AUTO_START_DELAY) -> None:
        self.scheduler = scheduler
        self.delay = delay
        self._pending: Any = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def schedule(
        self,
        continuation: Continuation,
        completed_id: str,
        host: AutoStartHost,
    ) -> bool:
        """Arm the auto-start for `completed_id`. Returns True if armed."""
        if not continuation.auto_start:
            return False
        if host.reconciling:
            logger.warning("Refusing to schedule auto-start while reconciling.")
            return False
        self.cancel()
        self._pending = self.scheduler.call_later(
            self.delay, self._make_callback(continuation, completed_id, host)
        )
        logger.info(
            "Auto-start of %s scheduled in %.1fs.", continuation.next_type.value, self.delay
        )
        return True

    def cancel(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
            logger.debug("Pending auto-start cancelled.")

    def _make_callback(
        self, continuation: Continuation, completed_id: str, host: AutoStartHost
    ) -> Callable[[], None]:
        def fire() -> None:
            self._pending = None
            if host.reconciling:
                logger.warning("Auto-start skipped: engine is reconciling.")
                return
            if host.current_session is not None or host.last_completed_id != completed_id:
                logger.info("Auto-start skipped: a newer session has begun.")
                return
            host.start(continuation.next_type, auto=True)

        return fire


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Picks the next session type and, if the user enabled it, starts it
#   automatically after a short pause.
#
# Key pieces:
#   - decide(): Work → LongBreak every `long_break_interval`-th round,
#     otherwise ShortBreak; any break → Work.
#   - ContinuationPlanner.schedule(): refuses while the engine is
#     reconciling persisted state. Restoring an already-finished session
#     after a restart must not look like "the user just finished a session"
#     and spring a surprise break on them.
#   - The callback checks again when it fires: still not reconciling, still
#     no session running, and the completion it was armed for is still the
#     latest one. Otherwise it does nothing.
#
# Data flow:
#   TimerEngine closure → decide() → schedule() → (2s later) fire() →
#   TimerEngine.start(next_type, auto=True)
#
# Interviewer-friendly talking points:
#   1. Check-then-act at fire time, not just at schedule time. Delayed
#      callbacks are where stale assumptions turn into bugs.
#   2. The host is a Protocol, so tests can drive the planner with a tiny
#      fake object and a manual scheduler.
#   3. cancel() is called by every explicit user transition: a manual start
#      always beats an automatic one.
