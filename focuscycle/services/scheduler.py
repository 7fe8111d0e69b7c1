"""
Qt-backed scheduler for the engine's delayed callbacks.

Callbacks run on the Qt event loop, so they are serialized with every other
engine call made from that loop (the `watch` host). Without a running event
loop nothing fires, which is fine for one-shot CLI invocations: the next
process reconciles from timestamps anyway.
"""

from __future__ import annotations

import logging
from typing import Callable, Set

from PySide6.QtCore import QTimer

logger = logging.getLogger(__name__)


class ScheduledCall:
    """Handle for one pending single-shot callback."""

    def __init__(self, scheduler: "QtScheduler", delay_seconds: float,
                 callback: Callable[[], None]) -> None:
        self._scheduler = scheduler
        self._callback = callback
        self._timer = QTimer()
        self._timer.setSingleShot(True)
        self._timer.timeout.connect(self._fire)
        self._timer.start(max(0, int(delay_seconds * 1000)))

    @property
    def active(self) -> bool:
        return self._timer.isActive()

    def cancel(self) -> None:
        self._timer.stop()
        self._scheduler._forget(self)

    def _fire(self) -> None:
        self._scheduler._forget(self)
        try:
            self._callback()
        except Exception:
            # an exception escaping into the Qt loop would abort `watch`
            logger.exception("Scheduled callback failed.")


class QtScheduler:
    """call_later(delay, callback) on top of single-shot QTimers."""

    def __init__(self) -> None:
        # QTimers are only kept alive by these references
        self._calls: Set[ScheduledCall] = set()

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> ScheduledCall:
        call = ScheduledCall(self, delay_seconds, callback)
        self._calls.add(call)
        return call

    def cancel_all(self) -> None:
        for call in list(self._calls):
            call.cancel()

    @property
    def pending_count(self) -> int:
        return len(self._calls)

    def _forget(self, call: ScheduledCall) -> None:
        self._calls.discard(call)


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Gives the engine a tiny "run this in N seconds" service built on QTimer.
#   Used for the 2-second auto-start and the 5-second "completed" display.
#
# Key design decisions:
#   - QTimer (PySide6) so callbacks run on the main thread. No locks are needed
#     around engine state, because only one thing runs at a time.
#   - The engine depends on the call_later() shape, not on Qt. Tests pass a
#     manual scheduler and fire callbacks by hand.
#   - Handles are kept in a set: a QTimer with no Python reference can be
#     garbage-collected before it fires.
#
# Interviewer-friendly talking points:
#   1. QTimer vs threading.Timer: threading.Timer would call back on another
#      thread and race the periodic sync(). QTimer keeps one timeline.
#   2. _fire() logs and swallows exceptions: one broken callback shouldn't
#      take down a long-running watcher.
