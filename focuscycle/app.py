"""
Wiring: one Database, one Repository, one TimerEngine per process.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Tuple

from PySide6.QtCore import QTimer

from focuscycle.data.database import Database
from focuscycle.data.models import CurrentView, MachineState
from focuscycle.data.repository import Repository
from focuscycle.services.continuation import ContinuationPlanner
from focuscycle.services.recovery_store import RecoveryStore
from focuscycle.services.scheduler import QtScheduler
from focuscycle.services.session_ledger import SessionLedger
from focuscycle.services.timer_engine import TimerEngine

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 1.0  # seconds, same cadence as a visible countdown


def build_engine(
    db_path: Optional[Path] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> Tuple[Database, TimerEngine]:
    """Open the database and assemble an engine around it."""
    db = Database(db_path)
    db.connect()
    repo = Repository(db.conn)
    scheduler = QtScheduler()
    engine = TimerEngine(
        repo=repo,
        store=RecoveryStore(repo),
        ledger=SessionLedger(repo, clock=clock),
        planner=ContinuationPlanner(scheduler),
        scheduler=scheduler,
        clock=clock,
    )
    return db, engine


class EngineWatcher:
    """
    Calls engine.sync() on a repeating QTimer so due completions, auto-starts
    and the completed → idle transition happen without user input.
    """

    def __init__(
        self,
        engine: TimerEngine,
        interval_seconds: float = DEFAULT_SYNC_INTERVAL,
        on_view: Optional[Callable[[CurrentView], None]] = None,
    ) -> None:
        self.engine = engine
        self.on_view = on_view
        self._last_state: Optional[MachineState] = None
        self._timer = QTimer()
        self._timer.setInterval(max(100, int(interval_seconds * 1000)))
        self._timer.timeout.connect(self._tick)

    def start(self) -> None:
        self._tick()
        self._timer.start()

    def _tick(self) -> None:
        try:
            view = self.engine.sync()
        except Exception:
            logger.exception("Sync failed; will retry on the next tick.")
            return
        if view.machine_state is not self._last_state:
            logger.info("Timer is %s.", view.machine_state.value)
            self._last_state = view.machine_state
        if self.on_view is not None:
            self.on_view(view)


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Builds the object graph (Database → Repository → store / ledger /
#   planner → TimerEngine) and provides the `watch` loop's ticker.
#
# Key design decisions:
#   - The Repository doubles as the RecoveryStore's byte store, so the
#     background state, config, counters and history share one SQLite file.
#   - EngineWatcher polls sync() once a second. It doesn't count anything
#     down itself; each tick just asks "what does the clock say now?".
#
# Interviewer-friendly talking points:
#   1. Composition root: only this file knows concrete classes; everything
#      else receives collaborators through constructors.
#   2. Tests skip this file and assemble engines with fakes instead.
