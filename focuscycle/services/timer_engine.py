"""
Timer Engine — the state machine behind every focus / break session.

    idle → running ⇄ paused → (stop | skip) → idle
                running → completed → (5s later) idle

Nothing here counts down. The engine stores when the running interval ends
and recomputes `remaining = end - now` whenever it is asked, so a process
can be killed at any moment and the next one picks up exactly where the
clock says it should. sync() is the only entry point that re-reads storage;
a host must call it before any other transition it triggers.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional

from focuscycle.data.errors import StoreIOError
from focuscycle.data.models import (
    AggregateStats,
    BackgroundState,
    ClosureResult,
    CurrentView,
    FocusPeriodCounters,
    MachineState,
    PRESETS,
    MoodState,
    SessionOutcome,
    SessionRecord,
    SessionType,
    TimerConfig,
)
from focuscycle.data.repository import Repository
from focuscycle.services.collaborators import (
    LoggingNotifier,
    Notifier,
    RewardSink,
    UsageTracker,
)
from focuscycle.services.continuation import ContinuationPlanner, decide, next_session_type
from focuscycle.services.duration_policy import adapt, base_duration_for
from focuscycle.services.recovery_store import RecoveryStore
from focuscycle.services.session_ledger import SessionLedger, calculate_session_points

logger = logging.getLogger(__name__)

COMPLETION_DISPLAY_DELAY = 5.0  # seconds a finished session stays "completed"

_LIVE_STATES = (MachineState.RUNNING, MachineState.PAUSED)


class TimerEngine:
    """
    Owns the one active session (if any) and every transition on it.

    Construct once per process and pass it around; there is no global
    instance. The in-memory state is a cache of what RecoveryStore holds and
    is only trusted across a process boundary after sync().
    """

    def __init__(
        self,
        repo: Repository,
        store: RecoveryStore,
        ledger: SessionLedger,
        planner: ContinuationPlanner,
        scheduler: Any,
        config: Optional[TimerConfig] = None,
        tracker: Optional[UsageTracker] = None,
        rewards: Optional[RewardSink] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repo = repo
        self.store = store
        self.ledger = ledger
        self.planner = planner
        self.scheduler = scheduler
        self.tracker = tracker
        self.rewards = rewards
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self._clock = clock

        if config is None:
            config = self._read(repo.load_config, TimerConfig())
        else:
            # an explicit config becomes the stored one, so sync() keeps it
            self._write_config(config)
        self._config = config
        self._counters = self._read(repo.load_counters, FocusPeriodCounters())

        self._state = MachineState.IDLE
        self._background: Optional[BackgroundState] = None
        self._reconciling = False
        self._unsaved = False            # last RecoveryStore write failed
        self._counters_unsaved = False
        self._idle_call: Any = None

        self.last_completed_id: Optional[str] = None

    # ── Read-only views ─────────────────────────────────────────────────────

    @property
    def machine_state(self) -> MachineState:
        return self._state

    @property
    def reconciling(self) -> bool:
        return self._reconciling

    @property
    def current_session(self) -> Optional[SessionRecord]:
        if self._background is None or self._state not in _LIVE_STATES:
            return None
        return self._background.session

    @property
    def config(self) -> TimerConfig:
        return self._config

    @property
    def counters(self) -> FocusPeriodCounters:
        return self._counters

    @property
    def history(self) -> List[SessionRecord]:
        return self.ledger.history()

    @property
    def aggregate_stats(self) -> AggregateStats:
        return self.ledger.aggregate_stats()

    def remaining(self) -> int:
        if self._background is None or self._state not in _LIVE_STATES:
            return 0
        return self._background.remaining(self._clock())

    def next_session_type(self) -> SessionType:
        return next_session_type(
            self._counters.last_closed_type, self._counters.session_count, self._config
        )

    def view(self) -> CurrentView:
        return CurrentView(
            machine_state=self._state,
            remaining_seconds=self.remaining(),
            current_session=self.current_session,
            next_session_type=self.next_session_type(),
        )

    # ── Transitions ─────────────────────────────────────────────────────────

    def start(
        self,
        session_type: SessionType,
        label: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        icon: Optional[str] = None,
        energy_level: Optional[int] = None,
        mood_state: Optional[MoodState] = None,
        *,
        auto: bool = False,
    ) -> Optional[SessionRecord]:
        """Idle/Completed → Running. Returns the new session, or None if refused."""
        if self._reconciling:
            logger.warning("start() refused: still reconciling persisted state.")
            return None
        if self._state in _LIVE_STATES:
            logger.debug("start() ignored: a session is already %s.", self._state.value)
            return None

        session_type = SessionType(session_type)
        if not auto:
            self.planner.cancel()
        self._cancel_idle()

        now = self._clock()
        config = self._config
        base = base_duration_for(session_type, config)
        duration, reason = base, None
        is_work = session_type is SessionType.WORK
        energy = energy_level if energy_level is not None else config.default_energy_level
        mood = _as_mood(mood_state) or config.default_mood_state

        if is_work and config.enable_adaptive_timers:
            duration, reason = adapt(
                base, energy, mood, config.adaptive_mode,
                config.min_work_minutes * 60, config.max_work_minutes * 60,
            )
            logger.info("Adaptive duration: %ds → %ds (%s).", base, duration, reason)

        record = SessionRecord.create(
            session_type, duration, now,
            task_label=label or None,
            tags=_unique(tags or []),
            icon=icon or None,
            energy_level=energy if is_work and _valid_energy(energy) else None,
            mood_state=mood if is_work else None,
            base_duration=base,
            adaptation_reason=reason,
        )
        self._background = BackgroundState.begin(record, now)
        self._state = MachineState.RUNNING
        self._persist()

        if is_work and config.enable_application_tracking and self.tracker is not None:
            self._best_effort("start usage tracking",
                              self.tracker.start_tracking, config.tracking_interval)
        if config.enable_notifications:
            self._best_effort("send start notification",
                              self.notifier.notify_start, session_type)

        logger.info("%s session %s started (%ds%s).", session_type.label, record.id,
                    duration, ", auto" if auto else "")
        return record

    def pause(self) -> bool:
        if self._state is not MachineState.RUNNING or self._background is None:
            logger.debug("pause() ignored in state %s.", self._state.value)
            return False
        remaining = self._background.pause(self._clock())
        self._state = MachineState.PAUSED
        self._persist()
        logger.info("Session %s paused with %ds left.", self._background.session.id, remaining)
        return True

    def resume(self) -> bool:
        if self._state is not MachineState.PAUSED or self._background is None:
            logger.debug("resume() ignored in state %s.", self._state.value)
            return False
        remaining = self._background.resume(self._clock())
        self._state = MachineState.RUNNING
        self._persist()
        logger.info("Session %s resumed with %ds left.", self._background.session.id, remaining)
        return True

    def stop(self) -> Optional[ClosureResult]:
        """Abandon the session and return to idle (outcome: stopped)."""
        if not self._is_live():
            logger.debug("stop() ignored in state %s.", self._state.value)
            return None
        self.planner.cancel()
        return self._close(SessionOutcome.STOPPED, self._clock())

    def complete(self) -> Optional[ClosureResult]:
        """Finish the session now (outcome: completed) and plan what's next."""
        if not self._is_live():
            logger.debug("complete() ignored in state %s.", self._state.value)
            return None
        self.planner.cancel()
        return self._close(SessionOutcome.COMPLETED, self._clock(), plan=True)

    def skip(self) -> Optional[ClosureResult]:
        """Abandon the session and move on to the next stage (outcome: skipped)."""
        self.planner.cancel()
        if self._state is MachineState.COMPLETED and self._background is None:
            self._cancel_idle()
            self._state = MachineState.IDLE
            return None
        if not self._is_live():
            logger.debug("skip() ignored in state %s.", self._state.value)
            return None
        return self._close(SessionOutcome.SKIPPED, self._clock())

    def reset(self) -> bool:
        """Drop an unstarted / errored background state without recording it."""
        if self._state in _LIVE_STATES:
            logger.debug("reset() ignored: session is %s; stop or skip it.", self._state.value)
            return False
        self.planner.cancel()
        self._cancel_idle()
        discarded, self._background = self._background, None
        self._state = MachineState.IDLE
        self._persist()
        if discarded is not None:
            logger.info("Discarded session %s without recording it.", discarded.session.id)
        return True

    def sync(self) -> CurrentView:
        """
        Reconcile with persisted state and fire a due completion.

        Runs the reconciliation pass with `reconciling` set, so neither
        start() nor an auto-start can sneak in while a freshly loaded state
        is being interpreted. A session this process did not already know
        about (i.e. restored after a restart) is closed inside that pass
        without any continuation; a session it was running is closed
        afterwards through the normal completion path.
        """
        due_closure_at: Optional[datetime] = None
        self._reconciling = True
        try:
            self._refresh_counters()
            self._refresh_config()
            stored = self._read_background()
            now = self._clock()

            if stored is None:
                if self._state in _LIVE_STATES:
                    logger.info("Session ended elsewhere; now idle.")
                    self._state = MachineState.IDLE
                self._background = None
            else:
                known = (
                    self._state in _LIVE_STATES
                    and self._background is not None
                    and self._background.session.id == stored.session.id
                )
                self._background = stored
                if not stored.is_live:
                    logger.warning(
                        "Stored session %s is not resumable (%s); reset() clears it.",
                        stored.session.id, stored.machine_state.value,
                    )
                    self._state = MachineState.IDLE
                else:
                    if not known:
                        self.planner.cancel()
                        self._cancel_idle()
                    self._state = stored.machine_state
                    if (stored.machine_state is MachineState.RUNNING
                            and stored.remaining(now) <= 0):
                        closed_at = min(stored.end_timestamp, now)
                        if known:
                            due_closure_at = closed_at
                        else:
                            logger.info("Session %s finished while away; closing it.",
                                        stored.session.id)
                            self._close(SessionOutcome.COMPLETED, closed_at)
        finally:
            self._reconciling = False

        if due_closure_at is not None:
            self._close(SessionOutcome.COMPLETED, due_closure_at, plan=True)
        return self.view()

    # ── Current-session metadata ────────────────────────────────────────────

    def rename_current(self, label: Optional[str]) -> bool:
        return self._edit_current(lambda s: s.rename(label))

    def set_current_icon(self, icon: Optional[str]) -> bool:
        return self._edit_current(lambda s: s.set_icon(icon))

    def add_tag_to_current(self, tag: str) -> bool:
        return self._edit_current(lambda s: s.add_tag(tag))

    def remove_tag_from_current(self, tag: str) -> bool:
        return self._edit_current(lambda s: s.remove_tag(tag))

    # ── Focus period / history / config ─────────────────────────────────────

    def start_new_focus_period(self, target_rounds: int) -> FocusPeriodCounters:
        if target_rounds < 1:
            raise ValueError("target_rounds must be at least 1")
        self._counters.focus_period_id = uuid.uuid4().hex
        self._counters.current_focus_period_session_count = 0
        self._counters.target_rounds = int(target_rounds)
        self._save_counters()
        logger.info("New focus period: %d round(s).", target_rounds)
        return self._counters

    def reset_focus_period(self) -> FocusPeriodCounters:
        self._counters.focus_period_id = None
        self._counters.current_focus_period_session_count = 0
        self._counters.target_rounds = 1
        self._save_counters()
        return self._counters

    def delete_session(self, session_id: str) -> bool:
        if not self.ledger.contains(session_id):
            return False
        self.ledger.delete_session(session_id)
        return True

    def clear_history(self) -> AggregateStats:
        stats = self.ledger.clear_history()
        self._counters.session_count = 0
        self._save_counters()
        return stats

    def update_config(self, **changes: Any) -> TimerConfig:
        """Validate and apply config changes (ValueError on bad input)."""
        self._config = self._config.with_changes(**changes)
        self._write_config(self._config)
        logger.info("Config updated: %s", ", ".join(sorted(changes)))
        return self._config

    def apply_preset(self, name: str) -> TimerConfig:
        """Switch durations, interval and auto-start to a named preset."""
        if name not in PRESETS:
            raise ValueError(f"Unknown preset {name!r}; choose from: {', '.join(PRESETS)}")
        logger.info("Applying preset '%s'.", name)
        return self.update_config(**PRESETS[name].settings)

    # ── Closure ─────────────────────────────────────────────────────────────

    def _close(
        self,
        outcome: SessionOutcome,
        closed_at: datetime,
        plan: bool = False,
    ) -> Optional[ClosureResult]:
        """
        close → commit → counters → decide → clear → notify → schedule.

        Planning happens before the persisted state is cleared, and the
        clear happens before anything is scheduled: a crash in between
        leaves the engine idle, never double-started.
        """
        record = self._background.session
        if record.is_closed:
            logger.warning("Session %s is already closed; ignoring.", record.id)
            return None

        usage = None
        if record.type is SessionType.WORK and self.tracker is not None:
            usage = self._best_effort("stop usage tracking", self._stop_tracking)
        record.close(outcome, closed_at, usage=usage)

        kept = self.ledger.should_keep(record)
        newly_recorded = kept and not self._ledger_contains(record.id)
        stats = self._commit(record)

        count_before = self._counters.session_count
        if newly_recorded and outcome is SessionOutcome.COMPLETED and record.type is SessionType.WORK:
            self._counters.session_count += 1
            self._counters.current_focus_period_session_count += 1
        if kept:
            self._counters.last_closed_type = record.type
        self._save_counters()

        continuation = None
        # a session too short to count does not move the cycle on
        if plan and kept and outcome is SessionOutcome.COMPLETED:
            continuation = decide(record.type, count_before, self._config)

        self._background = None
        self._persist()
        self.last_completed_id = record.id

        if outcome is SessionOutcome.COMPLETED:
            self._state = MachineState.COMPLETED
        else:
            self._cancel_idle()
            self._state = MachineState.IDLE

        self._announce(record, kept)

        result = ClosureResult(record=record, kept=kept, stats=stats, continuation=continuation)
        logger.info("Session %s closed: %s%s.", record.id, outcome.value,
                    "" if kept else " (too short, not recorded)")

        if outcome is SessionOutcome.COMPLETED:
            if continuation is not None:
                self.planner.schedule(continuation, record.id, self)
            self._schedule_idle(record.id)
        return result

    def _announce(self, record: SessionRecord, kept: bool) -> None:
        config = self._config
        completed = record.outcome is SessionOutcome.COMPLETED
        if config.enable_notifications:
            if not kept:
                self._best_effort("send too-short notice", self.notifier.notify_too_short,
                                  record, record.elapsed_seconds())
            elif completed:
                self._best_effort("send completion notification",
                                  self.notifier.notify_complete, record.type)

        if completed and kept and self.rewards is not None:
            if config.enable_reward_system:
                self._best_effort(
                    "award points", self.rewards.award_points,
                    calculate_session_points(record), f"Completed {record.type.label}",
                )
            if record.type is SessionType.WORK and config.enable_hyperfocus_detection:
                self._best_effort("check hyperfocus", self.rewards.check_hyperfocus)

    def _schedule_idle(self, completed_id: str) -> None:
        self._cancel_idle()

        def go_idle() -> None:
            self._idle_call = None
            if (self._state is MachineState.COMPLETED and self._background is None
                    and self.last_completed_id == completed_id):
                self._state = MachineState.IDLE
                logger.debug("Completion display over; idle.")

        self._idle_call = self.scheduler.call_later(COMPLETION_DISPLAY_DELAY, go_idle)

    def _cancel_idle(self) -> None:
        if self._idle_call is not None:
            self._idle_call.cancel()
            self._idle_call = None

    # ── Persistence helpers ─────────────────────────────────────────────────

    def _persist(self) -> None:
        if self._background is None:
            ok = self.store.clear()
        else:
            ok = self.store.save(self._background)
        if not ok and not self._unsaved:
            logger.warning("Timer state kept in memory only until storage recovers.")
        self._unsaved = not ok

    def _read_background(self) -> Optional[BackgroundState]:
        if self._unsaved:
            self._persist()
            if self._unsaved:
                return self._background
        try:
            return self.store.load()
        except StoreIOError as e:
            logger.error("Could not read timer state (%s); using in-memory state.", e)
            return self._background

    def _refresh_counters(self) -> None:
        if self._counters_unsaved:
            self._save_counters()
            return
        self._counters = self._read(self.repo.load_counters, self._counters)

    def _refresh_config(self) -> None:
        self._config = self._read(self.repo.load_config, self._config)

    def _write_config(self, config: TimerConfig) -> None:
        try:
            self.repo.save_config(config)
        except StoreIOError as e:
            logger.error("Config applied but not saved: %s", e)

    def _save_counters(self) -> None:
        try:
            self.repo.save_counters(self._counters)
            self._counters_unsaved = False
        except StoreIOError as e:
            logger.error("Could not save focus-period counters: %s", e)
            self._counters_unsaved = True

    def _commit(self, record: SessionRecord) -> AggregateStats:
        try:
            return self.ledger.commit(record)
        except StoreIOError as e:
            logger.error("Could not record session %s: %s", record.id, e)
            return AggregateStats()

    def _ledger_contains(self, session_id: str) -> bool:
        try:
            return self.ledger.contains(session_id)
        except StoreIOError:
            return False

    @staticmethod
    def _read(loader: Callable[[], Any], fallback: Any) -> Any:
        try:
            return loader()
        except StoreIOError as e:
            logger.error("Storage unavailable (%s); keeping current values.", e)
            return fallback

    # ── Misc helpers ────────────────────────────────────────────────────────

    def _is_live(self) -> bool:
        return self._state in _LIVE_STATES and self._background is not None

    def _edit_current(self, edit: Callable[[SessionRecord], None]) -> bool:
        session = self.current_session
        if session is None:
            return False
        edit(session)
        self._persist()
        return True

    def _stop_tracking(self) -> Optional[dict]:
        if not self.tracker.is_tracking():
            return None
        return dict(self.tracker.stop_tracking())

    @staticmethod
    def _best_effort(what: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except Exception as e:
            logger.warning("Could not %s: %s", what, e)
            return None


def _as_mood(value: Any) -> Optional[MoodState]:
    if value is None:
        return None
    try:
        return MoodState(value)
    except ValueError:
        logger.debug("Ignoring unknown mood %r.", value)
        return None


def _valid_energy(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 5


def _unique(tags: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for tag in tags:
        if tag and tag not in seen:
            seen.append(tag)
    return seen


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The heart of the app: start / pause / resume / stop / complete / skip /
#   reset, plus sync(), which is what makes the timer survive restarts.
#
# Key design decisions:
#   - Timestamps, not ticks. remaining() is always end - now, so a killed
#     process can't "lose" decrements it already applied.
#   - sync() always re-reads storage. The only exception is when our own
#     last write failed (or the read fails). Then memory is newer than disk
#     and wins until storage comes back.
#   - The reconciling flag: while sync() interprets a freshly loaded state,
#     start() is refused and no auto-start can be armed or fire. Restoring a
#     session that finished while the app was closed records it quietly; it
#     does not pop up a surprise break.
#   - Exactly-once closure: SessionRecord.close() only runs on an open
#     record, history ignores a second insert of the same id, and counters
#     only move for a newly recorded session.
#   - Collaborators are best-effort: a failing notifier or tracker is logged
#     and the transition still completes.
#
# Data flow:
#   host timer → sync() → RecoveryStore.load() → remaining(now) == 0 →
#   _close(): ledger.commit → counters → decide() → store.clear() →
#   notifier / rewards → planner.schedule() → (2s) start(next, auto=True)
#
# Interviewer-friendly talking points:
#   1. Ordering is the correctness argument: commit before planning, planning
#      before clearing, clearing before scheduling. A crash at any point
#      leaves either "still running, will re-close idempotently" or "idle".
#   2. Invalid transitions return None/False instead of raising. The UI
#      shouldn't offer them, but if it does the timer must not fall over.
#   3. One engine instance per process, injected everywhere. No singletons,
#      so tests build a fresh engine with a fake clock per test.
