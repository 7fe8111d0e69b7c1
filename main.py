"""
FocusCycle — focus / break session timer.
Entry point for the command line.
"""

import argparse
import faulthandler
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

faulthandler.enable()

# Ensure focuscycle is importable
sys.path.insert(0, str(Path(__file__).resolve().parent))

from PySide6.QtCore import QCoreApplication, QTimer

from focuscycle.app import DEFAULT_SYNC_INTERVAL, EngineWatcher, build_engine
from focuscycle.data.errors import StoreIOError
from focuscycle.data.models import (
    ClosureResult,
    CurrentView,
    PRESETS,
    MoodState,
    SessionRecord,
    SessionType,
)
from focuscycle.services.continuation import AUTO_START_DELAY
from focuscycle.services.timer_engine import TimerEngine

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler("focuscycle.log", encoding="utf-8"),
        ],
    )


# ── Output helpers ──────────────────────────────────────────────────────────

def _mmss(seconds: int) -> str:
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def _describe(record: SessionRecord) -> str:
    parts = [record.type.label]
    if record.task_label:
        parts.append(f"“{record.task_label}”")
    if record.tags:
        parts.append("[" + ", ".join(record.tags) + "]")
    return " ".join(parts)


def print_view(view: CurrentView) -> None:
    session = view.current_session
    if session is None:
        print(f"State: {view.machine_state.value}   next: {view.next_session_type.label}")
        return
    print(f"State: {view.machine_state.value}   {_describe(session)}   "
          f"{_mmss(view.remaining_seconds)} left")
    if session.adaptation_reason:
        print(f"  Duration: {session.planned_duration // 60} min ({session.adaptation_reason})")


def print_closure(result: Optional[ClosureResult]) -> None:
    if result is None:
        print("Nothing to do in the current state.")
        return
    record = result.record
    status = "saved to history" if result.kept else "too short, not saved"
    print(f"{_describe(record)} {record.outcome.value} "
          f"after {_mmss(int(record.elapsed_seconds()))} ({status}).")
    if result.continuation is not None:
        how = "starts automatically" if result.continuation.auto_start else "is up next"
        print(f"{result.continuation.next_type.label} {how}.")


# ── Commands ────────────────────────────────────────────────────────────────

def cmd_status(engine: TimerEngine, args: argparse.Namespace) -> int:
    print_view(engine.view())
    counters = engine.counters
    if counters.focus_period_id is not None:
        done = " (done!)" if counters.focus_period_complete else ""
        print(f"Focus period: {counters.current_focus_period_session_count}"
              f"/{counters.target_rounds}{done}")
    return 0


def cmd_start(engine: TimerEngine, args: argparse.Namespace) -> int:
    session_type = SessionType(args.type) if args.type else engine.next_session_type()
    record = engine.start(
        session_type,
        label=args.label,
        tags=args.tag,
        icon=args.icon,
        energy_level=args.energy,
        mood_state=MoodState(args.mood) if args.mood else None,
    )
    if record is None:
        print("A session is already in progress.")
        return 1
    print_view(engine.view())
    return 0


def cmd_pause(engine: TimerEngine, args: argparse.Namespace) -> int:
    if not engine.pause():
        print("No running session to pause.")
        return 1
    print_view(engine.view())
    return 0


def cmd_resume(engine: TimerEngine, args: argparse.Namespace) -> int:
    if not engine.resume():
        print("No paused session to resume.")
        return 1
    print_view(engine.view())
    return 0


def cmd_stop(engine: TimerEngine, args: argparse.Namespace) -> int:
    print_closure(engine.stop())
    return 0


def cmd_complete(engine: TimerEngine, args: argparse.Namespace) -> int:
    print_closure(engine.complete())
    return 0


def cmd_skip(engine: TimerEngine, args: argparse.Namespace) -> int:
    print_closure(engine.skip())
    return 0


def cmd_reset(engine: TimerEngine, args: argparse.Namespace) -> int:
    if not engine.reset():
        print("A session is in progress; stop or skip it instead.")
        return 1
    print("Timer reset.")
    return 0


def cmd_rename(engine: TimerEngine, args: argparse.Namespace) -> int:
    changed = engine.rename_current(args.label)
    if args.icon is not None:
        changed = engine.set_current_icon(args.icon) or changed
    for tag in args.add_tag or []:
        changed = engine.add_tag_to_current(tag) or changed
    for tag in args.remove_tag or []:
        changed = engine.remove_tag_from_current(tag) or changed
    if not changed:
        print("No current session.")
        return 1
    print_view(engine.view())
    return 0


def cmd_history(engine: TimerEngine, args: argparse.Namespace) -> int:
    sessions = engine.ledger.history(limit=args.limit)
    if not sessions:
        print("No sessions yet.")
        return 0
    for s in sessions:
        print(f"{s.id}  {s.start_time:%Y-%m-%d %H:%M}  {s.type.label:<11}  "
              f"{s.outcome.value:<9}  {_mmss(int(s.elapsed_seconds()))}  "
              f"{s.task_label or ''}")
    return 0


def cmd_stats(engine: TimerEngine, args: argparse.Namespace) -> int:
    st = engine.aggregate_stats
    print(f"Sessions:        {st.total_sessions} ({st.completed_sessions} completed, "
          f"{st.completion_rate:.0f}%)")
    print(f"Work time:       {st.total_work_time // 60} min "
          f"(avg {st.average_work_minutes:.1f} min)")
    print(f"Break time:      {st.total_break_time // 60} min")
    print(f"Today/week/month: {st.todays_sessions}/{st.week_sessions}/{st.month_sessions}")
    print(f"Streak:          {st.streak_count} day(s)")
    print(f"Work rounds:     {engine.counters.session_count}")
    return 0


def cmd_delete(engine: TimerEngine, args: argparse.Namespace) -> int:
    if args.all:
        engine.clear_history()
        print("History cleared.")
        return 0
    if not args.session_id:
        print("Give a session id or --all.")
        return 2
    if not engine.delete_session(args.session_id):
        print(f"No session {args.session_id}.")
        return 1
    print(f"Deleted {args.session_id}.")
    return 0


def cmd_focus_period(engine: TimerEngine, args: argparse.Namespace) -> int:
    if args.rounds == 0:
        engine.reset_focus_period()
        print("Focus period cleared.")
        return 0
    try:
        engine.start_new_focus_period(args.rounds)
    except ValueError as e:
        print(e)
        return 2
    print(f"New focus period: {args.rounds} work round(s).")
    return 0


def cmd_config(engine: TimerEngine, args: argparse.Namespace) -> int:
    if args.action == "preset" and args.key is None:
        for name, preset in PRESETS.items():
            print(f"{name:<15} {preset.label}: {preset.description}")
        return 0
    try:
        if args.action == "set":
            engine.update_config(**{args.key: args.value})
        elif args.action == "preset":
            engine.apply_preset(args.key)
    except ValueError as e:
        print(e)
        return 2
    for key, value in engine.config.to_dict().items():
        print(f"{key:<28} {value}")
    return 0


def wait_for_auto_start(app: QCoreApplication, engine: TimerEngine) -> None:
    """Keep a one-shot process alive until an armed auto-start has fired."""
    if not engine.planner.pending:
        return
    logger.debug("Waiting %.1fs for the auto-start.", AUTO_START_DELAY)
    QTimer.singleShot(int((AUTO_START_DELAY + 0.5) * 1000), app.quit)
    app.exec()
    print_view(engine.view())


def cmd_watch(engine: TimerEngine, args: argparse.Namespace) -> int:
    app = QCoreApplication.instance()
    # let Ctrl+C end the event loop
    signal.signal(signal.SIGINT, signal.SIG_DFL)

    watcher = EngineWatcher(engine, args.interval)
    watcher.start()
    logger.info("Watching timer (every %.1fs). Ctrl+C to quit.", args.interval)
    return app.exec()


# ── Argument parsing ────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="focuscycle", description=__doc__)
    parser.add_argument("--db", type=Path, default=None,
                        help="SQLite file (default: $FOCUSCYCLE_DB or ./focuscycle.db)")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status").set_defaults(func=cmd_status)

    p = sub.add_parser("start")
    p.add_argument("type", nargs="?", choices=[t.value for t in SessionType])
    p.add_argument("--label")
    p.add_argument("--tag", action="append")
    p.add_argument("--icon")
    p.add_argument("--energy", type=int, choices=range(1, 6))
    p.add_argument("--mood", choices=[m.value for m in MoodState])
    p.set_defaults(func=cmd_start)

    for name, func in (("pause", cmd_pause), ("resume", cmd_resume), ("stop", cmd_stop),
                       ("complete", cmd_complete), ("skip", cmd_skip), ("reset", cmd_reset)):
        sub.add_parser(name).set_defaults(func=func)

    p = sub.add_parser("rename", help="edit the current session")
    p.add_argument("label", nargs="?")
    p.add_argument("--icon")
    p.add_argument("--add-tag", action="append")
    p.add_argument("--remove-tag", action="append")
    p.set_defaults(func=cmd_rename)

    p = sub.add_parser("history")
    p.add_argument("--limit", type=int, default=None)
    p.set_defaults(func=cmd_history)

    sub.add_parser("stats").set_defaults(func=cmd_stats)

    p = sub.add_parser("delete")
    p.add_argument("session_id", nargs="?")
    p.add_argument("--all", action="store_true")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("focus-period")
    p.add_argument("rounds", type=int, help="work rounds to aim for (0 clears)")
    p.set_defaults(func=cmd_focus_period)

    p = sub.add_parser("config")
    p.add_argument("action", choices=["show", "set", "preset"], nargs="?", default="show")
    p.add_argument("key", nargs="?")
    p.add_argument("value", nargs="?")
    p.set_defaults(func=cmd_config)

    p = sub.add_parser("watch")
    p.add_argument("--interval", type=float, default=DEFAULT_SYNC_INTERVAL)
    p.set_defaults(func=cmd_watch)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "config" and args.action == "set" and (args.key is None or args.value is None):
        print("usage: config set KEY VALUE")
        return 2

    setup_logging(args.log_level)
    # QTimers (auto-start, completion display) need an application object
    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    app.setApplicationName("FocusCycle")

    try:
        db, engine = build_engine(args.db)
    except StoreIOError as e:
        logger.error("Cannot open the database: %s", e)
        return 1

    try:
        # reconcile with whatever an earlier process left behind
        engine.sync()
        code = args.func(engine, args)
        wait_for_auto_start(app, engine)
        return code
    except StoreIOError as e:
        logger.error("Storage error: %s", e)
        return 1
    finally:
        engine.scheduler.cancel_all()
        db.close()


if __name__ == "__main__":
    sys.exit(main())


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   The entry point. Sets up logging, builds the engine, syncs it with the
#   stored state and runs one command (or, for `watch`, a Qt event loop).
#
# Key points:
#   - Every invocation is a fresh process. That is the best possible test of
#     restart recovery: `start`, then `status` ten minutes later, works only
#     because the engine derives remaining time from stored timestamps.
#   - A `complete` that arms an auto-start keeps the process (and its event
#     loop) alive for the few seconds it takes to fire.
#   - sync() runs before every command, so a session that ended while no
#     process was alive is recorded before anything new starts.
#   - `watch` is the only long-lived mode; QCoreApplication (no widgets)
#     drives the QTimers for auto-start and the completed → idle delay.
#
# Interviewer-friendly talking points:
#   1. Logging to both console and file: console for the user, file for
#      debugging "my session disappeared" reports.
#   2. argparse sub-commands map 1:1 onto engine operations; the CLI holds
#      no timer logic of its own.
