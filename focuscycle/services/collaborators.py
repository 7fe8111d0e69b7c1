"""
Narrow contracts for the things the engine talks to but does not own:
usage tracking, rewards / hyperfocus, notifications.

Every call into these is best-effort (see TimerEngine._best_effort).
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from focuscycle.data.models import SessionRecord, SessionType
from focuscycle.services.session_ledger import MIN_SESSION_SECONDS

logger = logging.getLogger(__name__)

UsageSummary = Mapping[str, Any]


class UsageTracker(Protocol):
    def start_tracking(self, interval_seconds: int) -> None: ...

    def stop_tracking(self) -> UsageSummary: ...

    def is_tracking(self) -> bool: ...


class RewardSink(Protocol):
    def award_points(self, amount: int, reason: str) -> None: ...

    def check_hyperfocus(self) -> None: ...


class Notifier(Protocol):
    def notify_start(self, session_type: SessionType) -> None: ...

    def notify_complete(self, session_type: SessionType) -> None: ...

    def notify_too_short(self, record: SessionRecord, elapsed_seconds: float) -> None: ...


class LoggingNotifier:
    """Default notifier: user-facing notices go to the log (and console)."""

    def notify_start(self, session_type: SessionType) -> None:
        logger.info("%s started.", session_type.label)

    def notify_complete(self, session_type: SessionType) -> None:
        if session_type is SessionType.WORK:
            logger.info("Work session complete. Time for a break!")
        else:
            logger.info("%s over. Ready to focus again?", session_type.label)

    def notify_too_short(self, record: SessionRecord, elapsed_seconds: float) -> None:
        logger.warning(
            "Session too short: ended after %ds and won't be saved to history "
            "(minimum: %ds).",
            int(elapsed_seconds), MIN_SESSION_SECONDS,
        )


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Declares the three outside services as typing.Protocols. The engine is
#   handed objects that "look like" these; nothing has to inherit from them.
#
# Key pieces:
#   - UsageTracker: foreground-app poller. Only Work sessions get a usage
#     summary attached, at closure.
#   - RewardSink: gamification. The engine only says "award N points" and
#     "check for hyperfocus": the bookkeeping lives elsewhere.
#   - Notifier: toasts / sounds. LoggingNotifier is the headless default.
#
# Interviewer-friendly talking points:
#   1. Dependency injection keeps the engine testable: tests pass
#      MagicMock() objects and assert on the calls.
#   2. Protocols document the contract without forcing an inheritance tree.
