"""
Duration Policy — resizes a Work session from how the user feels.

Pure functions, no state: the same inputs always give the same duration and
reason. Anything that can't be understood (unknown mode, energy outside 1–5)
is treated as "no adjustment" rather than an error.
"""

from __future__ import annotations

import math
from typing import Dict, Optional, Tuple

from focuscycle.data.models import AdaptiveMode, MoodState, SessionType, TimerConfig

STANDARD_REASON = "Standard duration"
CLAMPED_SUFFIX = " (clamped to limits)"

# (low-energy multiplier, reason), (high-energy multiplier, reason)
_ENERGY_TABLE = {
    AdaptiveMode.ENERGY_BASED: (
        (0.6, "Shortened for low energy level"),
        (1.4, "Extended for high energy level"),
    ),
    # placeholder until a real focus-quality signal exists: keyed on energy
    AdaptiveMode.FOCUS_BASED: (
        (0.7, "Shortened based on focus patterns"),
        (1.3, "Extended based on focus patterns"),
    ),
}

_MOOD_TABLE: Dict[MoodState, Tuple[float, str]] = {
    MoodState.STRUGGLING: (0.5, "Shortened due to difficulty focusing"),
    MoodState.HYPERFOCUS: (1.8, "Extended to support hyperfocus state"),
    MoodState.MOTIVATED: (1.2, "Extended for high motivation"),
}


def adapt(
    base: int,
    energy_level: object,
    mood_state: object,
    mode: object,
    minimum: int,
    maximum: int,
) -> Tuple[int, str]:
    """Return (duration_seconds, reason) for a Work session."""
    multiplier, reason = _select_multiplier(energy_level, mood_state, mode)

    low, high = sorted((int(minimum), int(maximum)))
    adapted = int(math.floor(base * multiplier + 0.5))
    clamped = max(low, min(high, adapted))

    if clamped != adapted:
        reason += CLAMPED_SUFFIX
    return clamped, reason


def base_duration_for(session_type: SessionType, config: TimerConfig) -> int:
    """Configured (un-adapted) length of a session type, in seconds."""
    minutes = {
        SessionType.WORK: config.work_minutes,
        SessionType.SHORT_BREAK: config.short_break_minutes,
        SessionType.LONG_BREAK: config.long_break_minutes,
    }.get(SessionType(session_type), config.work_minutes)
    return int(minutes * 60)


def _select_multiplier(energy_level: object, mood_state: object, mode: object) -> Tuple[float, str]:
    mode = _as_enum(AdaptiveMode, mode)

    if mode in _ENERGY_TABLE:
        energy = _as_energy(energy_level)
        if energy is None:
            return 1.0, STANDARD_REASON
        low, high = _ENERGY_TABLE[mode]
        if energy <= 2:
            return low
        if energy >= 4:
            return high

    elif mode is AdaptiveMode.MOOD_BASED:
        mood = _as_enum(MoodState, mood_state)
        if mood in _MOOD_TABLE:
            return _MOOD_TABLE[mood]

    return 1.0, STANDARD_REASON


def _as_enum(enum_cls, value):
    try:
        return enum_cls(value)
    except (ValueError, TypeError):
        return None


def _as_energy(value: object) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        level = int(value)
    except (TypeError, ValueError):
        return None
    if level != value and not isinstance(value, str):
        return None  # 2.5 is not an energy level
    return level if 1 <= level <= 5 else None


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Turns "25 minutes, but I'm at energy 1" into "15 minutes, shortened for
#   low energy level." Only Work sessions are adapted; breaks use config.
#
# Key pieces:
#   - Two lookup tables instead of nested if/else: energy-keyed modes share
#     one shape (low / high multiplier), mood mode maps mood → multiplier.
#   - Clamp to [min, max] after rounding, and say so in the reason; users
#     deserve to know why they didn't get the full 1.8×.
#
# Data flow:
#   TimerEngine.start(WORK) → adapt(base, energy, mood, mode, min, max)
#   → SessionRecord.planned_duration + adaptation_reason
#
# Interviewer-friendly talking points:
#   1. Total function: no input raises. A timer that refuses to start because
#      a preference got corrupted is worse than a 25-minute default.
#   2. Round-half-up (floor(x + 0.5)) instead of Python's banker's rounding
#      so 12.5 minutes doesn't sometimes round down.
#   3. Being pure makes the whole policy testable with one-line asserts.
