"""
Error types for the persistence layer.

Only two things can go wrong when talking to storage: the store is not
reachable, or what came back from it cannot be understood. Everything above
the data layer recovers from both (see TimerEngine), so these never reach
the user as a crash.
"""

from __future__ import annotations


class StoreIOError(RuntimeError):
    """The byte store / history table could not be read or written."""


class CorruptStateError(ValueError):
    """A persisted payload is malformed or carries an unknown version."""


# ---------------------------------------------------------------------------
# Explanation (for interviews)
# ---------------------------------------------------------------------------
# What this file does:
#   Names the two storage failure modes so callers can catch exactly the one
#   they know how to recover from.
#
# Key points:
#   - StoreIOError subclasses RuntimeError: "the world is broken right now,
#     try again later." The engine keeps its in-memory state and retries.
#   - CorruptStateError subclasses ValueError: "this data is bad." Retrying
#     won't help, so the entry is discarded.
#
# Interviewer-friendly talking points:
#   1. Wrapping sqlite3.Error at the Repository boundary means services never
#      import sqlite3. Swapping the store only changes one file.
#   2. Two narrow exceptions beat a generic "StorageError" with a code field:
#      `except CorruptStateError` reads as the recovery policy itself.
