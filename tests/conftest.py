"""Shared fixtures: in-memory repository, manual clock and scheduler."""

import sqlite3
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from focuscycle.data.database import SCHEMA_SQL
from focuscycle.data.errors import StoreIOError
from focuscycle.data.repository import Repository
from focuscycle.services.continuation import ContinuationPlanner
from focuscycle.services.recovery_store import RecoveryStore
from focuscycle.services.session_ledger import SessionLedger
from focuscycle.services.timer_engine import TimerEngine

T0 = datetime(2024, 3, 4, 9, 0, 0)  # a Monday


class ManualClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ManualCall:
    def __init__(self, due: datetime, callback) -> None:
        self.due = due
        self.callback = callback
        self.active = True

    def cancel(self) -> None:
        self.active = False


class ManualScheduler:
    """call_later() against a ManualClock; advance() fires what is due."""

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self.calls = []

    def call_later(self, delay_seconds, callback):
        call = ManualCall(self.clock.now + timedelta(seconds=delay_seconds), callback)
        self.calls.append(call)
        return call

    @property
    def pending(self):
        return [c for c in self.calls if c.active]

    def advance(self, seconds: float) -> None:
        target = self.clock.now + timedelta(seconds=seconds)
        while True:
            due = [c for c in self.pending if c.due <= target]
            if not due:
                break
            call = min(due, key=lambda c: c.due)
            self.clock.now = max(self.clock.now, call.due)
            call.active = False
            call.callback()
        self.clock.now = target


class FlakyBackend:
    """Byte store that can be told to fail reads and/or writes."""

    def __init__(self, repo: Repository) -> None:
        self.repo = repo
        self.fail_reads = False
        self.fail_writes = False

    def get(self, key):
        if self.fail_reads:
            raise StoreIOError("disk unplugged")
        return self.repo.get(key)

    def set(self, key, value):
        if self.fail_writes:
            raise StoreIOError("disk full")
        self.repo.set(key, value)

    def delete(self, key):
        if self.fail_writes:
            raise StoreIOError("disk full")
        self.repo.delete(key)


def make_repo() -> Repository:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA_SQL)
    conn.commit()
    return Repository(conn)


@pytest.fixture
def repo():
    return make_repo()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def backend(repo):
    return FlakyBackend(repo)


@pytest.fixture
def make_engine(repo, backend, clock, scheduler):
    """Factory: a fresh engine (i.e. a fresh "process") over the same storage."""

    def factory(**kwargs):
        return TimerEngine(
            repo=repo,
            store=RecoveryStore(backend),
            ledger=SessionLedger(repo, clock=clock),
            planner=ContinuationPlanner(scheduler),
            scheduler=scheduler,
            clock=clock,
            **kwargs,
        )

    return factory


@pytest.fixture
def engine(make_engine):
    return make_engine()
