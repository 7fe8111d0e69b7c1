"""Tests for the QTimer-backed scheduler (needs a QCoreApplication)."""

import pytest

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from PySide6.QtCore import QCoreApplication, QEventLoop, QTimer

from focuscycle.services.scheduler import QtScheduler


@pytest.fixture(scope="module")
def qapp():
    return QCoreApplication.instance() or QCoreApplication([])


def run_loop(ms: int) -> None:
    loop = QEventLoop()
    QTimer.singleShot(ms, loop.quit)
    loop.exec()


class TestQtScheduler:
    def test_callback_fires_once(self, qapp):
        scheduler = QtScheduler()
        fired = []
        call = scheduler.call_later(0.01, lambda: fired.append(1))
        assert call.active
        assert scheduler.pending_count == 1
        run_loop(100)
        assert fired == [1]
        assert not call.active
        assert scheduler.pending_count == 0

    def test_cancel(self, qapp):
        scheduler = QtScheduler()
        fired = []
        call = scheduler.call_later(0.01, lambda: fired.append(1))
        call.cancel()
        assert not call.active
        run_loop(50)
        assert fired == []

    def test_failing_callback_is_contained(self, qapp):
        scheduler = QtScheduler()
        fired = []

        def boom():
            raise RuntimeError("broken callback")

        scheduler.call_later(0.01, boom)
        scheduler.call_later(0.02, lambda: fired.append(1))
        run_loop(100)
        assert fired == [1]

    def test_cancel_all(self, qapp):
        scheduler = QtScheduler()
        fired = []
        for _ in range(3):
            scheduler.call_later(0.01, lambda: fired.append(1))
        scheduler.cancel_all()
        assert scheduler.pending_count == 0
        run_loop(50)
        assert fired == []
