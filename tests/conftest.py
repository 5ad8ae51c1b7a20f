# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taski_sync.core.state import AppState
from taski_sync.reminders.local_scheduler import LocalReminderScheduler
from taski_sync.tasks.sync_controller import TaskSyncController

from .fakes import FakeRemoteStore, RecordingReminders

NOW = 1_760_000_000.0


class FakeClock:
    def __init__(self, start: float = NOW) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the CLI.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taski-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        user_id="u1",
        reminder_poll_seconds=0.01,
        default_reminder_hour=9,
        cancel_vanished_reminders=False,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> FakeRemoteStore:
    return FakeRemoteStore()


@pytest.fixture()
def reminders() -> RecordingReminders:
    return RecordingReminders()


@pytest.fixture()
def controller(store: FakeRemoteStore, reminders: RecordingReminders, clock: FakeClock) -> TaskSyncController:
    return TaskSyncController(store, reminders, clock=clock)


@pytest.fixture()
def state(settings: SimpleNamespace, store: FakeRemoteStore, clock: FakeClock) -> AppState:
    """
    AppState wired with the in-memory store and a real LocalReminderScheduler,
    so command tests see the reminders the console would.
    """
    local = LocalReminderScheduler(clock=clock)
    return AppState(
        settings=settings,
        store=store,
        reminders=local,
        controller=TaskSyncController(store, local, clock=clock),
    )
