# tests/test_reminder_policy.py

from __future__ import annotations

from dataclasses import replace

import pytest

from taski_sync.tasks.reminder_policy import (
    ReminderAction,
    ReminderActionKind,
    apply_reminder_action,
    decide_reminder,
)
from taski_sync.tasks.task_models import Task, TaskTag

from .fakes import RecordingReminders

BASE = Task(
    id="t1",
    title="Water plants",
    tag=TaskTag.NORMAL,
    completed=False,
    created_at=100.0,
    updated_at=100.0,
    user_id="u1",
    remind_at=5000.0,
)


def test_removed_task_cancels_old_id() -> None:
    assert decide_reminder(BASE, None) == ReminderAction.cancel("t1")


def test_both_missing_is_an_error() -> None:
    with pytest.raises(ValueError):
        decide_reminder(None, None)


def test_no_reminder_time_cancels() -> None:
    action = decide_reminder(BASE, replace(BASE, remind_at=None))
    assert action.kind == ReminderActionKind.CANCEL
    assert action.task_id == "t1"


def test_completed_cancels_even_with_reminder() -> None:
    action = decide_reminder(None, replace(BASE, completed=True))
    assert action == ReminderAction.cancel("t1")


def test_missing_reminder_wins_over_completed() -> None:
    # Rule order: remind_at check comes before completed; both give cancel for the same id.
    action = decide_reminder(None, replace(BASE, remind_at=None, completed=True))
    assert action == ReminderAction.cancel("t1")


def test_open_task_with_reminder_schedules_new_state() -> None:
    new = replace(BASE, title="Water plants (balcony)")
    action = decide_reminder(BASE, new)
    assert action.kind == ReminderActionKind.SCHEDULE
    assert action.task is new


def test_unchanged_reminder_is_still_rescheduled() -> None:
    assert decide_reminder(BASE, BASE) == ReminderAction.schedule(BASE)


def test_apply_forwards_to_scheduler() -> None:
    rec = RecordingReminders()
    apply_reminder_action(rec, ReminderAction.schedule(BASE))
    apply_reminder_action(rec, ReminderAction.cancel("t1"))
    assert rec.calls == [("schedule", "t1", 5000.0), ("cancel", "t1", None)]
    assert rec.pending == {}


def test_apply_swallows_scheduler_failures(caplog: pytest.LogCaptureFixture) -> None:
    class Broken:
        def schedule_task_notification(self, task: Task) -> None:
            raise RuntimeError("boom")

        def cancel_task_notification(self, task_id: str) -> None:
            raise RuntimeError("boom")

    apply_reminder_action(Broken(), ReminderAction.schedule(BASE))
    assert "Reminder schedule failed task_id=t1" in caplog.text
