# src/taski_sync/reminders/local_scheduler.py

from __future__ import annotations

"""
In-process reminder scheduler.

LocalReminderScheduler is the ReminderScheduler port for a single process:
- keeps at most one pending reminder per task id (schedule replaces in place),
- hands due reminders to run_reminder_loop(), which delivers them through an
  injected Notifier port.

Delivery formatting (where/how to show it) belongs to the notifier, not here.
"""

import asyncio
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from ..core.ports import Notifier
from ..tasks.task_models import Task, TaskTag

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class PendingReminder:
    task_id: str
    fire_at: float
    title: str
    body: str


def build_reminder(task: Task) -> PendingReminder | None:
    """
    Convert a task into a pending reminder.

    Returns None when the task has nothing to remind about.
    """
    if task.remind_at is None or task.completed:
        return None

    title = "Urgent task reminder" if task.tag == TaskTag.URGENT else "Task reminder"
    body = task.title
    if task.notes:
        body = f"{task.title}\n{task.notes}"

    return PendingReminder(task_id=task.id, fire_at=float(task.remind_at), title=title, body=body)


class LocalReminderScheduler:
    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._pending: dict[str, PendingReminder] = {}

    def schedule_task_notification(self, task: Task) -> None:
        reminder = build_reminder(task)
        if reminder is None or not math.isfinite(reminder.fire_at) or reminder.fire_at <= self._clock():
            # Nothing to fire in the future: an older pending reminder would be stale.
            self._pending.pop(task.id, None)
            logger.debug("Reminder not kept task_id=%s remind_at=%s", task.id, task.remind_at)
            return

        replaced = task.id in self._pending
        self._pending[task.id] = reminder
        logger.debug("Reminder %s task_id=%s fire_at=%s", "replaced" if replaced else "scheduled", task.id, reminder.fire_at)

    def cancel_task_notification(self, task_id: str) -> None:
        if self._pending.pop(task_id, None) is not None:
            logger.debug("Reminder cancelled task_id=%s", task_id)

    def get(self, task_id: str) -> PendingReminder | None:
        return self._pending.get(task_id)

    def pending(self) -> list[PendingReminder]:
        return sorted(self._pending.values(), key=lambda r: (r.fire_at, r.task_id))

    def pop_due(self, now_ts: float) -> list[PendingReminder]:
        due = [r for r in self.pending() if r.fire_at <= now_ts]
        for r in due:
            del self._pending[r.task_id]
        return due


async def run_reminder_loop(
        scheduler: LocalReminderScheduler,
        notifier: Notifier,
        *,
        interval_seconds: float = 1.0,
        clock: Callable[[], float] = time.time,
) -> None:
    """
    Simple polling dispatcher.

    Every interval_seconds:
    - pop reminders whose fire_at <= now
    - deliver each via notifier.notify(...)
      A failed delivery is logged and dropped: the reminder has fired.

    To stop the loop, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))

    while True:
        for reminder in scheduler.pop_due(clock()):
            try:
                await notifier.notify(task_id=reminder.task_id, title=reminder.title, body=reminder.body)
                logger.info("Reminder delivered task_id=%s", reminder.task_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Reminder delivery failed task_id=%s", reminder.task_id)

        await asyncio.sleep(sleep_s)
