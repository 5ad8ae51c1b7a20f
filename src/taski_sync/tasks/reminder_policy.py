# src/taski_sync/tasks/reminder_policy.py

from __future__ import annotations

"""
Reminder scheduling policy.

Maps one task transition (old state, new state) to exactly one reminder action.
The decision is pure; apply_reminder_action() is the only place that touches
the ReminderScheduler port.

Rules (first match wins):
1. new is None (task removed)        -> cancel(old.id)
2. new.remind_at is None             -> cancel(new.id)
3. new.completed                     -> cancel(new.id)
4. otherwise                         -> schedule(new)

schedule is re-issued on every qualifying transition, even when remind_at did
not change. The scheduler replaces the pending reminder in place.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from ..core.ports import ReminderScheduler
from .task_models import Task

logger = logging.getLogger(__name__)


class ReminderActionKind(str, Enum):
    SCHEDULE = "schedule"
    CANCEL = "cancel"


@dataclass(slots=True, frozen=True)
class ReminderAction:
    kind: ReminderActionKind
    task_id: str
    task: Task | None = None  # set for SCHEDULE only

    @classmethod
    def cancel(cls, task_id: str) -> ReminderAction:
        return cls(kind=ReminderActionKind.CANCEL, task_id=task_id)

    @classmethod
    def schedule(cls, task: Task) -> ReminderAction:
        return cls(kind=ReminderActionKind.SCHEDULE, task_id=task.id, task=task)


def decide_reminder(old: Task | None, new: Task | None) -> ReminderAction:
    if new is None:
        if old is None:
            raise ValueError("decide_reminder needs at least one of old/new")
        return ReminderAction.cancel(old.id)

    if new.remind_at is None:
        return ReminderAction.cancel(new.id)

    if new.completed:
        return ReminderAction.cancel(new.id)

    return ReminderAction.schedule(new)


def apply_reminder_action(scheduler: ReminderScheduler, action: ReminderAction) -> None:
    """
    Forward an action to the scheduler.

    Scheduling is fire-and-forget: a failing scheduler is logged and never
    propagates into reconciliation or mutation handlers.
    """
    try:
        if action.kind == ReminderActionKind.SCHEDULE and action.task is not None:
            scheduler.schedule_task_notification(action.task)
        else:
            scheduler.cancel_task_notification(action.task_id)
    except Exception:
        logger.exception("Reminder %s failed task_id=%s", action.kind.value, action.task_id)
        return

    logger.debug("Reminder %s task_id=%s", action.kind.value, action.task_id)
