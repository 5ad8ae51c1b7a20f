# src/taski_sync/tasks/task_api.py

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime

from .task_models import Task


def reminder_for_date(day: date, hour: int = 9) -> float:
    """
    Reminder time for a day picked without a time of day.

    Uses local time, hour:00 (9 AM by default).
    """
    hour = min(23, max(0, int(hour)))
    return datetime(day.year, day.month, day.day, hour, 0, 0).astimezone().timestamp()


def search_tasks(tasks: Iterable[Task], query: str) -> list[Task]:
    """Case-insensitive substring match on title and notes, order preserved."""
    needle = (query or "").strip().casefold()
    if not needle:
        return list(tasks)
    return [
        t
        for t in tasks
        if needle in t.title.casefold() or (t.notes is not None and needle in t.notes.casefold())
    ]


def filter_tasks(tasks: Iterable[Task], status: str | None = None) -> list[Task]:
    """status: "open", "done", or anything else for all."""
    if status == "open":
        return [t for t in tasks if not t.completed]
    if status == "done":
        return [t for t in tasks if t.completed]
    return list(tasks)
