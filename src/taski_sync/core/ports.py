# src/taski_sync/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The sync controller depends on Protocols instead of concrete implementations.
This keeps the remote store and the reminder mechanism swappable and makes
testing easier (tests/fakes.py provides in-memory doubles).
"""

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any, Awaitable, Protocol

if TYPE_CHECKING:
    from ..tasks.task_models import Task


class TaskSubscription(Protocol):
    """
    Live query over one user's tasks.

    Iterating yields full snapshots (list[Task], newest first). The first
    snapshot is the current result set. Iteration ends after close(); an
    unrecoverable transport failure is raised as SubscriptionError.
    """

    def __aiter__(self) -> AsyncIterator[list[Task]]: ...
    def close(self) -> None: ...


class RemoteTaskStore(Protocol):
    """
    Authoritative task collection.

    Field mappings use Task attribute names (title, notes, tag, remind_at,
    completed, created_at, updated_at, user_id). All operations fail with
    StoreError.
    """

    def subscribe(self, user_id: str) -> TaskSubscription: ...
    def create(self, fields: dict[str, Any]) -> Awaitable[Task]: ...
    def update(self, task_id: str, fields: dict[str, Any]) -> Awaitable[None]: ...
    def delete(self, task_id: str) -> Awaitable[None]: ...


class ReminderScheduler(Protocol):
    """
    At most one pending reminder per task id.

    schedule replaces any pending reminder for task.id in place;
    cancel is a no-op when nothing is pending.
    """

    def schedule_task_notification(self, task: Task) -> None: ...
    def cancel_task_notification(self, task_id: str) -> None: ...


class Notifier(Protocol):
    """Delivery side of the local reminder loop (console, desktop, push...)."""

    def notify(self, *, task_id: str, title: str, body: str) -> Awaitable[None]: ...
