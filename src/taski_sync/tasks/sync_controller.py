# src/taski_sync/tasks/sync_controller.py

from __future__ import annotations

"""
Sync controller.

Owns, per signed-in user:
- exactly one live subscription (snapshot pump task),
- the local cache (newest first),
- the reminder bindings, derived through reminder_policy.

Mutations are write-through: the store write happens first, the cache and the
reminders are updated only after it succeeds. Snapshots replace the cache
wholesale and re-run the policy for every task they contain.

Every session gets a generation number. Completions captured under an older
generation (sign-out or user switch while a write was in flight) are dropped.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any

from ..core.errors import StoreError, SubscriptionError, WriteError
from ..core.ports import ReminderScheduler, RemoteTaskStore, TaskSubscription
from .reminder_policy import ReminderAction, apply_reminder_action, decide_reminder
from .task_models import Task, TaskTag, new_task_fields, normalize_changes, sort_newest_first

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TaskListState:
    """Read model exposed to the UI."""

    items: tuple[Task, ...]
    is_loading: bool
    last_error: str | None


class TaskSyncController:
    def __init__(
        self,
        store: RemoteTaskStore,
        reminders: ReminderScheduler,
        *,
        clock: Callable[[], float] = time.time,
        cancel_vanished_reminders: bool = False,
    ) -> None:
        self._store = store
        self._reminders = reminders
        self._clock = clock
        self._cancel_vanished = cancel_vanished_reminders

        self._items: list[Task] = []
        self._is_loading = False
        self._last_error: str | None = None

        self._user_id: str | None = None
        self._generation = 0
        self._subscription: TaskSubscription | None = None
        self._pump: asyncio.Task[None] | None = None
        self._closed = False
        # Serializes set_user/close so sessions never overlap.
        self._session_lock = asyncio.Lock()

    # ---- read state ----

    @property
    def state(self) -> TaskListState:
        return TaskListState(
            items=tuple(self._items),
            is_loading=self._is_loading,
            last_error=self._last_error,
        )

    @property
    def items(self) -> tuple[Task, ...]:
        return tuple(self._items)

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def get_task(self, task_id: str) -> Task | None:
        for task in self._items:
            if task.id == task_id:
                return task
        return None

    def clear_error(self) -> None:
        self._last_error = None

    # ---- session ----

    async def set_user(self, user_id: str | None) -> None:
        """
        Switch the signed-in user.

        The previous subscription is closed and the cache cleared before the
        new subscription is opened. Reminders are not mass-cancelled.
        Overlapping calls run one after another; the last one wins.
        """
        async with self._session_lock:
            await self._switch_user(user_id)

    async def _switch_user(self, user_id: str | None) -> None:
        if self._closed:
            raise RuntimeError("TaskSyncController is closed")

        # Same user with a live pump: nothing to do. A finished pump (terminal
        # subscription error) is replaced, which is how callers re-subscribe.
        if user_id is not None and user_id == self._user_id and self._pump is not None and not self._pump.done():
            return

        await self._teardown()
        if user_id is None:
            return

        self._generation += 1
        generation = self._generation
        self._user_id = user_id
        self._is_loading = True
        self._last_error = None

        try:
            subscription = self._store.subscribe(user_id)
        except StoreError as exc:
            self._record_error(exc if isinstance(exc, SubscriptionError) else SubscriptionError(str(exc)))
            self._is_loading = False
            return

        self._subscription = subscription
        self._pump = asyncio.create_task(
            self._run_subscription(subscription, generation),
            name=f"taski-subscription-{user_id}",
        )
        logger.info("Subscribed to tasks user_id=%s", user_id)

    async def sign_out(self) -> None:
        await self.set_user(None)

    async def close(self) -> None:
        async with self._session_lock:
            if self._closed:
                return
            await self._teardown()
            self._closed = True

    async def _teardown(self) -> None:
        # Bumping the generation invalidates in-flight write completions.
        self._generation += 1

        subscription, pump = self._subscription, self._pump
        self._subscription = None
        self._pump = None

        if subscription is not None:
            try:
                subscription.close()
            except Exception:
                logger.exception("Closing subscription failed user_id=%s", self._user_id)

        if pump is not None:
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await pump

        if self._user_id is not None:
            logger.info("Session ended user_id=%s", self._user_id)

        self._items = []
        self._user_id = None
        self._is_loading = False
        self._last_error = None

    def _is_active(self, generation: int) -> bool:
        return generation == self._generation and not self._closed

    async def _run_subscription(self, subscription: TaskSubscription, generation: int) -> None:
        try:
            async for snapshot in subscription:
                if not self._is_active(generation):
                    return
                self._reconcile(snapshot)
        except asyncio.CancelledError:
            raise
        except SubscriptionError as exc:
            if self._is_active(generation):
                self._record_error(exc)
        except Exception as exc:
            logger.exception("Subscription pump crashed user_id=%s", self._user_id)
            if self._is_active(generation):
                self._record_error(SubscriptionError(str(exc) or exc.__class__.__name__))
        finally:
            if self._is_active(generation):
                self._is_loading = False

    def _reconcile(self, snapshot: Iterable[Task]) -> None:
        previous = {task.id: task for task in self._items}
        items = sort_newest_first(snapshot)

        self._items = items
        self._is_loading = False
        logger.debug("Snapshot applied user_id=%s items=%d", self._user_id, len(items))

        for task in items:
            self._run_policy(previous.get(task.id), task)

        if self._cancel_vanished:
            current_ids = {task.id for task in items}
            for task_id, old in previous.items():
                if task_id not in current_ids:
                    self._run_policy(old, None)

    # ---- mutations ----

    async def create(
        self,
        title: str,
        *,
        notes: str | None = None,
        tag: TaskTag | str = TaskTag.NORMAL,
        remind_at: float | None = None,
        completed: bool = False,
    ) -> Task | None:
        user_id = self._user_id
        if user_id is None:
            logger.warning("create ignored: no signed-in user")
            return None

        fields = new_task_fields(
            user_id=user_id,
            now_ts=self._clock(),
            title=title,
            notes=notes,
            tag=tag,
            remind_at=remind_at,
            completed=completed,
        )

        generation = self._generation
        try:
            task = await self._store.create(fields)
        except StoreError as exc:
            if self._is_active(generation):
                self._record_error(WriteError("create", None, exc))
            return None

        if not self._is_active(generation):
            logger.debug("create completed after session change; dropped task_id=%s", task.id)
            return task

        self._upsert(task)
        self._run_policy(None, task)
        logger.debug("Task created task_id=%s remind_at=%s", task.id, task.remind_at)
        return task

    async def update(self, task_id: str, **changes: Any) -> Task | None:
        """
        Field-level update.

        The merge uses the cached task as it is after the write completed, so
        a snapshot that arrived meanwhile is not overwritten with older fields.
        """
        fields = normalize_changes(changes)
        now_ts = self._clock()

        generation = self._generation
        try:
            await self._store.update(task_id, {**fields, "updated_at": now_ts})
        except StoreError as exc:
            if self._is_active(generation):
                self._record_error(WriteError("update", task_id, exc))
            return None

        if not self._is_active(generation):
            return None

        current = self.get_task(task_id)
        if current is None:
            logger.debug("update: task_id=%s not in local cache; nothing to merge", task_id)
            return None

        updated = replace(current, **fields, updated_at=now_ts)
        self._upsert(updated)
        self._run_policy(current, updated)
        return updated

    async def toggle_complete(self, task_id: str) -> Task | None:
        current = self.get_task(task_id)
        if current is None:
            logger.debug("toggle_complete: task_id=%s not in local cache; ignored", task_id)
            return None

        completed = not current.completed
        now_ts = self._clock()

        generation = self._generation
        try:
            await self._store.update(task_id, {"completed": completed, "updated_at": now_ts})
        except StoreError as exc:
            if self._is_active(generation):
                self._record_error(WriteError("toggle_complete", task_id, exc))
            return None

        if not self._is_active(generation):
            return None

        latest = self.get_task(task_id)
        if latest is None:
            logger.debug("toggle_complete: task_id=%s vanished during write", task_id)
            return None

        # The policy sees the value we just wrote, never the pre-toggle read.
        updated = replace(latest, completed=completed, updated_at=now_ts)
        self._upsert(updated)
        self._run_policy(latest, updated)
        return updated

    async def delete(self, task_id: str) -> bool:
        generation = self._generation
        try:
            await self._store.delete(task_id)
        except StoreError as exc:
            if self._is_active(generation):
                self._record_error(WriteError("delete", task_id, exc))
            return False

        if not self._is_active(generation):
            return False

        previous = self._remove(task_id)
        if previous is not None:
            self._run_policy(previous, None)
        else:
            apply_reminder_action(self._reminders, ReminderAction.cancel(task_id))
        logger.debug("Task deleted task_id=%s", task_id)
        return True

    async def delete_many(self, task_ids: Iterable[str]) -> int:
        deleted = 0
        for task_id in list(task_ids):
            if await self.delete(task_id):
                deleted += 1
        return deleted

    # ---- cache / policy helpers ----

    def _upsert(self, task: Task) -> None:
        items = [t for t in self._items if t.id != task.id]
        items.append(task)
        self._items = sort_newest_first(items)

    def _remove(self, task_id: str) -> Task | None:
        removed = self.get_task(task_id)
        if removed is not None:
            self._items = [t for t in self._items if t.id != task_id]
        return removed

    def _run_policy(self, old: Task | None, new: Task | None) -> None:
        apply_reminder_action(self._reminders, decide_reminder(old, new))

    def _record_error(self, exc: Exception) -> None:
        self._last_error = str(exc)
        logger.warning("Task sync error user_id=%s: %s", self._user_id, exc)
