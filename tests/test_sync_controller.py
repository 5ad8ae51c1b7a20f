# tests/test_sync_controller.py

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from taski_sync.core.errors import StoreError, TaskValidationError
from taski_sync.tasks.sync_controller import TaskSyncController
from taski_sync.tasks.task_models import Task, TaskTag

from .conftest import NOW
from .fakes import FakeRemoteStore, RecordingReminders, settle

HOUR = 3600.0


def make_task(
    task_id: str,
    *,
    created_at: float,
    user_id: str = "u1",
    title: str | None = None,
    remind_at: float | None = None,
    completed: bool = False,
    notes: str | None = None,
) -> Task:
    return Task(
        id=task_id,
        title=title or f"task {task_id}",
        notes=notes,
        tag=TaskTag.NORMAL,
        remind_at=remind_at,
        completed=completed,
        created_at=created_at,
        updated_at=created_at,
        user_id=user_id,
    )


async def signed_in(controller: TaskSyncController, user_id: str = "u1") -> None:
    await controller.set_user(user_id)
    await settle()


# ---- snapshots / reconciliation ----


@pytest.mark.asyncio
async def test_snapshot_replaces_cache_newest_first(controller, store: FakeRemoteStore) -> None:
    store.seed(make_task("a", created_at=NOW - 30))
    store.seed(make_task("b", created_at=NOW - 10))
    store.seed(make_task("c", created_at=NOW - 20))
    store.seed(make_task("other", created_at=NOW, user_id="u2"))

    await controller.set_user("u1")
    assert controller.is_loading is True

    await settle()
    assert controller.is_loading is False
    assert [t.id for t in controller.items] == ["b", "c", "a"]
    assert controller.items == tuple(store.snapshot("u1"))

    # Remote changes from another device: the next snapshot wins wholesale.
    del store.docs["c"]
    store.seed(make_task("d", created_at=NOW - 5, title="from phone"))
    store.docs["a"] = replace(store.docs["a"], title="renamed elsewhere")
    store.emit("u1")
    await settle()

    assert controller.items == tuple(store.snapshot("u1"))
    assert [t.id for t in controller.items] == ["d", "b", "a"]
    assert controller.get_task("a").title == "renamed elsewhere"


@pytest.mark.asyncio
async def test_reconciliation_derives_reminders_for_every_task(controller, store, reminders) -> None:
    store.seed(make_task("due", created_at=NOW - 3, remind_at=NOW + HOUR))
    store.seed(make_task("done", created_at=NOW - 2, remind_at=NOW + HOUR, completed=True))
    store.seed(make_task("plain", created_at=NOW - 1))

    await signed_in(controller)

    assert reminders.pending == {"due": NOW + HOUR}
    assert reminders.count("schedule", "due") == 1
    assert reminders.count("cancel", "done") == 1
    assert reminders.count("cancel", "plain") == 1

    # A repeated snapshot re-issues schedule (replace in place, never a second reminder).
    store.emit("u1")
    await settle()
    assert reminders.count("schedule", "due") == 2
    assert reminders.pending == {"due": NOW + HOUR}


@pytest.mark.asyncio
async def test_completed_elsewhere_cancels_on_next_snapshot(controller, store, reminders) -> None:
    store.seed(make_task("t1", created_at=NOW, remind_at=NOW + HOUR))
    await signed_in(controller)
    reminders.reset()

    store.docs["t1"] = replace(store.docs["t1"], completed=True)
    store.emit("u1")
    await settle()

    assert reminders.calls == [("cancel", "t1", None)]
    assert "t1" not in reminders.pending


@pytest.mark.asyncio
async def test_vanished_task_keeps_reminder_by_default(controller, store, reminders) -> None:
    store.seed(make_task("t1", created_at=NOW, remind_at=NOW + HOUR))
    await signed_in(controller)
    reminders.reset()

    del store.docs["t1"]
    store.emit("u1")
    await settle()

    assert controller.items == ()
    assert reminders.calls == []


@pytest.mark.asyncio
async def test_vanished_task_cancelled_when_enabled(store, reminders, clock) -> None:
    controller = TaskSyncController(store, reminders, clock=clock, cancel_vanished_reminders=True)
    store.seed(make_task("t1", created_at=NOW, remind_at=NOW + HOUR))
    store.seed(make_task("t2", created_at=NOW - 1))
    await signed_in(controller)
    reminders.reset()

    del store.docs["t1"]
    store.emit("u1")
    await settle()

    assert reminders.count("cancel", "t1") == 1
    assert "t1" not in reminders.pending


@pytest.mark.asyncio
async def test_subscription_error_keeps_last_snapshot(controller, store) -> None:
    store.seed(make_task("t1", created_at=NOW))
    await signed_in(controller)

    store.fail_subscription("u1", "Missing or insufficient permissions.")
    await settle()

    state = controller.state
    assert state.last_error == "Missing or insufficient permissions."
    assert [t.id for t in state.items] == ["t1"]
    assert state.is_loading is False


@pytest.mark.asyncio
async def test_failing_scheduler_does_not_break_reconciliation(store, clock) -> None:
    class ExplodingReminders:
        def schedule_task_notification(self, task: Task) -> None:
            raise RuntimeError("notification permission revoked")

        def cancel_task_notification(self, task_id: str) -> None:
            raise RuntimeError("notification permission revoked")

    controller = TaskSyncController(store, ExplodingReminders(), clock=clock)
    store.seed(make_task("t1", created_at=NOW, remind_at=NOW + HOUR))
    store.seed(make_task("t2", created_at=NOW - 1))

    await signed_in(controller)

    assert [t.id for t in controller.items] == ["t1", "t2"]
    assert controller.last_error is None


# ---- mutations ----


@pytest.mark.asyncio
async def test_create_caches_task_and_schedules_once(controller, store, reminders, clock) -> None:
    await signed_in(controller)
    reminders.reset()

    task = await controller.create("Pay rent", tag="urgent", remind_at=NOW + HOUR)

    assert task is not None
    assert task.completed is False
    assert task.tag == TaskTag.URGENT
    assert task.user_id == "u1"
    assert task.created_at == task.updated_at == clock.now
    assert controller.get_task(task.id) == task
    assert reminders.calls == [("schedule", task.id, NOW + HOUR)]

    # The echo snapshot converges to the same content.
    store.emit("u1")
    await settle()
    assert controller.items == tuple(store.snapshot("u1"))


@pytest.mark.asyncio
async def test_create_without_reminder_cancels(controller, reminders) -> None:
    await signed_in(controller)
    task = await controller.create("Buy milk")
    assert task is not None
    assert reminders.calls == [("cancel", task.id, None)]


@pytest.mark.asyncio
async def test_created_task_is_ordered_first(controller, store, clock) -> None:
    store.seed(make_task("old", created_at=NOW - 100))
    await signed_in(controller)

    clock.advance(10)
    task = await controller.create("newest")

    assert [t.id for t in controller.items] == [task.id, "old"]


@pytest.mark.asyncio
async def test_toggle_complete_cancels_then_reschedules(controller, store, reminders) -> None:
    remind_at = NOW + HOUR
    store.seed(make_task("t1", created_at=NOW, remind_at=remind_at))
    await signed_in(controller)
    reminders.reset()

    done = await controller.toggle_complete("t1")
    assert done is not None and done.completed is True
    assert store.docs["t1"].completed is True
    assert reminders.calls == [("cancel", "t1", None)]

    reminders.reset()
    reopened = await controller.toggle_complete("t1")
    assert reopened is not None and reopened.completed is False
    assert reopened.remind_at == remind_at
    assert reminders.calls == [("schedule", "t1", remind_at)]


@pytest.mark.asyncio
async def test_toggle_unknown_id_is_noop(controller, store, reminders) -> None:
    await signed_in(controller)
    reminders.reset()

    assert await controller.toggle_complete("missing") is None
    assert store.calls == []
    assert reminders.calls == []
    assert controller.last_error is None


@pytest.mark.asyncio
async def test_update_uses_post_mutation_state(controller, store, reminders, clock) -> None:
    store.seed(make_task("t1", created_at=NOW, remind_at=NOW + HOUR))
    await signed_in(controller)
    reminders.reset()

    clock.advance(5)
    cleared = await controller.update("t1", remind_at=None)
    assert cleared is not None and cleared.remind_at is None
    assert cleared.updated_at == clock.now
    assert reminders.calls == [("cancel", "t1", None)]

    reminders.reset()
    moved = await controller.update("t1", remind_at=NOW + 2 * HOUR, title="  Call mom  ")
    assert moved is not None
    assert moved.title == "Call mom"
    assert reminders.calls == [("schedule", "t1", NOW + 2 * HOUR)]
    assert store.docs["t1"].remind_at == NOW + 2 * HOUR


@pytest.mark.asyncio
async def test_update_merges_onto_latest_snapshot(controller, store) -> None:
    store.seed(make_task("t1", created_at=NOW, title="old", notes="n"))
    await signed_in(controller)

    gate = asyncio.Event()
    store.gates["update"] = gate
    pending = asyncio.create_task(controller.update("t1", title="new"))
    await settle()

    # Another device edits notes while our write is in flight.
    store.docs["t1"] = replace(store.docs["t1"], notes="changed elsewhere")
    store.emit("u1")
    await settle()

    gate.set()
    updated = await pending

    assert updated is not None
    assert updated.title == "new"
    assert updated.notes == "changed elsewhere"


@pytest.mark.asyncio
async def test_update_for_task_not_cached_is_silent(controller, store, reminders) -> None:
    await signed_in(controller)
    # Written remotely but not yet echoed by a snapshot.
    store.seed(make_task("fresh", created_at=NOW, remind_at=NOW + HOUR))
    reminders.reset()

    assert await controller.update("fresh", title="x") is None
    assert store.docs["fresh"].title == "x"
    assert controller.last_error is None
    assert reminders.calls == []
    assert controller.items == ()


@pytest.mark.asyncio
async def test_delete_cancels_exactly_once(controller, store, reminders) -> None:
    store.seed(make_task("t1", created_at=NOW, remind_at=NOW + HOUR))
    store.seed(make_task("t2", created_at=NOW - 1))
    await signed_in(controller)
    reminders.reset()

    assert await controller.delete("t1") is True
    assert controller.get_task("t1") is None

    store.emit("u1")
    await settle()

    assert "t1" not in [t.id for t in controller.items]
    assert reminders.count("cancel", "t1") == 1
    assert reminders.count("schedule", "t1") == 0


@pytest.mark.asyncio
async def test_delete_many_counts_successes(controller, store) -> None:
    for i in range(3):
        store.seed(make_task(f"t{i}", created_at=NOW - i))
    await signed_in(controller)

    assert await controller.delete_many(["t0", "t2"]) == 2
    assert [t.id for t in controller.items] == ["t1"]


@pytest.mark.asyncio
async def test_concurrent_updates_converge_to_snapshot(controller, store) -> None:
    store.seed(make_task("t1", created_at=NOW, title="start"))
    await signed_in(controller)

    gate = asyncio.Event()
    store.gates["update"] = gate
    first = asyncio.create_task(controller.update("t1", title="A", notes="from A"))
    second = asyncio.create_task(controller.update("t1", title="B", tag="urgent"))
    await settle()

    gate.set()
    await asyncio.gather(first, second)

    store.emit("u1")
    await settle()

    assert controller.items == tuple(store.snapshot("u1"))
    assert controller.get_task("t1") == store.docs["t1"]


# ---- failures ----


@pytest.mark.asyncio
async def test_write_failure_records_error_and_leaves_cache(controller, store, reminders) -> None:
    store.seed(make_task("t1", created_at=NOW, remind_at=NOW + HOUR))
    await signed_in(controller)
    before = controller.items
    reminders.reset()

    store.failures["update"] = StoreError("permission denied")
    assert await controller.update("t1", title="x") is None
    assert controller.last_error == "update failed: permission denied"

    store.failures["update"] = StoreError("unavailable")
    assert await controller.toggle_complete("t1") is None
    assert controller.last_error == "toggle_complete failed: unavailable"

    store.failures["delete"] = StoreError("unavailable")
    assert await controller.delete("t1") is False

    store.failures["create"] = StoreError("quota exceeded")
    assert await controller.create("new", remind_at=NOW + HOUR) is None
    assert controller.last_error == "create failed: quota exceeded"

    assert controller.items == before
    assert reminders.calls == []

    controller.clear_error()
    assert controller.last_error is None


@pytest.mark.asyncio
async def test_validation_errors_raise_before_writing(controller, store) -> None:
    await signed_in(controller)

    with pytest.raises(TaskValidationError):
        await controller.create("   ")
    with pytest.raises(TaskValidationError):
        await controller.update("t1", user_id="someone-else")
    with pytest.raises(TaskValidationError):
        await controller.update("t1", tag="critical")

    assert store.calls == []


@pytest.mark.asyncio
async def test_create_without_user_is_ignored(controller, store) -> None:
    assert await controller.create("nobody home") is None
    assert store.calls == []


# ---- sessions ----


@pytest.mark.asyncio
async def test_user_switch_tears_down_before_resubscribing(controller, store, reminders) -> None:
    store.seed(make_task("mine", created_at=NOW, remind_at=NOW + HOUR))
    store.seed(make_task("theirs", created_at=NOW, user_id="u2"))
    await signed_in(controller, "u1")
    first = store.subscriptions[0]

    await controller.set_user("u2")
    assert first.closed is True
    assert len(store.open_subscriptions()) == 1
    assert controller.items == ()

    await settle()
    assert [t.id for t in controller.items] == ["theirs"]
    # No mass-cancel on sign-out.
    assert "mine" in reminders.pending


@pytest.mark.asyncio
async def test_same_user_does_not_resubscribe(controller, store) -> None:
    await signed_in(controller)
    await controller.set_user("u1")
    assert len(store.subscriptions) == 1


@pytest.mark.asyncio
async def test_resubscribe_after_subscription_error(controller, store) -> None:
    await signed_in(controller)
    store.fail_subscription("u1")
    await settle()
    assert controller.last_error == "permission denied"

    await signed_in(controller)
    assert len(store.subscriptions) == 2
    assert controller.last_error is None


@pytest.mark.asyncio
async def test_write_completing_after_sign_out_is_dropped(controller, store, reminders) -> None:
    await signed_in(controller, "u1")
    reminders.reset()

    gate = asyncio.Event()
    store.gates["create"] = gate
    late = asyncio.create_task(controller.create("late", remind_at=NOW + HOUR))
    await settle()

    await signed_in(controller, "u2")
    gate.set()
    created = await late
    await settle()

    assert created is not None  # the remote write itself went through
    assert controller.user_id == "u2"
    assert controller.get_task(created.id) is None
    assert reminders.count("schedule", created.id) == 0


@pytest.mark.asyncio
async def test_failure_after_sign_out_is_not_recorded(controller, store) -> None:
    store.seed(make_task("t1", created_at=NOW))
    await signed_in(controller)

    gate = asyncio.Event()
    store.gates["update"] = gate
    store.failures["update"] = StoreError("permission denied")
    pending = asyncio.create_task(controller.update("t1", title="x"))
    await settle()

    await controller.sign_out()
    gate.set()
    assert await pending is None
    assert controller.last_error is None


@pytest.mark.asyncio
async def test_close_stops_subscription(controller, store) -> None:
    await signed_in(controller)
    await controller.close()

    assert store.subscriptions[0].closed is True
    assert controller.user_id is None
    with pytest.raises(RuntimeError):
        await controller.set_user("u1")


@pytest.mark.asyncio
async def test_subscribe_failure_is_recorded(store, clock) -> None:
    class BrokenStore(FakeRemoteStore):
        def subscribe(self, user_id: str):
            raise StoreError("offline")

    controller = TaskSyncController(BrokenStore(), RecordingReminders(), clock=clock)
    await controller.set_user("u1")

    assert controller.last_error == "offline"
    assert controller.is_loading is False


@pytest.mark.asyncio
async def test_overlapping_user_switches_leave_one_session(controller, store) -> None:
    store.seed(make_task("a", created_at=NOW, user_id="u1"))
    store.seed(make_task("b", created_at=NOW, user_id="u2"))
    await signed_in(controller, "u0")

    await asyncio.gather(controller.set_user("u1"), controller.set_user("u2"))
    await settle()

    assert controller.user_id == "u2"
    assert [s.user_id for s in store.open_subscriptions()] == ["u2"]
    assert [t.id for t in controller.items] == ["b"]


@pytest.mark.asyncio
async def test_close_racing_set_user_leaves_nothing_open(controller, store) -> None:
    await signed_in(controller, "u0")

    results = await asyncio.gather(controller.set_user("u1"), controller.close(), return_exceptions=True)

    assert results == [None, None]
    assert store.open_subscriptions() == []
    assert controller.user_id is None


async def _late_update(controller: TaskSyncController) -> object:
    return await controller.update("t1", title="late", remind_at=NOW + 2 * HOUR)


async def _late_toggle(controller: TaskSyncController) -> object:
    return await controller.toggle_complete("t1")


async def _late_delete(controller: TaskSyncController) -> object:
    return await controller.delete("t1")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("op", "write", "expected"),
    [
        (_late_update, "update", None),
        (_late_toggle, "update", None),
        (_late_delete, "delete", False),
    ],
)
@pytest.mark.parametrize("next_user", [None, "u2"])
async def test_successful_write_after_session_change_is_not_applied(
    controller, store, reminders, op, write, expected, next_user
) -> None:
    store.seed(make_task("t1", created_at=NOW, remind_at=NOW + HOUR))
    store.seed(make_task("other", created_at=NOW, user_id="u2"))
    await signed_in(controller, "u1")

    gate = asyncio.Event()
    store.gates[write] = gate
    pending = asyncio.create_task(op(controller))
    await settle()

    await signed_in(controller, next_user)
    reminders.reset()
    before = controller.items

    gate.set()
    assert await pending == expected
    await settle()

    # The remote write happened; local state and reminders did not move.
    assert store.calls[-1][0] == write
    assert controller.items == before
    assert controller.get_task("t1") is None
    assert reminders.calls == []
    assert controller.last_error is None
