# src/taski_sync/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .ports import RemoteTaskStore

if TYPE_CHECKING:
    from ..reminders.local_scheduler import LocalReminderScheduler
    from ..tasks.sync_controller import TaskSyncController


@dataclass
class AppState:
    """
    Explicit application context, built once by cli.bootstrap and passed down.

    Replaces any global handle to the store: tests build their own AppState
    around fakes.
    """

    settings: object
    store: RemoteTaskStore
    reminders: LocalReminderScheduler
    controller: TaskSyncController
