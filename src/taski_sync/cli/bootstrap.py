# src/taski_sync/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (SQLite store, local reminders, controller).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.state import AppState
from ..reminders.local_scheduler import LocalReminderScheduler
from ..tasks.sqlite_store import SqliteTaskStore
from ..tasks.sync_controller import TaskSyncController

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = SqliteTaskStore(settings.tasks_db_path)
    reminders = LocalReminderScheduler()
    controller = TaskSyncController(
        store,
        reminders,
        cancel_vanished_reminders=bool(getattr(settings, "cancel_vanished_reminders", False)),
    )
    logger.debug("AppState wired db=%s", settings.tasks_db_path)

    return AppState(
        settings=settings,
        store=store,
        reminders=reminders,
        controller=controller,
    )
