# src/taski_sync/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, signs in the configured user, then runs:
- the reminder dispatch loop (background task),
- the console REPL until /exit.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import ConsoleNotifier, run_console_loop
from ..core.state import AppState
from ..logging_setup import setup_logging
from ..reminders.local_scheduler import run_reminder_loop

logger = logging.getLogger(__name__)


async def _shutdown(state: AppState, reminder_task: asyncio.Task[None] | None) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    if reminder_task is not None:
        reminder_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reminder_task

    try:
        await state.controller.close()
    except Exception:
        logger.exception("Controller close failed.")

    try:
        store_close = getattr(state.store, "close", None)
        if store_close is not None:
            store_close()
    except Exception:
        logger.debug("Store close failed.", exc_info=True)


async def run_app(settings) -> None:
    state = create_initial_state(settings=settings)
    reminder_task: asyncio.Task[None] | None = None
    try:
        await state.controller.set_user(settings.user_id)
        reminder_task = asyncio.create_task(
            run_reminder_loop(
                state.reminders,
                ConsoleNotifier(),
                interval_seconds=settings.reminder_poll_seconds,
            ),
            name="taski-reminders",
        )
        await run_console_loop(state)
    finally:
        await _shutdown(state, reminder_task)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)

    try:
        asyncio.run(run_app(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down...")

    logger.info("Bye.")


if __name__ == "__main__":
    main()
