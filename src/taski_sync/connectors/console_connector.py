# src/taski_sync/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


class ConsoleNotifier:
    """Notifier port that prints due reminders into the console."""

    async def notify(self, *, task_id: str, title: str, body: str) -> None:
        _print_ts(f"[{title}] {body}")


async def run_console_loop(state: AppState) -> None:
    """
    Read slash-commands until /exit or EOF.

    input() runs in a worker thread; command handlers run on the event loop,
    so they never overlap with the subscription pump or reminder loop.
    """
    logger.info("Console connector started (user=%s).", state.controller.user_id)
    _print_ts("[CONSOLE] Manage your tasks. Use /help for commands. Use /exit to quit.\n")

    while True:
        try:
            user_input = (await asyncio.to_thread(input, ">>> ")).strip()
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            reply = await command_registry.handle(state, user_input)
        except Exception:
            logger.exception("Command handler crashed.")
            reply = "Internal error while handling a command."

        if reply is None:
            reply = "Commands start with '/'. Use /help to list them."
        _print_ts(reply)

    logger.info("Console connector finished.")
