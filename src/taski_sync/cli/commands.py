# src/taski_sync/cli/commands.py

from __future__ import annotations

import json
import logging
import re
from collections.abc import Awaitable, Callable
from datetime import date, datetime, timedelta

from ..core.errors import TaskValidationError
from ..core.state import AppState
from ..tasks.task_api import filter_tasks, reminder_for_date, search_tasks
from ..tasks.task_models import Task, TaskTag, task_to_document

CommandHandler = Callable[[AppState, list[str]], Awaitable[str]]

logger = logging.getLogger(__name__)

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_EDIT_KEY_RE = re.compile(r"\b(title|notes|tag|remind)=")
# "#urgent" / "#normal" set the tag; any other "#word" stays in the title.
_TAG_WORDS = frozenset(t.value for t in TaskTag)


class CommandRegistry:
    """Simple slash-command registry used by the console connector (/help, /add, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(self, state: AppState, line: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            return await handler(state, args)
        except TaskValidationError as e:
            return f"Invalid input: {e}"

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- parsing / formatting helpers ----


def parse_when(raw: str, *, default_hour: int = 9, now: datetime | None = None) -> float | None:
    """
    Reminder time from console input.

    - "none"              -> None (clear)
    - "HH:MM"             -> today at that time, tomorrow if already past
    - "YYYY-MM-DD"        -> that day at default_hour:00
    - "YYYY-MM-DDTHH:MM"  -> exact local time
    """
    text = raw.strip()
    if text.lower() == "none":
        return None

    now = now or datetime.now()

    m = _TIME_RE.match(text)
    if m:
        hour, minute = int(m.group(1)), int(m.group(2))
        if hour > 23 or minute > 59:
            raise TaskValidationError(f"Bad time: {raw}")
        at = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if at <= now:
            at += timedelta(days=1)
        return at.astimezone().timestamp()

    try:
        if "T" in text:
            return datetime.fromisoformat(text).astimezone().timestamp()
        return reminder_for_date(date.fromisoformat(text), default_hour)
    except ValueError:
        raise TaskValidationError(f"Bad reminder time: {raw} (use HH:MM, YYYY-MM-DD or YYYY-MM-DDTHH:MM)") from None


def _fmt_ts(ts: float) -> str:
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M")


def format_task(position: int, task: Task) -> str:
    mark = "x" if task.completed else " "
    line = f"{position}. [{mark}] {task.title}"
    if task.tag == TaskTag.URGENT:
        line += " (urgent)"
    if task.remind_at is not None:
        line += f" @ {_fmt_ts(task.remind_at)}"
    line += f"  id={task.id[:8]}"
    if task.notes:
        line += f"\n     {task.notes}"
    return line


def resolve_task(state: AppState, ref: str) -> Task | None:
    """A 1-based position in the current list, or a unique id prefix."""
    items = state.controller.items
    if ref.isdigit():
        idx = int(ref) - 1
        return items[idx] if 0 <= idx < len(items) else None

    matches = [t for t in items if t.id.startswith(ref)]
    return matches[0] if len(matches) == 1 else None


def _default_hour(state: AppState) -> int:
    return int(getattr(state.settings, "default_reminder_hour", 9))


def _error_suffix(state: AppState) -> str:
    err = state.controller.last_error
    return f" ({err})" if err else ""


def _render(state: AppState, tasks: list[Task]) -> str:
    positions = {t.id: i for i, t in enumerate(state.controller.items, start=1)}
    return "\n".join(format_task(positions.get(t.id, 0), t) for t in tasks)


# ---- handlers ----


async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_status(state: AppState, args: list[str]) -> str:
    ctl = state.controller
    view = ctl.state
    pending = state.reminders.pending()
    next_line = f"{_fmt_ts(pending[0].fire_at)} ({pending[0].body.splitlines()[0]})" if pending else "none"
    return (
        "Status:\n"
        f"  User: {ctl.user_id or '(signed out)'}\n"
        f"  Tasks: {len(view.items)}{' (loading...)' if view.is_loading else ''}\n"
        f"  Pending reminders: {len(pending)}, next: {next_line}\n"
        f"  Last error: {view.last_error or 'none'}"
    )


async def cmd_list(state: AppState, args: list[str]) -> str:
    """
    /list        -> all tasks
    /list open   -> not completed
    /list done   -> completed
    """
    status = args[0].lower() if args else None
    tasks = filter_tasks(state.controller.items, status)
    if not tasks:
        return "No tasks." if state.controller.user_id else "Signed out. Use /login <user>."
    return _render(state, tasks)


async def cmd_add(state: AppState, args: list[str]) -> str:
    """
    /add Pay rent #urgent @2026-11-01 -- transfer from savings
    """
    if not args:
        return "Usage: /add <title> [#urgent] [@when] [-- notes]"

    notes: str | None = None
    if "--" in args:
        cut = args.index("--")
        notes = " ".join(args[cut + 1 :]) or None
        args = args[:cut]

    tag = TaskTag.NORMAL
    remind_at: float | None = None
    words: list[str] = []
    for tok in args:
        if tok.startswith("#") and tok[1:].lower() in _TAG_WORDS:
            tag = TaskTag.parse(tok[1:])
        elif tok.startswith("@") and len(tok) > 1:
            remind_at = parse_when(tok[1:], default_hour=_default_hour(state))
        else:
            words.append(tok)

    task = await state.controller.create(" ".join(words), notes=notes, tag=tag, remind_at=remind_at)
    if task is None:
        return f"Task was not created{_error_suffix(state)}."
    return f"Added: {task.title} id={task.id[:8]}"


async def cmd_done(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /done <n|id>"
    task = resolve_task(state, args[0])
    if task is None:
        return f"No task matches {args[0]!r}."
    updated = await state.controller.toggle_complete(task.id)
    if updated is None:
        return f"Task was not updated{_error_suffix(state)}."
    return f"{'Completed' if updated.completed else 'Reopened'}: {updated.title}"


async def cmd_edit(state: AppState, args: list[str]) -> str:
    """
    /edit <n|id> title=New title notes=... tag=urgent remind=18:30|none
    """
    if len(args) < 2:
        return "Usage: /edit <n|id> title=... notes=... tag=normal|urgent remind=<when>|none"
    task = resolve_task(state, args[0])
    if task is None:
        return f"No task matches {args[0]!r}."

    rest = " ".join(args[1:])
    found = list(_EDIT_KEY_RE.finditer(rest))
    if not found:
        return "Nothing to change. Keys: title, notes, tag, remind."

    changes: dict[str, object] = {}
    for i, m in enumerate(found):
        end = found[i + 1].start() if i + 1 < len(found) else len(rest)
        value = rest[m.end() : end].strip()
        key = m.group(1)
        if key == "remind":
            changes["remind_at"] = parse_when(value, default_hour=_default_hour(state))
        elif key == "notes":
            changes["notes"] = value or None
        else:
            changes[key] = value

    updated = await state.controller.update(task.id, **changes)
    if updated is None:
        return f"Task was not updated{_error_suffix(state)}."
    return f"Updated: {updated.title}"


async def cmd_rm(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /rm <n|id> [<n|id> ...]"
    ids: list[str] = []
    missing: list[str] = []
    for ref in args:
        task = resolve_task(state, ref)
        if task is None:
            missing.append(ref)
        elif task.id not in ids:
            ids.append(task.id)

    deleted = await state.controller.delete_many(ids)
    reply = f"Deleted {deleted} task(s){_error_suffix(state) if deleted < len(ids) else ''}."
    if missing:
        reply += f" Not found: {', '.join(missing)}."
    return reply


async def cmd_search(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /search <text>"
    tasks = search_tasks(state.controller.items, " ".join(args))
    if not tasks:
        return "No matching tasks."
    return _render(state, tasks)


async def cmd_login(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /login <user_id>"
    await state.controller.set_user(args[0])
    return f"Signed in as {args[0]}{_error_suffix(state)}."


async def cmd_logout(state: AppState, args: list[str]) -> str:
    if state.controller.user_id is None:
        return "Already signed out."
    await state.controller.sign_out()
    return "Signed out."


async def cmd_export(state: AppState, args: list[str]) -> str:
    docs = {t.id: task_to_document(t) for t in state.controller.items}
    return json.dumps(docs, ensure_ascii=False, indent=2)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show user, task count, reminders and last error.")
registry.register("list", cmd_list, help_text="List tasks: /list [open|done].", aliases=["ls"])
registry.register("add", cmd_add, help_text="Add a task: /add <title> [#urgent] [@when] [-- notes].")
registry.register("done", cmd_done, help_text="Toggle completion: /done <n|id>.", aliases=["toggle"])
registry.register("edit", cmd_edit, help_text="Edit fields: /edit <n|id> title=... remind=...")
registry.register("rm", cmd_rm, help_text="Delete tasks: /rm <n|id> [...].", aliases=["del"])
registry.register("search", cmd_search, help_text="Search titles and notes: /search <text>.")
registry.register("login", cmd_login, help_text="Switch user: /login <user_id>.")
registry.register("logout", cmd_logout, help_text="Sign out (keeps pending reminders).")
registry.register("export", cmd_export, help_text="Print tasks as JSON documents.")
