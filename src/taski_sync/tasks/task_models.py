# src/taski_sync/tasks/task_models.py

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..core.errors import TaskValidationError

# Fields a caller may change through update(); id, timestamps and owner are writer-managed.
EDITABLE_FIELDS: tuple[str, ...] = ("title", "notes", "tag", "remind_at", "completed")


class TaskTag(StrEnum):
    NORMAL = "normal"
    URGENT = "urgent"

    @classmethod
    def parse(cls, raw: Any) -> TaskTag:
        if isinstance(raw, TaskTag):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise TaskValidationError(f"Unknown tag: {raw!r} (expected normal or urgent)") from None

    @classmethod
    def from_db(cls, raw: str | None) -> TaskTag:
        if not raw:
            return cls.NORMAL
        try:
            return cls(raw)
        except ValueError:
            return cls.NORMAL


@dataclass(slots=True, frozen=True)
class Task:
    id: str
    title: str
    tag: TaskTag
    completed: bool
    created_at: float
    updated_at: float
    user_id: str

    notes: str | None = None
    remind_at: float | None = None


def _clean_title(raw: Any) -> str:
    title = str(raw or "").strip()
    if not title:
        raise TaskValidationError("title is required")
    return title


def _clean_notes(raw: Any) -> str | None:
    if raw is None:
        return None
    notes = str(raw).strip()
    return notes or None


def _clean_remind_at(raw: Any) -> float | None:
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise TaskValidationError(f"remind_at must be epoch seconds, got {raw!r}") from None
    if not math.isfinite(value):
        raise TaskValidationError(f"remind_at must be a finite timestamp, got {raw!r}")
    return value


def new_task_fields(
    *,
    user_id: str,
    now_ts: float,
    title: str,
    notes: str | None = None,
    tag: TaskTag | str = TaskTag.NORMAL,
    remind_at: float | None = None,
    completed: bool = False,
) -> dict[str, Any]:
    """Validated field mapping for RemoteTaskStore.create (everything except id)."""
    return {
        "title": _clean_title(title),
        "notes": _clean_notes(notes),
        "tag": TaskTag.parse(tag),
        "remind_at": _clean_remind_at(remind_at),
        "completed": bool(completed),
        "created_at": float(now_ts),
        "updated_at": float(now_ts),
        "user_id": user_id,
    }


def normalize_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate a partial update.

    None is meaningful for the optional fields (notes, remind_at): it clears them.
    """
    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise TaskValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

    out: dict[str, Any] = {}
    for name, value in changes.items():
        if name == "title":
            out[name] = _clean_title(value)
        elif name == "notes":
            out[name] = _clean_notes(value)
        elif name == "tag":
            out[name] = TaskTag.parse(value)
        elif name == "remind_at":
            out[name] = _clean_remind_at(value)
        elif name == "completed":
            out[name] = bool(value)
    return out


def sort_newest_first(tasks: Iterable[Task]) -> list[Task]:
    # Stable: equal created_at keeps the incoming order.
    return sorted(tasks, key=lambda t: t.created_at, reverse=True)


def task_to_document(task: Task) -> dict[str, Any]:
    """Remote document shape; optional fields are omitted when unset."""
    doc: dict[str, Any] = {
        "title": task.title,
        "tag": task.tag.value,
        "completed": task.completed,
        "createdAt": task.created_at,
        "updatedAt": task.updated_at,
        "userId": task.user_id,
    }
    if task.notes is not None:
        doc["notes"] = task.notes
    if task.remind_at is not None:
        doc["remindAt"] = task.remind_at
    return doc


def task_from_document(doc_id: str, data: Mapping[str, Any]) -> Task:
    remind_at = data.get("remindAt")
    return Task(
        id=str(doc_id),
        title=str(data.get("title") or ""),
        notes=data.get("notes") or None,
        tag=TaskTag.from_db(data.get("tag")),
        remind_at=float(remind_at) if remind_at is not None else None,
        completed=bool(data.get("completed", False)),
        created_at=float(data.get("createdAt") or 0.0),
        updated_at=float(data.get("updatedAt") or 0.0),
        user_id=str(data.get("userId") or ""),
    )


# Task attribute -> remote document key.
DOCUMENT_KEYS: dict[str, str] = {
    "title": "title",
    "notes": "notes",
    "tag": "tag",
    "remind_at": "remindAt",
    "completed": "completed",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "user_id": "userId",
}


def fields_to_document(fields: Mapping[str, Any]) -> dict[str, Any]:
    """
    Translate a field mapping (create/update payload) into document keys.

    Optional fields set to None map to None here; the store decides whether
    that means "absent" (it does for notes and remindAt).
    """
    doc: dict[str, Any] = {}
    for name, value in fields.items():
        key = DOCUMENT_KEYS.get(name)
        if key is None:
            raise TaskValidationError(f"Unknown task field: {name}")
        doc[key] = value.value if isinstance(value, TaskTag) else value
    return doc
