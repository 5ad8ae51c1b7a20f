# src/taski_sync/tasks/sqlite_store.py

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sqlite3
import uuid
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from ..core.errors import StoreError, SubscriptionError
from .task_models import Task, fields_to_document, task_from_document

logger = logging.getLogger(__name__)

# Document keys that disappear from the stored document when set to None.
_OPTIONAL_KEYS = frozenset({"notes", "remindAt"})

_CLOSED = object()


class SqliteSubscription:
    """
    Live query handle returned by SqliteTaskStore.subscribe().

    Snapshots are queued by the store after each write; the consumer
    iterates them in order. close() ends iteration.
    """

    def __init__(self, store: SqliteTaskStore, user_id: str) -> None:
        self.user_id = user_id
        self._store = store
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, snapshot: list[Task]) -> None:
        if not self._closed:
            self._queue.put_nowait(snapshot)

    def fail(self, exc: SubscriptionError) -> None:
        if self._closed:
            return
        self._queue.put_nowait(exc)
        self._closed = True
        self._store._unsubscribe(self)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        self._store._unsubscribe(self)

    def __aiter__(self) -> AsyncIterator[list[Task]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[list[Task]]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, SubscriptionError):
                raise item
            yield item


class SqliteTaskStore:
    """
    SQLite task store with live subscriptions.

    Each task is one JSON document (remote document shape) plus two
    denormalized columns used by the live query: user_id and created_at.

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    - subscriptions are plain asyncio queues, so writes must happen on the loop
      that consumes them
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._subscriptions: list[SqliteSubscription] = []
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except StoreError:
            total = -1
        logger.info("SqliteTaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Close every open subscription (connections are per call)."""
        for sub in list(self._subscriptions):
            sub.close()

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        try:
            conn = self._get_conn()
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open task database {self._db_path}: {exc}") from exc
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    doc TEXT NOT NULL DEFAULT '{}'
                )
                """
            )

            # Migrations (safe): add missing columns.
            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("SqliteTaskStore migration: added column %s", name)

            add_col("user_id", "TEXT NOT NULL DEFAULT ''")
            add_col("created_at", "REAL NOT NULL DEFAULT 0")
            add_col("doc", "TEXT NOT NULL DEFAULT '{}'")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_user_created ON tasks(user_id, created_at)")
            conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"Task database schema setup failed: {exc}") from exc
        finally:
            conn.close()

    @staticmethod
    def _doc_to_str(doc: dict[str, Any]) -> str:
        return json.dumps(doc, ensure_ascii=False)

    @staticmethod
    def _str_to_doc(s: str | None) -> dict[str, Any]:
        if not s:
            return {}
        try:
            val = json.loads(s)
            return val if isinstance(val, dict) else {}
        except ValueError:
            logger.warning("Corrupt task document ignored")
            return {}

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        return task_from_document(row["id"], self._str_to_doc(row["doc"]))

    @staticmethod
    def _merge(doc: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
        merged = dict(doc)
        for key, value in changes.items():
            if value is None and key in _OPTIONAL_KEYS:
                merged.pop(key, None)
            else:
                merged[key] = value
        return merged

    # ---- queries ----

    def count_tasks(self) -> int:
        try:
            conn = self._get_conn()
            try:
                (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
                return int(n)
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StoreError(f"count failed: {exc}") from exc

    def query_user_tasks(self, user_id: str) -> list[Task]:
        """The live query: one user's tasks, newest first."""
        try:
            conn = self._get_conn()
            try:
                cur = conn.execute(
                    """
                    SELECT id, doc
                    FROM tasks
                    WHERE user_id = ?
                    ORDER BY created_at DESC
                    """,
                    (user_id,),
                )
                return [self._row_to_task(r) for r in cur.fetchall()]
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StoreError(f"query failed: {exc}") from exc

    def _owner_of(self, conn: sqlite3.Connection, task_id: str) -> tuple[str, dict[str, Any]] | None:
        row = conn.execute("SELECT user_id, doc FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row is None:
            return None
        return str(row["user_id"]), self._str_to_doc(row["doc"])

    # ---- subscriptions ----

    def subscribe(self, user_id: str) -> SqliteSubscription:
        sub = SqliteSubscription(self, user_id)
        snapshot = self.query_user_tasks(user_id)
        self._subscriptions.append(sub)
        sub.push(snapshot)
        logger.debug("Subscription opened user_id=%s open=%d", user_id, len(self._subscriptions))
        return sub

    def _unsubscribe(self, sub: SqliteSubscription) -> None:
        with contextlib.suppress(ValueError):
            self._subscriptions.remove(sub)

    def _publish(self, user_id: str) -> None:
        targets = [s for s in self._subscriptions if s.user_id == user_id]
        if not targets:
            return
        try:
            snapshot = self.query_user_tasks(user_id)
        except StoreError as exc:
            logger.exception("Snapshot query failed user_id=%s", user_id)
            for sub in targets:
                sub.fail(SubscriptionError(str(exc)))
            return
        for sub in targets:
            sub.push(list(snapshot))

    # ---- writes ----

    async def create(self, fields: dict[str, Any]) -> Task:
        doc = self._merge({}, fields_to_document(fields))
        user_id = str(doc.get("userId") or "")
        if not user_id:
            raise StoreError("create failed: userId is required")
        if not str(doc.get("title") or "").strip():
            raise StoreError("create failed: title is required")

        task_id = uuid.uuid4().hex
        try:
            conn = self._get_conn()
            try:
                conn.execute(
                    "INSERT INTO tasks(id, user_id, created_at, doc) VALUES (?, ?, ?, ?)",
                    (task_id, user_id, float(doc.get("createdAt") or 0.0), self._doc_to_str(doc)),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StoreError(f"create failed: {exc}") from exc

        logger.debug("Task stored id=%s user_id=%s", task_id, user_id)
        self._publish(user_id)
        return task_from_document(task_id, doc)

    async def update(self, task_id: str, fields: dict[str, Any]) -> None:
        changes = fields_to_document(fields)
        if not changes:
            return
        if "userId" in changes or "createdAt" in changes:
            raise StoreError("update failed: userId and createdAt are immutable")

        try:
            conn = self._get_conn()
            try:
                conn.execute("BEGIN IMMEDIATE")
                found = self._owner_of(conn, task_id)
                if found is None:
                    conn.rollback()
                    raise StoreError(f"update failed: no task with id {task_id}")
                user_id, doc = found
                conn.execute(
                    "UPDATE tasks SET doc = ? WHERE id = ?",
                    (self._doc_to_str(self._merge(doc, changes)), task_id),
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StoreError(f"update failed: {exc}") from exc

        logger.debug("Task updated id=%s fields=%s", task_id, sorted(changes))
        self._publish(user_id)

    async def delete(self, task_id: str) -> None:
        try:
            conn = self._get_conn()
            try:
                found = self._owner_of(conn, task_id)
                if found is None:
                    return
                conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as exc:
            raise StoreError(f"delete failed: {exc}") from exc

        logger.debug("Task deleted id=%s", task_id)
        self._publish(found[0])
