# src/taskpulse/tasks/task_store.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..core.errors import StoreError, TaskNotFoundError
from .change_feed import ChangeKind, build_change_payload
from .task_models import ServerId, Task, TaskStatus
from .task_validation import clean_create_fields, clean_update_fields

logger = logging.getLogger(__name__)

ChangeListener = Callable[[dict[str, Any]], None]


class TaskStore:
    """
    SQLite task store: the authoritative table of tasks.

    - owns identity (uuid4 hex) and timestamps
    - validates every write with the shared field rules
    - reports each successful mutation to `on_change` as a change payload

    Thread-safety:
    - each method opens its own SQLite connection
    - on_change is called synchronously on the caller's thread
    """

    def __init__(
        self,
        db_path: str | Path = "tasks.sqlite3",
        *,
        on_change: ChangeListener | None = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._on_change = on_change
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except StoreError:
            total = -1
        logger.info("TaskStore ready db=%s total=%s", self._db_path, total)

    def set_change_listener(self, on_change: ChangeListener | None) -> None:
        self._on_change = on_change

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status_created ON tasks(status, created_at)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=ServerId(str(row["id"])),
            title=str(row["title"]),
            description=row["description"] or None,
            status=TaskStatus.parse(row["status"]),
            created_at=datetime.fromtimestamp(float(row["created_at"]), UTC),
            updated_at=datetime.fromtimestamp(float(row["updated_at"]), UTC),
        )

    def _fetch_one(self, conn: sqlite3.Connection, task_id: str) -> Task | None:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return self._row_to_task(row) if row else None

    def _emit(self, kind: ChangeKind, *, new: Task | None = None, old_id: str | None = None) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(build_change_payload(kind, new=new, old_id=old_id))
        except Exception:
            logger.exception("Change listener failed kind=%s", kind.value)

    # ---- public API ----

    def count_tasks(self) -> int:
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM tasks").fetchone()
            return int(n)
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def create_task(
        self,
        *,
        title: Any,
        description: Any = None,
        status: Any = None,
    ) -> Task:
        fields = clean_create_fields({"title": title, "description": description, "status": status})

        task_id = uuid.uuid4().hex
        now = time.time()

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO tasks(id, title, description, status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    task_id,
                    fields["title"],
                    fields["description"],
                    fields["status"].value,
                    now,
                    now,
                ),
            )
            conn.commit()
            task = self._fetch_one(conn, task_id)
        except sqlite3.Error as e:
            logger.error("create_task failed: %s", e)
            raise StoreError(str(e)) from e
        finally:
            conn.close()

        if task is None:
            raise StoreError(f"inserted task {task_id} could not be read back")

        logger.debug("Task added id=%s status=%s", task_id, task.status.value)
        self._emit(ChangeKind.INSERT, new=task)
        return task

    def list_tasks(self, status: Any = None) -> list[Task]:
        """All tasks, newest first; optionally only one status."""
        status_filter = TaskStatus.parse(status) if status else None

        conn = self._get_conn()
        try:
            if status_filter is None:
                rows = conn.execute(
                    "SELECT * FROM tasks ORDER BY created_at DESC, rowid DESC"
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM tasks WHERE status = ? ORDER BY created_at DESC, rowid DESC",
                    (status_filter.value,),
                ).fetchall()
            return [self._row_to_task(r) for r in rows]
        except sqlite3.Error as e:
            logger.error("list_tasks failed: %s", e)
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            return self._fetch_one(conn, str(task_id))
        except sqlite3.Error as e:
            raise StoreError(str(e)) from e
        finally:
            conn.close()

    def update_task(self, task_id: str, changes: Mapping[str, Any]) -> Task:
        fields = clean_update_fields(changes)

        columns: list[str] = []
        params: list[Any] = []
        for name, value in fields.items():
            columns.append(f"{name} = ?")
            params.append(value.value if isinstance(value, TaskStatus) else value)

        columns.append("updated_at = ?")
        params.append(time.time())
        params.append(str(task_id))

        sql = f"UPDATE tasks SET {', '.join(columns)} WHERE id = ?"

        conn = self._get_conn()
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            if cur.rowcount == 0:
                raise TaskNotFoundError(str(task_id))
            task = self._fetch_one(conn, str(task_id))
        except sqlite3.Error as e:
            logger.error("update_task failed id=%s: %s", task_id, e)
            raise StoreError(str(e)) from e
        finally:
            conn.close()

        if task is None:
            raise TaskNotFoundError(str(task_id))

        logger.debug("Task updated id=%s fields=%s", task_id, sorted(fields))
        self._emit(ChangeKind.UPDATE, new=task)
        return task

    def delete_task(self, task_id: str) -> bool:
        """
        Delete a task. Idempotent: deleting an unknown id is not an error.

        Returns True if a row was removed.
        """
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (str(task_id),))
            conn.commit()
            removed = cur.rowcount > 0
        except sqlite3.Error as e:
            logger.error("delete_task failed id=%s: %s", task_id, e)
            raise StoreError(str(e)) from e
        finally:
            conn.close()

        if removed:
            logger.debug("Task deleted id=%s", task_id)
            self._emit(ChangeKind.DELETE, old_id=str(task_id))
        return removed
