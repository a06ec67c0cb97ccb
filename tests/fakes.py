# tests/fakes.py

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

from taskpulse.core.errors import RequestError
from taskpulse.tasks.task_models import ServerId, Task, TaskStatus
from taskpulse.tasks.task_store import TaskStore

BASE = datetime(2024, 1, 1, tzinfo=UTC)


def make_task(
    task_id: str,
    title: str | None = None,
    status: TaskStatus = TaskStatus.PENDING,
    *,
    at: float = 0.0,
    updated: float | None = None,
    description: str | None = None,
) -> Task:
    """Server-confirmed task with timestamps `at` / `updated` seconds after BASE."""
    return Task(
        id=ServerId(task_id),
        title=title if title is not None else f"task {task_id}",
        description=description,
        status=status,
        created_at=BASE + timedelta(seconds=at),
        updated_at=BASE + timedelta(seconds=at if updated is None else updated),
    )


class FakeTaskGateway:
    """
    In-memory TaskGateway.

    - rows behave like the store (newest first, filter by status)
    - hold(method) returns an Event the call waits on before answering
    - fail(method, exc) makes the next call of that method raise exc
    - write timestamps start one day after BASE and grow by one second per write
    """

    def __init__(self, rows: list[Task] | None = None) -> None:
        self.rows: list[Task] = list(rows or [])
        self.calls: list[tuple[str, Any]] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.failures: dict[str, Exception] = {}
        self.last_created: Task | None = None
        self._seq = 0
        self._ticks = 0

    def hold(self, method: str) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates[method] = gate
        return gate

    def fail(self, method: str, exc: Exception) -> None:
        self.failures[method] = exc

    def _now(self) -> datetime:
        self._ticks += 1
        return BASE + timedelta(days=1, seconds=self._ticks)

    async def _answer(self, method: str) -> None:
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()
        exc = self.failures.pop(method, None)
        if exc is not None:
            raise exc

    def _index(self, task_id: ServerId) -> int | None:
        for i, row in enumerate(self.rows):
            if row.id == task_id:
                return i
        return None

    async def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        self.calls.append(("list", status))
        snapshot = [r for r in self.rows if status is None or r.status == status]
        await self._answer("list")
        return snapshot

    async def create_task(
        self,
        *,
        title: str,
        description: str | None = None,
        status: TaskStatus | None = None,
    ) -> Task:
        self.calls.append(("create", title))
        failing = "create" in self.failures
        task: Task | None = None
        if not failing:
            self._seq += 1
            now = self._now()
            task = Task(
                id=ServerId(f"srv-{self._seq}"),
                title=title,
                description=description,
                status=status or TaskStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            # The row exists (and may be listed or announced) before the answer arrives.
            self.rows.insert(0, task)
            self.last_created = task
        await self._answer("create")
        assert task is not None
        return task

    async def update_task(self, task_id: ServerId, fields: Mapping[str, Any]) -> Task:
        self.calls.append(("update", (task_id, dict(fields))))
        await self._answer("update")
        idx = self._index(task_id)
        if idx is None:
            raise RequestError("Task not found", status_code=404)
        updated = replace(self.rows[idx], **fields, updated_at=self._now())
        self.rows[idx] = updated
        return updated

    async def delete_task(self, task_id: ServerId) -> None:
        self.calls.append(("delete", task_id))
        await self._answer("delete")
        idx = self._index(task_id)
        if idx is not None:
            del self.rows[idx]


class StoreGateway:
    """TaskGateway calling a TaskStore in-process (no HTTP)."""

    def __init__(self, store: TaskStore) -> None:
        self.store = store

    async def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        return self.store.list_tasks(status)

    async def create_task(
        self,
        *,
        title: str,
        description: str | None = None,
        status: TaskStatus | None = None,
    ) -> Task:
        return self.store.create_task(title=title, description=description, status=status)

    async def update_task(self, task_id: ServerId, fields: Mapping[str, Any]) -> Task:
        return self.store.update_task(str(task_id), fields)

    async def delete_task(self, task_id: ServerId) -> None:
        self.store.delete_task(str(task_id))


_END = object()


class FakeChangeSource:
    """
    Scripted ChangeSource.

    push() queues a payload, end() closes the current stream, push(exc) makes it raise.
    """

    def __init__(self) -> None:
        self.queue: asyncio.Queue[Any] = asyncio.Queue()
        self.opened = 0

    def push(self, item: Any) -> None:
        self.queue.put_nowait(item)

    def end(self) -> None:
        self.queue.put_nowait(_END)

    async def stream(self) -> AsyncIterator[dict[str, Any]]:
        self.opened += 1
        while True:
            item = await self.queue.get()
            if item is _END:
                return
            if isinstance(item, Exception):
                raise item
            yield item


async def wait_until(predicate, *, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)
