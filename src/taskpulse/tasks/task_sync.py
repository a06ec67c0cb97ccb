# src/taskpulse/tasks/task_sync.py

"""
Client-side task synchronizer.

Owns the visible, UI-facing collection of tasks and keeps it consistent across:
- optimistic local mutations (create / update / delete applied before the store answers),
- the store's responses to those mutations (promotion, overwrite, rollback),
- the change feed (insert / update / delete events from any client).

All mutations happen on one event loop. Change events are consumed from a queue
by a single task, so they are applied strictly in arrival order while local
operations are in flight.

Ordering rules:
- a local create is promoted exactly once: by its own response. Inserts for unknown
  ids that arrive while any create is in flight are buffered; the response discards
  the buffered copy of its own row, the rest are flushed once no create is in flight.
- change events always win (server truth). A mutation response is not applied over a
  newer server-confirmed value already held for that task.
- deleted ids are remembered for tombstone_ttl_seconds so that a redelivered insert
  does not resurrect them.
- a listing may predate writes confirmed while it was in flight; those writes win
  over it when load() merges the listing.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import time
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import datetime
from typing import Any

from ..core.errors import FetchError, RequestError, TransportError, ValidationError
from ..core.ports import ChangeSource, TaskGateway
from .change_feed import ChangeEvent, ChangeFeedClient, ChangeKind
from .task_models import LocalId, ServerId, Task, TaskId, TaskStatus, utcnow
from .task_validation import clean_description, clean_title, clean_update_fields

logger = logging.getLogger(__name__)

ViewListener = Callable[[str, tuple[Task, ...]], None]


class TaskSynchronizer:
    """
    One instance per mounted view.

    Usage:
        async with TaskSynchronizer(gateway, feed_source) as sync:
            await sync.create("Write report")
            sync.tasks  # current visible collection

    The collection is exposed as an immutable snapshot; only this class mutates it.
    """

    def __init__(
        self,
        gateway: TaskGateway,
        feed_source: ChangeSource | None = None,
        *,
        status_filter: TaskStatus | str | None = None,
        tombstone_ttl_seconds: float = 30.0,
        reconnect_delay_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._gateway = gateway
        self._feed_source = feed_source
        self._initial_filter = TaskStatus.parse(status_filter) if status_filter else None
        self._tombstone_ttl = max(0.0, float(tombstone_ttl_seconds))
        self._reconnect_s = reconnect_delay_seconds
        self._clock = clock

        self._tasks: list[Task] = []
        self._status_filter: TaskStatus | None = self._initial_filter

        self._local_ids = itertools.count(1)
        self._pending_creates: set[LocalId] = set()
        self._pending_deletes: set[ServerId] = set()
        self._promoted: dict[LocalId, ServerId] = {}
        self._buffered: dict[ServerId, Task] = {}
        self._tombstones: dict[ServerId, float] = {}
        self._confirmed_at: dict[ServerId, datetime] = {}
        self._pending_updates: Counter[ServerId] = Counter()

        # Confirmed writes (None for deletes) seen while a load() waits for its listing.
        self._generation = 0
        self._load_starts: list[int] = []
        self._written: dict[ServerId, tuple[int, Task | None]] = {}

        self._listeners: list[ViewListener] = []
        self._feed: ChangeFeedClient | None = None
        self._consumer: asyncio.Task[None] | None = None

    # ---- read side ----

    @property
    def tasks(self) -> tuple[Task, ...]:
        return tuple(self._tasks)

    @property
    def status_filter(self) -> TaskStatus | None:
        return self._status_filter

    @property
    def pending_operations(self) -> frozenset[TaskId]:
        """Ids of in-flight creates (local ids) and in-flight deletes (server ids)."""
        return frozenset([*self._pending_creates, *self._pending_deletes])

    @property
    def subscribed(self) -> bool:
        return self._feed is not None and self._feed.active

    def get(self, task_id: TaskId | str) -> Task | None:
        if isinstance(task_id, str):
            task_id = ServerId(task_id)
        idx = self._index_of(task_id)
        return self._tasks[idx] if idx is not None else None

    def add_listener(self, listener: ViewListener) -> Callable[[], None]:
        """Register a callback(reason, snapshot) run after every visible change."""
        self._listeners.append(listener)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return remove

    # ---- lifecycle ----

    async def __aenter__(self) -> TaskSynchronizer:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def start(self, status: TaskStatus | str | None = None) -> tuple[Task, ...]:
        """Subscribe to the change feed and issue the initial load()."""
        return await self.load(status if status else self._initial_filter)

    async def close(self) -> None:
        consumer, self._consumer = self._consumer, None
        if consumer is not None:
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer

        feed, self._feed = self._feed, None
        if feed is not None:
            await feed.stop()
            logger.info("Change feed subscription released")

    def _ensure_subscription(self) -> None:
        if self._feed_source is None:
            return

        if self._feed is None:
            self._feed = ChangeFeedClient(
                self._feed_source,
                reconnect_delay_seconds=self._reconnect_s,
            )
        if not self._feed.active:
            self._feed.start()
            logger.info("Change feed subscription established")

        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(
                self._consume(self._feed), name="taskpulse-sync-consumer"
            )

    async def _consume(self, feed: ChangeFeedClient) -> None:
        while True:
            event = await feed.events.get()
            try:
                self.apply_event(event)
            except Exception:
                logger.exception("Failed to apply change event %s id=%s", event.kind, event.task_id)

    # ---- operations ----

    async def load(self, status: TaskStatus | str | None = None) -> tuple[Task, ...]:
        """
        Replace the visible collection with the store's listing.

        In-flight provisional creates stay at the front; ids with an in-flight or
        recent delete stay hidden. Writes confirmed while the listing was in flight
        win over it. On failure the previous collection is kept and FetchError is raised.
        """
        status_filter = TaskStatus.parse(status) if status else None
        self._ensure_subscription()

        started = self._generation
        self._load_starts.append(started)
        try:
            try:
                fetched = await self._gateway.list_tasks(status_filter)
            except (RequestError, TransportError) as e:
                logger.warning("load(status=%s) failed: %s", status_filter, e)
                raise FetchError(f"Failed to fetch tasks: {e}") from e

            self._status_filter = status_filter
            count = self._merge_listing(fetched, started)
        finally:
            self._end_load(started)

        logger.info("Loaded %d tasks (status=%s)", count, status_filter)
        self._notify("load")
        return self.tasks

    async def create(self, title: str, description: str | None = None) -> Task:
        title = clean_title(title)
        description = clean_description(description)

        local_id = LocalId(next(self._local_ids))
        now = utcnow()
        provisional = Task(
            id=local_id,
            title=title,
            description=description,
            status=TaskStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self._tasks.insert(0, provisional)
        self._pending_creates.add(local_id)
        self._notify("create")

        try:
            confirmed = await self._gateway.create_task(title=title, description=description)
        except Exception as e:
            self._pending_creates.discard(local_id)
            self._remove(local_id)
            self._flush_buffered()
            logger.warning("create %s failed, rolled back: %s", local_id, e)
            self._notify("create:rollback")
            raise

        self._pending_creates.discard(local_id)
        self._promote(local_id, confirmed)
        self._flush_buffered()
        logger.debug("create %s promoted to %s", local_id, confirmed.id)
        self._notify("create:confirmed")
        return confirmed

    async def update(self, task_id: TaskId | str, changes: Mapping[str, Any]) -> Task:
        """Apply `changes` (any of title, description, status) optimistically, then confirm."""
        server_id = self._server_id(task_id)
        fields = clean_update_fields(changes)

        snapshot = list(self._tasks)
        idx = self._index_of(server_id)
        if idx is not None:
            self._tasks[idx] = replace(self._tasks[idx], **fields, updated_at=utcnow())
            self._notify("update")

        self._pending_updates[server_id] += 1
        try:
            confirmed = await self._gateway.update_task(server_id, fields)
        except Exception as e:
            self._restore(snapshot)
            logger.warning("update %s failed, rolled back: %s", server_id, e)
            self._notify("update:rollback")
            raise
        finally:
            self._pending_updates -= Counter([server_id])

        self._apply_response(confirmed)
        self._notify("update:confirmed")
        return confirmed

    async def delete(self, task_id: TaskId | str) -> None:
        server_id = self._server_id(task_id)

        snapshot = list(self._tasks)
        self._remove(server_id)
        self._pending_deletes.add(server_id)
        self._notify("delete")

        try:
            await self._gateway.delete_task(server_id)
        except Exception as e:
            self._pending_deletes.discard(server_id)
            self._restore(snapshot)
            logger.warning("delete %s failed, rolled back: %s", server_id, e)
            self._notify("delete:rollback")
            raise

        self._pending_deletes.discard(server_id)
        self._forget(server_id)
        self._notify("delete:confirmed")

    # ---- change-event merge ----

    def apply_event(self, event: ChangeEvent) -> bool:
        """
        Merge one change event into the visible collection.

        Returns True if the visible collection changed. Applying the same event
        twice has the same effect as applying it once.
        """
        self._prune_tombstones()

        if event.kind is ChangeKind.DELETE:
            changed = self._on_remote_delete(event.task_id)
        elif event.task is None:
            logger.warning("Change event %s id=%s has no row; ignored", event.kind, event.task_id)
            return False
        elif event.kind is ChangeKind.INSERT:
            changed = self._on_remote_insert(event.task)
        else:
            changed = self._on_remote_update(event.task)

        if changed:
            self._notify(f"feed:{event.kind.value.lower()}")
        return changed

    def _on_remote_insert(self, task: Task) -> bool:
        server_id = self._as_server_id(task)
        if self._is_suppressed(server_id):
            logger.debug("Ignoring insert for deleted task %s", server_id)
            return False
        if self._index_of(server_id) is not None:
            return False
        if self._pending_creates:
            # May be this client's own create racing its response.
            self._buffered[server_id] = task
            logger.debug("Buffered insert for %s (creates in flight)", server_id)
            return False
        if not self._matches(task):
            return False

        self._confirm(task)
        self._tasks.insert(0, task)
        return True

    def _on_remote_update(self, task: Task) -> bool:
        server_id = self._as_server_id(task)
        if server_id in self._buffered:
            self._buffered[server_id] = task
            return False
        if self._is_suppressed(server_id):
            logger.debug("Ignoring update for deleted task %s", server_id)
            return False

        idx = self._index_of(server_id)
        if idx is not None:
            self._confirm(task)
            if not self._matches(task):
                del self._tasks[idx]
                return True
            if self._tasks[idx] == task:
                return False
            self._tasks[idx] = task
            return True

        # Unknown id: another client's write (or ours, racing a create response).
        if self._pending_creates:
            self._buffered[server_id] = task
            return False
        if not self._matches(task):
            return False

        self._confirm(task)
        self._insert_ordered(task)
        return True

    def _on_remote_delete(self, server_id: ServerId) -> bool:
        self._buffered.pop(server_id, None)
        self._forget(server_id)
        return self._remove(server_id)

    # ---- reconciliation helpers ----

    def _merge_listing(self, fetched: list[Task], started: int) -> int:
        """Replace the collection with a listing requested at generation `started`."""
        written = {sid: task for sid, (gen, task) in self._written.items() if gen > started}
        held = {t.id: t for t in self._tasks if isinstance(t.id, ServerId)}

        self._tasks = [t for t in self._tasks if isinstance(t.id, LocalId) and t.id in self._pending_creates]
        in_flight = len(self._tasks)

        seen: set[ServerId] = set()
        for listed in fetched:
            server_id = self._as_server_id(listed)
            if server_id in seen or self._is_suppressed(server_id):
                continue
            seen.add(server_id)
            entry = self._listed_entry(listed, written, held.get(server_id))
            if entry is not None:
                self._tasks.append(entry)

        # Confirmed after the listing was taken (e.g. a create promoted meanwhile).
        for server_id, task in written.items():
            if server_id in seen or task is None or self._is_suppressed(server_id):
                continue
            if self._matches(task):
                self._insert_ordered(task)

        return len(self._tasks) - in_flight

    def _listed_entry(
        self,
        listed: Task,
        written: dict[ServerId, Task | None],
        held: Task | None,
    ) -> Task | None:
        server_id = self._as_server_id(listed)
        if server_id in written:
            newer = written[server_id]
            return newer if newer is not None and self._matches(newer) else None
        if held is not None and self._pending_updates[server_id]:
            return held
        known = self._confirmed_at.get(server_id)
        if held is not None and known is not None and known > listed.updated_at:
            return held if self._matches(held) else None

        self._confirmed_at[server_id] = listed.updated_at
        return listed

    def _end_load(self, started: int) -> None:
        self._load_starts.remove(started)
        if not self._load_starts:
            self._written.clear()
            return
        oldest = min(self._load_starts)
        self._written = {sid: w for sid, w in self._written.items() if w[0] > oldest}

    def _confirm(self, task: Task) -> None:
        server_id = self._as_server_id(task)
        self._confirmed_at[server_id] = task.updated_at
        self._note_write(server_id, task)

    def _forget(self, server_id: ServerId) -> None:
        self._confirmed_at.pop(server_id, None)
        self._remember_deleted(server_id)
        self._note_write(server_id, None)

    def _note_write(self, server_id: ServerId, task: Task | None) -> None:
        if self._load_starts:
            self._generation += 1
            self._written[server_id] = (self._generation, task)

    def _promote(self, local_id: LocalId, confirmed: Task) -> None:
        server_id = self._as_server_id(confirmed)
        self._promoted[local_id] = server_id
        buffered = self._buffered.pop(server_id, None)
        if buffered is not None and buffered.updated_at > confirmed.updated_at:
            logger.debug("Buffered event for %s is newer than the create response; using it", server_id)
            confirmed = buffered
        elif buffered is not None:
            logger.debug("Discarded buffered event for %s (own create)", server_id)

        if self._index_of(server_id) is not None:
            # Already listed (a load() raced the response): keep a single entry.
            self._remove(local_id)
            self._apply_response(confirmed)
            return

        idx = self._index_of(local_id)
        if idx is None:
            self._tasks.insert(0, confirmed)
        else:
            self._tasks[idx] = confirmed
        self._confirm(confirmed)

        if not self._matches(confirmed):
            self._remove(server_id)

    def _apply_response(self, confirmed: Task) -> None:
        server_id = self._as_server_id(confirmed)
        idx = self._index_of(server_id)
        if idx is None:
            # Removed meanwhile (remote delete or filter); never resurrect from a response.
            return

        known = self._confirmed_at.get(server_id)
        if known is not None and known > confirmed.updated_at:
            logger.debug("Response for %s is older than the held value; kept newer", server_id)
            return

        self._confirm(confirmed)
        if self._matches(confirmed):
            self._tasks[idx] = confirmed
        else:
            del self._tasks[idx]

    def _restore(self, snapshot: list[Task]) -> None:
        """
        Restore a pre-operation snapshot.

        Local-id entries are rebased: still in-flight ones are kept, promoted ones are
        replaced by their server entry, rolled-back ones are dropped. Ids with an
        in-flight or recently confirmed delete stay hidden, and so do server values
        outside the current filter.
        """
        restored: list[Task] = []
        seen: set[TaskId] = set()

        for task in snapshot:
            entry: Task | None = task
            if isinstance(task.id, LocalId) and task.id not in self._pending_creates:
                promoted = self._promoted.get(task.id)
                idx = self._index_of(promoted) if promoted is not None else None
                entry = self._tasks[idx] if idx is not None else None
            if entry is None or entry.id in seen:
                continue
            if isinstance(entry.id, ServerId) and self._is_suppressed(entry.id):
                continue
            if isinstance(entry.id, ServerId) and not self._matches(entry):
                continue
            seen.add(entry.id)
            restored.append(entry)

        newer_local = [
            t for t in self._tasks
            if isinstance(t.id, LocalId) and t.id in self._pending_creates and t.id not in seen
        ]
        self._tasks = newer_local + restored

    def _flush_buffered(self) -> None:
        if self._pending_creates or not self._buffered:
            return

        buffered, self._buffered = self._buffered, {}
        for server_id, task in buffered.items():
            if self._is_suppressed(server_id):
                continue
            if self._index_of(server_id) is not None:
                self._apply_response(task)
                continue
            if not self._matches(task):
                continue
            self._confirm(task)
            self._tasks.insert(0, task)
            logger.debug("Flushed buffered event for %s", server_id)

    def _insert_ordered(self, task: Task) -> None:
        """Insert keeping created_at descending; equal timestamps keep insertion order."""
        for i, existing in enumerate(self._tasks):
            if isinstance(existing.id, LocalId):
                continue
            if existing.created_at < task.created_at:
                self._tasks.insert(i, task)
                return
        self._tasks.append(task)

    def _remove(self, task_id: TaskId) -> bool:
        idx = self._index_of(task_id)
        if idx is None:
            return False
        del self._tasks[idx]
        return True

    def _index_of(self, task_id: TaskId) -> int | None:
        for i, task in enumerate(self._tasks):
            if task.id == task_id:
                return i
        return None

    def _matches(self, task: Task) -> bool:
        return self._status_filter is None or task.status == self._status_filter

    def _remember_deleted(self, server_id: ServerId) -> None:
        if self._tombstone_ttl > 0:
            self._tombstones[server_id] = self._clock() + self._tombstone_ttl

    def _prune_tombstones(self) -> None:
        now = self._clock()
        expired = [sid for sid, until in self._tombstones.items() if until <= now]
        for sid in expired:
            del self._tombstones[sid]

    def _is_suppressed(self, server_id: ServerId) -> bool:
        if server_id in self._pending_deletes:
            return True
        until = self._tombstones.get(server_id)
        return until is not None and until > self._clock()

    def _server_id(self, task_id: TaskId | str) -> ServerId:
        if isinstance(task_id, ServerId):
            return task_id
        if isinstance(task_id, LocalId):
            promoted = self._promoted.get(task_id)
            if promoted is None:
                raise ValidationError("Task is not saved yet; wait until the store confirms it")
            return promoted
        if isinstance(task_id, str) and task_id.strip():
            return ServerId(task_id.strip())
        raise ValidationError("Task id is required")

    @staticmethod
    def _as_server_id(task: Task) -> ServerId:
        if not isinstance(task.id, ServerId):
            raise TypeError(f"expected a server-confirmed task, got {task.id}")
        return task.id

    def _notify(self, reason: str) -> None:
        snapshot = self.tasks
        for listener in list(self._listeners):
            try:
                listener(reason, snapshot)
            except Exception:
                logger.exception("View listener failed (reason=%s)", reason)
