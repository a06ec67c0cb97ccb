# src/taskpulse/tasks/change_feed.py

"""
Change feed.

- build_change_payload / parse_change_payload: the wire shape of a change notification
- ChangeHub: in-process fan-out used by the server (and by tests as a ChangeSource)
- ChangeFeedClient: pumps a ChangeSource into an asyncio.Queue of ChangeEvents

Delivery is at-least-once and unordered relative to the client's own requests;
the synchronizer's merge rule takes care of that.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from ..core.errors import ChangeFeedParseError, TransportError
from ..core.ports import ChangeSource
from .task_models import ServerId, Task, task_from_wire, task_to_wire, utcnow

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA = "public"
DEFAULT_TABLE = "tasks"


class ChangeKind(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    kind: ChangeKind
    task_id: ServerId
    task: Task | None = None  # new row for INSERT/UPDATE, None for DELETE
    schema: str = DEFAULT_SCHEMA
    table: str = DEFAULT_TABLE


def build_change_payload(
    kind: ChangeKind,
    *,
    new: Task | None = None,
    old_id: str | None = None,
    schema: str = DEFAULT_SCHEMA,
    table: str = DEFAULT_TABLE,
) -> dict[str, Any]:
    return {
        "schema": schema,
        "table": table,
        "eventType": kind.value,
        "new": task_to_wire(new) if new is not None else {},
        "old": {"id": old_id} if old_id is not None else {},
        "commit_timestamp": utcnow().isoformat(),
    }


def parse_change_payload(payload: Any) -> ChangeEvent:
    if not isinstance(payload, dict):
        raise ChangeFeedParseError(f"payload is not an object: {type(payload).__name__}")

    try:
        kind = ChangeKind(str(payload.get("eventType", "")).upper())
    except ValueError:
        raise ChangeFeedParseError(f"unknown eventType: {payload.get('eventType')!r}") from None

    schema = str(payload.get("schema") or DEFAULT_SCHEMA)
    table = str(payload.get("table") or "")
    if not table:
        raise ChangeFeedParseError("payload has no table")

    if kind is ChangeKind.DELETE:
        old = payload.get("old")
        raw_id = old.get("id") if isinstance(old, dict) else None
        if raw_id is None or str(raw_id) == "":
            raise ChangeFeedParseError("DELETE payload has no old.id")
        return ChangeEvent(kind=kind, task_id=ServerId(str(raw_id)), schema=schema, table=table)

    try:
        task = task_from_wire(payload.get("new"))  # type: ignore[arg-type]
    except ValueError as e:
        raise ChangeFeedParseError(f"{kind.value} payload has a bad row: {e}") from e

    return ChangeEvent(kind=kind, task_id=task.id, task=task, schema=schema, table=table)


class ChangeHub:
    """
    In-process publish/subscribe for change payloads.

    Must be used from a single event loop. Subscribers whose queue is full are
    dropped (slow consumer) rather than blocking the publisher.
    """

    MAX_SUBSCRIBERS = 100

    def __init__(self, *, max_queue: int = 1000) -> None:
        self._max_queue = max_queue
        self._subscribers: set[asyncio.Queue[dict[str, Any] | None]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, payload: dict[str, Any]) -> None:
        dropped: list[asyncio.Queue[dict[str, Any] | None]] = []
        for q in self._subscribers:
            try:
                q.put_nowait(payload)
            except asyncio.QueueFull:
                dropped.append(q)

        for q in dropped:
            logger.warning("Change feed subscriber too slow; dropping it")
            self._subscribers.discard(q)
            # Wake the consumer so its stream ends and it reconnects.
            with contextlib.suppress(asyncio.QueueEmpty):
                q.get_nowait()
            q.put_nowait(None)

    def close(self) -> None:
        for q in list(self._subscribers):
            with contextlib.suppress(asyncio.QueueFull):
                q.put_nowait(None)
        self._subscribers.clear()

    async def stream(self) -> AsyncIterator[dict[str, Any]]:
        if len(self._subscribers) >= self.MAX_SUBSCRIBERS:
            raise TransportError("change feed is at capacity")

        q: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers.add(q)
        logger.debug("Change feed subscriber added (total=%d)", len(self._subscribers))
        try:
            while True:
                payload = await q.get()
                if payload is None:
                    return
                yield payload
        finally:
            self._subscribers.discard(q)
            logger.debug("Change feed subscriber removed (total=%d)", len(self._subscribers))


class ChangeFeedClient:
    """
    Subscribes to a ChangeSource and delivers parsed events into `events`.

    A dropped connection (TransportError or end of stream) is retried after
    reconnect_delay_seconds. Reconnecting does not replay missed events.
    """

    def __init__(
        self,
        source: ChangeSource,
        *,
        schema: str = DEFAULT_SCHEMA,
        table: str = DEFAULT_TABLE,
        reconnect_delay_seconds: float = 1.0,
        max_queue: int = 0,
    ) -> None:
        self._source = source
        self._schema = schema
        self._table = table
        self._reconnect_s = max(0.0, float(reconnect_delay_seconds))
        self.events: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=max_queue)
        self._pump_task: asyncio.Task[None] | None = None
        self.connections = 0

    @property
    def active(self) -> bool:
        return self._pump_task is not None and not self._pump_task.done()

    def start(self) -> None:
        if self.active:
            return
        self._pump_task = asyncio.create_task(self._pump(), name="taskpulse-change-feed")

    async def stop(self) -> None:
        task, self._pump_task = self._pump_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def deliver(self, payload: Any) -> ChangeEvent | None:
        """Parse one payload and queue it. Malformed payloads are dropped."""
        try:
            event = parse_change_payload(payload)
        except ChangeFeedParseError as e:
            logger.warning("Dropping malformed change event: %s", e)
            return None

        if event.schema != self._schema or event.table != self._table:
            logger.debug("Ignoring change for %s.%s", event.schema, event.table)
            return None

        self.events.put_nowait(event)
        return event

    async def _pump(self) -> None:
        while True:
            self.connections += 1
            try:
                logger.info("Change feed connecting (attempt=%d)", self.connections)
                async for payload in self._source.stream():
                    self.deliver(payload)
                logger.warning("Change feed stream ended; reconnecting in %.1fs", self._reconnect_s)
            except TransportError as e:
                logger.warning("Change feed error: %s; reconnecting in %.1fs", e, self._reconnect_s)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Change feed crashed; reconnecting in %.1fs", self._reconnect_s)

            await asyncio.sleep(self._reconnect_s)
