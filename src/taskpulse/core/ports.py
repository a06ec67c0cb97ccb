# src/taskpulse/core/ports.py

"""
Ports (interfaces) used by the core.

The synchronizer depends on Protocols instead of concrete transports.
This keeps the HTTP client / in-process hub swappable and makes testing easier.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from typing import TYPE_CHECKING, Any, Awaitable, Protocol

if TYPE_CHECKING:
    from ..tasks.task_models import ServerId, Task, TaskStatus


class TaskGateway(Protocol):
    """
    Task Store client.

    Implementations raise RequestError when the store rejects a request and
    TransportError when no usable answer was received.
    """

    def list_tasks(self, status: TaskStatus | None = None) -> Awaitable[list[Task]]: ...

    def create_task(
        self,
        *,
        title: str,
        description: str | None = None,
        status: TaskStatus | None = None,
    ) -> Awaitable[Task]: ...

    def update_task(self, task_id: ServerId, fields: Mapping[str, Any]) -> Awaitable[Task]: ...

    def delete_task(self, task_id: ServerId) -> Awaitable[None]: ...


class ChangeSource(Protocol):
    """
    Raw change-notification stream.

    Each call to stream() opens one subscription; the iterator ends (or raises
    TransportError) when the subscription is lost.
    """

    def stream(self) -> AsyncIterator[dict[str, Any]]: ...
