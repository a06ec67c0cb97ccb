# src/taskpulse/core/state.py

from __future__ import annotations

from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from ..connectors.sync_runner import SyncBackgroundRunner
    from ..tasks.task_sync import TaskSynchronizer

T = TypeVar("T")


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    synchronizer: TaskSynchronizer

    # Transports owned by this client; closed (aclose) when the view is torn down.
    closables: list[Any] = field(default_factory=list)

    runner: SyncBackgroundRunner | None = None

    def call(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """Run a coroutine on the synchronizer's event loop and wait for its result."""
        if self.runner is None:
            coro.close()
            raise RuntimeError("Sync runner is not started")
        return self.runner.call(coro, timeout=timeout)
