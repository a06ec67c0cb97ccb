# tests/conftest.py

from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest

from taskpulse.core.state import AppState
from taskpulse.tasks.task_store import TaskStore
from taskpulse.tasks.task_sync import TaskSynchronizer

from .fakes import FakeTaskGateway


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the CLI.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        api_base_url="http://test",
        request_timeout_seconds=1.0,
        feed_reconnect_delay_seconds=0.01,
        tombstone_ttl_seconds=30.0,
        default_status_filter=None,
    )


@pytest.fixture()
def store(settings: SimpleNamespace) -> TaskStore:
    # Real SQLite: its behavior is part of what we test.
    return TaskStore(settings.tasks_db_path)


@pytest.fixture()
def gateway() -> FakeTaskGateway:
    return FakeTaskGateway()


@pytest.fixture()
def sync(gateway: FakeTaskGateway) -> TaskSynchronizer:
    return TaskSynchronizer(gateway)


class InlineRunner:
    """Stands in for SyncBackgroundRunner: runs each coroutine to completion on a fresh loop."""

    def call(self, coro, timeout=None):
        return asyncio.run(coro)


@pytest.fixture()
def state(settings: SimpleNamespace, gateway: FakeTaskGateway) -> AppState:
    """AppState wired with the fake gateway and no change feed."""
    return AppState(
        settings=settings,
        synchronizer=TaskSynchronizer(gateway),
        runner=InlineRunner(),  # type: ignore[arg-type]
    )
