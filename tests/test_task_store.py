# tests/test_task_store.py

from __future__ import annotations

from pathlib import Path

import pytest

from taskpulse.core.errors import TaskNotFoundError, ValidationError
from taskpulse.tasks.task_models import ServerId, TaskStatus
from taskpulse.tasks.task_store import TaskStore


@pytest.fixture()
def emitted() -> list[dict]:
    return []


@pytest.fixture()
def recording_store(tmp_path: Path, emitted: list[dict]) -> TaskStore:
    return TaskStore(tmp_path / "tasks.sqlite3", on_change=emitted.append)


def test_create_assigns_identity_and_defaults(recording_store: TaskStore, emitted: list[dict]) -> None:
    task = recording_store.create_task(title="  Buy milk ", description="   ")

    assert isinstance(task.id, ServerId)
    assert task.title == "Buy milk"
    assert task.description is None
    assert task.status is TaskStatus.PENDING
    assert task.created_at == task.updated_at

    assert len(emitted) == 1
    assert emitted[0]["eventType"] == "INSERT"
    assert emitted[0]["new"]["id"] == str(task.id)


def test_create_rejects_bad_fields(recording_store: TaskStore, emitted: list[dict]) -> None:
    with pytest.raises(ValidationError, match="Title is required"):
        recording_store.create_task(title="")
    with pytest.raises(ValidationError, match="Title is required"):
        recording_store.create_task(title=42)
    with pytest.raises(ValidationError, match="Status must be one of"):
        recording_store.create_task(title="x", status="done")

    assert emitted == []
    assert recording_store.count_tasks() == 0


def test_list_is_newest_first_and_filters(store: TaskStore) -> None:
    first = store.create_task(title="first")
    second = store.create_task(title="second", status="completed")
    third = store.create_task(title="third")

    assert [t.id for t in store.list_tasks()] == [third.id, second.id, first.id]
    assert [t.id for t in store.list_tasks("completed")] == [second.id]
    assert [t.id for t in store.list_tasks(TaskStatus.PENDING)] == [third.id, first.id]

    with pytest.raises(ValidationError):
        store.list_tasks("archived")


def test_update_changes_only_given_fields(recording_store: TaskStore, emitted: list[dict]) -> None:
    task = recording_store.create_task(title="Draft", description="v1")

    updated = recording_store.update_task(str(task.id), {"status": "in-progress", "extra": "ignored"})

    assert updated.status is TaskStatus.IN_PROGRESS
    assert updated.title == "Draft"
    assert updated.description == "v1"
    assert updated.updated_at >= task.updated_at
    assert updated.created_at == task.created_at
    assert emitted[-1]["eventType"] == "UPDATE"
    assert emitted[-1]["new"]["status"] == "in-progress"

    cleared = recording_store.update_task(str(task.id), {"description": None})
    assert cleared.description is None


def test_update_errors(recording_store: TaskStore, emitted: list[dict]) -> None:
    task = recording_store.create_task(title="x")
    emitted.clear()

    with pytest.raises(TaskNotFoundError):
        recording_store.update_task("missing", {"title": "y"})
    with pytest.raises(ValidationError, match="No valid fields"):
        recording_store.update_task(str(task.id), {})
    with pytest.raises(ValidationError):
        recording_store.update_task(str(task.id), {"title": "   "})

    assert emitted == []


def test_delete_is_idempotent(recording_store: TaskStore, emitted: list[dict]) -> None:
    task = recording_store.create_task(title="x")
    emitted.clear()

    assert recording_store.delete_task(str(task.id)) is True
    assert recording_store.delete_task(str(task.id)) is False
    assert recording_store.get_task(str(task.id)) is None

    assert [p["eventType"] for p in emitted] == ["DELETE"]
    assert emitted[0]["old"] == {"id": str(task.id)}


def test_failing_change_listener_does_not_fail_the_write(tmp_path: Path) -> None:
    def boom(_payload) -> None:
        raise RuntimeError("subscriber bug")

    store = TaskStore(tmp_path / "tasks.sqlite3", on_change=boom)
    task = store.create_task(title="still saved")

    assert store.get_task(str(task.id)) == task
