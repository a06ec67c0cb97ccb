# tests/test_api_server.py

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from fastapi.testclient import TestClient

from taskpulse.api.server import create_app
from taskpulse.tasks.change_feed import ChangeHub
from taskpulse.tasks.task_store import TaskStore


class RecordingHub(ChangeHub):
    def __init__(self) -> None:
        super().__init__()
        self.published: list[dict[str, Any]] = []

    def publish(self, payload: dict[str, Any]) -> None:
        self.published.append(payload)
        super().publish(payload)


@pytest.fixture()
def hub() -> RecordingHub:
    return RecordingHub()


@pytest.fixture()
def client(store: TaskStore, hub: RecordingHub):
    with TestClient(create_app(store, hub)) as c:
        yield c


def test_health(client) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy"}


def test_create_returns_201_and_publishes(client, hub: RecordingHub) -> None:
    resp = client.post("/tasks", json={"title": "Write report", "description": "Q3"})

    assert resp.status_code == 201
    body = resp.json()
    assert body["title"] == "Write report"
    assert body["description"] == "Q3"
    assert body["status"] == "pending"
    assert body["id"]
    assert body["created_at"] == body["updated_at"]

    assert [p["eventType"] for p in hub.published] == ["INSERT"]
    assert hub.published[0]["new"]["id"] == body["id"]


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ({}, "Title is required and must be a non-empty string"),
        ({"title": "   "}, "Title is required and must be a non-empty string"),
        ({"title": "x", "status": "done"}, "Status must be one of: pending, in-progress, completed"),
    ],
)
def test_create_validation_errors(client, body, message) -> None:
    resp = client.post("/tasks", json=body)
    assert resp.status_code == 400
    assert resp.json() == {"error": message}


def test_create_rejects_non_object_and_invalid_json(client) -> None:
    resp = client.post("/tasks", json=["title"])
    assert resp.status_code == 400
    assert resp.json() == {"error": "Request body must be a JSON object"}

    resp = client.post("/tasks", content=b"{nope", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid JSON body"}


def test_list_newest_first_with_status_filter(client) -> None:
    a = client.post("/tasks", json={"title": "a"}).json()
    b = client.post("/tasks", json={"title": "b", "status": "completed"}).json()

    assert [t["id"] for t in client.get("/tasks").json()] == [b["id"], a["id"]]
    assert [t["id"] for t in client.get("/tasks", params={"status": "completed"}).json()] == [b["id"]]

    resp = client.get("/tasks", params={"status": "archived"})
    assert resp.status_code == 400
    assert "Status must be one of" in resp.json()["error"]


def test_patch_updates_and_reports_errors(client, hub: RecordingHub) -> None:
    task = client.post("/tasks", json={"title": "a"}).json()

    resp = client.patch(f"/tasks/{task['id']}", json={"status": "in-progress", "title": "a2"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "in-progress"
    assert resp.json()["title"] == "a2"
    assert hub.published[-1]["eventType"] == "UPDATE"

    resp = client.patch(f"/tasks/{task['id']}", json={"owner": "me"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "No valid fields to update"}

    resp = client.patch("/tasks/does-not-exist", json={"title": "x"})
    assert resp.status_code == 404
    assert resp.json() == {"error": "Task not found"}


def test_delete_is_idempotent(client, hub: RecordingHub) -> None:
    task = client.post("/tasks", json={"title": "a"}).json()

    for _ in range(2):
        resp = client.delete(f"/tasks/{task['id']}")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Task deleted successfully"}

    assert client.get("/tasks").json() == []
    assert [p["eventType"] for p in hub.published] == ["INSERT", "DELETE"]


def test_cors_preflight_is_allowed(client) -> None:
    resp = client.options(
        "/tasks",
        headers={
            "Origin": "http://example.com",
            "Access-Control-Request-Method": "PATCH",
            "Access-Control-Request-Headers": "content-type",
        },
    )
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == "*"


def test_app_opens_store_from_settings(settings) -> None:
    app = create_app(settings=settings)
    with TestClient(app) as c:
        assert c.post("/tasks", json={"title": "persisted"}).status_code == 201

    assert settings.tasks_db_path.exists()
    assert [t.title for t in TaskStore(settings.tasks_db_path).list_tasks()] == ["persisted"]


class LoopCheckingStore(TaskStore):
    """Records whether each store call ran on the event loop thread."""

    def __init__(self, path) -> None:
        super().__init__(path)
        self.on_loop: list[bool] = []

    def _record(self) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self.on_loop.append(False)
        else:
            self.on_loop.append(True)

    def create_task(self, **kwargs):
        self._record()
        return super().create_task(**kwargs)

    def list_tasks(self, status=None):
        self._record()
        return super().list_tasks(status)


def test_store_calls_run_off_the_event_loop(settings, hub: RecordingHub) -> None:
    store = LoopCheckingStore(settings.tasks_db_path)
    with TestClient(create_app(store, hub)) as c:
        created = c.post("/tasks", json={"title": "off loop"}).json()
        assert [t["id"] for t in c.get("/tasks").json()] == [created["id"]]

    assert store.on_loop == [False, False]
    # Changes made on a worker thread still reach the hub.
    assert [p["eventType"] for p in hub.published] == ["INSERT"]
