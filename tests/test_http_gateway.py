# tests/test_http_gateway.py

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from taskpulse.api.client import HttpTaskGateway
from taskpulse.api.server import create_app
from taskpulse.core.errors import RequestError, TransportError
from taskpulse.tasks.task_models import ServerId, TaskStatus
from taskpulse.tasks.task_store import TaskStore
from taskpulse.tasks.task_sync import TaskSynchronizer


@pytest_asyncio.fixture()
async def asgi_client(store: TaskStore):
    transport = httpx.ASGITransport(app=create_app(store))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def _mock_gateway(handler) -> HttpTaskGateway:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://test")
    return HttpTaskGateway(client=client)


@pytest.mark.asyncio
async def test_crud_round_trip(asgi_client, store: TaskStore) -> None:
    gateway = HttpTaskGateway(client=asgi_client)

    created = await gateway.create_task(title="Write", description="draft")
    assert isinstance(created.id, ServerId)
    assert store.get_task(str(created.id)) == created

    updated = await gateway.update_task(created.id, {"status": TaskStatus.COMPLETED})
    assert updated.status is TaskStatus.COMPLETED

    assert await gateway.list_tasks(TaskStatus.PENDING) == []
    assert [t.id for t in await gateway.list_tasks()] == [created.id]

    await gateway.delete_task(created.id)
    await gateway.delete_task(created.id)
    assert await gateway.list_tasks() == []


@pytest.mark.asyncio
async def test_store_errors_become_request_errors(asgi_client) -> None:
    gateway = HttpTaskGateway(client=asgi_client)

    with pytest.raises(RequestError) as not_found:
        await gateway.update_task(ServerId("missing"), {"title": "x"})
    assert not_found.value.status_code == 404
    assert not_found.value.message == "Task not found"
    assert str(not_found.value) == "Task not found (HTTP 404)"

    with pytest.raises(RequestError) as invalid:
        await gateway.create_task(title="")
    assert invalid.value.status_code == 400


@pytest.mark.asyncio
async def test_network_failure_is_transport_error() -> None:
    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = _mock_gateway(refused)
    with pytest.raises(TransportError):
        await gateway.list_tasks()
    await gateway.aclose()


@pytest.mark.asyncio
async def test_unreadable_answers_are_transport_errors() -> None:
    def html(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>proxy</html>")

    def bad_row(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"id": "x"}])

    for handler in (html, bad_row):
        with pytest.raises(TransportError):
            await _mock_gateway(handler).list_tasks()


@pytest.mark.asyncio
async def test_error_message_falls_back_to_detail_or_reason() -> None:
    def detail(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"detail": "unprocessable"})

    def plain(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="")

    with pytest.raises(RequestError, match="unprocessable"):
        await _mock_gateway(detail).delete_task(ServerId("a"))
    with pytest.raises(RequestError) as bad_gateway:
        await _mock_gateway(plain).delete_task(ServerId("a"))
    assert bad_gateway.value.message == "Bad Gateway"


@pytest.mark.asyncio
async def test_synchronizer_over_http(asgi_client, store: TaskStore) -> None:
    sync = TaskSynchronizer(HttpTaskGateway(client=asgi_client))
    store.create_task(title="existing")

    await sync.load()
    created = await sync.create("from the client")
    await sync.update(created.id, {"status": "in-progress"})

    assert [t.title for t in sync.tasks] == ["from the client", "existing"]
    assert store.get_task(str(created.id)).status is TaskStatus.IN_PROGRESS
