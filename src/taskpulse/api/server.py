# src/taskpulse/api/server.py

"""
Task Store HTTP endpoint.

POST   /tasks           create (201)
GET    /tasks?status=   list, newest first
PATCH  /tasks/{id}      partial update
DELETE /tasks/{id}      delete (idempotent)
GET    /tasks/changes   change feed as server-sent events

Errors are returned as {"error": "<message>"}.

Run with:
    taskpulse serve
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any, TypeVar

from fastapi import FastAPI, Request
from fastapi import status as http_status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from ..core.errors import StoreError, TaskNotFoundError, ValidationError
from ..tasks.change_feed import ChangeHub
from ..tasks.task_models import task_to_wire
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON body") from None
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def create_app(store: TaskStore | None = None, hub: ChangeHub | None = None, *, settings=None) -> FastAPI:
    """
    Build the FastAPI app.

    If store is None, a TaskStore is opened at settings.tasks_db_path.
    The store's change listener is wired to the hub.
    """
    if store is None:
        if settings is None:
            from ..config import get_settings

            settings = get_settings()
        store = TaskStore(settings.tasks_db_path)

    hub = hub if hub is not None else ChangeHub()
    loops: dict[str, asyncio.AbstractEventLoop] = {}

    def publish_on_loop(payload: dict[str, Any]) -> None:
        # Called on a threadpool worker; the hub's queues belong to the event loop.
        loops["app"].call_soon_threadsafe(hub.publish, payload)

    async def call_store(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking TaskStore call off the event loop."""
        loops["app"] = asyncio.get_running_loop()
        return await run_in_threadpool(fn, *args, **kwargs)

    store.set_change_listener(publish_on_loop)

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        # End open change streams so the server can shut down.
        hub.close()

    app = FastAPI(
        title="taskpulse Task Store",
        description="CRUD endpoint and change feed for tasks",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.hub = hub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.info("[tasks] 400 on %s %s: %s", request.method, request.url.path, exc)
        return _error(http_status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(TaskNotFoundError)
    async def not_found_handler(request: Request, exc: TaskNotFoundError) -> JSONResponse:
        logger.info("[tasks] 404 on %s %s", request.method, request.url.path)
        return _error(http_status.HTTP_404_NOT_FOUND, "Task not found")

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
        logger.error("[tasks] store error on %s %s: %s", request.method, request.url.path, exc)
        return _error(http_status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("[tasks] unexpected error on %s %s", request.method, request.url.path)
        return _error(http_status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/tasks/changes")
    async def stream_changes() -> StreamingResponse:
        logger.info("[tasks] change feed subscriber connected (total=%d)", hub.subscriber_count + 1)

        async def events() -> AsyncIterator[str]:
            # Comment line so the client sees the stream open before the first change.
            yield ": connected\n\n"
            async for payload in hub.stream():
                yield f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.post("/tasks", status_code=http_status.HTTP_201_CREATED)
    async def create_task(request: Request) -> dict[str, Any]:
        body = await _json_body(request)
        logger.info("[tasks] POST /tasks")
        task = await call_store(
            store.create_task,
            title=body.get("title"),
            description=body.get("description"),
            status=body.get("status"),
        )
        logger.info("[tasks] created id=%s", task.id)
        return task_to_wire(task)

    @app.get("/tasks")
    async def list_tasks(status: str | None = None) -> list[dict[str, Any]]:
        logger.info("[tasks] GET /tasks status=%s", status)
        tasks = await call_store(store.list_tasks, status)
        logger.info("[tasks] found %d tasks", len(tasks))
        return [task_to_wire(t) for t in tasks]

    @app.patch("/tasks/{task_id}")
    async def update_task(task_id: str, request: Request) -> dict[str, Any]:
        body = await _json_body(request)
        logger.info("[tasks] PATCH /tasks/%s fields=%s", task_id, sorted(body))
        task = await call_store(store.update_task, task_id, body)
        return task_to_wire(task)

    @app.delete("/tasks/{task_id}")
    async def delete_task(task_id: str) -> dict[str, str]:
        logger.info("[tasks] DELETE /tasks/%s", task_id)
        await call_store(store.delete_task, task_id)
        return {"message": "Task deleted successfully"}

    return app
