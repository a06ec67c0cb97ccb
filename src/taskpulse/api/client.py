# src/taskpulse/api/client.py

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

import httpx

from ..core.errors import RequestError, TransportError
from ..tasks.task_models import ServerId, Task, TaskStatus, task_from_wire
from ..tasks.task_validation import fields_to_wire

logger = logging.getLogger(__name__)


def _make_timeout(request_timeout_s: float) -> httpx.Timeout:
    return httpx.Timeout(
        connect=min(5.0, request_timeout_s),
        read=request_timeout_s,
        write=request_timeout_s,
        pool=request_timeout_s,
    )


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text.strip() or resp.reason_phrase
    if isinstance(data, dict):
        for key in ("error", "message", "detail"):
            if data.get(key):
                return str(data[key])
    return resp.reason_phrase


class HttpTaskGateway:
    """
    TaskGateway over the Task Store HTTP contract.

    - non-2xx answers  -> RequestError(status_code=...)
    - network failures -> TransportError
    - unreadable body  -> TransportError

    No retries: a failed write is surfaced so the synchronizer can roll back.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 10.0,
        tasks_path: str = "/tasks",
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=_make_timeout(float(timeout_seconds)),
        )
        self._tasks_path = "/" + tasks_path.strip("/")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.info("%s %s failed: %s", method, path, e.__class__.__name__)
            raise TransportError(f"{method} {path} failed: {e.__class__.__name__}: {e}") from e

        if resp.status_code >= 400:
            raise RequestError(_error_message(resp), status_code=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise TransportError(f"{method} {path}: response is not JSON") from e

    @staticmethod
    def _task(data: Any) -> Task:
        try:
            return task_from_wire(data)
        except ValueError as e:
            raise TransportError(f"Malformed task in response: {e}") from e

    async def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        params = {"status": status.value} if status is not None else None
        data = await self._request("GET", self._tasks_path, params=params)
        if not isinstance(data, list):
            raise TransportError("Task listing is not a JSON array")
        return [self._task(item) for item in data]

    async def create_task(
        self,
        *,
        title: str,
        description: str | None = None,
        status: TaskStatus | None = None,
    ) -> Task:
        body: dict[str, Any] = {"title": title, "description": description}
        if status is not None:
            body["status"] = status.value
        return self._task(await self._request("POST", self._tasks_path, json=body))

    async def update_task(self, task_id: ServerId, fields: Mapping[str, Any]) -> Task:
        path = f"{self._tasks_path}/{task_id}"
        return self._task(await self._request("PATCH", path, json=fields_to_wire(fields)))

    async def delete_task(self, task_id: ServerId) -> None:
        await self._request("DELETE", f"{self._tasks_path}/{task_id}")


class SseChangeSource:
    """
    ChangeSource reading the server's `text/event-stream` change feed.

    Each `data:` block is one JSON payload. Blocks that are not valid JSON are
    logged and skipped; the stream itself keeps going.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        client: httpx.AsyncClient | None = None,
        path: str = "/tasks/changes",
        connect_timeout_seconds: float = 5.0,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url)
        self._path = path
        # No read timeout: the feed can be idle for a long time.
        self._timeout = httpx.Timeout(connect=connect_timeout_seconds, read=None, write=10.0, pool=connect_timeout_seconds)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def stream(self) -> AsyncIterator[dict[str, Any]]:
        try:
            async with self._client.stream(
                "GET",
                self._path,
                headers={"Accept": "text/event-stream"},
                timeout=self._timeout,
            ) as resp:
                if resp.status_code != 200:
                    raise TransportError(f"change feed answered HTTP {resp.status_code}")

                data_lines: list[str] = []
                async for line in resp.aiter_lines():
                    if line == "":
                        if data_lines:
                            payload = self._decode("\n".join(data_lines))
                            data_lines = []
                            if payload is not None:
                                yield payload
                        continue
                    if line.startswith(":"):
                        continue
                    field, _, value = line.partition(":")
                    if field == "data":
                        data_lines.append(value[1:] if value.startswith(" ") else value)

                if data_lines:
                    payload = self._decode("\n".join(data_lines))
                    if payload is not None:
                        yield payload
        except httpx.HTTPError as e:
            raise TransportError(f"change feed connection failed: {e.__class__.__name__}: {e}") from e

    @staticmethod
    def _decode(raw: str) -> Any:
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Dropping change event with invalid JSON: %.200s", raw)
            return None
