# src/taskpulse/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from ..core.errors import ValidationError


class TaskStatus(StrEnum):
    """
    Task status.

    No workflow is enforced: any status is reachable from any other.
    """

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, raw: Any) -> TaskStatus:
        if isinstance(raw, cls):
            return raw
        try:
            return cls(raw)
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValidationError(f"Status must be one of: {valid}") from None


@dataclass(slots=True, frozen=True)
class ServerId:
    """Identity assigned by the Task Store. Globally unique and stable."""

    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True, frozen=True)
class LocalId:
    """Identity of a task created on this client and not yet confirmed by the store."""

    value: int

    def __str__(self) -> str:
        return f"local-{self.value}"


TaskId = LocalId | ServerId


@dataclass(slots=True, frozen=True)
class Task:
    id: TaskId
    title: str
    status: TaskStatus
    created_at: datetime
    updated_at: datetime
    description: str | None = None

    @property
    def is_confirmed(self) -> bool:
        return isinstance(self.id, ServerId)


def utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_ts(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        ts = raw
    elif isinstance(raw, bool):
        raise ValueError(f"unsupported timestamp: {raw!r}")
    elif isinstance(raw, (int, float)):
        try:
            ts = datetime.fromtimestamp(float(raw), UTC)
        except (OverflowError, OSError) as e:
            raise ValueError(f"timestamp out of range: {raw!r}") from e
    elif isinstance(raw, str):
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    else:
        raise ValueError(f"unsupported timestamp: {raw!r}")
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


def task_from_wire(data: dict[str, Any]) -> Task:
    """
    Build a server-confirmed Task from its JSON representation.

    Raises ValueError (or a subclass) on missing/invalid fields.
    """
    if not isinstance(data, dict):
        raise ValueError("task payload must be an object")
    raw_id = data.get("id")
    if raw_id is None or str(raw_id).strip() == "":
        raise ValueError("task payload is missing 'id'")
    title = data.get("title")
    if not isinstance(title, str):
        raise ValueError("task payload is missing 'title'")
    description = data.get("description")
    return Task(
        id=ServerId(str(raw_id)),
        title=title,
        description=description if isinstance(description, str) and description else None,
        status=TaskStatus.parse(data.get("status")),
        created_at=_parse_ts(data.get("created_at")),
        updated_at=_parse_ts(data.get("updated_at")),
    )


def task_to_wire(task: Task) -> dict[str, Any]:
    return {
        "id": str(task.id),
        "title": task.title,
        "description": task.description,
        "status": task.status.value,
        "created_at": task.created_at.isoformat(),
        "updated_at": task.updated_at.isoformat(),
    }
