# src/taskpulse/tasks/task_validation.py

"""
Field rules for tasks.

The store enforces them authoritatively; the synchronizer runs the same
functions as a fast-fail before anything is sent.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from ..core.errors import ValidationError
from .task_models import TaskStatus

UPDATABLE_FIELDS = ("title", "description", "status")


def clean_title(raw: Any, *, required: bool = True) -> str:
    if not isinstance(raw, str) or raw.strip() == "":
        if required:
            raise ValidationError("Title is required and must be a non-empty string")
        raise ValidationError("Title must be a non-empty string")
    return raw.strip()


def clean_description(raw: Any) -> str | None:
    """Blank or missing descriptions are stored as absent, never as ''."""
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValidationError("Description must be a string")
    return raw.strip() or None


def clean_create_fields(body: Mapping[str, Any]) -> dict[str, Any]:
    title = clean_title(body.get("title"))
    raw_status = body.get("status")
    status = TaskStatus.parse(raw_status) if raw_status else TaskStatus.PENDING
    return {
        "title": title,
        "description": clean_description(body.get("description")),
        "status": status,
    }


def clean_update_fields(body: Mapping[str, Any]) -> dict[str, Any]:
    """
    Validate a partial update.

    Only recognised keys are kept. A body with none of them is rejected.
    """
    fields: dict[str, Any] = {}

    if "title" in body:
        fields["title"] = clean_title(body["title"], required=False)

    if "description" in body:
        fields["description"] = clean_description(body["description"])

    if "status" in body:
        fields["status"] = TaskStatus.parse(body["status"])

    if not fields:
        raise ValidationError("No valid fields to update")
    return fields


def fields_to_wire(fields: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in fields.items():
        out[key] = value.value if isinstance(value, TaskStatus) else value
    return out
