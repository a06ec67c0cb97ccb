# src/taskpulse/core/errors.py

"""
Error taxonomy shared by the synchronizer, the HTTP gateway and the store.

Client side:
- ValidationError: bad input detected locally, the request never leaves the client
- RequestError: the store answered with an error status (bad field, not found, store failure)
- TransportError: network / feed failure, no usable answer from the store
- FetchError: a load() failed (wraps RequestError / TransportError)
- ChangeFeedParseError: a change payload had an unexpected shape

Store side:
- TaskNotFoundError, StoreError
"""

from __future__ import annotations


class TaskSyncError(Exception):
    """Base class for every error raised by taskpulse."""


class ValidationError(TaskSyncError, ValueError):
    """Input rejected by the field rules (title, description, status, patch)."""


class RequestError(TaskSyncError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.message} (HTTP {self.status_code})"


class TransportError(TaskSyncError):
    """The store could not be reached or answered with something unreadable."""


class FetchError(TaskSyncError):
    """load() failed; the previous visible collection is kept."""


class ChangeFeedParseError(TaskSyncError):
    """A change-feed payload could not be turned into a ChangeEvent."""


class TaskNotFoundError(TaskSyncError, LookupError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class StoreError(TaskSyncError):
    """The backing database failed."""
