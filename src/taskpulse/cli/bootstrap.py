# src/taskpulse/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the HTTP gateway, the SSE change source and the synchronizer into AppState.
"""

from __future__ import annotations

import logging

from ..api.client import HttpTaskGateway, SseChangeSource
from ..config import get_settings
from ..core.state import AppState
from ..tasks.task_sync import TaskSynchronizer

logger = logging.getLogger(__name__)


def ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    ensure_local_dirs(settings)

    gateway = HttpTaskGateway(
        settings.api_base_url,
        timeout_seconds=settings.request_timeout_seconds,
    )
    feed_source = SseChangeSource(settings.api_base_url)

    synchronizer = TaskSynchronizer(
        gateway,
        feed_source,
        status_filter=settings.default_status_filter,
        tombstone_ttl_seconds=settings.tombstone_ttl_seconds,
        reconnect_delay_seconds=settings.feed_reconnect_delay_seconds,
    )
    logger.info("Client wired to %s (filter=%s)", settings.api_base_url, settings.default_status_filter or "all")

    return AppState(
        settings=settings,
        synchronizer=synchronizer,
        closables=[gateway, feed_source],
    )
