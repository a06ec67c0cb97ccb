# src/taskpulse/connectors/sync_runner.py

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

from ..core.errors import FetchError
from ..core.state import AppState

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _run_sync_view(state: AppState, stop_event: asyncio.Event) -> None:
    """
    Own the synchronizer for the lifetime of the console view:

    start (subscribe + initial load) -> wait for stop -> release subscription

    Shutdown model:
    - main thread sets stop_event via loop.call_soon_threadsafe(stop_event.set)
    """
    sync = state.synchronizer
    try:
        try:
            await sync.start()
            logger.info("Sync view started with %d tasks.", len(sync.tasks))
        except FetchError as e:
            # The subscription is already up; the user can /reload later.
            logger.warning("Initial load failed: %s", e)

        await stop_event.wait()

    except asyncio.CancelledError:
        logger.info("Sync view cancelled.")
    except Exception:
        logger.exception("Sync view crashed.")
    finally:
        with contextlib.suppress(Exception):
            await sync.close()

        for closable in state.closables:
            try:
                await closable.aclose()
            except Exception:
                logger.debug("Failed to close %r.", closable, exc_info=True)

        logger.info("Sync view stopped.")


@dataclass
class SyncBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def call(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        fut = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return fut.result(timeout=timeout)

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except Exception:
            logger.debug("Failed to signal sync stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_sync_in_background(state: AppState) -> SyncBackgroundRunner | None:
    """
    Start the synchronizer in a background thread (so console REPL can run in parallel).

    Why a thread:
    - console REPL is blocking (input()).
    - the synchronizer is async and wants its own event loop.
    """
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(_run_sync_view(state, stop_event))
        finally:
            with contextlib.suppress(Exception):
                loop.run_until_complete(loop.shutdown_asyncgens())
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="taskpulse-sync", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Sync thread did not initialize properly.")
        return None

    runner_obj = SyncBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
    state.runner = runner_obj
    logger.info("Sync background thread started.")
    return runner_obj
