# src/taskpulse/connectors/console_connector.py

from __future__ import annotations

import logging
import sys
import threading
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..tasks.task_models import Task

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("/exit", "/quit")


class _Printer:
    """Timestamped stdout writer shared by the prompt thread and the sync thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @staticmethod
    def stamp() -> str:
        return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")

    def line(self, text: str, *, leading_newline: bool = False) -> None:
        prefix = "\n" if leading_newline else ""
        with self._lock:
            print(f"{prefix}[{self.stamp()}] {text}", flush=True)

    def echo_input(self, user_input: str) -> None:
        """Re-print the prompt line with a timestamp (in place on a TTY)."""
        text = f"[{self.stamp()}] >>> {user_input}"
        with self._lock:
            try:
                if sys.stdout.isatty():
                    sys.stdout.write("\033[1A\033[2K\r" + text + "\n")
                    sys.stdout.flush()
                    return
            except OSError:
                pass
            print(text)


def live_notice(reason: str, tasks: tuple[Task, ...]) -> str | None:
    """One-line notice for changes that came from the feed (not from this console)."""
    if not reason.startswith("feed:"):
        return None
    kind = reason.split(":", 1)[1]
    return f"[live] remote {kind}; {len(tasks)} task(s) visible. /list to show."


def run_console_loop(state: AppState) -> None:
    out = _Printer()
    logger.info("Console started (api=%s).", getattr(state.settings, "api_base_url", "?"))
    out.line("[CONSOLE] Live task list. Use /help for commands, /exit to quit.\n")

    def on_view_change(reason: str, tasks: tuple[Task, ...]) -> None:
        # Called on the sync thread.
        notice = live_notice(reason, tasks)
        if notice:
            out.line(notice, leading_newline=True)

    remove_listener = state.synchronizer.add_listener(on_view_change)
    try:
        while True:
            try:
                user_input = input(">>> ").strip()
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console interrupted, exiting.")
                print()
                break

            out.echo_input(user_input)
            if not user_input:
                continue
            if user_input.lower() in EXIT_COMMANDS:
                break

            try:
                reply = command_registry.handle(state, user_input, emit=out.line)
            except Exception:
                logger.exception("Command failed: %s", user_input)
                reply = "Internal error while handling a command."

            out.line(reply or "Commands start with '/'. Try /add <title> or /help.")
    finally:
        remove_listener()

    logger.info("Console finished.")
