# src/taskpulse/cli/main.py

"""
CLI entrypoint.

    taskpulse [console]   interactive task list kept live by the synchronizer
    taskpulse serve       run the Task Store HTTP endpoint (uvicorn)

Initializes logging from settings first, then starts the selected mode.
"""

from __future__ import annotations

import argparse
import logging
import signal

from ..cli.bootstrap import create_initial_state, ensure_local_dirs
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..connectors.sync_runner import start_sync_in_background
from ..logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskpulse", description="Live task tracker.")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("console", help="Interactive task list (default).")

    serve = sub.add_parser("serve", help="Run the Task Store HTTP endpoint.")
    serve.add_argument("--host", default=None, help="Bind address (TASKPULSE_HOST).")
    serve.add_argument("--port", type=int, default=None, help="Port (TASKPULSE_PORT).")
    return parser


def run_server(settings, *, host: str | None = None, port: int | None = None) -> None:
    import uvicorn

    from ..api.server import create_app

    ensure_local_dirs(settings)
    app = create_app(settings=settings)

    bind_host = host or settings.server_host
    bind_port = port or settings.server_port
    logger.info("Serving tasks on http://%s:%d (db=%s)", bind_host, bind_port, settings.tasks_db_path)

    # log_config=None keeps our logging setup instead of uvicorn's.
    uvicorn.run(app, host=bind_host, port=bind_port, log_config=None)


def run_console(settings) -> None:
    state = create_initial_state(settings=settings)
    runner = start_sync_in_background(state)
    if runner is None:
        logger.error("Could not start the sync loop; exiting.")
        return

    def _on_sigterm(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        raise KeyboardInterrupt

    try:
        signal.signal(signal.SIGTERM, _on_sigterm)
    except (ValueError, OSError, AttributeError):
        # Not available on every platform (or outside the main thread).
        pass

    try:
        run_console_loop(state)
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    finally:
        runner.stop()
        runner.join(timeout=10.0)


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    settings = get_settings()

    console_level = logging.getLevelNamesMapping().get(settings.log_level, logging.INFO)
    log_file = setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s (%s), log file %s", settings.app_name, args.command or "console", log_file)

    if args.command == "serve":
        run_server(settings, host=args.host, port=args.port)
    else:
        run_console(settings)

    logger.info("Bye.")


if __name__ == "__main__":
    main()
