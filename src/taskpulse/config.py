# src/taskpulse/config.py

"""
Settings for both halves of taskpulse, read from TASKPULSE_* environment
variables (a local .env file is loaded first, without overriding the real
environment).

Every variable is optional: the defaults run `taskpulse serve` on
127.0.0.1:8000 and point `taskpulse console` at it.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

from dotenv import load_dotenv

ENV_PREFIX = "TASKPULSE"

N = TypeVar("N", int, float)

load_dotenv(override=False)


def _raw(suffix: str) -> str | None:
    """Value of TASKPULSE_<suffix>, or None when unset or blank."""
    value = os.getenv(f"{ENV_PREFIX}_{suffix}")
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _str(suffix: str, default: str) -> str:
    return _raw(suffix) or default


def _num(suffix: str, default: N, cast: Callable[[str], N], *, minimum: N | None = None) -> N:
    raw = _raw(suffix)
    try:
        value = cast(raw) if raw is not None else default
    except ValueError:
        value = default
    if minimum is not None and value < minimum:
        return minimum
    return value


def _path(suffix: str, default: Path) -> Path:
    raw = _raw(suffix)
    return Path(raw).expanduser() if raw is not None else default


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data (gitignored) ----
    data_dir: Path
    tasks_db_path: Path

    # ---- Server (taskpulse serve) ----
    server_host: str
    server_port: int

    # ---- Client (taskpulse console) ----
    api_base_url: str
    request_timeout_seconds: float
    feed_reconnect_delay_seconds: float
    tombstone_ttl_seconds: float
    default_status_filter: str | None

    @staticmethod
    def from_env() -> "Settings":
        data_dir = _path("DATA_DIR", Path(".local/taskpulse"))
        host = _str("HOST", "127.0.0.1")
        port = _num("PORT", 8000, int, minimum=1)

        # Empty or "all" means no filter; an unknown status is rejected when the view loads.
        status_filter = _str("STATUS_FILTER", "all").lower()

        return Settings(
            app_name=_str("APP_NAME", "taskpulse"),
            log_level=_str("LOG_LEVEL", "INFO").upper(),
            data_dir=data_dir,
            tasks_db_path=_path("TASKS_DB_PATH", data_dir / "tasks.sqlite3"),
            server_host=host,
            server_port=port,
            api_base_url=_str("API_BASE_URL", f"http://{host}:{port}").rstrip("/"),
            request_timeout_seconds=_num("REQUEST_TIMEOUT_SECONDS", 10.0, float, minimum=0.5),
            feed_reconnect_delay_seconds=_num("FEED_RECONNECT_DELAY_SECONDS", 2.0, float, minimum=0.0),
            tombstone_ttl_seconds=_num("TOMBSTONE_TTL_SECONDS", 30.0, float, minimum=0.0),
            default_status_filter=None if status_filter == "all" else status_filter,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
