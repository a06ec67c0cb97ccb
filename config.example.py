# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
See src/taskpulse/config.py. Every variable is optional.
"""

ENV_VARS = {
    # App / logging
    "TASKPULSE_APP_NAME": "App display name (default: taskpulse).",
    "TASKPULSE_LOG_LEVEL": "Console logging level (default: INFO). The log file always gets DEBUG.",
    # Paths (gitignored)
    "TASKPULSE_DATA_DIR": "Local data directory for logs and the database (default: .local/taskpulse).",
    "TASKPULSE_TASKS_DB_PATH": "Task Store SQLite path (default: <data_dir>/tasks.sqlite3).",
    # Server (taskpulse serve)
    "TASKPULSE_HOST": "Bind address (default: 127.0.0.1).",
    "TASKPULSE_PORT": "Port (default: 8000).",
    # Client (taskpulse console)
    "TASKPULSE_API_BASE_URL": "Task Store URL (default: http://<host>:<port>).",
    "TASKPULSE_REQUEST_TIMEOUT_SECONDS": "Per-request timeout for CRUD calls (default: 10, min 0.5).",
    "TASKPULSE_FEED_RECONNECT_DELAY_SECONDS": "Delay before re-subscribing to the change feed (default: 2).",
    "TASKPULSE_TOMBSTONE_TTL_SECONDS": "How long deleted ids are remembered to ignore stale inserts (default: 30, 0 disables).",
    "TASKPULSE_STATUS_FILTER": "Initial status filter: pending | in-progress | completed | all (default: all).",
}
