"""taskpulse: a live task list kept in sync with a shared Task Store."""

__version__ = "0.1.0"
