"""Centralized environment configuration for agentpipe.

All environment variables are read through this module using the AGENTPIPE_
prefix for consistency.

Usage:
    from agentpipe.settings import settings

    capacity = settings.buffer_capacity()
"""

from __future__ import annotations

import os


def _get(name: str, default: str = "") -> str:
    """Get an environment variable value."""
    return os.environ.get(name, "").strip() or default


def _get_bool(name: str, default: bool = False) -> bool:
    """Get a boolean environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    return value.lower() in ("1", "true", "yes")


def _get_int(name: str, default: int = 0) -> int:
    """Get an integer environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(name: str, default: float = 0.0) -> float:
    """Get a float environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


class Settings:
    """Centralized settings for agentpipe.

    Environment variables use the AGENTPIPE_ prefix.
    """

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    @staticmethod
    def worker_path() -> str:
        """Explicit path to the worker executable.

        Env: AGENTPIPE_WORKER_PATH

        When empty the worker is looked up on PATH and in common install
        locations.
        """
        return _get("AGENTPIPE_WORKER_PATH")

    @staticmethod
    def worker_name() -> str:
        """Executable name searched for on PATH.

        Env: AGENTPIPE_WORKER_NAME (default: letta)
        """
        return _get("AGENTPIPE_WORKER_NAME", default="letta")

    @staticmethod
    def close_timeout_seconds() -> float:
        """Seconds to wait for the worker to exit before killing it.

        Env: AGENTPIPE_CLOSE_TIMEOUT (default: 5.0)
        """
        value = _get_float("AGENTPIPE_CLOSE_TIMEOUT", default=5.0)
        return value if value > 0 else 5.0

    @staticmethod
    def stream_line_limit() -> int:
        """Maximum length in bytes of a single line read from the worker.

        Env: AGENTPIPE_LINE_LIMIT (default: 10MB)
        """
        value = _get_int("AGENTPIPE_LINE_LIMIT", default=10 * 1024 * 1024)
        return value if value > 0 else 10 * 1024 * 1024

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    @staticmethod
    def buffer_capacity() -> int:
        """Number of undelivered output events kept before the oldest is dropped.

        Env: AGENTPIPE_BUFFER_CAPACITY (default: 100)
        """
        value = _get_int("AGENTPIPE_BUFFER_CAPACITY", default=100)
        return value if value > 0 else 100

    @staticmethod
    def debug_wire() -> bool:
        """Log every envelope sent to and received from the worker.

        Env: AGENTPIPE_DEBUG_WIRE
        """
        return _get_bool("AGENTPIPE_DEBUG_WIRE")

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    @staticmethod
    def log_level() -> str:
        """Log level name.

        Env: AGENTPIPE_LOG_LEVEL (default: INFO)
        """
        return _get("AGENTPIPE_LOG_LEVEL", default="INFO").upper()

    @staticmethod
    def log_format() -> str:
        """Log output format: console or json.

        Env: AGENTPIPE_LOG_FORMAT (default: console)
        """
        return _get("AGENTPIPE_LOG_FORMAT", default="console").lower()

    @staticmethod
    def log_file() -> str:
        """Optional file that receives a copy of all log output.

        Env: AGENTPIPE_LOG_FILE
        """
        return _get("AGENTPIPE_LOG_FILE")


settings = Settings()
