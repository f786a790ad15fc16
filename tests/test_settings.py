"""Unit tests for settings module."""

import os
import pytest

from agentpipe.settings import Settings


@pytest.fixture
def clean_env(monkeypatch):
    """Remove all AGENTPIPE_ env vars for clean tests."""
    for key in list(os.environ.keys()):
        if key.startswith("AGENTPIPE_"):
            monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestBoolSettings:
    """Test boolean environment variable parsing."""

    def test_debug_wire_default_false(self, clean_env) -> None:
        assert Settings.debug_wire() is False

    def test_debug_wire_true_values(self, clean_env) -> None:
        for value in ["1", "true", "TRUE", "yes", "YES"]:
            clean_env.setenv("AGENTPIPE_DEBUG_WIRE", value)
            assert Settings.debug_wire() is True

    def test_debug_wire_false_values(self, clean_env) -> None:
        for value in ["0", "false", "no", "random"]:
            clean_env.setenv("AGENTPIPE_DEBUG_WIRE", value)
            assert Settings.debug_wire() is False


class TestIntSettings:
    """Test numeric environment variable parsing."""

    def test_buffer_capacity_default(self, clean_env) -> None:
        assert Settings.buffer_capacity() == 100

    def test_buffer_capacity_custom(self, clean_env) -> None:
        clean_env.setenv("AGENTPIPE_BUFFER_CAPACITY", "250")
        assert Settings.buffer_capacity() == 250

    def test_buffer_capacity_invalid_returns_default(self, clean_env) -> None:
        clean_env.setenv("AGENTPIPE_BUFFER_CAPACITY", "lots")
        assert Settings.buffer_capacity() == 100
        clean_env.setenv("AGENTPIPE_BUFFER_CAPACITY", "-3")
        assert Settings.buffer_capacity() == 100

    def test_close_timeout(self, clean_env) -> None:
        assert Settings.close_timeout_seconds() == 5.0
        clean_env.setenv("AGENTPIPE_CLOSE_TIMEOUT", "0.5")
        assert Settings.close_timeout_seconds() == 0.5
        clean_env.setenv("AGENTPIPE_CLOSE_TIMEOUT", "soon")
        assert Settings.close_timeout_seconds() == 5.0

    def test_line_limit_default(self, clean_env) -> None:
        assert Settings.stream_line_limit() == 10 * 1024 * 1024


class TestStringSettings:
    """Test string settings."""

    def test_worker_defaults(self, clean_env) -> None:
        assert Settings.worker_path() == ""
        assert Settings.worker_name() == "letta"

    def test_log_level_uppercased(self, clean_env) -> None:
        assert Settings.log_level() == "INFO"
        clean_env.setenv("AGENTPIPE_LOG_LEVEL", "debug")
        assert Settings.log_level() == "DEBUG"

    def test_log_format_lowercased(self, clean_env) -> None:
        assert Settings.log_format() == "console"
        clean_env.setenv("AGENTPIPE_LOG_FORMAT", "JSON")
        assert Settings.log_format() == "json"

    def test_whitespace_treated_as_unset(self, clean_env) -> None:
        clean_env.setenv("AGENTPIPE_WORKER_PATH", "   ")
        assert Settings.worker_path() == ""
