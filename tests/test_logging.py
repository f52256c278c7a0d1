"""Tests for cadence.logging."""

import pytest
import structlog

from cadence.errors import ConfigError
from cadence.logging import LogContext, bind_context, configure_logging, unbind_context


@pytest.fixture
def reset_structlog():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


class TestConfigureLogging:
    """Test renderer selection."""

    def test_json_renderer(self, reset_structlog):
        configure_logging(level="DEBUG", json_format=True)
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_console_renderer(self, reset_structlog):
        configure_logging(level="WARNING", json_format=False)
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)

    def test_unknown_level(self, reset_structlog):
        with pytest.raises(ConfigError):
            configure_logging(level="CHATTY")


class TestLogContext:
    """Test scoped context binding."""

    def test_binds_and_unbinds(self, reset_structlog):
        with LogContext(pass_id="abc123"):
            assert structlog.contextvars.get_contextvars()["pass_id"] == "abc123"
        assert "pass_id" not in structlog.contextvars.get_contextvars()

    def test_nested_restores_outer(self, reset_structlog):
        with LogContext(pass_id="outer"):
            with LogContext(pass_id="inner", task="app.T"):
                assert structlog.contextvars.get_contextvars()["pass_id"] == "inner"
            assert structlog.contextvars.get_contextvars() == {"pass_id": "outer"}

    def test_bind_helpers(self, reset_structlog):
        bind_context(task="app.T")
        assert structlog.contextvars.get_contextvars() == {"task": "app.T"}
        unbind_context("task")
        assert structlog.contextvars.get_contextvars() == {}
