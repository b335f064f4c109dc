"""Unit tests for the logging configuration module."""

import json
import logging
from unittest.mock import MagicMock, patch

import pytest
import structlog

from steam_update_controller.logging import get_logger, setup_logging


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset root logger and structlog state around each test."""
    original_handlers = logging.root.handlers[:]
    original_level = logging.root.level
    logging.root.handlers.clear()
    yield
    logging.root.handlers.clear()
    logging.root.handlers.extend(original_handlers)
    logging.root.setLevel(original_level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def _settings(log_level="INFO", is_development=False):
    mock_settings = MagicMock()
    mock_settings.log_level = log_level
    mock_settings.is_development = is_development
    mock_settings.steam_app = "tf"
    mock_settings.steam_app_id = "232250"
    mock_settings.namespace = "games"
    return mock_settings


def _console_handler():
    handlers = [h for h in logging.root.handlers if type(h) is logging.StreamHandler]
    assert len(handlers) == 1
    return handlers[0]


class TestSetupLogging:
    """Tests for setup_logging function."""

    @pytest.mark.parametrize(
        ("name", "level"),
        [("DEBUG", logging.DEBUG), ("warning", logging.WARNING), ("NONEXISTENT", logging.INFO)],
    )
    def test_level_from_settings(self, name, level):
        with patch("steam_update_controller.logging.logging.basicConfig") as mock_basic:
            setup_logging(_settings(name))

        mock_basic.assert_called_once_with(format="%(message)s", level=level, handlers=[])
        assert logging.root.level == level

    def test_falls_back_to_cached_settings(self):
        with patch(
            "steam_update_controller.logging.get_settings", return_value=_settings("DEBUG")
        ) as mock_get:
            setup_logging()

        mock_get.assert_called_once_with()
        assert logging.root.level == logging.DEBUG

    def test_console_handler_uses_processor_formatter(self):
        setup_logging(_settings())

        formatter = _console_handler().formatter
        assert isinstance(formatter, structlog.stdlib.ProcessorFormatter)
        assert isinstance(formatter.processors[-1], structlog.processors.JSONRenderer)

    def test_development_renders_console(self):
        setup_logging(_settings(is_development=True))

        formatter = _console_handler().formatter
        assert isinstance(formatter.processors[-1], structlog.dev.ConsoleRenderer)

    def test_structlog_events_go_through_stdlib(self):
        setup_logging(_settings())

        config = structlog.get_config()
        assert isinstance(config["logger_factory"], structlog.stdlib.LoggerFactory)
        assert config["processors"][-1] is structlog.stdlib.ProcessorFormatter.wrap_for_formatter

    def test_http_loggers_quietened(self):
        setup_logging(_settings("DEBUG"))

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING


class TestRenderedOutput:
    """Tests for what actually reaches stdout in production mode."""

    def test_own_events_are_json_with_controller_context(self, capsys):
        setup_logging(_settings())

        get_logger("steam_update_controller.tests").info("update_available", latest="1002")

        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert line["event"] == "update_available"
        assert line["latest"] == "1002"
        assert line["level"] == "info"
        assert line["logger"] == "steam_update_controller.tests"
        assert line["steam_app_id"] == "232250"
        assert line["namespace"] == "games"
        assert "timestamp" in line

    def test_third_party_records_are_json(self, capsys):
        setup_logging(_settings())

        logging.getLogger("httpx").warning("connection pool is full")

        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert line["event"] == "connection pool is full"
        assert line["logger"] == "httpx"
        assert line["level"] == "warning"
        assert line["steam_app"] == "tf"

    def test_below_level_is_dropped(self, capsys):
        setup_logging(_settings("WARNING"))

        get_logger("steam_update_controller.tests").info("checking_for_updates")

        assert capsys.readouterr().out == ""

    def test_exceptions_are_rendered(self, capsys):
        setup_logging(_settings())
        log = get_logger("steam_update_controller.tests")

        try:
            raise RuntimeError("unexpected payload")
        except RuntimeError:
            log.exception("update_cycle_crashed")

        line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert line["event"] == "update_cycle_crashed"
        assert "RuntimeError: unexpected payload" in line["exception"]


def test_get_logger_returns_bindable_logger():
    log = get_logger("steam_update_controller.test")
    assert hasattr(log, "bind")
    assert hasattr(log, "info")
