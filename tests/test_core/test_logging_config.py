import json
import logging
import sys
from unittest.mock import Mock, patch

import pytest

from core.logging_config import (
    ColoredConsoleFormatter,
    RequestContextFilter,
    StructuredFormatter,
    correlation_id,
    current_user_id,
    get_correlation_id,
    get_logger,
    get_logging_config,
    get_user_id,
    log_function_call,
    set_correlation_id,
    set_user_id,
)


def make_record(message="Test message", **extra):
    record = logging.LogRecord(
        name="services.chat_service",
        level=logging.INFO,
        pathname="chat_service.py",
        lineno=42,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def reset_request_context():
    corr_token = correlation_id.set(None)
    user_token = current_user_id.set(None)
    yield
    correlation_id.reset(corr_token)
    current_user_id.reset(user_token)


class TestLoggingConfig:
    """Test the dictConfig built for each environment."""

    def test_development_uses_colored_console(self):
        with patch.dict("os.environ", {"ENVIRONMENT": "development", "LOG_LEVEL": "debug"}):
            config = get_logging_config()

        console = config["handlers"]["console"]
        assert console["formatter"] == "colored_console"
        assert console["level"] == "DEBUG"
        assert "file" not in config["handlers"]

    def test_production_uses_structured_output_and_file(self):
        with patch.dict("os.environ", {"ENVIRONMENT": "production", "LOG_LEVEL": "INFO"}):
            config = get_logging_config()

        assert config["handlers"]["console"]["formatter"] == "structured"
        assert config["handlers"]["file"]["formatter"] == "structured"
        assert "file" in config["loggers"]["services"]["handlers"]
        assert "file" in config["root"]["handlers"]

    def test_application_loggers_configured(self):
        with patch.dict("os.environ", {"ENVIRONMENT": "test"}):
            config = get_logging_config()

        for name in ("api", "services", "core", "providers"):
            assert config["loggers"][name]["handlers"] == ["console"]
        assert config["loggers"]["sqlalchemy.engine"]["level"] == "WARNING"
        assert config["handlers"]["console"]["filters"] == ["request_context"]

    def test_get_logger(self):
        logger = get_logger("services.presence_service")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "services.presence_service"


class TestRequestContextFilter:
    def test_adds_current_correlation_id(self):
        set_correlation_id("corr-123")
        record = make_record()

        assert RequestContextFilter().filter(record) is True
        assert record.correlation_id == "corr-123"

    def test_leaves_record_alone_without_id(self):
        record = make_record()

        assert RequestContextFilter().filter(record) is True
        assert not hasattr(record, "correlation_id")

    def test_get_correlation_id(self):
        assert get_correlation_id() is None
        set_correlation_id("abc")
        assert get_correlation_id() == "abc"

    def test_adds_authenticated_user(self):
        set_user_id("u" * 32)
        record = make_record()

        RequestContextFilter().filter(record)

        assert record.user_id == "u" * 32
        assert get_user_id() == "u" * 32

    def test_explicit_value_is_kept(self):
        set_correlation_id("from-context")
        record = make_record(correlation_id="explicit")

        RequestContextFilter().filter(record)

        assert record.correlation_id == "explicit"


class TestFormatters:
    def test_structured_formatter_outputs_json(self):
        set_correlation_id("corr-json")
        set_user_id("user-1")
        record = make_record("Chat created", chat_id="c1")
        RequestContextFilter().filter(record)

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "services.chat_service"
        assert entry["message"] == "Chat created"
        assert entry["line"] == 42
        assert entry["correlation_id"] == "corr-json"
        assert entry["user_id"] == "user-1"
        assert entry["extra"] == {"chat_id": "c1"}

    def test_structured_formatter_includes_exception(self):
        try:
            raise ValueError("bad frame")
        except ValueError:
            record = make_record("Failed")
            record.exc_info = sys.exc_info()

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["exception"]["type"] == "ValueError"
        assert entry["exception"]["message"] == "bad frame"
        assert "Traceback" in entry["exception"]["traceback"]

    def test_colored_formatter(self):
        record = make_record("Hello", correlation_id="corr-7", user_id="user-7")

        output = ColoredConsoleFormatter().format(record)

        assert "INFO" in output
        assert "[corr-7 user-7]" in output
        assert "Hello" in output
        assert output.startswith("\033[32m")


class TestLogFunctionCall:
    """Test the log_function_call decorator."""

    def test_sync_function(self):
        logger = Mock()

        @log_function_call(logger)
        def add(a, b):
            return a + b

        assert add(2, 3) == 5
        assert logger.debug.call_count == 2
        assert add.__name__ == "add"

    @pytest.mark.asyncio
    async def test_async_function(self):
        logger = Mock()

        @log_function_call(logger)
        async def fetch(value):
            return value

        assert await fetch("x") == "x"
        completed = logger.debug.call_args_list[-1]
        assert completed.kwargs["extra"]["success"] is True

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_reraised(self):
        logger = Mock()

        @log_function_call(logger)
        async def broken():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await broken()

        logger.warning.assert_called_once()
        assert logger.warning.call_args.kwargs["extra"]["error_type"] == "RuntimeError"
