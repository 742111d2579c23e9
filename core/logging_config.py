"""
Logging Configuration for the Coded Signal API.

Centralized logging setup. Development gets colored, human-readable console
output; every other environment gets one JSON object per line so the logs can
be shipped to a log store.

Every record is stamped with the request context it was emitted in:
- `correlation_id`: set by `CorrelationMiddleware` for each HTTP request.
- `user_id`: the authenticated caller, set when a bearer token is verified
  and for the lifetime of a websocket connection.

Both live in `ContextVar`s, so concurrent requests and websocket sessions on
the same event loop never see each other's values.

Key Components:
- `RequestContextFilter`: copies the context values onto log records.
- `StructuredFormatter` / `ColoredConsoleFormatter`: production and
  development output.
- `get_logging_config` / `setup_logging`: build and apply the `dictConfig`.
- `log_function_call`: decorator logging entry, exit and duration of sync or
  async callables. Routers put it on their write endpoints.
"""

import asyncio
import functools
import json
import logging
import logging.config
import os
import time
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Optional

from core import config

correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
current_user_id: ContextVar[Optional[str]] = ContextVar("current_user_id", default=None)

APP_LOGGERS = ("api", "services", "core", "providers")
LIBRARY_LOG_LEVELS = {
    "uvicorn": "INFO",
    "uvicorn.access": "INFO",
    "sqlalchemy.engine": "WARNING",
    "google.auth": "WARNING",
}

CONTEXT_ATTRS = ("correlation_id", "user_id")

# Attributes every LogRecord has; anything else came in through `extra`
_RECORD_ATTRS = set(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName", *CONTEXT_ATTRS}


class RequestContextFilter(logging.Filter):
    """Adds the correlation ID and the authenticated user to log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        for attr, var in (("correlation_id", correlation_id), ("user_id", current_user_id)):
            value = var.get()
            if value and not getattr(record, attr, None):
                setattr(record, attr, value)
        return True


class ColoredConsoleFormatter(logging.Formatter):
    """Colored console formatter for development"""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")

        context = " ".join(
            str(getattr(record, attr))
            for attr in CONTEXT_ATTRS
            if getattr(record, attr, None)
        )
        context = f" [{context}]" if context else ""

        formatted = (
            f"{color}[{timestamp}] {record.levelname:8} {record.name}{context}: "
            f"{record.getMessage()}{self.RESET}"
        )
        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)
        return formatted


class StructuredFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for attr in CONTEXT_ATTRS:
            value = getattr(record, attr, None)
            if value:
                log_entry[attr] = value

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        extra = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        if extra:
            log_entry["extra"] = extra

        return json.dumps(log_entry, default=str)


def get_logging_config() -> Dict[str, Any]:
    """Build the dictConfig for the current ENVIRONMENT and LOG_LEVEL"""

    environment = os.getenv("ENVIRONMENT", config.ENVIRONMENT).lower()
    log_level = os.getenv("LOG_LEVEL", config.LOG_LEVEL).upper()

    handlers = ["console"]
    handler_config: Dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": "colored_console" if environment == "development" else "structured",
            "filters": ["request_context"],
            "stream": "ext://sys.stdout",
        },
    }

    if environment == "production":
        handler_config["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "structured",
            "filters": ["request_context"],
            "filename": config.LOG_FILE,
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
        }
        handlers.append("file")

    loggers = {
        name: {"level": log_level, "handlers": list(handlers), "propagate": False}
        for name in APP_LOGGERS
    }
    for name, level in LIBRARY_LOG_LEVELS.items():
        loggers[name] = {"level": level, "handlers": list(handlers), "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"request_context": {"()": RequestContextFilter}},
        "formatters": {
            "structured": {"()": StructuredFormatter},
            "colored_console": {"()": ColoredConsoleFormatter},
        },
        "handlers": handler_config,
        "loggers": loggers,
        "root": {"level": log_level, "handlers": list(handlers)},
    }


def setup_logging():
    """Initialize logging configuration"""
    logging.config.dictConfig(get_logging_config())

    environment = os.getenv("ENVIRONMENT", config.ENVIRONMENT)
    logging.getLogger("core.logging").info(f"Logging initialized for {environment} environment")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_correlation_id(corr_id: str):
    correlation_id.set(corr_id)


def get_correlation_id() -> Optional[str]:
    return correlation_id.get()


def set_user_id(user_id: Optional[str]):
    """Attach the authenticated user to everything logged from this context"""
    current_user_id.set(user_id)


def get_user_id() -> Optional[str]:
    return current_user_id.get()


def _log_outcome(logger: logging.Logger, name: str, started: float, error: Exception = None):
    elapsed_ms = round((time.time() - started) * 1000, 2)
    if error is None:
        logger.debug(
            f"Completed {name}",
            extra={"function_name": name, "execution_time_ms": elapsed_ms, "success": True},
        )
    else:
        logger.warning(
            f"Failed {name}: {error}",
            extra={
                "function_name": name,
                "execution_time_ms": elapsed_ms,
                "success": False,
                "error_type": type(error).__name__,
            },
        )


def log_function_call(logger: logging.Logger):
    """Decorator to log function calls with parameters and execution time"""

    def decorator(func):
        name = func.__name__

        def log_call(args, kwargs) -> float:
            logger.debug(
                f"Calling {name}",
                extra={
                    "function_name": name,
                    "args_count": len(args),
                    "kwargs_keys": list(kwargs.keys()),
                },
            )
            return time.time()

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            started = log_call(args, kwargs)
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                _log_outcome(logger, name, started, e)
                raise
            _log_outcome(logger, name, started)
            return result

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            started = log_call(args, kwargs)
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                _log_outcome(logger, name, started, e)
                raise
            _log_outcome(logger, name, started)
            return result

        return async_wrapper if asyncio.iscoroutinefunction(func) else sync_wrapper

    return decorator
