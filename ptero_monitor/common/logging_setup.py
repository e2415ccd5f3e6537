"""
Structured Logging Setup

Consistent logging configuration for the supervisor and every target.
Console output tags each line with the target's name, coloured with the
target's configured console colour. JSON output is available for log
shipping.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

ROOT_LOGGER = "ptero_monitor"

ANSI_RESET = "\033[0m"

# Console colour names (case-insensitive) to ANSI escape codes
ANSI_COLORS: dict[str, str] = {
    "black": "\033[30m",
    "darkblue": "\033[34m",
    "darkgreen": "\033[32m",
    "darkcyan": "\033[36m",
    "darkred": "\033[31m",
    "darkmagenta": "\033[35m",
    "darkyellow": "\033[33m",
    "gray": "\033[37m",
    "darkgray": "\033[90m",
    "blue": "\033[94m",
    "green": "\033[92m",
    "cyan": "\033[96m",
    "red": "\033[91m",
    "magenta": "\033[95m",
    "yellow": "\033[93m",
    "white": "\033[97m",
}

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName", "asctime",
}


def colored_label(name: str | None, color: str | None) -> str:
    """
    Render the bracketed target label for console output.

    Unknown or missing colours give a plain label; records without a
    target get "[NoServer]".
    """
    if not name:
        return "[NoServer]"

    label = f"[{name}]"
    code = ANSI_COLORS.get((color or "").lower())
    if code is None:
        return label
    return f"{code}{label}{ANSI_RESET}"


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    Human readable formatter: `HH:MM:SS [target] message`.

    The target label comes from the `target` and `log_color` extras set
    by TargetLoggerAdapter; the message itself is not prefixed again.
    """

    def __init__(self, use_color: bool = True):
        super().__init__(datefmt="%H:%M:%S")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        target = getattr(record, "target", None)
        color = getattr(record, "log_color", None) if self.use_color else None
        label = colored_label(target, color)

        line = (
            f"{self.formatTime(record, self.datefmt)} {label} "
            f"{record.levelname[:4]} {record.getMessage()}"
        )
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


class TargetLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter bound to one monitored server.

    Adds `service`, `target` and `log_color` to every record. JSON output
    keeps the bare message; console output renders the coloured label.
    """

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = kwargs.setdefault("extra", {})
        extra["service"] = self.extra.get("service", "orchestrator")
        extra["target"] = self.extra.get("target")
        extra["log_color"] = self.extra.get("log_color")
        return msg, kwargs


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    stream=None,
) -> logging.Logger:
    """
    Set up the package logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format instead of the coloured console format
        stream: Output stream (defaults to stdout)

    Returns:
        Configured package logger
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        use_color = os.environ.get("NO_COLOR") is None
        handler.setFormatter(ConsoleFormatter(use_color=use_color))

    logger.addHandler(handler)
    logger.propagate = False

    return logger


def setup_logging_from_env(verbose: bool = False) -> logging.Logger:
    """Configure logging from PTERO_MONITOR_LOG_LEVEL / PTERO_MONITOR_LOG_FORMAT"""
    log_level = "DEBUG" if verbose else os.environ.get("PTERO_MONITOR_LOG_LEVEL", "INFO")
    json_format = os.environ.get("PTERO_MONITOR_LOG_FORMAT", "text").lower() == "json"
    return setup_logging(log_level, json_format)


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Args:
        service_name: Name of the service (e.g. "supervisor", "ss14")

    Returns:
        Logger adapter with service name in all logs
    """
    logger = logging.getLogger(f"{ROOT_LOGGER}.{service_name}")
    return ServiceLoggerAdapter(logger, {"service": service_name})


def get_target_logger(
    target_name: str,
    log_color: str | None = None,
    service_name: str = "orchestrator",
) -> TargetLoggerAdapter:
    """Get a logger adapter bound to a monitored server"""
    logger = logging.getLogger(f"{ROOT_LOGGER}.{service_name}")
    return TargetLoggerAdapter(
        logger,
        {"service": service_name, "target": target_name, "log_color": log_color},
    )
