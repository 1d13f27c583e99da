"""Structured logging configuration for VibeCast."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Custom TRACE level for very verbose logging (below DEBUG)
TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, "TRACE")

PACKAGE_LOGGER = "vibecast"

# Record attributes copied into structured output when present
_EXTRA_FIELDS = (
    "command",
    "intent",
    "surface",
    "message_id",
    "duration_ms",
    "payload",
    "snapshot",
)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured log output."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter for console output."""

    COLORS = {
        "TRACE": "\033[35m",    # Magenta
        "DEBUG": "\033[36m",    # Cyan
        "INFO": "\033[32m",     # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",    # Red
        "RESET": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        reset = self.COLORS["RESET"]

        msg = f"{color}[{record.levelname}]{reset} {record.getMessage()}"

        extras = []
        if hasattr(record, "surface"):
            extras.append(f"surface={record.surface}")
        if hasattr(record, "command"):
            extras.append(f"command={record.command}")
        if hasattr(record, "message_id"):
            extras.append(f"message={record.message_id}")
        if hasattr(record, "duration_ms"):
            extras.append(f"duration={record.duration_ms}ms")

        if extras:
            msg += f" ({', '.join(extras)})"

        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)

        return msg


def setup_logging(
    verbosity: int = 0,
    log_file: Path | str | None = None,
    log_level: str = "INFO",
) -> logging.Logger:
    """Configure logging for the package.

    Args:
        verbosity: Verbosity level (0=normal, 1=verbose/DEBUG, 2+=very verbose/TRACE)
        log_file: Path to structured JSON log file (None for no file logging)
        log_level: Base log level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured package logger
    """
    if verbosity >= 2:
        level = TRACE_LEVEL  # -vv: TRACE level, includes full snapshots
    elif verbosity == 1:
        level = logging.DEBUG
    else:
        level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    logger.propagate = False  # Prevent duplicate output to root logger

    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(ConsoleFormatter())
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setLevel(TRACE_LEVEL)  # Log everything including TRACE to file
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

        logger.info(f"Logging to file: {log_path}")

    return logger


def get_logger(name: str = PACKAGE_LOGGER) -> logging.Logger:
    """Get a logger instance for the package.

    Args:
        name: Logger name (will be prefixed with package name if not already)
    """
    if not name.startswith(PACKAGE_LOGGER):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def log_command(
    logger: logging.Logger,
    command: str,
    payload: Any,
    duration_ms: float | None = None,
    surface: str | None = None,
    message_id: str | None = None,
) -> None:
    """Log a command sent to, or applied by, the backend."""
    extra: dict[str, Any] = {"command": command}
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)
    if surface is not None:
        extra["surface"] = surface
    if message_id is not None:
        extra["message_id"] = message_id
    logger.debug(f"Command: {command}", extra=extra)

    if logger.isEnabledFor(TRACE_LEVEL):
        extra["payload"] = payload
        logger.log(
            TRACE_LEVEL,
            f"Command payload: {json.dumps(payload, default=str)}",
            extra=extra,
        )


def log_intent(
    logger: logging.Logger,
    intent_type: str,
    surface: str | None = None,
    message_id: str | None = None,
) -> None:
    """Log a Store intent leaving a surface."""
    extra: dict[str, Any] = {"intent": intent_type}
    if surface is not None:
        extra["surface"] = surface
    if message_id is not None:
        extra["message_id"] = message_id
    logger.debug(f"Intent: {intent_type}", extra=extra)


def log_snapshot(
    logger: logging.Logger,
    snapshot: dict[str, Any],
    surface: str | None = None,
) -> None:
    """Log receipt of an authoritative state snapshot.

    The summary goes out at DEBUG; the full document only at TRACE (-vv).
    """
    extra: dict[str, Any] = {}
    if surface is not None:
        extra["surface"] = surface
    messages = snapshot.get("messages") or []
    logger.debug(
        f"Snapshot received: {len(messages)} messages, "
        f"active={snapshot.get('activeVisualization')}",
        extra=extra,
    )

    if logger.isEnabledFor(TRACE_LEVEL):
        extra["snapshot"] = snapshot
        logger.log(
            TRACE_LEVEL,
            f"Snapshot: {json.dumps(snapshot, default=str)}",
            extra=extra,
        )
