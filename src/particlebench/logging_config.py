"""Logging for particlebench.

Records emitted by the engines can carry the worker, pool generation and chunk
range they concern, passed as ``extra=engine_context(...)``. Both formatters
render that context next to the logger name so one chunk can be followed from
dispatch to merge across worker threads.

Configurable via environment variables:
- LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR). Default: INFO
- LOG_FORMAT: Set format ('text' or 'json'). Default: text

Usage:
    from particlebench.logging_config import configure_logging
    configure_logging()  # Call once before creating engines
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from typing import Any, ClassVar

NAMESPACE = "particlebench"

# Record attributes describing where in the worker pool a record comes from
ENGINE_FIELDS = ("worker_id", "generation", "chunk")

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def engine_context(
    worker_id: int | None = None,
    generation: int | None = None,
    chunk: tuple[int, int] | None = None,
) -> dict[str, Any]:
    """Build an ``extra`` mapping that tags a record with pool context.

    Args:
        worker_id: Worker the record concerns.
        generation: Pool generation the record concerns.
        chunk: (start, end) particle range the record concerns.

    Returns:
        Mapping with only the fields that were given.

    Example:
        >>> logger.warning("Chunk timed out", extra=engine_context(1, 3, (10, 20)))
    """
    context = {"worker_id": worker_id, "generation": generation, "chunk": chunk}
    return {key: value for key, value in context.items() if value is not None}


def _engine_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {key: record.__dict__[key] for key in ENGINE_FIELDS if key in record.__dict__}


def _wants_location(record: logging.LogRecord) -> bool:
    return record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL)


class JSONFormatter(logging.Formatter):
    """JSON line formatter.

    Engine context goes under ``"engine"``, any other ``extra`` fields under
    ``"extra"``. The thread name is always included since chunks run on
    worker threads.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as a single JSON line.

        Args:
            record: Log record to format.

        Returns:
            JSON string with log data.
        """
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        engine = _engine_fields(record)
        if engine:
            log_data["engine"] = engine

        if _wants_location(record):
            log_data["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_keys = set(record.__dict__) - _RECORD_ATTRS - set(ENGINE_FIELDS)
        if extra_keys:
            log_data["extra"] = {key: record.__dict__[key] for key in sorted(extra_keys)}

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human readable formatter.

    Format: TIMESTAMP LEVEL [LOGGER worker=W gen=G chunk=S:E] MESSAGE
    The engine fields appear only when the record carries them. DEBUG and
    ERROR records end with the file:line they came from.
    """

    LEVEL_COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[1;31m",  # Bold red
    }
    RESET: ClassVar[str] = "\033[0m"

    def __init__(self, use_colors: bool = True) -> None:
        """Initialize formatter.

        Args:
            use_colors: Whether to use ANSI colors in output.
        """
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def _level(self, levelname: str) -> str:
        if not self.use_colors:
            return f"{levelname:8s}"
        return f"{self.LEVEL_COLORS.get(levelname, '')}{levelname:8s}{self.RESET}"

    @staticmethod
    def _source(record: logging.LogRecord) -> str:
        name = record.name.removeprefix(f"{NAMESPACE}.")
        engine = _engine_fields(record)
        tags = []
        if "worker_id" in engine:
            tags.append(f"worker={engine['worker_id']}")
        if "generation" in engine:
            tags.append(f"gen={engine['generation']}")
        if "chunk" in engine:
            start, end = engine["chunk"]
            tags.append(f"chunk={start}:{end}")
        return " ".join([name, *tags])

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as text.

        Args:
            record: Log record to format.

        Returns:
            Formatted string.
        """
        timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        line = (
            f"{timestamp} {self._level(record.levelname)} "
            f"[{self._source(record)}] {record.getMessage()}"
        )
        if _wants_location(record):
            line += f" ({record.filename}:{record.lineno})"
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


def get_log_level() -> int:
    """Log level from LOG_LEVEL, INFO when unset or unrecognised."""
    return _LEVELS.get(os.environ.get("LOG_LEVEL", "INFO").upper(), logging.INFO)


def get_log_format() -> str:
    """Log format ('text' or 'json') from LOG_FORMAT, text when unrecognised."""
    format_name = os.environ.get("LOG_FORMAT", "text").lower()
    return format_name if format_name in ("text", "json") else "text"


def configure_logging(
    level: int | None = None,
    format_type: str | None = None,
    use_colors: bool = True,
) -> None:
    """Install one stderr handler on the particlebench logger.

    Safe to call more than once; the previous handler is replaced.

    Args:
        level: Log level (use logging.DEBUG, logging.INFO, etc.)
               If None, reads from LOG_LEVEL env var.
        format_type: Output format ('text' or 'json').
                     If None, reads from LOG_FORMAT env var.
        use_colors: Whether to use colors in text format (only if stderr is TTY).
    """
    level = get_log_level() if level is None else level
    format_type = get_log_format() if format_type is None else format_type

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        JSONFormatter() if format_type == "json" else TextFormatter(use_colors=use_colors)
    )

    package_logger = logging.getLogger(NAMESPACE)
    package_logger.setLevel(level)
    package_logger.handlers.clear()
    package_logger.addHandler(handler)
    package_logger.propagate = False

    package_logger.debug(
        "Logging configured: level=%s, format=%s",
        logging.getLevelName(level),
        format_type,
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the particlebench namespace.

    Args:
        name: Module name (typically __name__).

    Returns:
        Logger instance.
    """
    if not name.startswith(NAMESPACE):
        name = f"{NAMESPACE}.{name}"
    return logging.getLogger(name)
