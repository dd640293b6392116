"""Structured logging helpers shared by the poller, the apps and uvicorn."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from time import monotonic
from typing import Any, Dict, Iterator

from .config import ChainConfig

_RESERVED_ATTRIBUTES = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "color_message"}

RESET = "\033[0m"
TIMESTAMP_COLOR = "\033[36m"
LEVEL_COLORS = {
    "DEBUG": "\033[90m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def extract_log_context(record: logging.LogRecord) -> Dict[str, Any]:
    """Return whatever a caller attached to ``record`` through ``extra``."""

    return {
        key: value
        for key, value in vars(record).items()
        if key not in _RESERVED_ATTRIBUTES and not key.startswith("_")
    }


def build_log_extra(
    *,
    chain: ChainConfig | None = None,
    metric: str | None = None,
    era: int | None = None,
    elapsed: float | None = None,
    additional: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    """Build the ``extra`` mapping for a log call, leaving out unset fields.

    Args:
        chain: Chain the event belongs to; only its name is logged.
        metric: Name of the derived value involved.
        era: Era index the event refers to.
        elapsed: Duration in seconds, rounded to milliseconds.
        additional: Free-form fields merged in last.
    """

    fields: Dict[str, Any] = {
        "chain": chain.name if chain is not None else None,
        "metric": metric,
        "era": era,
        "elapsed_seconds": round(elapsed, 3) if elapsed is not None else None,
    }
    extra = {key: value for key, value in fields.items() if value is not None}
    extra.update(additional or {})

    return extra


@contextmanager
def log_duration(
    logger: logging.Logger,
    message: str,
    *,
    level: int = logging.DEBUG,
    extra: Dict[str, Any] | None = None,
) -> Iterator[None]:
    """Emit ``message`` with ``elapsed_seconds`` when the block exits, even on error."""

    started = monotonic()
    try:
        yield
    finally:
        logger.log(level, message, extra={**(extra or {}), "elapsed_seconds": round(monotonic() - started, 3)})


def resolve_color_message(record: logging.LogRecord, color_message: str | None) -> str | None:
    """Interpolate uvicorn's ``color_message`` with the record arguments."""

    if not color_message or not record.args:
        return color_message

    try:
        return color_message % record.args
    except (TypeError, ValueError):
        return color_message


def _paint(text: str, color: str) -> str:
    return f"{color}{text}{RESET}"


class JsonFormatter(logging.Formatter):
    """One JSON object per line; extra fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        color_message = getattr(record, "color_message", None)
        if color_message is not None:
            payload["color_message"] = resolve_color_message(record, color_message)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        if record.stack_info:
            payload["stack_info"] = record.stack_info

        payload.update(extract_log_context(record))

        return json.dumps(payload, default=str)


class StructuredTextFormatter(logging.Formatter):
    """Text formatter with a trailing ``| key=value`` section and optional ANSI colours."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        *,
        color_enabled: bool = True,
    ) -> None:
        super().__init__(fmt, datefmt, style)
        self.color_enabled = color_enabled

    def _colorize(self, line: str, record: logging.LogRecord) -> str:
        colored = resolve_color_message(record, getattr(record, "color_message", None))

        if colored:
            plain = record.getMessage()
            line = line.replace(plain, colored, 1) if plain in line else f"{line} {colored}"

        timestamp = self.formatTime(record, self.datefmt)
        line = line.replace(timestamp, _paint(timestamp, TIMESTAMP_COLOR), 1)

        level_color = getattr(record, "levelcolor", "") or LEVEL_COLORS.get(record.levelname)
        if level_color:
            line = line.replace(record.levelname, _paint(record.levelname, level_color), 1)

        return line

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)

        if self.color_enabled:
            line = self._colorize(line, record)

        context = extract_log_context(record)
        if context:
            line += " | " + " ".join(f"{key}={value}" for key, value in sorted(context.items()))

        return line


__all__ = [
    "JsonFormatter",
    "StructuredTextFormatter",
    "build_log_extra",
    "extract_log_context",
    "get_logger",
    "log_duration",
    "resolve_color_message",
]
