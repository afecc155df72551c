"""Structured logging for Duet nodes.

Every line a node writes carries its node id (and current role, once it
holds one), so the interleaved output of a local cluster can be told apart.

Two formats:
- JSON, one object per line, for log shippers
- Console, pipe-separated, for people watching a terminal

Usage:
    from duet.observability.logging import LogContext, configure_logging

    configure_logging(json_format=False, level="INFO")

    with LogContext(node_id=node.node_id):
        logger.info("Node started")  # ... | node=<id>
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

node_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("node_id", default="")
role_var: contextvars.ContextVar[str] = contextvars.ContextVar("role", default="")

_CONTEXT_VARS = {"node_id": node_id_var, "role": role_var}

# Attributes every LogRecord has; anything else came in through extra=
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _context() -> dict[str, str]:
    """Non-empty node context values."""
    return {name: value for name, var in _CONTEXT_VARS.items() if (value := var.get())}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _RECORD_ATTRS or key.startswith("_"):
            continue
        try:
            json.dumps(value)
            fields[key] = value
        except (TypeError, ValueError):
            fields[key] = str(value)
    return fields


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Example:
    {"timestamp": "2026-01-10T12:34:56.789+00:00", "level": "INFO",
     "logger": "duet.cluster.coordinator", "message": "Became generator",
     "module": "coordinator", "function": "_log_changes", "line": 42,
     "node_id": "host-3f2a9c1b4d5e", "role": "generator"}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            **_context(),
        }

        if record.exc_info:
            exc_type, exc, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc) if exc else None,
                "traceback": self.formatException(record.exc_info),
            }

        entry.update(_extra_fields(record))
        return json.dumps(entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """Pipe-separated lines for terminals.

    2026-01-10 12:34:56 | INFO     | duet.cluster.coordinator | Became generator | node=a
    """

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True) -> None:
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def _level(self, levelname: str) -> str:
        padded = f"{levelname:8}"
        if not self.use_colors:
            return padded
        return f"{self.LEVEL_COLORS.get(levelname, '')}{padded}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        parts = [timestamp, self._level(record.levelname), record.name, record.getMessage()]

        context = " ".join(
            f"{'node' if name == 'node_id' else name}={value}"
            for name, value in _context().items()
        )
        if context:
            parts.append(context)

        line = " | ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(
    json_format: bool = True,
    level: str = "INFO",
    use_colors: bool = True,
) -> None:
    """Replace the root logger's handlers with a single stderr handler.

    Args:
        json_format: Emit JSON lines instead of console lines
        level: Root log level name, case-insensitive
        use_colors: Colorize the level in console lines when stderr is a tty
    """
    formatter: logging.Formatter
    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = ConsoleFormatter(use_colors=use_colors)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    # redis-py logs every reconnect attempt at INFO
    logging.getLogger("redis").setLevel(logging.WARNING)


class LogContext:
    """Set node context for the duration of a block.

    Usage:
        with LogContext(node_id="host-3f2a", role="generator"):
            logger.info("Publishing")
    """

    def __init__(self, **kwargs: str) -> None:
        unknown = set(kwargs) - set(_CONTEXT_VARS)
        if unknown:
            raise TypeError(f"Unknown log context: {', '.join(sorted(unknown))}")
        self.values = kwargs
        self._tokens: list[tuple[contextvars.ContextVar[str], contextvars.Token[str]]] = []

    def __enter__(self) -> LogContext:
        for name, value in self.values.items():
            var = _CONTEXT_VARS[name]
            self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, *args: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)
