"""Structured logging setup for the agent.

Emits one JSON object per line by default, or a compact console format when
``logging.format`` is ``text``. Records go to stdout or to an append-mode file.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from multinic_agent.config import LoggingSettings

SERVICE_NAME = "multinic-agent"

# Attributes every LogRecord carries; anything else came in via ``extra=``.
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName", "node"}

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_level(level: str) -> int:
    """Map a configured level name to a logging level (unknown -> INFO)."""
    return _LEVELS.get(level.strip().lower(), logging.INFO)


def _record_extra(record: logging.LogRecord) -> dict:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class AgentJSONFormatter(logging.Formatter):
    """Format records as single-line JSON documents."""

    def __init__(self, node_name: str = ""):
        super().__init__()
        self.node_name = node_name

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": SERVICE_NAME,
            "node": self.node_name,
            "caller": f"{record.module}:{record.lineno}",
        }
        extra = _record_extra(record)
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class AgentTextFormatter(logging.Formatter):
    """Human-readable console format with the node name and extra fields."""

    def __init__(self, node_name: str = ""):
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s [%(node)s] %(name)s: %(message)s",
        )
        self.node_name = node_name

    def format(self, record: logging.LogRecord) -> str:
        extra = _record_extra(record)
        record.node = self.node_name or "-"
        message = super().format(record)
        if extra:
            fields = " ".join(f"{key}={value}" for key, value in sorted(extra.items()))
            message = f"{message} {fields}"
        return message


def setup_agent_logging(settings: LoggingSettings, node_name: str = "") -> logging.Logger:
    """Install the agent's log handler on the root logger.

    Any handlers installed by a previous call are replaced, so the function
    may be called again once the node name is known.

    Args:
        settings: Logging section of the agent settings
        node_name: Node name stamped on every record

    Returns:
        The ``multinic_agent`` logger
    """
    if settings.output == "file" and settings.file_path:
        handler: logging.Handler = logging.FileHandler(settings.file_path, mode="a")
    else:
        handler = logging.StreamHandler(sys.stdout)

    if settings.format == "json":
        handler.setFormatter(AgentJSONFormatter(node_name=node_name))
    else:
        handler.setFormatter(AgentTextFormatter(node_name=node_name))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()
    root.addHandler(handler)
    root.setLevel(parse_level(settings.level))

    return logging.getLogger("multinic_agent")
