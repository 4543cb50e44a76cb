"""Process-wide logging setup for humanbrowse entry points.

Library modules only ever call ``logging.getLogger(__name__)``; this module
is for applications and the CLI.
"""

from __future__ import annotations

import json as _json
import logging
import sys

from humanbrowse.settings.config import LoggingSettings

_NOISY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "websockets", "zendriver", "asyncio")


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record: ``{"severity", "message", "logger", "time"}``."""

    _LEVEL_MAP = {
        "DEBUG": "DEBUG",
        "INFO": "INFO",
        "WARNING": "WARNING",
        "ERROR": "ERROR",
        "CRITICAL": "CRITICAL",
    }

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "severity": self._LEVEL_MAP.get(record.levelname, "DEFAULT"),
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return _json.dumps(entry, default=str)


def configure_logging(settings: LoggingSettings | None = None, *, level: str | None = None) -> None:
    """Configure the root logger.

    Args:
        settings: Logging section of the resolved settings; defaults apply
            when omitted.
        level: Overrides ``settings.level`` (e.g. from a ``--verbose`` flag).
    """
    settings = settings or LoggingSettings()
    log_level = getattr(logging, (level or settings.level).upper(), logging.INFO)

    if settings.json_format:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonLineFormatter())
        logging.root.handlers.clear()
        logging.root.addHandler(handler)
        logging.root.setLevel(log_level)
    else:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            stream=sys.stderr,
        )

    # Quieten noisy libraries
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
