"""Structured JSON log formatter and logging configuration.

The bridge runs unattended, usually in a container, so the default
output is one JSON object per line (NDJSON) that log aggregators can
parse without configuration.  A plain text format is available for
terminals.

Each JSON line carries ``service`` and ``version`` for correlation and,
for records emitted on behalf of a device, a ``device`` field taken
from the record's ``extra`` mapping::

    logger.warning("Error fetching vitals", extra={"device": "Garage"})
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from wallbridge._settings import LoggingSettings

_MB = 1024 * 1024

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects.

    Fields:

    - ``timestamp``: ISO 8601, always UTC
    - ``level``: Python log level name
    - ``logger``: dotted logger name
    - ``message``: the formatted log message
    - ``service``: application name
    - ``version``: application version (omitted when empty)
    - ``device``: device display name (only when set via ``extra``)
    - ``exception``: formatted traceback (only when present)
    - ``stack_info``: stack trace (only when ``stack_info=True``)
    """

    def __init__(
        self,
        *,
        service: str = "",
        version: str = "",
    ) -> None:
        super().__init__()
        self._service = service
        self._version = version

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self._service,
        }

        if self._version:
            entry["version"] = self._version

        device = getattr(record, "device", None)
        if device is not None:
            entry["device"] = device

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)


def configure_logging(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> None:
    """Configure the root logger from settings.

    Replaces any existing root handlers with a stderr handler and, when
    ``settings.file`` is set, a :class:`RotatingFileHandler` rotating at
    ``settings.max_file_size_mb`` and keeping ``settings.backup_count``
    generations.
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    if settings.format == "json":
        formatter: logging.Formatter = JsonFormatter(service=service, version=version)
    else:
        formatter = logging.Formatter(_TEXT_FORMAT)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if settings.file is not None:
        file_handler = RotatingFileHandler(
            settings.file,
            maxBytes=settings.max_file_size_mb * _MB,
            backupCount=settings.backup_count,
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(settings.level)
