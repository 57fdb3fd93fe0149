"""Process-wide logging setup.

Records carry the request correlation id and a whitelisted set of ``extra=``
fields. ``LOG_FORMAT=text`` swaps the JSON lines for a single readable line,
which is easier to follow in a local terminal.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from leadboard.context import get_correlation_id
from leadboard.core.config import Settings, get_settings


_BASE_RECORD_KEYS = frozenset(logging.makeLogRecord({}).__dict__) | {"args", "msg", "correlation_id"}
_KNOWN_FIELDS = (
    "method",
    "path",
    "status_code",
    "duration_ms",
    "user_id",
    "lead_id",
    "lead_count",
    "from_status",
    "to_status",
    "outcome",
    "reason",
    "column",
    "event_name",
    "error",
)
MAX_ERROR_LENGTH = 500


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {key: record.__dict__[key] for key in _KNOWN_FIELDS if key in record.__dict__}
    error = fields.get("error")
    if isinstance(error, str) and len(error) > MAX_ERROR_LENGTH:
        fields["error"] = error[:MAX_ERROR_LENGTH]
    return fields


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        return True


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields = record_fields(record)
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)
        return json.dumps(
            {
                "ts": datetime.now(timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "correlation_id": getattr(record, "correlation_id", None),
                "fields": fields,
            },
            default=str,
        )


class TextLogFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s [%(correlation_id)s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = None
        line = super().format(record)
        fields = record_fields(record)
        if fields:
            line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


_default_record_factory = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _default_record_factory(*args, **kwargs)
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


def configure_logging(settings: Settings | None = None) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_leadboard_configured", False):
        return

    settings = settings or get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(TextLogFormatter() if settings.log_format.lower() == "text" else JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    root_logger._leadboard_configured = True  # type: ignore[attr-defined]
