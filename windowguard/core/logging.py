"""Log output for the demo service.

Limiter events carry client identity only as ``key_hash``. The filter below
makes sure a raw key or address passed in ``extra=`` is masked before any
handler writes it, whatever the format.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from windowguard.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

# Client identity first, then credentials that may show up in header dumps.
SENSITIVE_FIELDS = frozenset(
    {
        "key",
        "ip",
        "client_ip",
        "x-forwarded-for",
        "forwarded",
        "authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
    }
)

# Everything a bare LogRecord has; the rest came in through ``extra=``.
_RECORD_ATTRS = frozenset(vars(LogRecord("", logging.INFO, "", 0, "", None, None))) | {
    "message",
    "asctime",
}

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def redact(value: Any, fields: frozenset[str]) -> Any:
    """Mask sensitive mapping entries, descending into nested containers."""

    if isinstance(value, Mapping):
        return {
            name: REDACTED if name.lower() in fields else redact(item, fields)
            for name, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(redact(item, fields) for item in value)
    return value


def extra_fields(record: LogRecord, fields: frozenset[str]) -> dict[str, Any]:
    extras = {
        name: item
        for name, item in vars(record).items()
        if name not in _RECORD_ATTRS and not name.startswith("_")
    }
    return redact(extras, fields)


class SensitiveDataFilter(logging.Filter):
    """Mask sensitive ``extra=`` fields on the record in place."""

    def __init__(self, fields: Iterable[str] | None = None) -> None:
        super().__init__()
        self.fields = frozenset(fields) if fields is not None else SENSITIVE_FIELDS

    def filter(self, record: LogRecord) -> bool:
        for name, item in extra_fields(record, self.fields).items():
            setattr(record, name, item)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: level, logger, message and the extras."""

    def __init__(self, fields: Iterable[str] | None = None) -> None:
        super().__init__()
        self.fields = frozenset(fields) if fields is not None else SENSITIVE_FIELDS

    def format(self, record: LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update(extra_fields(record, self.fields))
        return json.dumps(payload, default=str)


def _handler_for(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output == "stdout":
        return logging.StreamHandler(sys.stdout)

    path = Path(log_settings.file_path or "logs/windowguard.log")
    path.parent.mkdir(parents=True, exist_ok=True)
    if log_settings.max_bytes:
        return RotatingFileHandler(
            path,
            maxBytes=log_settings.max_bytes,
            backupCount=log_settings.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Route every log record through one redacting handler on the root logger.

    Args:
        log_settings: Log settings; the global settings when omitted.
    """

    cfg = log_settings or settings.log

    handler = _handler_for(cfg)
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter() if cfg.format == "json" else logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # uvicorn installs its own handlers
    for name in ("uvicorn", "uvicorn.access"):
        logging.getLogger(name).propagate = False
