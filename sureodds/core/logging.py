"""
Logging setup for the sureodds namespace.

Pretty single-line logs in dev, JSON lines everywhere else. Extra fields
passed via ``extra=`` are appended so callback events stay searchable.
"""

import json
import logging
import sys
from datetime import datetime, timezone

# Attributes every LogRecord has; anything else came in through extra=
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _extras(record: logging.LogRecord) -> dict:
    return {k: v for k, v in vars(record).items() if k not in _RESERVED}


def _format_timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _format_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_extras(record),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        extras = " ".join(f"{k}={v}" for k, v in _extras(record).items())
        line = f"{_format_timestamp(record)} {record.levelname} [{record.name}] {record.getMessage()}"
        if extras:
            line = f"{line} {extras}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(level: str = "info", env: str = "dev") -> None:
    logger = logging.getLogger("sureodds")
    logger.setLevel(level.upper())

    formatter: logging.Formatter = PrettyFormatter() if env == "dev" else JsonFormatter()

    # configure once; uvicorn reloads call create_app again
    for handler in logger.handlers:
        if getattr(handler, "_sureodds", False):
            handler.setFormatter(formatter)
            return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler._sureodds = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
