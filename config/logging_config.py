"""
Root logging setup for the aggregation service.

LOG_LEVEL picks the level (INFO when unset). LOG_JSON=1 switches to one JSON
object per line. Brokerage tokens must never reach the output: modules log
cache keys by kind only, and RedactTokensFilter masks whatever slips through.
"""
import json
import logging
import os
import re
import sys
from typing import Any, Dict

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Chatty at INFO; access lines duplicate RequestLoggingMiddleware.
_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")

_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+", re.IGNORECASE)

# Attributes every LogRecord has; anything else was passed through `extra=`.
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _to_json(obj: Any) -> str:
    return obj.isoformat() if hasattr(obj, "isoformat") else str(obj)


class RedactTokensFilter(logging.Filter):
    """Replace bearer tokens in the rendered message with ***."""

    def filter(self, record: logging.LogRecord) -> bool:
        rendered = record.getMessage()
        masked = _BEARER_RE.sub(r"\1***", rendered)
        if masked != rendered:
            record.msg, record.args = masked, None
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(
            (k, v)
            for k, v in vars(record).items()
            if k not in _RESERVED_ATTRS and k not in entry and v is not None
        )
        return json.dumps(entry, default=_to_json)


def _stdout_handler(level: int, as_json: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(RedactTokensFilter())
    handler.setFormatter(JsonFormatter() if as_json else logging.Formatter(PLAIN_FORMAT))
    return handler


def configure_logging() -> None:
    level = getattr(logging, (os.getenv("LOG_LEVEL") or "INFO").upper(), logging.INFO)
    as_json = os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes")

    root = logging.getLogger()
    root.setLevel(level)
    # create_app may run more than once per process (reload, tests)
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(_stdout_handler(level, as_json))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
