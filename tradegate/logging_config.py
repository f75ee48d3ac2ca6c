"""JSON logging for the gateway.

Every record becomes one JSON object with timestamp, level, logger and
message. Exchange context travels in ``extra``: ``destination``, ``pair`` and
``proxy_used`` on fetches, ``attempt`` and ``error_reason`` on failures,
``duration_ms`` and ``trades_merged`` on completed poll cycles.

Exchange API keys and proxy credentials are redacted before anything is written.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone

_SECRET_ASSIGNMENT = re.compile(
    r"(api.key|api.secret|secret|password|token|signature|authorization)\s*[=:]\s*\S+",
    re.IGNORECASE,
)
_URL_USERINFO = re.compile(r"(?P<scheme>[a-z0-9+.-]+://)[^/@\s]+@", re.IGNORECASE)

CONTEXT_FIELDS: tuple[str, ...] = (
    "destination",
    "pair",
    "proxy_used",
    "attempt",
    "duration_ms",
    "trades_merged",
)

# Third-party loggers that log every request at INFO
_CHATTY_LOGGERS = ("httpx", "httpcore")


def redact(text: str) -> str:
    """Strip proxy userinfo and ``key=value`` secrets from *text*."""
    text = _URL_USERINFO.sub(r"\g<scheme>[REDACTED]@", text)
    return _SECRET_ASSIGNMENT.sub("[REDACTED]", text)


class JsonFormatter(logging.Formatter):
    """One JSON object per record, context fields copied from ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact(record.getMessage()),
        }
        entry.update(
            (name, getattr(record, name)) for name in CONTEXT_FIELDS if hasattr(record, name)
        )

        reason = getattr(record, "error_reason", None)
        if reason is not None:
            entry["error_reason"] = redact(str(reason))

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = redact(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO") -> None:
    """Route all logging through a single JSON handler on the root logger.

    Unknown level names fall back to INFO. httpx request logging is kept at
    WARNING unless DEBUG is requested.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(numeric_level)

    chatty_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)
