"""JSON log lines for the gateway worker and CLI."""

import json
import logging
import sys
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import TextIO

# Attributes every LogRecord carries; anything else came in via ``extra``.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime"}

# Extra keys that may carry provider credentials.
REDACTED_KEYS = frozenset({"api_key", "api_secret", "auth_token", "password", "authorization"})

DEFAULT_SUPPRESS = ("httpx", "httpcore", "celery", "kombu")


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    *static_fields* (e.g. the service name) are added to every entry;
    ``extra`` context follows, with credential keys masked.
    """

    def __init__(self, static_fields: Mapping[str, object] | None = None) -> None:
        super().__init__()
        self._static_fields = dict(static_fields or {})

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **self._static_fields,
        }
        entry.update(
            (key, "***" if key.lower() in REDACTED_KEYS else value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS
        )

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(
    level: str = "INFO",
    suppress: Sequence[str] = DEFAULT_SUPPRESS,
    *,
    service: str = "africom-gateway",
    stream: TextIO | None = None,
) -> None:
    """Send JSON logs for the whole process to *stream* (stdout by default).

    Args:
        level: Root log level name; unknown names fall back to INFO.
        suppress: Loggers capped at WARNING so HTTP client and worker
                  internals stay out of the provider logs.
        service: Value of the ``service`` field on every line.
    """
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JsonFormatter({"service": service}))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    for name in suppress:
        logging.getLogger(name).setLevel(logging.WARNING)
