"""Log formatters: one JSON object per line for files, readable lines for consoles."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.utils.json_serializers import json_serializer

_CONTEXT_FIELDS = ("mode", "stage", "cycle_id", "worker_id", "query_name")

# Record extras copied into JSON output; a type coerces the value, None keeps it
_EXTRA_FIELDS: dict[str, type | None] = {
    # Queries and streams
    "query_name": None,
    "path": None,
    "query": None,
    "event_kind": None,
    "schedule": None,
    "schedule_type": None,
    "queries": None,
    "streams": int,
    "operation": None,
    "cycle": int,
    "runtime_seconds": float,
    "elapsed_seconds": float,
    "duration_ms": float,
    "records_succeeded": int,
    "records_failed": int,
    # HTTP
    "url": None,
    "http_status": int,
    # Errors and retries
    "error": None,
    "error_type": None,
    "error_category": None,
    "error_message": None,
    "attempt": int,
    "max_attempts": int,
    "total_attempts": int,
    "delay_seconds": float,
    "delay_source": None,
    # Output
    "sink_type": None,
    "output_path": None,
    "events_written": int,
}

_SECRET_PARAM = re.compile(
    r"([?&])(auth|access_token|token|key|secret|password)=[^&]*",
    re.IGNORECASE,
)


def redact_url(url: str) -> str:
    """Replace credential query parameters such as ``auth=`` with [REDACTED]."""
    return _SECRET_PARAM.sub(r"\1\2=[REDACTED]", url)


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Source location is added for DEBUG and ERROR and above. Numeric extras
    that cannot be coerced are logged as null rather than dropped. The
    ``url`` extra is always redacted.
    """

    @staticmethod
    def _coerce(field: str, value: Any) -> Any:
        kind = _EXTRA_FIELDS[field]
        if kind is None:
            return value
        try:
            return kind(value)
        except (TypeError, ValueError):
            return None

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = get_log_context()
        entry.update((k, context[k]) for k in _CONTEXT_FIELDS if context.get(k))

        if record.levelno == logging.DEBUG or record.levelno >= logging.ERROR:
            entry["file"] = f"{record.filename}:{record.lineno}"

        for field in _EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is None:
                continue
            value = self._coerce(field, value)
            if field == "url" and isinstance(value, str):
                value = redact_url(value)
            entry[field] = value

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "stacktrace": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Console formatter: ``time - LEVEL - [mode] - [stage] - [cycle] [ref:name] message``.

    Levels are colored only when stdout is a TTY.
    """

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _level(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno) if self._use_colors else None
        if color:
            return f"{color}{record.levelname}{self.RESET}"
        return record.levelname

    def format(self, record: logging.LogRecord) -> str:
        context = get_log_context()

        head = [datetime.now().strftime("%Y-%m-%d %H:%M:%S"), self._level(record)]
        head.extend(f"[{context[k]}]" for k in ("mode", "stage") if context.get(k))

        tags = []
        if context.get("cycle_id"):
            tags.append(f"[{context['cycle_id']}]")
        query_name = getattr(record, "query_name", None) or context.get("query_name")
        if query_name:
            tags.append(f"[ref:{query_name}]")

        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        if tags:
            message = f"{' '.join(tags)} {message}"

        return " - ".join(head + [message])
