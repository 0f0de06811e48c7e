"""Structured JSON logging correlated with the index call context."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from pathlib import Path
import sys
from typing import Any

import orjson

from entity_index.observability.context import get_trace_context


# Attributes every LogRecord carries; anything else came in through ``extra=``
_RECORD_BUILTINS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}

# Context keys copied onto each log line when bound
_CONTEXT_FIELDS = ("entity_id", "operation")

# Loggers of the SQL toolkit, quiet unless explicitly overridden
_NOISY_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool")


class JsonFormatter(logging.Formatter):
    """One JSON object per record, with trace ids and the bound entity.

    Extra fields whose name looks like a credential are replaced with
    ``[REDACTED]`` so connection settings never reach the log stream.
    """

    REDACT_KEYS = frozenset({"password", "token", "api_key", "secret", "authorization", "credential"})
    MAX_MESSAGE_LEN = 2000
    MAX_FIELD_LEN = 500

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_trace_context()
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": _clip(record.getMessage(), self.MAX_MESSAGE_LEN),
            "trace_id": ctx.get("trace_id", ""),
            "span_id": ctx.get("span_id", ""),
        }
        if "." in record.name:
            entry["component"] = record.name.rsplit(".", 1)[-1]
        entry.update({field: ctx[field] for field in _CONTEXT_FIELDS if ctx.get(field)})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RECORD_BUILTINS or key.startswith("_"):
                continue
            if key.lower() in self.REDACT_KEYS:
                entry[key] = "[REDACTED]"
            elif isinstance(value, str):
                entry[key] = _clip(value, self.MAX_FIELD_LEN)
            else:
                entry[key] = value

        return orjson.dumps(entry, default=self._json_default).decode("utf-8")

    def _json_default(self, value: Any) -> Any:
        if isinstance(value, (set, frozenset)):
            try:
                return sorted(value)
            except TypeError:
                return list(value)
        if isinstance(value, (bytes, bytearray)):
            return value.decode("utf-8", errors="replace")
        if isinstance(value, (Path, Exception)):
            return str(value)
        return repr(value)


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def _level(name: str, default: int = logging.INFO) -> int:
    return getattr(logging, name.upper(), default)


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
    *,
    logger_levels: dict[str, str] | None = None,
) -> None:
    """Replace the root handlers with a single stdout handler.

    Args:
        level: Root log level name, case-insensitive.
        json_output: Use ``JsonFormatter`` when True, a plain text line otherwise.
        logger_levels: Per-logger level overrides, applied last.
    """
    root = logging.getLogger()
    root.setLevel(_level(level))
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    for name, name_level in (logger_levels or {}).items():
        logging.getLogger(name).setLevel(_level(name_level))
