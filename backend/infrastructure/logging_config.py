"""
Logging setup.

JSON lines in production, plain text in development. Every record passes a
redaction filter and picks up the request and tenant of the HTTP request it
was logged under, so batch metrics from the fetcher can be joined to the
request log line without threading IDs through the services.
"""

import json
import logging
import re
import sys
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Optional

# Credentials that can end up in log messages: DSNs from connection errors,
# API keys and bearer tokens echoed by HTTP clients
_SENSITIVE_PATTERNS = [
    (re.compile(r"(Authorization:\s*Bearer\s+)\S+", re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r'(api[_-]?key["\s:=]+)[^\s&"\']+', re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r'(password["\s:=]+)[^\s&"\']+', re.IGNORECASE), r"\1[REDACTED]"),
    (re.compile(r"(\w+(?:\+\w+)?://[^:/\s@]+:)[^@\s]+@", re.IGNORECASE), r"\1[REDACTED]@"),
]

# Structured fields copied onto JSON log lines when a record carries them
LOG_FIELDS = (
    "request_id",
    "tenant_id",
    "subject_id",
    "batch_id",
    "combo",
    "platform",
    "locale",
    "method",
    "path",
    "status_code",
    "duration_ms",
)

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_tenant_id: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)


def bind_request_context(
    request_id: str, tenant_id: Optional[str] = None
) -> tuple[Token, Token]:
    """Attach request and tenant IDs to every record logged in this context."""
    return _request_id.set(request_id), _tenant_id.set(tenant_id)


def reset_request_context(tokens: tuple[Token, Token]) -> None:
    request_token, tenant_token = tokens
    _request_id.reset(request_token)
    _tenant_id.reset(tenant_token)


def redact(value: str) -> str:
    for pattern, replacement in _SENSITIVE_PATTERNS:
        value = pattern.sub(replacement, value)
    return value


class SensitiveDataFilter(logging.Filter):
    """Redacts bearer tokens, API keys, passwords and DSN credentials."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(redact(a) if isinstance(a, str) else a for a in record.args)
        elif isinstance(record.args, dict):
            record.args = {
                k: (redact(v) if isinstance(v, str) else v) for k, v in record.args.items()
            }
        return True


class RequestContextFilter(logging.Filter):
    """Fills request_id/tenant_id from the current request unless given explicitly."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = _request_id.get()
        if getattr(record, "tenant_id", None) is None:
            record.tenant_id = _tenant_id.get()
        return True


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in LOG_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines, prefixed with the request ID when there is one."""

    def __init__(self):
        super().__init__(
            "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        request_id = getattr(record, "request_id", None)
        if request_id:
            return f"[{request_id[:8]}] {line}"
        return line


def setup_logging(json_output: bool = False, level: str = "INFO") -> None:
    """
    Configure the root logger.

    Args:
        json_output: JSON lines (production) instead of plain text
        level: Log level name
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else TextFormatter())
    handler.addFilter(RequestContextFilter())
    handler.addFilter(SensitiveDataFilter())
    root.addHandler(handler)

    # Quiet noisy libraries; httpx logs every search request at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
