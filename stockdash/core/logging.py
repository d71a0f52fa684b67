"""Logging setup: JSON lines, request correlation and credential redaction.

Log calls use an event name as the message and put data in ``extra=``:

    logger.info("polygon.tickers_loaded", extra={"count": 812, "pages": 1})

The Polygon key travels as an ``apiKey`` query parameter, so besides
redacting sensitive extra fields, every string that may hold a URL (the
message, extra values, formatted tracebacks) goes through ``scrub_url``.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from stockdash.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

# Compared lower-cased
SENSITIVE_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        "api_key",
        "apikey",
        "x-api-key",
        "polygon_api_key",
        "authorization",
        "token",
        "secret",
        "password",
        "cookie",
        "set-cookie",
    }
)

_URL_CREDENTIAL_RE = re.compile(r"(?i)([?&](?:apikey|api_key)=)[^&\s]+")

# Built-in LogRecord attributes; anything else on a record came from extra=
_RECORD_ATTRS = frozenset(vars(LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_id(request_id: str | None) -> None:
    """Bind a request id to the current context.

    The id is stamped on every record logged from this task and the tasks it
    spawns, until ``clear_request_id`` runs.

    Args:
        request_id: Id to bind, or None to unbind.
    """
    _request_id.set(request_id)


def get_request_id() -> str | None:
    """Return the request id bound to the current context, if any."""
    return _request_id.get()


def clear_request_id() -> None:
    _request_id.set(None)


def scrub_url(value: str) -> str:
    """Mask credentials passed as query parameters in a URL or message.

    Examples:
        >>> scrub_url("https://api.polygon.io/v3/reference/tickers?apiKey=abc&limit=1")
        'https://api.polygon.io/v3/reference/tickers?apiKey=[REDACTED]&limit=1'
    """
    return _URL_CREDENTIAL_RE.sub(lambda m: m.group(1) + REDACTED, value)


class Redactor:
    """Replaces sensitive values inside log extras.

    Keys listed in ``sensitive_keys`` are replaced wholesale at any nesting
    depth; strings elsewhere have URL credentials masked.
    """

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        keys = SENSITIVE_KEYS_DEFAULT if sensitive_keys is None else sensitive_keys
        self.sensitive_keys = frozenset(k.lower() for k in keys)

    def is_sensitive(self, key: Any) -> bool:
        """Whether ``key`` names a credential, compared case-insensitively."""
        return str(key).lower() in self.sensitive_keys

    def redact(self, value: Any) -> Any:
        """Return a redacted copy of ``value``.

        Args:
            value: A string, mapping, list or tuple, nested to any depth.
                Other types are returned unchanged.

        Returns:
            Same shape as ``value``, with sensitive mapping values replaced
            by ``REDACTED`` and URL credentials masked in strings.
        """
        if isinstance(value, str):
            return scrub_url(value)
        if isinstance(value, Mapping):
            return {
                k: REDACTED if self.is_sensitive(k) else self.redact(v)
                for k, v in value.items()
            }
        if isinstance(value, (list, tuple)):
            return type(value)(self.redact(v) for v in value)
        return value

    def extras(self, record: LogRecord) -> dict[str, Any]:
        """Return the record's ``extra=`` fields with sensitive data removed."""
        return {
            key: REDACTED if self.is_sensitive(key) else self.redact(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }


class RequestIdFilter(logging.Filter):
    """Stamp records with the current request id unless one is set."""

    def filter(self, record: LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact a record in place so every formatter downstream sees clean data."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.redactor = Redactor(sensitive_keys)

    def filter(self, record: LogRecord) -> bool:
        for key, value in self.redactor.extras(record).items():
            setattr(record, key, value)
        if isinstance(record.msg, str):
            record.msg = scrub_url(record.msg)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, extras."""

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.redactor = Redactor(sensitive_keys)
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": scrub_url(record.getMessage()),
        }
        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id

        payload.update(self.redactor.extras(record))

        if record.exc_info:
            payload["exc_info"] = scrub_url(self.formatException(record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(cfg: LogSettings) -> logging.Handler:
    if cfg.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    path = Path(cfg.file_path or "logs/stockdash.log")
    path.parent.mkdir(parents=True, exist_ok=True)
    if cfg.max_bytes:
        return RotatingFileHandler(
            path,
            maxBytes=cfg.max_bytes,
            backupCount=cfg.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install a single redacting handler on the root logger.

    Safe to call more than once; previous root handlers are replaced.

    Args:
        log_settings: Logging settings; defaults to the global settings.
    """
    cfg = log_settings or settings.log

    handler = _build_handler(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # httpx logs each request URL at INFO, credential included
    logging.getLogger("httpx").setLevel(logging.WARNING)
    for name in ("uvicorn", "uvicorn.access"):
        logging.getLogger(name).propagate = False
