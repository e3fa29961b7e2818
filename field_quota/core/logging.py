"""Structured admission logs.

Every record emitted while a call is being admitted carries the correlation
fields ``request_id``, ``operation`` and ``key_hash``, taken from the record
extras or, when absent, from the surrounding context. Caller identity never
reaches a handler in the clear:

- subject keys, user ids and client addresses are replaced by their hash
- store URLs keep their host but lose their password
- credentials and store clients are redacted outright
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping
from urllib.parse import urlsplit, urlunsplit

from field_quota.core.config import LogSettings, settings

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
_operation_var: ContextVar[str | None] = ContextVar("operation", default=None)

REDACTED = "[REDACTED]"

CORRELATION_FIELDS = ("request_id", "operation", "key_hash")

# Values identifying a caller; logged as hashes so events stay correlatable
HASHED_KEYS: frozenset[str] = frozenset({"subject_key", "user_id", "client_ip"})

STORE_URL_KEYS: frozenset[str] = frozenset({"redis_url", "store_url"})

SECRET_KEYS: frozenset[str] = frozenset(
    {
        "api_key",
        "x-api-key",
        "authorization",
        "token",
        "secret",
        "password",
        "cookie",
        "set-cookie",
        "store_client",
    }
)

_RESERVED_ATTRS = frozenset(vars(LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def get_operation() -> str | None:
    """Operation currently being admitted, if any."""
    return _operation_var.get()


@contextmanager
def operation_scope(operation: str) -> Iterator[None]:
    """Tag every record emitted inside the block with ``operation``."""
    token = _operation_var.set(operation)
    try:
        yield
    finally:
        _operation_var.reset(token)


def hash_subject_key(key: str) -> str:
    """Hash a subject key for logging without exposing caller identity."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def mask_store_url(url: Any) -> Any:
    """Drop the password from a store URL, keeping scheme, host and db."""
    if not isinstance(url, str):
        return REDACTED
    parts = urlsplit(url)
    if parts.password is None:
        return url
    host = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit(parts._replace(netloc=f"{parts.username or ''}:***@{host}"))


class Scrubber:
    """Applies the hashing, masking and redaction rules to log extras."""

    def __init__(
        self,
        *,
        secret_keys: Iterable[str] | None = None,
        hashed_keys: Iterable[str] | None = None,
    ) -> None:
        self.secret_keys = frozenset(k.lower() for k in (secret_keys or SECRET_KEYS))
        self.hashed_keys = frozenset(k.lower() for k in (hashed_keys or HASHED_KEYS))

    def scrub(self, key: str, value: Any) -> Any:
        name = key.lower()
        if name in self.secret_keys:
            return REDACTED
        if name in self.hashed_keys:
            return None if value is None else hash_subject_key(str(value))
        if name in STORE_URL_KEYS:
            return mask_store_url(value)
        if isinstance(value, Mapping):
            return {k: self.scrub(k, v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self.scrub("", v) for v in value)
        return value

    def extras(self, record: LogRecord) -> dict[str, Any]:
        """User-supplied extras of ``record``, scrubbed unless already done."""
        done = getattr(record, "_scrubbed", False)
        return {
            key: value if done else self.scrub(key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }


class AdmissionContextFilter(logging.Filter):
    """Fill ``request_id`` and ``operation`` from context when not given."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        if getattr(record, "operation", None) is None:
            record.operation = get_operation()
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub the record in place so every formatter sees safe values."""

    def __init__(
        self,
        secret_keys: Iterable[str] | None = None,
        hashed_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__()
        self.scrubber = Scrubber(secret_keys=secret_keys, hashed_keys=hashed_keys)

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in self.scrubber.extras(record).items():
            setattr(record, key, value)
        record._scrubbed = True
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record, correlation fields first.

    Output keys: ``timestamp``, ``level``, ``logger``, ``event`` (the message,
    a dotted event name such as ``rate_limit.exceeded``), then whichever of
    ``request_id``, ``operation`` and ``key_hash`` are known, then the
    remaining extras.
    """

    def __init__(self, *, scrubber: Scrubber | None = None, ensure_ascii: bool = True) -> None:
        super().__init__()
        self.scrubber = scrubber or Scrubber()
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        extras = self.scrubber.extras(record)
        if extras.get("request_id") is None:
            extras["request_id"] = get_request_id()
        if extras.get("operation") is None:
            extras["operation"] = get_operation()

        data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": record.getMessage(),
        }
        for name in CORRELATION_FIELDS:
            value = extras.pop(name, None)
            if value is not None:
                data[name] = value
        data.update((k, v) for k, v in extras.items() if v is not None)

        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(data, default=str, ensure_ascii=self.ensure_ascii)


class PlainFormatter(logging.Formatter):
    """Human-readable line with the operation in brackets when known."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s%(operation_tag)s %(message)s")

    def format(self, record: LogRecord) -> str:  # noqa: D401
        operation = getattr(record, "operation", None) or get_operation()
        record.operation_tag = f" [{operation}]" if operation else ""
        return super().format(record)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output != "file":
        return logging.StreamHandler(sys.stdout)

    file_path = Path(log_settings.file_path or "logs/field_quota.log")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if not log_settings.max_bytes:
        return logging.FileHandler(file_path, encoding="utf-8")
    return RotatingFileHandler(
        file_path,
        maxBytes=log_settings.max_bytes,
        backupCount=log_settings.backup_count,
        encoding="utf-8",
    )


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Route the root logger through the admission filters.

    Args:
        log_settings: Optional log settings; defaults to ``settings.log``.
    """

    cfg = log_settings or settings.log

    handler = _build_handler(cfg)
    handler.addFilter(AdmissionContextFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(PlainFormatter() if cfg.format == "plain" else JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))
