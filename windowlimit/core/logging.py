"""Structured logging for rate limiter events.

Library modules log dotted event names (``rate_limit.over_limit``,
``rate_limit.store.unavailable``, ...) with their fields passed through
``extra=``. This module turns those records into one JSON object per line
and keeps caller identities and store credentials out of the output:

- ``caller_key`` fields are replaced by their ``key_hash``
- credentials embedded in store URLs are masked wherever they appear
- secret-named fields (passwords, tokens, API keys) are redacted

Nothing is installed on import; the host application opts in through
:func:`configure_logging`.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from windowlimit.core.config import LogSettings, settings
from windowlimit.utils.redaction import hash_limiter_key, mask_url

LIBRARY_LOGGER = "windowlimit"

REDACTED = "[REDACTED]"

# Fields whose value is never logged, matched case-insensitively
SECRET_FIELDS: frozenset[str] = frozenset(
    {"password", "token", "secret", "authorization", "api_key", "x-api-key"}
)

# Fields holding a raw caller key; logged as a hash only
CALLER_KEY_FIELDS: frozenset[str] = frozenset({"caller_key", "key"})

_URL_WITH_CREDENTIALS = re.compile(r"\b[a-z][a-z0-9+.-]*://[^\s/@]*:[^\s/@]*@[^\s/]+", re.IGNORECASE)

# LogRecord attributes that are not event fields
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
) | {"message", "asctime", "taskName"}


def _scrub_text(text: str) -> str:
    return _URL_WITH_CREDENTIALS.sub(lambda m: mask_url(m.group(0)), text)


def _scrub(value: Any, secret_fields: frozenset[str]) -> Any:
    if isinstance(value, str):
        return _scrub_text(value)
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in secret_fields else _scrub(v, secret_fields)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(v, secret_fields) for v in value)
    return value


def event_fields(record: LogRecord, secret_fields: frozenset[str] = SECRET_FIELDS) -> dict[str, Any]:
    """Extract the ``extra=`` fields of a record, scrubbed for output.

    Args:
        record: Record emitted by a library logger.
        secret_fields: Field names whose values are redacted.

    Returns:
        Event fields with caller keys hashed, URLs masked and secrets redacted.
    """
    fields: dict[str, Any] = {}
    for name, value in record.__dict__.items():
        if name in _RECORD_ATTRS or name.startswith("_"):
            continue
        lowered = name.lower()
        if lowered in CALLER_KEY_FIELDS:
            if isinstance(value, str) and "key_hash" not in record.__dict__:
                fields["key_hash"] = hash_limiter_key(value)
            continue
        if lowered in secret_fields:
            fields[name] = REDACTED
            continue
        fields[name] = _scrub(value, secret_fields)
    return fields


class RateLimitFieldFilter(logging.Filter):
    """Scrub event fields in place so every downstream handler sees safe values."""

    def __init__(self, secret_fields: Iterable[str] | None = None) -> None:
        super().__init__()
        self.secret_fields = frozenset(
            f.lower() for f in (secret_fields if secret_fields is not None else SECRET_FIELDS)
        )

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        fields = event_fields(record, self.secret_fields)
        for name in CALLER_KEY_FIELDS:
            record.__dict__.pop(name, None)
        record.__dict__.update(fields)
        if isinstance(record.msg, str):
            record.msg = _scrub_text(record.msg)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: ``ts``, ``level``, ``logger``, ``event`` plus fields."""

    def __init__(self, *, ensure_ascii: bool = True) -> None:
        super().__init__()
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": _scrub_text(record.getMessage()),
        }
        payload.update(event_fields(record))

        if record.exc_info:
            payload["exception"] = _scrub_text(self.formatException(record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    file_path = Path(log_settings.file_path or "logs/windowlimit.log")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if log_settings.max_bytes:
        return RotatingFileHandler(
            file_path,
            maxBytes=log_settings.max_bytes,
            backupCount=log_settings.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(file_path, encoding="utf-8")


def configure_logging(
    log_settings: LogSettings | None = None,
    *,
    logger_name: str = LIBRARY_LOGGER,
) -> logging.Handler:
    """Route limiter events to stdout or a file.

    Only the ``windowlimit`` logger tree is configured by default, so the
    host application's root logging is left alone; pass ``logger_name=""``
    to configure the root logger instead.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
        logger_name: Logger to attach the handler to.

    Returns:
        The installed handler.
    """
    cfg = log_settings or settings.log
    level = getattr(logging, cfg.level.upper(), logging.INFO)

    handler = _build_handler(cfg)
    handler.addFilter(RateLimitFieldFilter())
    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    target = logging.getLogger(logger_name or None)
    for existing in list(target.handlers):
        target.removeHandler(existing)
    target.addHandler(handler)
    target.setLevel(level)
    if logger_name:
        target.propagate = False

    # redis-py logs connection chatter at DEBUG
    logging.getLogger("redis").setLevel(max(level, logging.INFO))
    return handler
