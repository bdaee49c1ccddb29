"""Helpers for logging identifiers without exposing secrets."""

from __future__ import annotations

import hashlib
from urllib.parse import urlsplit, urlunsplit


def hash_limiter_key(key: str) -> str:
    """Hash a caller key for logging without exposing it.

    Caller keys are frequently API keys or client addresses, so they are
    never written to logs verbatim.

    Args:
        key: Caller-supplied rate limit key.

    Returns:
        First 16 hex characters of the key's SHA-256 digest.
    """
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def mask_url(url: str) -> str:
    """Return ``url`` with any embedded password replaced by ``***``."""
    parts = urlsplit(url)
    if parts.password is None:
        return url

    host = parts.hostname or ""
    if parts.port is not None:
        host = f"{host}:{parts.port}"
    user = parts.username or ""
    netloc = f"{user}:***@{host}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
