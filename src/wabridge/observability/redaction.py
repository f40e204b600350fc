"""Redaction helpers for logs and outbound payloads.

Phone numbers, JIDs and message text never reach a log line. Key material and
media hashes never leave the process.
"""

import hashlib
import re
from collections.abc import Iterable, Mapping
from typing import Any

# Patterns that should never appear in logs
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_REDACTED = "[REDACTED]"

# Stripped from every webhook body
WIRE_OMIT_KEYS: frozenset[str] = frozenset(
    {
        "fileSha256",
        "jpegThumbnail",
        "fileEncSha256",
        "scansSidecar",
        "midQualityFileSha256",
        "mediaKey",
        "senderKeyHash",
        "recipientKeyHash",
        "messageSecret",
        "thumbnailSha256",
        "thumbnailEncSha256",
        "appStateSyncKeyShare",
    }
)

# Pairing secrets are delivered to the webhook but never logged
LOG_OMIT_KEYS: frozenset[str] = WIRE_OMIT_KEYS | {"qr", "qrDataUrl"}


def redact_string(value: str) -> str:
    """Redact PII patterns from a string."""
    result = _PHONE_PATTERN.sub(_REDACTED, value)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # Structure only, never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}


def hash_identifier(value: str) -> str:
    """Non-reversible identifier for logs. First 12 chars of sha256."""
    return hashlib.sha256(value.encode()).hexdigest()[:12]


def deep_sanitize(obj: Any, omit_keys: Iterable[str] = WIRE_OMIT_KEYS) -> Any:
    """Return a copy of ``obj`` without any of ``omit_keys``, at any depth.

    Mappings, lists and tuples are walked; every other value is returned
    as-is. The input is never mutated, and sanitizing an already-sanitized
    value returns an equal value.
    """
    omit = omit_keys if isinstance(omit_keys, (set, frozenset)) else frozenset(omit_keys)
    return _sanitize(obj, omit)


def _sanitize(obj: Any, omit: frozenset[str] | set[str]) -> Any:
    if isinstance(obj, Mapping):
        return {k: _sanitize(v, omit) for k, v in obj.items() if k not in omit}
    if isinstance(obj, list):
        return [_sanitize(v, omit) for v in obj]
    if isinstance(obj, tuple):
        return tuple(_sanitize(v, omit) for v in obj)
    return obj
