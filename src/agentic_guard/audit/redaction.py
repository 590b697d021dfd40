"""Redaction of sensitive values before anything reaches the audit trail."""

import math
import re
from typing import Any, Iterable

from agentic_guard.audit.models import (
    DEFAULT_SENSITIVE_KEY_PATTERN,
    DEFAULT_SENSITIVE_KEYS,
    REDACTION_MARKER,
)

# Values that look like credentials regardless of their key
_LONG_BASE64 = re.compile(r"^[A-Za-z0-9+/]{40,}={0,2}$")
_AUTH_SCHEME = re.compile(r"(?:bearer|basic) ", re.IGNORECASE)
_MIN_SUSPICIOUS_LENGTH = 20


class Redactor:
    """Replaces sensitive values with a fixed marker, recursing into nested data.

    A value is redacted when its key is in the sensitive key set, when its
    key matches the sensitive key pattern, or when the value itself looks
    like a bearer/basic credential, a JWT or a long base64 blob.
    """

    def __init__(
        self,
        sensitive_keys: Iterable[str] = DEFAULT_SENSITIVE_KEYS,
        key_pattern: str | None = DEFAULT_SENSITIVE_KEY_PATTERN,
        marker: str = REDACTION_MARKER,
    ):
        self._keys = frozenset(k.lower() for k in sensitive_keys)
        self._pattern = re.compile(key_pattern, re.IGNORECASE) if key_pattern else None
        self.marker = marker

    def is_sensitive_key(self, key: str) -> bool:
        lowered = key.lower()
        if lowered in self._keys:
            return True
        return bool(self._pattern and self._pattern.search(key))

    def looks_sensitive(self, value: str) -> bool:
        if len(value) <= _MIN_SUSPICIOUS_LENGTH:
            return False
        return (
            bool(_AUTH_SCHEME.search(value))
            or value.startswith("eyJ")
            or bool(_LONG_BASE64.match(value))
        )

    def redact(self, data: dict[str, Any] | None) -> dict[str, Any] | None:
        """Return a redacted copy of ``data``; the input is not modified."""
        if data is None:
            return None
        return {str(k): self._redact_item(str(k), v) for k, v in data.items()}

    def _redact_item(self, key: str, value: Any) -> Any:
        if self.is_sensitive_key(key):
            return self.marker
        return self._redact_value(value)

    def _redact_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): self._redact_item(str(k), v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self._redact_value(v) for v in value]
        if isinstance(value, str) and self.looks_sensitive(value):
            return self.marker
        if isinstance(value, float) and not math.isfinite(value):
            return str(value)
        if value is None or isinstance(value, (bool, int, float, str)):
            return value
        # Anything else is persisted as text
        text = str(value)
        return self.marker if self.looks_sensitive(text) else text
