"""Integrity hashing for audit entries.

The hash is SHA-256 over the canonical JSON of the entry without its
``integrity_hash`` field: sorted keys, compact separators, UTF-8, NaN
and Infinity rejected. Entries re-read from disk hash identically.
"""

import hashlib
import hmac
import json
from typing import Any

from agentic_guard.audit.models import AuditLogEntry


def canonical_json_dumps(obj: Any) -> str:
    """Serialize to canonical JSON."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def _sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def compute_hash(entry: AuditLogEntry) -> str:
    """Hash of every field of ``entry`` except ``integrity_hash``."""
    return _sha256_hex(canonical_json_dumps(entry.to_dict(include_hash=False)))


def verify_integrity(entry: AuditLogEntry) -> bool:
    """True when the stored hash matches the entry's content."""
    if not entry.integrity_hash:
        return False
    try:
        expected = compute_hash(entry)
    except (TypeError, ValueError):
        return False
    return hmac.compare_digest(expected, entry.integrity_hash)
