"""Tamper-evident audit trail for agent actions.

Entries are redacted, hashed (SHA-256 over canonical JSON) and appended
to date-partitioned NDJSON files in the background.

Usage:
    from agentic_guard.audit import AuditConfig, AuditEvent, AuditLogger

    audit = AuditLogger(AuditConfig(log_dir="/var/log/agentic-guard"))
    entry = audit.record(AuditEvent(agent_id="a-1", session_id="s-1", command="Get-Process"))
    audit.verify_integrity(entry)
"""

from agentic_guard.audit.integrity import canonical_json_dumps, compute_hash, verify_integrity
from agentic_guard.audit.logger import AuditLogger
from agentic_guard.audit.models import (
    REDACTION_MARKER,
    AuditConfig,
    AuditEvent,
    AuditEventType,
    AuditLogEntry,
    AuditSeverity,
    EventData,
    ResourceContext,
    SecurityContext,
)
from agentic_guard.audit.redaction import Redactor
from agentic_guard.audit.sinks import AuditSink, JsonFileSink, StructlogSink

__all__ = [
    "AuditLogger",
    "AuditConfig",
    "AuditEvent",
    "AuditEventType",
    "AuditSeverity",
    "AuditLogEntry",
    "EventData",
    "SecurityContext",
    "ResourceContext",
    "Redactor",
    "REDACTION_MARKER",
    "AuditSink",
    "JsonFileSink",
    "StructlogSink",
    "canonical_json_dumps",
    "compute_hash",
    "verify_integrity",
]
