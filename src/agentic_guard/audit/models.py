"""Data models for the audit trail.

An ``AuditEvent`` is what callers report; an ``AuditLogEntry`` is what
gets persisted after redaction and hashing. Entries serialize to the
snake_case NDJSON record format written by the file sink.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from agentic_guard.security.models import AgentContext, FilterResult


class AuditEventType(Enum):
    """Kind of action being audited."""

    COMMAND_EXECUTION = "command_execution"
    DATA_ACCESS = "data_access"
    SECURITY_VIOLATION = "security_violation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    CONFIGURATION_CHANGE = "configuration_change"
    ERROR = "error"
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    RESOURCE_CREATED = "resource_created"
    RESOURCE_MODIFIED = "resource_modified"
    RESOURCE_DELETED = "resource_deleted"
    API_CALL = "api_call"
    OTHER = "other"


class AuditSeverity(Enum):
    """Severity of an audited action."""

    INFO = "info"
    WARNING = "warning"
    HIGH = "high"
    CRITICAL = "critical"


DEFAULT_SENSITIVE_KEYS: tuple[str, ...] = (
    "password",
    "secret",
    "apikey",
    "api_key",
    "token",
    "credential",
    "connectionstring",
    "connection_string",
    "auth",
    "authorization",
    "bearer",
    "accesstoken",
    "access_token",
    "refreshtoken",
    "refresh_token",
    "clientsecret",
    "client_secret",
    "privatekey",
    "private_key",
)

DEFAULT_SENSITIVE_KEY_PATTERN = (
    r"(password|secret|apikey|api_key|token|credential|connectionstring"
    r"|connection_string|auth|authorization|bearer)"
)

REDACTION_MARKER = "***REDACTED***"


@dataclass
class AuditConfig:
    """Configuration for the audit trail.

    Attributes:
        enabled: Whether audit records are written at all.
        log_dir: Directory for the date-partitioned NDJSON files.
        retention_days: Age after which uncompressed files are deleted.
        compressed_retention_days: Age after which compressed files are deleted.
        max_file_size_mb: Size past which the current file is rotated.
        enable_compression: Gzip rotated and day-old files.
        include_stack_traces: Keep stack traces supplied with error events.
        emit_structlog: Also emit every entry as a structlog event.
        sensitive_keys: Parameter keys always redacted (case-insensitive).
        sensitive_key_pattern: Regex searched in parameter keys.
        redaction_marker: Replacement for redacted values.
    """

    enabled: bool = True
    log_dir: str = "~/.local/share/agentic-guard/audit"
    retention_days: int = 7
    compressed_retention_days: int = 90
    max_file_size_mb: float = 100.0
    enable_compression: bool = True
    include_stack_traces: bool = True
    emit_structlog: bool = False
    sensitive_keys: list[str] = field(default_factory=lambda: list(DEFAULT_SENSITIVE_KEYS))
    sensitive_key_pattern: str = DEFAULT_SENSITIVE_KEY_PATTERN
    redaction_marker: str = REDACTION_MARKER

    def get_log_dir(self) -> Path:
        """Get resolved log directory path."""
        return Path(self.log_dir).expanduser()

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditConfig:
        defaults = cls()
        return cls(
            enabled=data.get("enabled", defaults.enabled),
            log_dir=str(data.get("log_dir", defaults.log_dir)),
            retention_days=int(data.get("retention_days", defaults.retention_days)),
            compressed_retention_days=int(
                data.get("compressed_retention_days", defaults.compressed_retention_days)
            ),
            max_file_size_mb=float(data.get("max_file_size_mb", defaults.max_file_size_mb)),
            enable_compression=data.get("enable_compression", defaults.enable_compression),
            include_stack_traces=data.get("include_stack_traces", defaults.include_stack_traces),
            emit_structlog=data.get("emit_structlog", defaults.emit_structlog),
            sensitive_keys=list(data.get("sensitive_keys", defaults.sensitive_keys)),
            sensitive_key_pattern=data.get("sensitive_key_pattern", defaults.sensitive_key_pattern),
            redaction_marker=data.get("redaction_marker", defaults.redaction_marker),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "log_dir": self.log_dir,
            "retention_days": self.retention_days,
            "compressed_retention_days": self.compressed_retention_days,
            "max_file_size_mb": self.max_file_size_mb,
            "enable_compression": self.enable_compression,
            "include_stack_traces": self.include_stack_traces,
            "emit_structlog": self.emit_structlog,
            "sensitive_keys": list(self.sensitive_keys),
            "sensitive_key_pattern": self.sensitive_key_pattern,
            "redaction_marker": self.redaction_marker,
        }


@dataclass
class AuditEvent:
    """An action reported by a caller for the audit trail.

    Attributes:
        agent_id: Agent that acted.
        session_id: Session the action belongs to.
        event_type: Kind of action.
        severity: How serious the action is.
        command: Command text, if any.
        parameters: Command parameters (redacted before persistence).
        result: Outcome summary ("allowed", "denied", "success", ...).
        execution_time_ms: How long the action took.
        error: Error message, if the action failed.
        stack_trace: Stack trace for failures (dropped unless configured).
        user_id: Human on whose behalf the agent acted.
        source_ip: Caller address.
        auth_method: How the caller authenticated.
        authz_decision: Authorization decision ("allow", "deny", ...).
        subscription_id: Cloud subscription touched, if any.
        resource_group: Cloud resource group touched, if any.
        resource_id: Cloud resource touched, if any.
        metadata: Free-form extra fields (redacted like parameters).
    """

    agent_id: str
    session_id: str
    event_type: AuditEventType = AuditEventType.COMMAND_EXECUTION
    severity: AuditSeverity = AuditSeverity.INFO
    command: str | None = None
    parameters: dict[str, Any] | None = None
    result: str | None = None
    execution_time_ms: int | None = None
    error: str | None = None
    stack_trace: str | None = None
    user_id: str | None = None
    source_ip: str | None = None
    auth_method: str | None = None
    authz_decision: str | None = None
    subscription_id: str | None = None
    resource_group: str | None = None
    resource_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_decision(
        cls,
        context: AgentContext,
        command: str,
        decision: FilterResult,
        parameters: dict[str, Any] | None = None,
        execution_time_ms: int | None = None,
    ) -> AuditEvent:
        """Build an audit event describing a filtering decision."""
        if decision.allowed:
            event_type = AuditEventType.COMMAND_EXECUTION
            severity = AuditSeverity.WARNING if decision.requires_approval else AuditSeverity.INFO
            result = "approval_required" if decision.requires_approval else "allowed"
        else:
            event_type = AuditEventType.SECURITY_VIOLATION
            severity = _DENIAL_SEVERITY.get(decision.reason.value, AuditSeverity.WARNING)
            result = "denied"

        metadata: dict[str, Any] = {
            "decision_id": decision.decision_id,
            "reason": decision.reason.value,
            "message": decision.message,
            "role": context.role.value,
            "environment": context.environment.value,
            "layers_evaluated": list(decision.layers_evaluated),
        }
        if context.tenant_id:
            metadata["tenant_id"] = context.tenant_id
        if decision.retry_after is not None:
            metadata["retry_after"] = decision.retry_after

        return cls(
            agent_id=context.agent_id,
            session_id=context.session_id,
            event_type=event_type,
            severity=severity,
            command=command,
            parameters=dict(parameters) if parameters else None,
            result=result,
            execution_time_ms=execution_time_ms,
            user_id=context.user_id,
            source_ip=context.source_address,
            authz_decision="allow" if decision.allowed else "deny",
            metadata=metadata,
        )


_DENIAL_SEVERITY: dict[str, AuditSeverity] = {
    "blacklisted": AuditSeverity.CRITICAL,
    "semantic_violation": AuditSeverity.CRITICAL,
    "context_violation": AuditSeverity.HIGH,
    "invalid_parameters": AuditSeverity.HIGH,
    "invalid_syntax": AuditSeverity.WARNING,
    "not_whitelisted": AuditSeverity.WARNING,
    "rate_limit_exceeded": AuditSeverity.WARNING,
    "internal_error": AuditSeverity.HIGH,
    "aborted": AuditSeverity.INFO,
}


@dataclass(frozen=True)
class EventData:
    """What happened."""

    command: str | None = None
    sanitized_parameters: dict[str, Any] | None = None
    result: str | None = None
    execution_time_ms: int | None = None
    error: str | None = None
    stack_trace: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "sanitized_parameters": self.sanitized_parameters,
            "result": self.result,
            "execution_time_ms": self.execution_time_ms,
            "error": self.error,
            "stack_trace": self.stack_trace,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventData:
        return cls(
            command=data.get("command"),
            sanitized_parameters=data.get("sanitized_parameters"),
            result=data.get("result"),
            execution_time_ms=data.get("execution_time_ms"),
            error=data.get("error"),
            stack_trace=data.get("stack_trace"),
        )


@dataclass(frozen=True)
class SecurityContext:
    """Who asked and how they were authorized."""

    source_ip: str | None = None
    auth_method: str | None = None
    authz_decision: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_ip": self.source_ip,
            "auth_method": self.auth_method,
            "authz_decision": self.authz_decision,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SecurityContext:
        return cls(
            source_ip=data.get("source_ip"),
            auth_method=data.get("auth_method"),
            authz_decision=data.get("authz_decision"),
        )


@dataclass(frozen=True)
class ResourceContext:
    """Cloud resource an action touched."""

    subscription_id: str | None = None
    resource_group: str | None = None
    resource_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscription_id": self.subscription_id,
            "resource_group": self.resource_group,
            "resource_id": self.resource_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResourceContext:
        return cls(
            subscription_id=data.get("subscription_id"),
            resource_group=data.get("resource_group"),
            resource_id=data.get("resource_id"),
        )


@dataclass(frozen=True)
class AuditLogEntry:
    """A persisted audit record.

    ``integrity_hash`` covers every other field; see
    ``agentic_guard.audit.integrity``.
    """

    timestamp: datetime
    event_id: str
    agent_id: str
    session_id: str
    event_type: AuditEventType
    severity: AuditSeverity
    event_data: EventData = field(default_factory=EventData)
    security_context: SecurityContext = field(default_factory=SecurityContext)
    resource_context: ResourceContext | None = None
    user_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    integrity_hash: str = ""

    def to_dict(self, include_hash: bool = True) -> dict[str, Any]:
        """Convert to the persisted record layout."""
        data: dict[str, Any] = {
            "timestamp": self.timestamp.astimezone(timezone.utc).isoformat(),
            "event_id": self.event_id,
            "agent_id": self.agent_id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "event_data": self.event_data.to_dict(),
            "security_context": self.security_context.to_dict(),
            "resource_context": (
                self.resource_context.to_dict() if self.resource_context is not None else None
            ),
            "metadata": self.metadata,
        }
        if include_hash:
            data["integrity_hash"] = self.integrity_hash
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditLogEntry:
        """Create from a persisted record."""
        resource = data.get("resource_context")
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            event_id=data["event_id"],
            agent_id=data.get("agent_id", ""),
            session_id=data.get("session_id", ""),
            user_id=data.get("user_id"),
            event_type=AuditEventType(data.get("event_type", "other")),
            severity=AuditSeverity(data.get("severity", "info")),
            event_data=EventData.from_dict(data.get("event_data") or {}),
            security_context=SecurityContext.from_dict(data.get("security_context") or {}),
            resource_context=ResourceContext.from_dict(resource) if resource is not None else None,
            metadata=data.get("metadata") or {},
            integrity_hash=data.get("integrity_hash", ""),
        )
