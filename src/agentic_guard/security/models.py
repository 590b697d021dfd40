"""Data models for command admission.

Provides the agent context supplied by callers, the typed decision
returned by the filtering engine, and the result types of the individual
layers.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class AgentRole(Enum):
    """Autonomy tier of an agent.

    Tiers are ordered by ``ROLE_ORDER``; never compare the enum values.
    """

    MANUAL = "manual"  # AI suggests, human runs everything
    READ_ONLY = "read_only"
    LIMITED_WRITE = "limited_write"
    SUPERVISED = "supervised"
    FULL_AUTONOMY = "full_autonomy"

    @property
    def rank(self) -> int:
        """Position of this tier in ROLE_ORDER (0 = least autonomous)."""
        return ROLE_ORDER.index(self)

    @classmethod
    def parse(cls, value: str | AgentRole) -> AgentRole:
        """Parse a role from its value or name ("ReadOnly", "read_only", ...)."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().replace("-", "_").lower()
        for role in cls:
            if key in (role.value, role.name.lower(), role.value.replace("_", "")):
                return role
        raise ValueError(f"Unknown agent role: {value!r}")


ROLE_ORDER: tuple[AgentRole, ...] = (
    AgentRole.MANUAL,
    AgentRole.READ_ONLY,
    AgentRole.LIMITED_WRITE,
    AgentRole.SUPERVISED,
    AgentRole.FULL_AUTONOMY,
)


class AgentEnvironment(Enum):
    """Environment the agent operates in."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    ISOLATED = "isolated"

    @classmethod
    def parse(cls, value: str | AgentEnvironment) -> AgentEnvironment:
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for env in cls:
            if key in (env.value, env.name.lower()):
                return env
        raise ValueError(f"Unknown agent environment: {value!r}")


class FilterReason(Enum):
    """Why a command was allowed or denied."""

    ALLOWED = "allowed"
    BLACKLISTED = "blacklisted"
    NOT_WHITELISTED = "not_whitelisted"
    INVALID_SYNTAX = "invalid_syntax"
    INVALID_PARAMETERS = "invalid_parameters"
    SEMANTIC_VIOLATION = "semantic_violation"
    CONTEXT_VIOLATION = "context_violation"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INTERNAL_ERROR = "internal_error"
    ABORTED = "aborted"  # Cancelled mid-pipeline


@dataclass(frozen=True)
class AgentContext:
    """Identity and tier of the agent proposing a command.

    Attributes:
        agent_id: Agent identifier (rate-limit bucket key).
        session_id: Session identifier (anomaly state and window key).
        role: Autonomy tier.
        environment: Target environment.
        user_id: Human on whose behalf the agent acts.
        tenant_id: Owning tenant.
        source_address: Network address of the caller.
    """

    agent_id: str
    session_id: str
    role: AgentRole = AgentRole.READ_ONLY
    environment: AgentEnvironment = AgentEnvironment.DEVELOPMENT
    user_id: str | None = None
    tenant_id: str | None = None
    source_address: str | None = None

    @property
    def is_valid(self) -> bool:
        return bool(self.agent_id and self.agent_id.strip()) and bool(
            self.session_id and self.session_id.strip()
        )


@dataclass(frozen=True)
class FilterResult:
    """Terminal decision for one evaluation.

    Attributes:
        allowed: Whether the command may run.
        reason: Why (ALLOWED on success).
        message: Human-readable explanation.
        requires_approval: Allowed, but a human must approve first.
        layers_evaluated: Layers that ran, in order, including the denying one.
        decision_id: Unique id of this decision.
        timestamp: When the decision was made (UTC).
        agent_id: Agent the decision applies to.
        session_id: Session the decision applies to.
        command_name: First token of the evaluated command.
        retry_after: Seconds to wait, for rate-limit denials.
        matched_pattern: Deny pattern that matched, for blacklist denials.
    """

    allowed: bool
    reason: FilterReason
    message: str = ""
    requires_approval: bool = False
    layers_evaluated: tuple[str, ...] = ()
    decision_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    agent_id: str | None = None
    session_id: str | None = None
    command_name: str | None = None
    retry_after: int | None = None
    matched_pattern: str | None = None

    @property
    def is_denied(self) -> bool:
        return not self.allowed

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        data: dict[str, Any] = {
            "decision_id": self.decision_id,
            "allowed": self.allowed,
            "reason": self.reason.value,
            "message": self.message,
            "requires_approval": self.requires_approval,
            "layers_evaluated": list(self.layers_evaluated),
            "timestamp": self.timestamp.isoformat(),
        }
        for key in ("agent_id", "session_id", "command_name", "retry_after", "matched_pattern"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


class ValidationFailureType(Enum):
    """Category of an input validation failure."""

    SYNTAX_ERROR = "syntax_error"
    LENGTH_EXCEEDED = "length_exceeded"
    COMMAND_INJECTION = "command_injection"
    PATH_TRAVERSAL = "path_traversal"
    ENCODING_ATTEMPT = "encoding_attempt"
    NULL_BYTE_DETECTED = "null_byte_detected"
    INVALID_CHARACTER = "invalid_character"
    INVALID_PARAMETER_NAME = "invalid_parameter_name"
    DANGEROUS_PATTERN = "dangerous_pattern"


class ValidationSeverity(Enum):
    """Severity of a validation failure, ordered NONE < ... < CRITICAL."""

    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


@dataclass(frozen=True)
class ValidationFailure:
    """A single problem found by the input validator."""

    failure_type: ValidationFailureType
    severity: ValidationSeverity
    message: str
    field_name: str | None = None


@dataclass
class ValidationResult:
    """All problems found in a command and its parameters."""

    failures: list[ValidationFailure] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.failures

    @property
    def max_severity(self) -> ValidationSeverity:
        if not self.failures:
            return ValidationSeverity.NONE
        return max((f.severity for f in self.failures), key=lambda s: s.value)

    @property
    def first_message(self) -> str | None:
        return self.failures[0].message if self.failures else None


@dataclass(frozen=True)
class InjectionMatch:
    """A dangerous construct found in a piece of text.

    Attributes:
        category: Pattern category (e.g. "command_substitution", "encoding_evasion").
        matched_text: The matched substring.
        position: Offset of the match in the scanned text.
        failure_type: Validation failure type this match maps to.
        detail: Extra information (decoded payload, encoding name).
    """

    category: str
    matched_text: str
    position: int
    failure_type: ValidationFailureType = ValidationFailureType.COMMAND_INJECTION
    detail: str | None = None


class PathTraversalType(Enum):
    """Kind of path reference found in a parameter."""

    DOT_DOT_SEQUENCE = "dot_dot_sequence"
    ABSOLUTE_PATH = "absolute_path"
    WINDOWS_PATH = "windows_path"
    HOME_DIRECTORY = "home_directory"
    UNC_PATH = "unc_path"


@dataclass(frozen=True)
class PathTraversalViolation:
    """A path reference found in a parameter value."""

    parameter_name: str
    value: str
    violation_type: PathTraversalType


@dataclass(frozen=True)
class SemanticResult:
    """Outcome of semantic threat analysis."""

    allowed: bool
    reason: str | None = None
    category: str | None = None


@dataclass(frozen=True)
class LateralMovementResult:
    """Outcome of the lateral-movement checks.

    Attributes:
        violation_type: remote_cmdlet, remote_target, remote_protocol,
            internal_network or blocked_port.
        details: What matched (cmdlet, target, address or port).
    """

    allowed: bool
    reason: str | None = None
    violation_type: str | None = None
    details: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ContextResult:
    """Outcome of session/context validation."""

    is_valid: bool
    reason: str | None = None


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate-limit check."""

    allowed: bool
    retry_after: int | None = None
    reason: str | None = None
