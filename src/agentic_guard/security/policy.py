"""Filtering policy: layer order, allow/deny lists, limits and tiers.

The policy is plain data. It is loaded from YAML (or built from the
defaults below), validated once, and handed to the filtering engine,
which compiles it into an immutable snapshot.

Tier inheritance is explicit: each role names the role it ``inherits``
from, and ``ROLE_ORDER`` fixes the ranking. A role missing from a policy
document inherits the tier immediately below it with no extra entries,
so allowlists stay tier-inclusive.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from agentic_guard.audit.models import AuditConfig
from agentic_guard.errors import ConfigurationError
from agentic_guard.logging import Loggers
from agentic_guard.security.models import ROLE_ORDER, AgentEnvironment, AgentRole

logger = Loggers.config()

# Layer names, in default pipeline order
LAYER_SYNTAX = "syntax"
LAYER_BLACKLIST = "blacklist"
LAYER_WHITELIST = "whitelist"
LAYER_PARAMETERS = "parameters"
LAYER_SEMANTIC = "semantic"
LAYER_CONTEXT = "context"
LAYER_RATE_LIMIT = "rate_limit"

DEFAULT_LAYERS: tuple[str, ...] = (
    LAYER_SYNTAX,
    LAYER_BLACKLIST,
    LAYER_WHITELIST,
    LAYER_PARAMETERS,
    LAYER_SEMANTIC,
    LAYER_CONTEXT,
    LAYER_RATE_LIMIT,
)

_LAYER_ALIASES = {
    "parameter_validation": LAYER_PARAMETERS,
    "parametervalidation": LAYER_PARAMETERS,
    "ratelimit": LAYER_RATE_LIMIT,
    "rate-limit": LAYER_RATE_LIMIT,
    "rate_limiting": LAYER_RATE_LIMIT,
}

# Patterns denied for every role and environment
DEFAULT_BLACKLIST: tuple[str, ...] = (
    r"Invoke-Expression",
    r"\biex\b",
    r"DownloadString",
    r"DownloadFile",
    r"Net\.WebClient",
    r"-EncodedCommand\b",
    r"\s-enc\s",
    r"mimikatz",
    r"Set-MpPreference\s+.*-Disable",
    r"vssadmin\s+delete\s+shadows",
    r"wevtutil\s+cl\b",
    r"bcdedit\b",
    r"cipher\s+/w",
    r"rm\s+-rf\s+/",
    r"Remove-Item\s+.*[A-Za-z]:\\Windows",
)

# Each tier adds to the one below it; Manual and ReadOnly may only
# read. Destructive and host-level verbs appear from the tier that may use them.
DEFAULT_ROLE_CATEGORIES: dict[AgentRole, dict[str, list[str]]] = {
    AgentRole.MANUAL: {
        "information": [
            "Get-*",
            "Test-*",
            "Resolve-*",
            "Measure-*",
            "Select-Object",
            "Where-Object",
            "Sort-Object",
            "Group-Object",
            "ConvertTo-Json",
            "ConvertTo-Csv",
        ],
    },
    AgentRole.READ_ONLY: {
        "output": ["Write-*", "Out-*", "Export-*"],
        # Admitted here so the context layer reports the role violation
        "write_requests": [
            "Set-*",
            "New-*",
            "Add-*",
            "Update-*",
            "Remove-*",
            "Delete-*",
        ],
    },
    AgentRole.LIMITED_WRITE: {
        "configuration": ["Enable-*", "Import-*"],
        "services": [
            "Start-Service",
            "Restart-Service",
            "Suspend-Service",
            "Resume-Service",
        ],
    },
    AgentRole.SUPERVISED: {
        "services": ["Stop-Service"],
        "cleanup": ["Clear-*", "Disable-*", "Uninstall-*"],
        "processes": ["Start-Process", "Stop-Process", "Wait-Process"],
    },
    AgentRole.FULL_AUTONOMY: {
        "host_control": [
            "Restart-Computer",
            "Stop-Computer",
            "Format-Volume",
            "Initialize-Disk",
        ],
    },
}

DEFAULT_ENVIRONMENT_OVERRIDES: dict[AgentEnvironment, dict[str, list[str]]] = {
    AgentEnvironment.PRODUCTION: {
        "remove": ["Write-Debug", "Write-Verbose", "Measure-Command"],
        "add": [],
    },
}

WRITE_VERBS: tuple[str, ...] = ("Set-", "New-", "Add-", "Update-", "Write-", "Out-", "Export-")
DESTRUCTIVE_VERBS: tuple[str, ...] = (
    "Remove-",
    "Delete-",
    "Clear-",
    "Stop-",
    "Disable-",
    "Format-",
    "Uninstall-",
)
PRODUCTION_HIGH_RISK: tuple[str, ...] = (
    "Restart-Service",
    "Stop-Service",
    "Restart-Computer",
    "Stop-Computer",
    "Remove-Item",
    "Format-Volume",
    "Clear-EventLog",
    "Disable-NetAdapter",
)


def _default_roles() -> dict[AgentRole, RolePolicy]:
    roles: dict[AgentRole, RolePolicy] = {}
    previous: AgentRole | None = None
    for role in ROLE_ORDER:
        roles[role] = RolePolicy(
            inherits=previous,
            categories={k: list(v) for k, v in DEFAULT_ROLE_CATEGORIES.get(role, {}).items()},
        )
        previous = role
    return roles


def _default_overrides() -> dict[AgentEnvironment, EnvironmentOverride]:
    return {
        env: EnvironmentOverride(remove=list(o["remove"]), add=list(o["add"]))
        for env, o in DEFAULT_ENVIRONMENT_OVERRIDES.items()
    }


def matches_entry(entry: str, command_name: str) -> bool:
    """Match a command name against one allowlist entry.

    Entries match exactly (case-insensitive) or, when they end in ``*``,
    by case-insensitive prefix.
    """
    entry = entry.strip()
    if not entry:
        return False
    if entry.endswith("*"):
        return command_name.lower().startswith(entry[:-1].lower())
    return command_name.lower() == entry.lower()


@dataclass
class InputConstraints:
    """Size limits for commands and parameters."""

    max_command_length: int = 10000
    max_parameters: int = 50
    max_parameter_name_length: int = 100
    max_parameter_length: int = 1000


@dataclass
class RolePolicy:
    """Allowlist categories granted to one tier.

    Attributes:
        inherits: Tier whose effective allowlist this tier extends.
        categories: Named groups of allowlist entries.
    """

    inherits: AgentRole | None = None
    categories: dict[str, list[str]] = field(default_factory=dict)

    @property
    def entries(self) -> list[str]:
        return [entry for values in self.categories.values() for entry in values]


@dataclass
class EnvironmentOverride:
    """Allowlist adjustments applied in one environment."""

    remove: list[str] = field(default_factory=list)
    add: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Allowlist:
    """Effective allowlist for a (role, environment) pair."""

    entries: tuple[str, ...]
    excluded: tuple[str, ...] = ()

    def allows(self, command_name: str) -> bool:
        if any(matches_entry(e, command_name) for e in self.excluded):
            return False
        return any(matches_entry(e, command_name) for e in self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass
class ParameterRule:
    """Constraints on the parameters of a command.

    Attributes:
        allowed_names: Only these names may appear (None = any name).
        value_patterns: Regex each named parameter's value must fully match.
        allowed_values: Enumerated values each named parameter may take.
        required: Parameters that must be present.
        forbidden: Parameters that must not be present.
    """

    allowed_names: list[str] | None = None
    value_patterns: dict[str, str] = field(default_factory=dict)
    allowed_values: dict[str, list[str]] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)
    forbidden: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParameterRule:
        names = data.get("allowed_names")
        return cls(
            allowed_names=list(names) if names is not None else None,
            value_patterns=dict(data.get("value_patterns", {})),
            allowed_values={k: list(v) for k, v in data.get("allowed_values", {}).items()},
            required=list(data.get("required", [])),
            forbidden=list(data.get("forbidden", [])),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed_names": self.allowed_names,
            "value_patterns": self.value_patterns,
            "allowed_values": self.allowed_values,
            "required": self.required,
            "forbidden": self.forbidden,
        }


@dataclass
class ApprovalPolicy:
    """Which allowed commands still need a human to approve them."""

    write_verbs: list[str] = field(default_factory=lambda: list(WRITE_VERBS))
    destructive_verbs: list[str] = field(default_factory=lambda: list(DESTRUCTIVE_VERBS))
    production_high_risk: list[str] = field(default_factory=lambda: list(PRODUCTION_HIGH_RISK))


@dataclass
class ContextPolicy:
    """Role, environment and session-anomaly rules for the context layer."""

    read_only_write_verbs: list[str] = field(
        default_factory=lambda: list(WRITE_VERBS) + ["Remove-", "Delete-"]
    )
    limited_write_destructive_verbs: list[str] = field(
        default_factory=lambda: list(DESTRUCTIVE_VERBS)
    )
    full_autonomy_commands: list[str] = field(
        default_factory=lambda: [
            "Restart-Computer",
            "Stop-Computer",
            "Format-Volume",
            "Initialize-Disk",
            "Remove-Partition",
        ]
    )
    production_dangerous_patterns: list[str] = field(
        default_factory=lambda: [
            r"Format-",
            r"Clear-EventLog",
            r"Remove-Item.*-Recurse",
            r"Stop-Computer",
            r"Restart-Computer",
        ]
    )
    development_only_prefixes: list[str] = field(
        default_factory=lambda: ["Write-Debug", "Write-Verbose", "Measure-Command"]
    )
    escalation_markers: list[str] = field(
        default_factory=lambda: ["sudo", "runas", "Set-ExecutionPolicy", "Add-LocalGroupMember"]
    )
    rapid_command_threshold: int = 100
    rapid_interval_seconds: float = 1.0
    pattern_change_min_commands: int = 10
    pattern_change_limit: int = 5
    escalation_limit: int = 3
    session_ttl_seconds: float = 3600.0
    max_sessions: int = 10000


@dataclass
class RateLimitConfig:
    """Token bucket (per agent) and sliding window (per session) limits."""

    capacity: int = 100
    refill_rate: float = 10.0  # Tokens per second
    burst: int = 20
    per_minute: int = 300
    per_hour: int = 1000
    idle_ttl_seconds: float = 3600.0


@dataclass
class CombinationRule:
    """Flags a command containing any of ``first`` and any of ``second``."""

    name: str
    message: str
    first: list[str]
    second: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "message": self.message, "first": self.first, "second": self.second}


def default_combinations() -> list[CombinationRule]:
    return [
        CombinationRule(
            name="download_execute",
            message="Detected download-and-execute pattern",
            first=["DownloadString", "DownloadFile", "Invoke-WebRequest", "wget", "curl"],
            second=["Invoke-Expression", "IEX", "Start-Process", "| sh", "| bash"],
        ),
        CombinationRule(
            name="credential_exfiltration",
            message="Detected credential exfiltration pattern",
            first=["Get-Credential", "ConvertFrom-SecureString", "Export-Clixml"],
            second=["Send-MailMessage", "Invoke-WebRequest", "Invoke-RestMethod"],
        ),
        CombinationRule(
            name="security_bypass",
            message="Detected security bypass pattern",
            first=["Set-ExecutionPolicy", "Disable-"],
            second=["Invoke-"],
        ),
    ]


@dataclass
class SemanticPolicy:
    """Tunable heuristics of the semantic layer."""

    combinations: list[CombinationRule] = field(default_factory=default_combinations)


@dataclass
class LateralMovementPolicy:
    """Remote-execution and network restrictions checked by the semantic layer.

    Attributes:
        enabled: Run the lateral-movement checks at all.
        block_remote_execution: Deny ``blocked_cmdlets`` and remote
            ``-ComputerName`` targets outside ``allowed_targets``.
        blocked_cmdlets: Commands that open remote sessions (matched as
            whole command tokens, case-insensitive, ``.exe`` ignored).
        allowed_targets: Computer names that count as the local host.
            ``$env:COMPUTERNAME`` stands for this machine's name.
        block_remote_protocols: Deny ``ssh`` and ``winrs`` invocations.
        deny_internal_networks: Deny IPv4 addresses inside ``internal_networks``.
        internal_networks: CIDR ranges treated as internal.
        blocked_ports: Ports that may not be named as targets.
    """

    enabled: bool = True
    block_remote_execution: bool = True
    blocked_cmdlets: list[str] = field(
        default_factory=lambda: [
            "Enter-PSSession",
            "Invoke-Command",
            "New-PSSession",
            "Connect-PSSession",
            "Remove-PSSession",
            "Get-PSSession",
            "New-CimSession",
            "Invoke-WmiMethod",
            "Invoke-CimMethod",
            "winrs",
            "ssh",
        ]
    )
    allowed_targets: list[str] = field(
        default_factory=lambda: ["localhost", "127.0.0.1", ".", "$env:COMPUTERNAME"]
    )
    block_remote_protocols: bool = True
    deny_internal_networks: bool = True
    internal_networks: list[str] = field(
        default_factory=lambda: ["10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16"]
    )
    blocked_ports: list[int] = field(default_factory=lambda: [22, 3389, 5985, 5986])


@dataclass
class FilteringConfig:
    """Complete filtering policy.

    Attributes:
        enabled: When False every command is allowed without evaluation.
        layers: Pipeline layers, in evaluation order.
        input_constraints: Command and parameter size limits.
        blacklist: Regex patterns denied for every role.
        roles: Allowlist categories and inheritance per tier.
        environment_overrides: Allowlist removals/additions per environment.
        parameter_rules: Parameter constraints keyed "<role>:<command>" or "<role>".
        approval: Approval-required verb lists.
        context: Context-layer rules.
        rate_limit: Rate-limit parameters.
        semantic: Semantic heuristics.
        lateral_movement: Remote-execution and network restrictions.
        audit: Audit trail configuration.
    """

    enabled: bool = True
    layers: list[str] = field(default_factory=lambda: list(DEFAULT_LAYERS))
    input_constraints: InputConstraints = field(default_factory=InputConstraints)
    blacklist: list[str] = field(default_factory=lambda: list(DEFAULT_BLACKLIST))
    roles: dict[AgentRole, RolePolicy] = field(default_factory=_default_roles)
    environment_overrides: dict[AgentEnvironment, EnvironmentOverride] = field(
        default_factory=_default_overrides
    )
    parameter_rules: dict[str, ParameterRule] = field(default_factory=dict)
    approval: ApprovalPolicy = field(default_factory=ApprovalPolicy)
    context: ContextPolicy = field(default_factory=ContextPolicy)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    semantic: SemanticPolicy = field(default_factory=SemanticPolicy)
    lateral_movement: LateralMovementPolicy = field(default_factory=LateralMovementPolicy)
    audit: AuditConfig = field(default_factory=AuditConfig)

    def __post_init__(self) -> None:
        self.layers = [_normalize_layer(name) for name in self.layers]
        self.parameter_rules = {
            normalize_rule_key(key): rule for key, rule in self.parameter_rules.items()
        }
        # Roles left out inherit the tier below with no extra entries
        previous: AgentRole | None = None
        for role in ROLE_ORDER:
            if role not in self.roles:
                self.roles[role] = RolePolicy(inherits=previous)
            previous = role

    @classmethod
    def default(cls) -> FilteringConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FilteringConfig:
        """Create config from dictionary.

        Missing sections fall back to defaults; a section that is present
        replaces the default section entirely.

        Raises:
            ConfigurationError: If the data is malformed.
        """
        try:
            return cls._from_dict(data)
        except ConfigurationError:
            raise
        except (TypeError, ValueError, AttributeError, KeyError) as e:
            raise ConfigurationError(f"Invalid filtering policy: {e}") from e

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> FilteringConfig:
        defaults = cls()

        constraints_data = data.get("input_constraints", {})
        constraints = InputConstraints(
            max_command_length=int(constraints_data.get("max_command_length", 10000)),
            max_parameters=int(constraints_data.get("max_parameters", 50)),
            max_parameter_name_length=int(constraints_data.get("max_parameter_name_length", 100)),
            max_parameter_length=int(constraints_data.get("max_parameter_length", 1000)),
        )

        roles = defaults.roles
        if "roles" in data:
            roles = {}
            previous: AgentRole | None = None
            for role in ROLE_ORDER:
                role_data = _lookup_role(data["roles"], role)
                if role_data is not None:
                    inherits = role_data.get("inherits", previous.value if previous else None)
                    roles[role] = RolePolicy(
                        inherits=AgentRole.parse(inherits) if inherits else None,
                        categories={
                            name: list(entries or [])
                            for name, entries in (role_data.get("categories") or {}).items()
                        },
                    )
                previous = role
            unknown = [k for k in data["roles"] if not _known_role(k)]
            if unknown:
                raise ConfigurationError(f"Unknown roles in policy: {sorted(unknown)}")

        overrides = defaults.environment_overrides
        if "environment_overrides" in data:
            overrides = {
                AgentEnvironment.parse(env): EnvironmentOverride(
                    remove=list(o.get("remove", [])), add=list(o.get("add", []))
                )
                for env, o in (data["environment_overrides"] or {}).items()
            }

        approval_data = data.get("approval", {})
        approval = ApprovalPolicy(
            write_verbs=list(approval_data.get("write_verbs", WRITE_VERBS)),
            destructive_verbs=list(approval_data.get("destructive_verbs", DESTRUCTIVE_VERBS)),
            production_high_risk=list(
                approval_data.get("production_high_risk", PRODUCTION_HIGH_RISK)
            ),
        )

        context_data = data.get("context", {})
        context = ContextPolicy(
            **{k: v for k, v in context_data.items() if k in ContextPolicy.__dataclass_fields__}
        )

        rate_data = data.get("rate_limit", {})
        rate_limit = RateLimitConfig(
            **{k: v for k, v in rate_data.items() if k in RateLimitConfig.__dataclass_fields__}
        )

        semantic = defaults.semantic
        if "semantic" in data and "combinations" in (data["semantic"] or {}):
            semantic = SemanticPolicy(
                combinations=[
                    CombinationRule(
                        name=c["name"],
                        message=c.get("message", f"Detected {c['name']} pattern"),
                        first=list(c["first"]),
                        second=list(c["second"]),
                    )
                    for c in data["semantic"]["combinations"]
                ]
            )

        lateral_data = data.get("lateral_movement") or {}
        lateral_movement = LateralMovementPolicy(
            **{
                k: v
                for k, v in lateral_data.items()
                if k in LateralMovementPolicy.__dataclass_fields__
            }
        )

        return cls(
            enabled=data.get("enabled", True),
            layers=list(data.get("layers", DEFAULT_LAYERS)),
            input_constraints=constraints,
            blacklist=list(data.get("blacklist", DEFAULT_BLACKLIST)),
            roles=roles,
            environment_overrides=overrides,
            parameter_rules={
                key: ParameterRule.from_dict(rule or {})
                for key, rule in (data.get("parameter_rules") or {}).items()
            },
            approval=approval,
            context=context,
            rate_limit=rate_limit,
            semantic=semantic,
            lateral_movement=lateral_movement,
            audit=AuditConfig.from_dict(data.get("audit", {})),
        )

    @classmethod
    def from_yaml(cls, path: Path | str) -> FilteringConfig:
        """Load config from YAML file.

        A missing file yields the default policy; an unreadable or
        malformed one raises ConfigurationError.
        """
        path = Path(path).expanduser()
        if not path.exists():
            logger.info("policy_file_missing_using_defaults", path=str(path))
            return cls()

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Cannot read policy file {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Policy file {path} must contain a mapping")

        # Allow the policy to sit under a top-level command_filtering key
        data = data.get("command_filtering", data)
        config = cls.from_dict(data)
        logger.info("policy_loaded", path=str(path), layers=config.layers)
        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary (round-trips through from_dict)."""
        return {
            "enabled": self.enabled,
            "layers": list(self.layers),
            "input_constraints": {
                "max_command_length": self.input_constraints.max_command_length,
                "max_parameters": self.input_constraints.max_parameters,
                "max_parameter_name_length": self.input_constraints.max_parameter_name_length,
                "max_parameter_length": self.input_constraints.max_parameter_length,
            },
            "blacklist": list(self.blacklist),
            "roles": {
                role.value: {
                    "inherits": policy.inherits.value if policy.inherits else None,
                    "categories": {k: list(v) for k, v in policy.categories.items()},
                }
                for role, policy in self.roles.items()
            },
            "environment_overrides": {
                env.value: {"remove": list(o.remove), "add": list(o.add)}
                for env, o in self.environment_overrides.items()
            },
            "parameter_rules": {k: r.to_dict() for k, r in self.parameter_rules.items()},
            "approval": {
                "write_verbs": list(self.approval.write_verbs),
                "destructive_verbs": list(self.approval.destructive_verbs),
                "production_high_risk": list(self.approval.production_high_risk),
            },
            "context": dict(vars(self.context)),
            "rate_limit": dict(vars(self.rate_limit)),
            "semantic": {"combinations": [c.to_dict() for c in self.semantic.combinations]},
            "lateral_movement": dict(vars(self.lateral_movement)),
            "audit": self.audit.to_dict(),
        }

    def role_chain(self, role: AgentRole) -> list[AgentRole]:
        """Return ``role`` followed by every tier it inherits from.

        Raises:
            ConfigurationError: On cycles or upward inheritance.
        """
        chain = [role]
        current = role
        while True:
            parent = self.roles[current].inherits
            if parent is None:
                return chain
            if parent.rank >= current.rank:
                raise ConfigurationError(
                    f"Role {current.value} may only inherit from a lower tier, not {parent.value}"
                )
            if parent in chain:
                raise ConfigurationError(f"Inheritance cycle at role {parent.value}")
            chain.append(parent)
            current = parent

    def base_allowlist(self, role: AgentRole) -> list[str]:
        """Allowlist entries of ``role`` and every inherited tier."""
        entries: list[str] = []
        seen: set[str] = set()
        for member in reversed(self.role_chain(role)):
            for entry in self.roles[member].entries:
                if entry.lower() not in seen:
                    seen.add(entry.lower())
                    entries.append(entry)
        return entries

    def effective_allowlist(self, role: AgentRole, environment: AgentEnvironment) -> Allowlist:
        """Allowlist for ``role`` after environment overrides."""
        entries = self.base_allowlist(role)
        override = self.environment_overrides.get(environment)
        if override is None:
            return Allowlist(entries=tuple(entries))

        removed = {r.lower() for r in override.remove}
        entries = [e for e in entries if e.lower() not in removed]
        for extra in override.add:
            if extra.lower() not in {e.lower() for e in entries}:
                entries.append(extra)
        return Allowlist(entries=tuple(entries), excluded=tuple(override.remove))

    def parameter_rule_for(self, role: AgentRole, command_name: str) -> ParameterRule | None:
        """Rule for "<role>:<command>", falling back to "<role>"."""
        return self.parameter_rules.get(
            f"{role.value}:{command_name.lower()}"
        ) or self.parameter_rules.get(role.value)

    def validate(self) -> None:
        """Check the policy is usable.

        Raises:
            ConfigurationError: Listing every problem found.
        """
        errors: list[str] = []

        if not self.layers:
            errors.append("At least one layer must be enabled")
        unknown = [name for name in self.layers if name not in DEFAULT_LAYERS]
        if unknown:
            errors.append(f"Unknown layers: {unknown}")
        if len(set(self.layers)) != len(self.layers):
            errors.append("Layers must not repeat")

        for name, value in vars(self.input_constraints).items():
            if value <= 0:
                errors.append(f"input_constraints.{name} must be positive")

        rl = self.rate_limit
        if rl.capacity <= 0 or rl.refill_rate <= 0:
            errors.append("rate_limit capacity and refill_rate must be positive")
        if rl.burst < 0:
            errors.append("rate_limit.burst must not be negative")
        if rl.per_minute <= 0 or rl.per_hour <= 0:
            errors.append("rate_limit window limits must be positive")

        if self.context.max_sessions <= 0 or self.context.session_ttl_seconds <= 0:
            errors.append("context max_sessions and session_ttl_seconds must be positive")

        for network in self.lateral_movement.internal_networks:
            try:
                ipaddress.ip_network(network, strict=False)
            except ValueError as e:
                errors.append(f"lateral_movement.internal_networks: {e}")
        bad_ports = [
            p
            for p in self.lateral_movement.blocked_ports
            if not isinstance(p, int) or not 0 < p <= 65535
        ]
        if bad_ports:
            errors.append(f"lateral_movement.blocked_ports out of range: {bad_ports}")

        for key, rule in self.parameter_rules.items():
            for param, pattern in rule.value_patterns.items():
                try:
                    re.compile(pattern)
                except re.error as e:
                    errors.append(f"parameter_rules[{key}].{param}: invalid pattern ({e})")

        try:
            self._check_tier_inclusion()
        except ConfigurationError as e:
            errors.append(e.message)

        if errors:
            raise ConfigurationError("; ".join(errors), details={"errors": errors})

    def _check_tier_inclusion(self) -> None:
        allowlists = {role: {e.lower() for e in self.base_allowlist(role)} for role in ROLE_ORDER}
        for lower_index, lower in enumerate(ROLE_ORDER):
            for higher in ROLE_ORDER[lower_index + 1:]:
                missing = allowlists[lower] - allowlists[higher]
                if missing:
                    raise ConfigurationError(
                        f"Role {higher.value} allowlist is missing entries of lower tier "
                        f"{lower.value}: {sorted(missing)}"
                    )


def normalize_rule_key(key: str) -> str:
    """Normalize a parameter rule key to "<role value>[:<command lower>]"."""
    role_part, sep, command = key.partition(":")
    role = AgentRole.parse(role_part)
    return f"{role.value}:{command.strip().lower()}" if sep else role.value


def _normalize_layer(name: str) -> str:
    key = name.strip().lower()
    return _LAYER_ALIASES.get(key, key)


def _known_role(key: str) -> bool:
    try:
        AgentRole.parse(key)
    except ValueError:
        return False
    return True


def _lookup_role(roles_data: dict[str, Any], role: AgentRole) -> dict[str, Any] | None:
    for key, value in roles_data.items():
        if _known_role(key) and AgentRole.parse(key) is role:
            return value or {}
    return None


def get_strict_config() -> FilteringConfig:
    """Get a strict policy.

    Tighter input limits and rate limits, no burst allowance.
    """
    return FilteringConfig(
        input_constraints=InputConstraints(
            max_command_length=2000,
            max_parameters=20,
            max_parameter_name_length=64,
            max_parameter_length=500,
        ),
        rate_limit=RateLimitConfig(capacity=30, refill_rate=1.0, burst=0, per_minute=60, per_hour=600),
    )


def get_permissive_config() -> FilteringConfig:
    """Get a permissive policy.

    Generous rate limits for trusted automation; every layer still runs.
    """
    return FilteringConfig(
        rate_limit=RateLimitConfig(
            capacity=1000, refill_rate=100.0, burst=200, per_minute=1000, per_hour=20000
        ),
    )
