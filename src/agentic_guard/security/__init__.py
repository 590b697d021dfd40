"""Command admission with a layered defense pipeline.

Layers, in default order:
- syntax: length, quoting, bracket balance, control characters
- blacklist: regex patterns denied for every role
- whitelist: per-tier allowlists with environment overrides
- parameters: size limits, per-command rules, injection detection
- semantic: lateral movement policy, threat-intent categories and
  combination heuristics
- context: role/environment rules and session anomaly detection
- rate_limit: token bucket per agent, sliding windows per session

Usage:
    from agentic_guard.security import AgentContext, AgentRole, FilteringEngine

    engine = FilteringEngine()
    context = AgentContext(agent_id="agent-1", session_id="s-1", role=AgentRole.READ_ONLY)
    result = engine.evaluate(context, "Get-Process")
    # result.allowed is True, result.requires_approval is False
"""

from agentic_guard.security.context import ContextValidator, SessionState
from agentic_guard.security.engine import CompiledPolicy, FilteringEngine, extract_command_name
from agentic_guard.security.lateral import LateralMovementGuard
from agentic_guard.security.models import (
    ROLE_ORDER,
    AgentContext,
    AgentEnvironment,
    AgentRole,
    ContextResult,
    FilterReason,
    FilterResult,
    InjectionMatch,
    LateralMovementResult,
    PathTraversalType,
    PathTraversalViolation,
    RateLimitResult,
    SemanticResult,
    ValidationFailure,
    ValidationFailureType,
    ValidationResult,
    ValidationSeverity,
)
from agentic_guard.security.policy import (
    DEFAULT_LAYERS,
    Allowlist,
    ApprovalPolicy,
    CombinationRule,
    ContextPolicy,
    EnvironmentOverride,
    FilteringConfig,
    InputConstraints,
    LateralMovementPolicy,
    ParameterRule,
    RateLimitConfig,
    RolePolicy,
    SemanticPolicy,
    get_permissive_config,
    get_strict_config,
)
from agentic_guard.security.rate_limiter import RateLimiter
from agentic_guard.security.semantic import SemanticAnalyzer
from agentic_guard.security.validator import InputValidator

__all__ = [
    # Engine
    "FilteringEngine",
    "CompiledPolicy",
    "extract_command_name",
    # Layers
    "InputValidator",
    "SemanticAnalyzer",
    "LateralMovementGuard",
    "ContextValidator",
    "SessionState",
    "RateLimiter",
    # Policy
    "DEFAULT_LAYERS",
    "FilteringConfig",
    "InputConstraints",
    "RolePolicy",
    "EnvironmentOverride",
    "Allowlist",
    "ParameterRule",
    "ApprovalPolicy",
    "ContextPolicy",
    "RateLimitConfig",
    "CombinationRule",
    "SemanticPolicy",
    "LateralMovementPolicy",
    "get_strict_config",
    "get_permissive_config",
    # Models
    "ROLE_ORDER",
    "AgentContext",
    "AgentRole",
    "AgentEnvironment",
    "FilterReason",
    "FilterResult",
    "ValidationFailure",
    "ValidationFailureType",
    "ValidationResult",
    "ValidationSeverity",
    "InjectionMatch",
    "PathTraversalType",
    "PathTraversalViolation",
    "SemanticResult",
    "LateralMovementResult",
    "ContextResult",
    "RateLimitResult",
]
