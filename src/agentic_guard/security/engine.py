"""Filtering engine: the ordered, short-circuiting admission pipeline.

Layers run in the order configured by the policy. The first layer that
denies ends the evaluation and its verdict becomes the result. Anything
unexpected inside a layer is converted to an InternalError denial; the
engine never fails open.

Usage:
    engine = FilteringEngine(FilteringConfig.from_yaml("policy.yaml"))
    result = engine.evaluate(context, "Get-Process -Name w3wp")
    if result.allowed and result.requires_approval:
        ...  # route to a human approval workflow
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Mapping

from agentic_guard.concurrency import CancellationToken
from agentic_guard.errors import ContractViolationError
from agentic_guard.logging import Loggers
from agentic_guard.security.context import ContextValidator
from agentic_guard.security.lateral import LateralMovementGuard
from agentic_guard.security.models import (
    AgentContext,
    AgentEnvironment,
    AgentRole,
    FilterReason,
    FilterResult,
)
from agentic_guard.security.policy import (
    LAYER_BLACKLIST,
    LAYER_CONTEXT,
    LAYER_PARAMETERS,
    LAYER_RATE_LIMIT,
    LAYER_SEMANTIC,
    LAYER_SYNTAX,
    LAYER_WHITELIST,
    Allowlist,
    FilteringConfig,
    ParameterRule,
)
from agentic_guard.security.rate_limiter import RateLimiter
from agentic_guard.security.semantic import SemanticAnalyzer
from agentic_guard.security.validator import InputValidator

logger = Loggers.filtering()


@dataclass(frozen=True)
class _Denial:
    reason: FilterReason
    message: str
    retry_after: int | None = None
    matched_pattern: str | None = None


@dataclass(frozen=True)
class _CompiledRule:
    allowed_names: frozenset[str] | None
    value_patterns: Mapping[str, re.Pattern]
    allowed_values: Mapping[str, frozenset[str]]
    required: tuple[str, ...]
    forbidden: frozenset[str]

    @classmethod
    def compile(cls, rule: ParameterRule) -> _CompiledRule:
        return cls(
            allowed_names=(
                frozenset(n.lower() for n in rule.allowed_names)
                if rule.allowed_names is not None
                else None
            ),
            value_patterns=MappingProxyType(
                {k.lower(): re.compile(p) for k, p in rule.value_patterns.items()}
            ),
            allowed_values=MappingProxyType(
                {k.lower(): frozenset(v.lower() for v in vs) for k, vs in rule.allowed_values.items()}
            ),
            required=tuple(rule.required),
            forbidden=frozenset(f.lower() for f in rule.forbidden),
        )


@dataclass(frozen=True)
class CompiledPolicy:
    """Immutable, pre-compiled view of a FilteringConfig.

    Swapped as one reference on reload; an evaluation keeps the snapshot
    it started with.
    """

    config: FilteringConfig
    layers: tuple[str, ...]
    blacklist: tuple[tuple[str, re.Pattern], ...]
    allowlists: Mapping[tuple[AgentRole, AgentEnvironment], Allowlist]
    parameter_rules: Mapping[str, _CompiledRule]
    validator: InputValidator
    semantic: SemanticAnalyzer
    lateral: LateralMovementGuard

    @classmethod
    def compile(cls, config: FilteringConfig) -> CompiledPolicy:
        blacklist: list[tuple[str, re.Pattern]] = []
        for pattern in config.blacklist:
            try:
                blacklist.append((pattern, re.compile(pattern, re.IGNORECASE | re.DOTALL)))
            except re.error as e:
                logger.warning("invalid_blacklist_pattern", pattern=pattern, error=str(e))

        allowlists = {
            (role, env): config.effective_allowlist(role, env)
            for role in AgentRole
            for env in AgentEnvironment
        }

        return cls(
            config=config,
            layers=tuple(config.layers),
            blacklist=tuple(blacklist),
            allowlists=MappingProxyType(allowlists),
            parameter_rules=MappingProxyType(
                {key: _CompiledRule.compile(rule) for key, rule in config.parameter_rules.items()}
            ),
            validator=InputValidator(config.input_constraints),
            semantic=SemanticAnalyzer(config.semantic.combinations),
            lateral=LateralMovementGuard(config.lateral_movement),
        )

    def rule_for(self, role: AgentRole, command_name: str) -> _CompiledRule | None:
        return self.parameter_rules.get(
            f"{role.value}:{command_name.lower()}"
        ) or self.parameter_rules.get(role.value)


def extract_command_name(command: str) -> str:
    """First whitespace-delimited token of a command."""
    parts = command.split()
    return parts[0] if parts else ""


class FilteringEngine:
    """Runs the admission pipeline for agent commands.

    The context validator and rate limiter keep per-session and per-agent
    state across calls; everything else is read from the compiled policy
    snapshot.
    """

    def __init__(
        self,
        config: FilteringConfig | None = None,
        context_validator: ContextValidator | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        config = config or FilteringConfig()
        config.validate()
        self._policy = CompiledPolicy.compile(config)
        self.context_validator = context_validator or ContextValidator(config.context)
        self.rate_limiter = rate_limiter or RateLimiter(config.rate_limit)

        self._layers: dict[str, Callable[..., _Denial | None]] = {
            LAYER_SYNTAX: self._check_syntax,
            LAYER_BLACKLIST: self._check_blacklist,
            LAYER_WHITELIST: self._check_whitelist,
            LAYER_PARAMETERS: self._check_parameters,
            LAYER_SEMANTIC: self._check_semantic,
            LAYER_CONTEXT: self._check_context,
            LAYER_RATE_LIMIT: self._check_rate_limit,
        }

    @property
    def config(self) -> FilteringConfig:
        return self._policy.config

    @property
    def policy(self) -> CompiledPolicy:
        return self._policy

    def reload(self, config: FilteringConfig) -> None:
        """Validate, compile and atomically swap in a new policy.

        Raises:
            ConfigurationError: If the new policy is invalid; the old one stays active.
        """
        config.validate()
        compiled = CompiledPolicy.compile(config)
        self.context_validator.update_policy(config.context)
        self.rate_limiter.update_config(config.rate_limit)
        self._policy = compiled
        logger.info("policy_reloaded", layers=list(compiled.layers))

    def evaluate(
        self,
        context: AgentContext,
        command: str,
        parameters: Mapping[str, Any] | None = None,
        cancel: CancellationToken | None = None,
    ) -> FilterResult:
        """Decide whether a command may run.

        Args:
            context: Agent context.
            command: Command text.
            parameters: Optional command parameters.
            cancel: Optional cancellation token checked between layers.

        Returns:
            Exactly one FilterResult.

        Raises:
            ContractViolationError: If context is missing or command is empty.
        """
        if context is None or not isinstance(context, AgentContext):
            raise ContractViolationError("Agent context is required")
        if command is None or not isinstance(command, str) or not command.strip():
            raise ContractViolationError("Command cannot be empty")

        policy = self._policy
        command_name = extract_command_name(command)
        identity = {
            "agent_id": context.agent_id,
            "session_id": context.session_id,
            "command_name": command_name,
        }

        if not policy.config.enabled:
            return FilterResult(
                allowed=True,
                reason=FilterReason.ALLOWED,
                message="Filtering disabled",
                **identity,
            )

        start = time.perf_counter()
        evaluated: list[str] = []
        try:
            for layer in policy.layers:
                if cancel is not None and cancel.is_set():
                    logger.info("evaluation_aborted", layer=layer, **identity)
                    return FilterResult(
                        allowed=False,
                        reason=FilterReason.ABORTED,
                        message="Evaluation cancelled",
                        layers_evaluated=tuple(evaluated),
                        **identity,
                    )

                evaluated.append(layer)
                denial = self._layers[layer](policy, context, command, command_name, parameters)
                if denial is not None:
                    logger.info(
                        "command_denied",
                        layer=layer,
                        reason=denial.reason.value,
                        message=denial.message,
                        duration_ms=round((time.perf_counter() - start) * 1000, 3),
                        **identity,
                    )
                    return FilterResult(
                        allowed=False,
                        reason=denial.reason,
                        message=denial.message,
                        layers_evaluated=tuple(evaluated),
                        retry_after=denial.retry_after,
                        matched_pattern=denial.matched_pattern,
                        **identity,
                    )

            if LAYER_CONTEXT in policy.layers:
                # Session history only counts commands every layer allowed
                self.context_validator.commit(context, command)
            requires_approval = self._requires_approval(policy, context, command_name)
        except Exception as e:
            logger.error(
                "evaluation_failed",
                error=str(e),
                layers_evaluated=evaluated,
                exc_info=True,
                **identity,
            )
            return FilterResult(
                allowed=False,
                reason=FilterReason.INTERNAL_ERROR,
                message=f"Internal error: {e}",
                layers_evaluated=tuple(evaluated),
                **identity,
            )

        logger.debug(
            "command_allowed",
            requires_approval=requires_approval,
            duration_ms=round((time.perf_counter() - start) * 1000, 3),
            **identity,
        )
        return FilterResult(
            allowed=True,
            reason=FilterReason.ALLOWED,
            message="Command requires approval" if requires_approval else "Command allowed",
            requires_approval=requires_approval,
            layers_evaluated=tuple(evaluated),
            **identity,
        )

    # Layers

    def _check_syntax(self, policy, context, command, command_name, parameters) -> _Denial | None:
        result = policy.validator.validate(command)
        if result.is_valid:
            return None
        return _Denial(FilterReason.INVALID_SYNTAX, result.first_message or "Invalid syntax")

    def _check_blacklist(self, policy, context, command, command_name, parameters) -> _Denial | None:
        for pattern, compiled in policy.blacklist:
            if compiled.search(command):
                return _Denial(
                    FilterReason.BLACKLISTED,
                    f"Matched blacklist pattern: {pattern}",
                    matched_pattern=pattern,
                )
        return None

    def _check_whitelist(self, policy, context, command, command_name, parameters) -> _Denial | None:
        allowlist = policy.allowlists.get((context.role, context.environment))
        if allowlist is None or not len(allowlist):
            return _Denial(
                FilterReason.NOT_WHITELISTED,
                f"No allowlist configured for role {context.role.value}",
            )
        if allowlist.allows(command_name):
            return None
        return _Denial(
            FilterReason.NOT_WHITELISTED,
            f"Command '{command_name}' is not allowed for role {context.role.value} "
            f"in {context.environment.value}",
        )

    def _check_parameters(self, policy, context, command, command_name, parameters) -> _Denial | None:
        params = dict(parameters or {})
        rule = policy.rule_for(context.role, command_name)

        if params:
            result = policy.validator.validate_parameters(params)
            if not result.is_valid:
                return _Denial(FilterReason.INVALID_PARAMETERS, result.first_message or "")

        if rule is not None:
            problem = _apply_rule(rule, params)
            if problem:
                return _Denial(FilterReason.INVALID_PARAMETERS, problem)

        for name, value in params.items():
            if value is None:
                continue
            matches = policy.validator.detect_injection(str(value))
            if matches:
                first = matches[0]
                return _Denial(
                    FilterReason.INVALID_PARAMETERS,
                    f"Parameter '{name}' contains {first.category.replace('_', ' ')}: "
                    f"{first.matched_text!r}",
                )
        return None

    def _check_semantic(self, policy, context, command, command_name, parameters) -> _Denial | None:
        lateral = policy.lateral.check(command, parameters)
        if not lateral.allowed:
            return _Denial(FilterReason.SEMANTIC_VIOLATION, lateral.reason or "Lateral movement")
        result = policy.semantic.analyze(command, parameters)
        if result.allowed:
            return None
        return _Denial(FilterReason.SEMANTIC_VIOLATION, result.reason or "Semantic violation")

    def _check_context(self, policy, context, command, command_name, parameters) -> _Denial | None:
        result = self.context_validator.validate(context, command, commit=False)
        if result.is_valid:
            return None
        return _Denial(FilterReason.CONTEXT_VIOLATION, result.reason or "Context violation")

    def _check_rate_limit(self, policy, context, command, command_name, parameters) -> _Denial | None:
        result = self.rate_limiter.check_and_consume(context)
        if result.allowed:
            return None
        return _Denial(
            FilterReason.RATE_LIMIT_EXCEEDED,
            result.reason or "Rate limit exceeded",
            retry_after=result.retry_after,
        )

    def _requires_approval(
        self, policy: CompiledPolicy, context: AgentContext, command_name: str
    ) -> bool:
        approval = policy.config.approval
        name = command_name.lower()

        if context.role is AgentRole.MANUAL:
            return True
        if context.role is AgentRole.LIMITED_WRITE and _has_prefix(name, approval.write_verbs):
            return True
        if context.role is AgentRole.SUPERVISED and _has_prefix(name, approval.destructive_verbs):
            return True
        if context.environment is AgentEnvironment.PRODUCTION and name in {
            c.lower() for c in approval.production_high_risk
        }:
            return True
        return False


def _apply_rule(rule: _CompiledRule, params: dict[str, Any]) -> str | None:
    lowered = {str(k).lower(): v for k, v in params.items()}

    for name in rule.required:
        if name.lower() not in lowered:
            return f"Missing required parameter: '{name}'"

    for name, value in params.items():
        key = str(name).lower()
        if key in rule.forbidden:
            return f"Parameter '{name}' is not permitted"
        if rule.allowed_names is not None and key not in rule.allowed_names:
            return f"Parameter '{name}' is not allowed for this command"
        text = "" if value is None else str(value)
        pattern = rule.value_patterns.get(key)
        if pattern is not None and not pattern.fullmatch(text):
            return f"Parameter '{name}' value does not match the required pattern"
        allowed = rule.allowed_values.get(key)
        if allowed is not None and text.lower() not in allowed:
            return f"Parameter '{name}' value is not one of the allowed values"
    return None


def _has_prefix(name: str, prefixes: list[str]) -> bool:
    return any(name.startswith(p.lower()) for p in prefixes)
