"""Session and context validation.

Enforces what each autonomy tier may do in each environment and tracks
per-session behaviour to spot anomalies (bursts, erratic command
patterns, repeated privilege escalation). Session state is kept in a
bounded, time-indexed map that is swept for idle sessions.
"""

from __future__ import annotations

import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from agentic_guard.concurrency import KeyedLocks
from agentic_guard.logging import Loggers
from agentic_guard.security.models import (
    AgentContext,
    AgentEnvironment,
    AgentRole,
    ContextResult,
)
from agentic_guard.security.policy import ContextPolicy

logger = Loggers.filtering()

_PATTERN_SPLIT = re.compile(r"[\s-]+")


@dataclass
class SessionState:
    """Per-session behaviour counters.

    Only updated after a command passes validation.
    """

    command_count: int = 0
    last_command_time: float | None = None
    last_command_pattern: str | None = None
    pattern_change_count: int = 0
    privilege_escalation_attempts: int = 0
    last_seen: float = 0.0


def command_pattern(command: str) -> str:
    """Leading verb of a command ("Get-Process -Name x" -> "Get")."""
    parts = [p for p in _PATTERN_SPLIT.split(command.strip()) if p]
    return parts[0] if parts else "unknown"


class ContextValidator:
    """Validates a command against the agent's role, environment and session history."""

    def __init__(
        self,
        policy: ContextPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.policy = policy or ContextPolicy()
        self._clock = clock
        self._sessions: OrderedDict[str, SessionState] = OrderedDict()
        self._sessions_lock = threading.Lock()
        self._locks = KeyedLocks()
        self._dangerous_in_production = _compile(self.policy)

    def update_policy(self, policy: ContextPolicy) -> None:
        """Apply new rules; session history is kept."""
        self._dangerous_in_production = _compile(policy)
        self.policy = policy

    def validate(self, context: AgentContext, command: str, commit: bool = True) -> ContextResult:
        """Validate a command in context.

        Args:
            context: Agent context.
            command: Command text.
            commit: Record the command in the session on success. The
                engine passes False and calls ``commit`` once every layer
                has allowed the command.

        Returns:
            ContextResult; state is only updated when valid.
        """
        if not context.is_valid:
            return ContextResult(False, "Invalid agent context")

        with self._locks.hold(context.session_id):
            state = self._get_or_create(context.session_id)
            now = self._clock()

            anomaly = self._detect_anomaly(state, command, now)
            if anomaly:
                logger.warning(
                    "session_anomaly_detected",
                    agent_id=context.agent_id,
                    session_id=context.session_id,
                    anomaly=anomaly,
                )
                return ContextResult(False, f"Session anomaly: {anomaly}")

            violation = self._check_role(context, command) or self._check_environment(
                context, command
            )
            if violation:
                return ContextResult(False, violation)

            if commit:
                self._record(state, command, now)
            return ContextResult(True)

    def commit(self, context: AgentContext, command: str) -> None:
        """Record an allowed command in the session's history."""
        with self._locks.hold(context.session_id):
            state = self._get_or_create(context.session_id)
            self._record(state, command, self._clock())

    def _get_or_create(self, session_id: str) -> SessionState:
        with self._sessions_lock:
            state = self._sessions.get(session_id)
            if state is None:
                state = SessionState(last_seen=self._clock())
                self._sessions[session_id] = state
                while len(self._sessions) > self.policy.max_sessions:
                    evicted, _ = self._sessions.popitem(last=False)
                    self._locks.discard(evicted)
                    logger.debug("session_evicted", session_id=evicted, reason="capacity")
            else:
                self._sessions.move_to_end(session_id)
            return state

    def _detect_anomaly(self, state: SessionState, command: str, now: float) -> str | None:
        p = self.policy

        if (
            state.command_count > p.rapid_command_threshold
            and state.last_command_time is not None
            and now - state.last_command_time < p.rapid_interval_seconds
        ):
            return "Unusually rapid command execution detected"

        pattern = command_pattern(command)
        if (
            state.command_count > p.pattern_change_min_commands
            and state.last_command_pattern is not None
            and pattern != state.last_command_pattern
            and state.pattern_change_count > p.pattern_change_limit
        ):
            return "Unusual command pattern changes detected"

        if state.privilege_escalation_attempts > p.escalation_limit:
            return "Multiple privilege escalation attempts detected"

        return None

    def _check_role(self, context: AgentContext, command: str) -> str | None:
        p = self.policy
        role = context.role

        if role is AgentRole.READ_ONLY and _starts_with_any(command, p.read_only_write_verbs):
            return "ReadOnly role cannot execute write operations"

        if role is AgentRole.LIMITED_WRITE and _starts_with_any(
            command, p.limited_write_destructive_verbs
        ):
            return "LimitedWrite role cannot execute destructive operations"

        if role is AgentRole.SUPERVISED and _starts_with_any(command, p.full_autonomy_commands):
            return "Command requires FullAutonomy role"

        if (
            role is AgentRole.FULL_AUTONOMY
            and context.environment is AgentEnvironment.PRODUCTION
        ):
            return "FullAutonomy role not allowed in Production environment"

        return None

    def _check_environment(self, context: AgentContext, command: str) -> str | None:
        if context.environment is not AgentEnvironment.PRODUCTION:
            return None

        if any(p.search(command) for p in self._dangerous_in_production):
            return "Command is not allowed in Production environment"

        if _starts_with_any(command, self.policy.development_only_prefixes):
            return "Development-only command not allowed in Production"

        return None

    def _record(self, state: SessionState, command: str, now: float) -> None:
        pattern = command_pattern(command)
        if state.last_command_pattern is not None and pattern != state.last_command_pattern:
            state.pattern_change_count += 1

        lowered = command.lower()
        if any(marker.lower() in lowered for marker in self.policy.escalation_markers):
            state.privilege_escalation_attempts += 1

        state.command_count += 1
        state.last_command_time = now
        state.last_command_pattern = pattern
        state.last_seen = now

    def sweep(self, now: float | None = None) -> int:
        """Drop sessions idle for longer than the session TTL.

        Returns:
            Number of sessions removed.
        """
        now = self._clock() if now is None else now
        cutoff = now - self.policy.session_ttl_seconds
        with self._sessions_lock:
            expired = [sid for sid, s in self._sessions.items() if s.last_seen < cutoff]
            for sid in expired:
                del self._sessions[sid]
                self._locks.discard(sid)
        if expired:
            logger.debug("sessions_swept", count=len(expired))
        return len(expired)

    def get_session(self, session_id: str) -> SessionState | None:
        """Snapshot of a session's counters (None if unknown)."""
        with self._sessions_lock:
            state = self._sessions.get(session_id)
        if state is None:
            return None
        with self._locks.hold(session_id):
            return SessionState(**vars(state))

    def reset_session(self, session_id: str) -> bool:
        """Forget a session's history. Returns True if it existed."""
        with self._sessions_lock:
            existed = self._sessions.pop(session_id, None) is not None
        self._locks.discard(session_id)
        return existed

    @property
    def session_count(self) -> int:
        with self._sessions_lock:
            return len(self._sessions)


def _compile(policy: ContextPolicy) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in policy.production_dangerous_patterns)


def _starts_with_any(command: str, prefixes: list[str]) -> bool:
    lowered = command.lstrip().lower()
    return any(lowered.startswith(prefix.lower()) for prefix in prefixes)
