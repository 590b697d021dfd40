"""CommandGuard: the filtering engine and audit trail behind one object.

Usage:
    async with CommandGuard.from_settings() as guard:
        result = guard.evaluate(context, "Get-Process")
        if result.allowed and not result.requires_approval:
            ...
"""

import asyncio
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Mapping

from agentic_guard.audit import AuditEvent, AuditEventType, AuditLogEntry, AuditLogger
from agentic_guard.config import GuardSettings, get_settings
from agentic_guard.concurrency import CancellationToken, PeriodicTask
from agentic_guard.logging import Loggers, configure_logging
from agentic_guard.security import AgentContext, FilteringConfig, FilteringEngine, FilterResult

logger = Loggers.service()

SECONDS_PER_HOUR = 3600.0


class CommandGuard:
    """Admission control plus audit trail for agent-issued commands.

    Owns the background work: token refill and idle-state sweeps on a
    short period, audit file maintenance on a long one.
    """

    def __init__(
        self,
        config: FilteringConfig | None = None,
        settings: GuardSettings | None = None,
        audit: AuditLogger | None = None,
    ):
        self.settings = settings or get_settings()
        config = config or FilteringConfig()
        if self.settings.audit_dir is not None:
            config = replace(config, audit=replace(config.audit, log_dir=str(self.settings.audit_dir)))

        self.engine = FilteringEngine(config)
        self.audit = audit or AuditLogger(config.audit)
        self._tasks: list[PeriodicTask] = []

    @classmethod
    def from_settings(cls, settings: GuardSettings | None = None) -> "CommandGuard":
        """Build a guard from settings, loading ``policy_file`` when set.

        Also configures structured logging from ``log_level``/``log_format``.
        """
        settings = settings or get_settings()
        configure_logging(settings)
        if settings.policy_file is not None:
            config = FilteringConfig.from_yaml(settings.policy_file)
        else:
            config = FilteringConfig()
        return cls(config=config, settings=settings)

    @property
    def config(self) -> FilteringConfig:
        return self.engine.config

    def evaluate(
        self,
        context: AgentContext,
        command: str,
        parameters: Mapping[str, Any] | None = None,
        cancel: CancellationToken | None = None,
    ) -> FilterResult:
        """Evaluate a command and, if configured, audit the decision.

        Raises:
            ContractViolationError: If context is missing or command is empty.
        """
        result = self.engine.evaluate(context, command, parameters, cancel=cancel)
        if self.settings.audit_decisions:
            self.audit.record(
                AuditEvent.from_decision(
                    context,
                    command,
                    result,
                    parameters=dict(parameters) if parameters else None,
                )
            )
        return result

    def record(
        self, event: AuditEvent, cancel: CancellationToken | None = None
    ) -> AuditLogEntry | None:
        return self.audit.record(event, cancel=cancel)

    def query(
        self,
        start: datetime | date,
        end: datetime | date,
        agent_id: str | None = None,
        user_id: str | None = None,
        event_type: AuditEventType | str | None = None,
        cancel: CancellationToken | None = None,
    ) -> list[AuditLogEntry]:
        return self.audit.query(
            start, end, agent_id=agent_id, user_id=user_id, event_type=event_type, cancel=cancel
        )

    def verify_integrity(self, entry: AuditLogEntry) -> bool:
        return self.audit.verify_integrity(entry)

    def reload_policy(self, source: FilteringConfig | Path | str) -> FilteringConfig:
        """Swap in a new policy from a config object or YAML path.

        The audit configuration stays as constructed; only filtering
        behavior changes.

        Raises:
            ConfigurationError: If the new policy is invalid; the old one stays active.
        """
        config = source if isinstance(source, FilteringConfig) else FilteringConfig.from_yaml(source)
        self.engine.reload(config)
        self.audit.record(
            AuditEvent(
                agent_id="agentic-guard",
                session_id="policy",
                event_type=AuditEventType.CONFIGURATION_CHANGE,
                result="policy_reloaded",
                metadata={"layers": list(config.layers)},
            )
        )
        return config

    def _sweep(self) -> None:
        self.engine.rate_limiter.tick()
        self.engine.context_validator.sweep()

    @property
    def running(self) -> bool:
        return any(task.running for task in self._tasks)

    async def start(self) -> None:
        """Start the background tasks on the running event loop."""
        if self._tasks:
            return
        self._tasks = [
            PeriodicTask("state_sweep", self._sweep, interval=self.settings.refill_interval_seconds),
            PeriodicTask(
                "audit_maintenance",
                self.audit.run_maintenance,
                interval=self.settings.maintenance_interval_hours * SECONDS_PER_HOUR,
                run_immediately=True,
            ),
        ]
        for task in self._tasks:
            task.start()
        logger.info("guard_started", tasks=[t.name for t in self._tasks])

    async def stop(self) -> bool:
        """Stop background tasks and drain pending audit writes.

        Returns:
            True if every pending audit write finished within the drain timeout.
        """
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            await task.stop()
        drained = await asyncio.to_thread(self.audit.close, self.settings.drain_timeout_seconds)
        logger.info("guard_stopped", drained=drained)
        return drained

    async def __aenter__(self) -> "CommandGuard":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()
