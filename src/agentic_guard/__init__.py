"""Agentic Guard - command admission control and audit trail for AI agents.

This package sits between an autonomous agent and the infrastructure it
operates on:

- A layered filtering pipeline (syntax, blacklist, per-tier allowlists,
  parameter checks, threat heuristics, session context, rate limits)
- A tamper-evident, redacted audit trail with rotation and retention
- A CommandGuard facade that wires both and runs their background tasks
"""

from agentic_guard.audit import (
    AuditConfig,
    AuditEvent,
    AuditEventType,
    AuditLogEntry,
    AuditLogger,
    AuditSeverity,
)
from agentic_guard.config import (
    GuardSettings,
    SettingsContext,
    get_context_settings,
    get_settings,
    reload_settings,
    set_context_settings,
    set_settings,
)
from agentic_guard.errors import ConfigurationError, ContractViolationError, GuardError
from agentic_guard.logging import configure_logging, get_logger
from agentic_guard.security import (
    AgentContext,
    AgentEnvironment,
    AgentRole,
    FilteringConfig,
    FilteringEngine,
    FilterReason,
    FilterResult,
)
from agentic_guard.service import CommandGuard

__version__ = "0.1.0"

__all__ = [
    # Facade
    "CommandGuard",
    # Filtering
    "FilteringEngine",
    "FilteringConfig",
    "AgentContext",
    "AgentRole",
    "AgentEnvironment",
    "FilterReason",
    "FilterResult",
    # Audit
    "AuditLogger",
    "AuditConfig",
    "AuditEvent",
    "AuditEventType",
    "AuditSeverity",
    "AuditLogEntry",
    # Settings
    "GuardSettings",
    "SettingsContext",
    "get_settings",
    "set_settings",
    "set_context_settings",
    "get_context_settings",
    "reload_settings",
    # Errors
    "GuardError",
    "ContractViolationError",
    "ConfigurationError",
    # Logging
    "configure_logging",
    "get_logger",
]
