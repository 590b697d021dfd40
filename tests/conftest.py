"""Shared test fixtures and utilities for agentic-guard tests.

Provides:
- MockContext for isolating tests from global settings state
- ManualClock for deterministic time in rate limiting and session tests
- Agent context and policy fixtures
"""

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest

from agentic_guard.audit import AuditConfig
from agentic_guard.config import (
    GuardSettings,
    reload_settings,
    set_context_settings,
    set_settings,
)
from agentic_guard.security import (
    AgentContext,
    AgentEnvironment,
    AgentRole,
    FilteringConfig,
)


class MockContext:
    """Context manager for isolating tests from global state.

    Handles:
    - Resetting global settings singleton
    - Clearing AGENTIC_GUARD_* environment variables
    - Pointing the audit trail at a temporary directory

    Usage:
        with MockContext(tmp_path) as ctx:
            settings = ctx.settings
    """

    def __init__(self, base_dir: Path, **settings_kwargs):
        self._base_dir = base_dir
        self._settings_kwargs = settings_kwargs
        self._settings: GuardSettings | None = None
        self._original_env: dict[str, str] = {}

    def __enter__(self) -> "MockContext":
        for var in list(os.environ):
            if var.startswith("AGENTIC_GUARD_"):
                self._original_env[var] = os.environ.pop(var)

        self._settings_kwargs.setdefault("audit_dir", self._base_dir / "audit")
        self._settings = GuardSettings(_env_file=None, **self._settings_kwargs)
        set_settings(self._settings)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        set_context_settings(None)
        os.environ.update(self._original_env)
        reload_settings()

    @property
    def settings(self) -> GuardSettings:
        if self._settings is None:
            raise RuntimeError("MockContext not entered")
        return self._settings


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualWallClock:
    """UTC wall clock advanced by hand."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_context(
    role: AgentRole = AgentRole.READ_ONLY,
    environment: AgentEnvironment = AgentEnvironment.DEVELOPMENT,
    agent_id: str = "agent-1",
    session_id: str = "session-1",
    **kwargs,
) -> AgentContext:
    return AgentContext(
        agent_id=agent_id,
        session_id=session_id,
        role=role,
        environment=environment,
        **kwargs,
    )


@pytest.fixture
def mock_context(tmp_path: Path) -> Generator[MockContext, None, None]:
    """Fixture providing an isolated settings context."""
    with MockContext(tmp_path) as ctx:
        yield ctx


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def wall_clock() -> ManualWallClock:
    return ManualWallClock()


@pytest.fixture
def audit_config(tmp_path: Path) -> AuditConfig:
    """Audit config writing under the test's temporary directory."""
    return AuditConfig(log_dir=str(tmp_path / "audit"))


@pytest.fixture
def filtering_config(audit_config: AuditConfig) -> FilteringConfig:
    """Default policy with the audit trail redirected to tmp_path."""
    return FilteringConfig(audit=audit_config)


@pytest.fixture
def read_only_context() -> AgentContext:
    return make_context(AgentRole.READ_ONLY)


@pytest.fixture
def manual_context() -> AgentContext:
    return make_context(AgentRole.MANUAL)


@pytest.fixture
def context_factory():
    """Factory building AgentContext objects with test defaults."""
    return make_context
