"""Runtime settings for agentic-guard.

Settings cover how the guard runs (logging, where the policy and audit
trail live, background task periods). The filtering policy itself lives
in a YAML document loaded by ``FilteringConfig``.

Settings Management:
    1. Global singleton (simple cases):
        set_settings(my_settings)
        settings = get_settings()

    2. Context-based (isolated contexts, tests, multi-tenant hosts):
        with SettingsContext(my_settings):
            settings = get_settings()  # Returns my_settings

Settings Loading Priority (highest to lowest):
    1. Constructor arguments
    2. Environment variables (AGENTIC_GUARD_* prefix)
    3. .env file
    4. Default values
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Generator, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    "GuardSettings",
    "SettingsContext",
    "get_settings",
    "set_settings",
    "set_context_settings",
    "get_context_settings",
    "reload_settings",
]


class GuardSettings(BaseSettings):
    """Runtime settings for the command guard."""

    model_config = SettingsConfigDict(
        env_prefix="AGENTIC_GUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field(
        default="warning",
        title="Log Level",
        description="Logging level (debug, info, warning, error)",
    )
    log_format: Literal["console", "json"] = Field(
        default="console",
        title="Log Format",
        description="Log output format",
    )
    policy_file: Path | None = Field(
        default=None,
        title="Policy File",
        description="YAML filtering policy; built-in defaults when unset",
    )
    audit_dir: Path | None = Field(
        default=None,
        title="Audit Directory",
        description="Overrides the audit log directory from the policy",
    )
    audit_decisions: bool = Field(
        default=True,
        title="Audit Decisions",
        description="Record every filtering decision in the audit trail",
    )
    refill_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        title="Refill Interval",
        description="Period of the token refill and idle-state sweep task",
    )
    maintenance_interval_hours: float = Field(
        default=24.0,
        gt=0,
        title="Maintenance Interval",
        description="Period of audit log compression and retention",
    )
    drain_timeout_seconds: float = Field(
        default=5.0,
        ge=0,
        title="Drain Timeout",
        description="How long shutdown waits for in-flight audit writes",
    )

    @field_validator("policy_file", "audit_dir", mode="before")
    @classmethod
    def expand_paths(cls, v: str | Path | None) -> Path | None:
        """Expand ~ in configured paths."""
        if v is None or v == "":
            return None
        return Path(v).expanduser()


_settings_context: ContextVar[GuardSettings | None] = ContextVar(
    "guard_settings_context", default=None
)

_settings_instance: GuardSettings | None = None


def get_settings() -> GuardSettings:
    """Get the current settings instance.

    Resolution order: context variable, global singleton, then a fresh
    instance built from the environment.
    """
    context_settings = _settings_context.get()
    if context_settings is not None:
        return context_settings

    global _settings_instance
    if _settings_instance is None:
        _settings_instance = GuardSettings()
    return _settings_instance


def set_settings(settings: GuardSettings) -> None:
    """Set the global settings instance."""
    global _settings_instance
    _settings_instance = settings


def set_context_settings(settings: GuardSettings | None) -> Token:
    """Set settings for the current context.

    Returns:
        Token that can be used to reset the context variable.
    """
    return _settings_context.set(settings)


def get_context_settings() -> GuardSettings | None:
    """Get settings from current context (if any)."""
    return _settings_context.get()


@contextmanager
def SettingsContext(settings: GuardSettings) -> Generator[GuardSettings, None, None]:
    """Context manager for isolated settings.

    Example:
        with SettingsContext(GuardSettings(log_level="debug")) as s:
            guard = CommandGuard(settings=get_settings())
    """
    token = _settings_context.set(settings)
    try:
        yield settings
    finally:
        _settings_context.reset(token)


def reload_settings() -> GuardSettings:
    """Reload settings (clears global singleton and context cache)."""
    global _settings_instance
    _settings_instance = None
    _settings_context.set(None)
    return get_settings()
