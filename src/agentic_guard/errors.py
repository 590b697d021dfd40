"""Error types for agentic-guard.

Policy outcomes (denials, rate limiting, approval) are never raised; they
are returned as typed results. Exceptions are reserved for callers that
break the calling contract and for unusable configuration.
"""

from typing import Any


class GuardError(Exception):
    """Base error for agentic-guard failures.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code (see ErrorCode)
        details: Additional error details
    """

    def __init__(
        self,
        message: str,
        error_code: str = "GUARD_ERROR",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "error": self.message,
            "error_code": self.error_code,
            "details": self.details,
        }


class ContractViolationError(GuardError, ValueError):
    """Raised when a caller passes a missing context or an empty command."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, error_code=ErrorCode.CONTRACT_VIOLATION, details=details)


class ConfigurationError(GuardError):
    """Raised when a filtering policy cannot be loaded or is inconsistent."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, error_code=ErrorCode.CONFIGURATION_ERROR, details=details)


class ErrorCode:
    """Standard error codes."""

    CONTRACT_VIOLATION = "CONTRACT_VIOLATION"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
