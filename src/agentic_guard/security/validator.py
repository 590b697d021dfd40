"""Input validation for commands and their parameters.

Three operations:
- validate: syntax and size checks, every failure collected
- detect_injection: fixed battery of injection, encoding-evasion and
  path-traversal patterns
- sanitize: advisory cleanup of parameter names and values
"""

import base64
import binascii
import codecs
import html
import re
import unicodedata
from types import MappingProxyType
from typing import Any, Mapping
from urllib.parse import unquote

from agentic_guard.security.models import (
    InjectionMatch,
    PathTraversalType,
    PathTraversalViolation,
    ValidationFailure,
    ValidationFailureType,
    ValidationResult,
    ValidationSeverity,
)
from agentic_guard.security.policy import InputConstraints

# Shell-level injection constructs, by category
_INJECTION_PATTERNS: Mapping[str, re.Pattern] = MappingProxyType({
    "shell_metacharacters": re.compile(r"[;&|`$]"),
    "command_substitution": re.compile(r"\$\([^)]*\)"),
    "process_substitution": re.compile(r"<\([^)]*\)"),
    "arithmetic_expansion": re.compile(r"\$\(\(.*?\)\)"),
    "backtick_execution": re.compile(r"`[^`]*`"),
    "chained_destructive": re.compile(
        r"(&&|\|\||;)\s*(rm|del|format|dd|mkfs|shutdown|reboot|cat|curl|wget|nc|netcat)\b",
        re.IGNORECASE,
    ),
    "pipe_to_interpreter": re.compile(
        r"\|\s*(bash|sh|cmd|powershell|pwsh|python|perl|ruby|node)\b", re.IGNORECASE
    ),
    "system_redirection": re.compile(
        r"(>>?|<)\s*(/dev/|/proc/|/sys/|/etc/|[A-Za-z]:\\)", re.IGNORECASE
    ),
    "environment_expansion": re.compile(
        r"\$\{?[A-Za-z_][A-Za-z0-9_]*\}?|%[A-Za-z_][A-Za-z0-9_]*%"
    ),
    "here_document": re.compile(r"<<-?\s*['\"]?\w+"),
    "script_injection": re.compile(r"<\s*script|javascript:|\bon\w+\s*=", re.IGNORECASE),
})

# Patterns that make decoded content dangerous
_DANGEROUS_DECODED_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"rm\s+-[rf]", re.IGNORECASE),
    re.compile(r"/bin/(ba)?sh", re.IGNORECASE),
    re.compile(r"/etc/(passwd|shadow)", re.IGNORECASE),
    re.compile(r"\b(sudo|runas)\b", re.IGNORECASE),
    re.compile(r"Invoke-Expression|\biex\b", re.IGNORECASE),
    re.compile(r"(curl|wget|Invoke-WebRequest)\b", re.IGNORECASE),
    re.compile(r"\b(powershell|pwsh|cmd\.exe|bash)\b", re.IGNORECASE),
    re.compile(r"(Remove-Item|Format-Volume|Stop-Computer)", re.IGNORECASE),
    re.compile(r"[;&|]\s*\w+"),
    re.compile(r"\$\([^)]*\)"),
    re.compile(r"`[^`]*`"),
    re.compile(r"<\s*script", re.IGNORECASE),
)

# Encoded runs, by encoding name
_ENCODING_PATTERNS: Mapping[str, re.Pattern] = MappingProxyType({
    "base64": re.compile(r"[A-Za-z0-9+/]{20,}={0,2}"),
    "hex": re.compile(r"0x[0-9A-Fa-f]{2,}|(?:\\x[0-9A-Fa-f]{2})+"),
    "unicode": re.compile(r"(?:\\u[0-9A-Fa-f]{4}|\\U[0-9A-Fa-f]{8})+"),
    "url": re.compile(r"(?:%[0-9A-Fa-f]{2})+"),
    "html_entity": re.compile(r"(?:&#?[A-Za-z0-9]+;)+"),
})

_PATH_PATTERNS: tuple[tuple[re.Pattern, PathTraversalType], ...] = (
    (re.compile(r"\.\./"), PathTraversalType.DOT_DOT_SEQUENCE),
    (re.compile(r"\.\.\\"), PathTraversalType.DOT_DOT_SEQUENCE),
    (re.compile(r"^(\\\\|//)"), PathTraversalType.UNC_PATH),
    (re.compile(r"^/[A-Za-z0-9_/.-]+"), PathTraversalType.ABSOLUTE_PATH),
    (re.compile(r"^[A-Za-z]:\\"), PathTraversalType.WINDOWS_PATH),
    (re.compile(r"^~[/\\]"), PathTraversalType.HOME_DIRECTORY),
)

_PARAMETER_NAME = re.compile(r"^[A-Za-z0-9_-]+$")
_PARAMETER_NAME_STRIP = re.compile(r"[^A-Za-z0-9_-]")
_SANITIZE_STRIP = re.compile(r"[;&|`$()<>\\\n\r\0]")

_BRACKETS = (("(", ")"), ("[", "]"), ("{", "}"))
_ALLOWED_CONTROL = frozenset("\t\n\r")


class InputValidator:
    """Validates commands and parameters before policy evaluation."""

    def __init__(self, constraints: InputConstraints | None = None):
        self.constraints = constraints or InputConstraints()

    def validate(
        self,
        command: str | None,
        parameters: Mapping[str, Any] | None = None,
    ) -> ValidationResult:
        """Run every syntax and size check and collect all failures.

        Args:
            command: Raw command text.
            parameters: Optional command parameters.

        Returns:
            ValidationResult listing every failure found.
        """
        result = ValidationResult()

        if command is None or not command.strip():
            result.failures.append(
                ValidationFailure(
                    ValidationFailureType.SYNTAX_ERROR,
                    ValidationSeverity.CRITICAL,
                    "Command cannot be empty",
                )
            )
        else:
            command = unicodedata.normalize("NFC", command)
            result.failures.extend(self._check_command(command))

        if parameters:
            result.failures.extend(self.validate_parameters(parameters).failures)

        return result

    def _check_command(self, command: str) -> list[ValidationFailure]:
        failures: list[ValidationFailure] = []
        limit = self.constraints.max_command_length

        if len(command) > limit:
            failures.append(
                ValidationFailure(
                    ValidationFailureType.LENGTH_EXCEEDED,
                    ValidationSeverity.HIGH,
                    f"Command exceeds maximum length of {limit} characters",
                )
            )

        for quote, label in (('"', "double"), ("'", "single")):
            if command.count(quote) % 2:
                failures.append(
                    ValidationFailure(
                        ValidationFailureType.SYNTAX_ERROR,
                        ValidationSeverity.MEDIUM,
                        f"Unbalanced {label} quotes in command",
                    )
                )

        for opening, closing in _BRACKETS:
            if command.count(opening) != command.count(closing):
                failures.append(
                    ValidationFailure(
                        ValidationFailureType.SYNTAX_ERROR,
                        ValidationSeverity.MEDIUM,
                        f"Unbalanced brackets in command: '{opening}{closing}'",
                    )
                )

        if "\0" in command:
            failures.append(
                ValidationFailure(
                    ValidationFailureType.NULL_BYTE_DETECTED,
                    ValidationSeverity.CRITICAL,
                    "Command contains null bytes",
                )
            )

        if any(
            ch not in _ALLOWED_CONTROL and ch != "\0" and unicodedata.category(ch) == "Cc"
            for ch in command
        ):
            failures.append(
                ValidationFailure(
                    ValidationFailureType.INVALID_CHARACTER,
                    ValidationSeverity.HIGH,
                    "Command contains control characters",
                )
            )

        return failures

    def validate_parameters(self, parameters: Mapping[str, Any]) -> ValidationResult:
        """Check parameter count, name and value lengths, and name characters."""
        result = ValidationResult()
        c = self.constraints

        if len(parameters) > c.max_parameters:
            result.failures.append(
                ValidationFailure(
                    ValidationFailureType.LENGTH_EXCEEDED,
                    ValidationSeverity.HIGH,
                    f"Too many parameters: {len(parameters)} (maximum {c.max_parameters})",
                )
            )

        for name, value in parameters.items():
            name = str(name)
            if len(name) > c.max_parameter_name_length:
                result.failures.append(
                    ValidationFailure(
                        ValidationFailureType.LENGTH_EXCEEDED,
                        ValidationSeverity.MEDIUM,
                        f"Parameter name exceeds maximum length of {c.max_parameter_name_length}",
                        field_name=name,
                    )
                )
            if not _PARAMETER_NAME.match(name):
                result.failures.append(
                    ValidationFailure(
                        ValidationFailureType.INVALID_PARAMETER_NAME,
                        ValidationSeverity.HIGH,
                        f"Invalid parameter name: '{name}'",
                        field_name=name,
                    )
                )
            text = "" if value is None else str(value)
            if len(text) > c.max_parameter_length:
                result.failures.append(
                    ValidationFailure(
                        ValidationFailureType.LENGTH_EXCEEDED,
                        ValidationSeverity.MEDIUM,
                        f"Parameter '{name}' value exceeds maximum length of "
                        f"{c.max_parameter_length}",
                        field_name=name,
                    )
                )
            if "\0" in text:
                result.failures.append(
                    ValidationFailure(
                        ValidationFailureType.NULL_BYTE_DETECTED,
                        ValidationSeverity.CRITICAL,
                        f"Parameter '{name}' contains null bytes",
                        field_name=name,
                    )
                )

        return result

    def detect_injection(self, text: str | None) -> list[InjectionMatch]:
        """Scan text for injection, encoding evasion and path traversal.

        Args:
            text: Text to scan (typically a parameter value).

        Returns:
            One match per category hit, in battery order.
        """
        if not text:
            return []

        matches: list[InjectionMatch] = []

        for category, pattern in _INJECTION_PATTERNS.items():
            m = pattern.search(text)
            if m:
                matches.append(InjectionMatch(category, m.group(0), m.start()))

        matches.extend(self._detect_encoding_evasion(text))

        for pattern, violation in _PATH_PATTERNS:
            m = pattern.search(text)
            if m:
                matches.append(
                    InjectionMatch(
                        "path_traversal",
                        m.group(0),
                        m.start(),
                        failure_type=ValidationFailureType.PATH_TRAVERSAL,
                        detail=violation.value,
                    )
                )
                break

        return matches

    def _detect_encoding_evasion(self, text: str) -> list[InjectionMatch]:
        matches: list[InjectionMatch] = []
        for encoding, pattern in _ENCODING_PATTERNS.items():
            for m in pattern.finditer(text):
                decoded = _decode(encoding, m.group(0))
                if decoded is None or decoded == m.group(0):
                    continue
                # Judge the decoded run in place so split payloads are caught
                in_context = text[: m.start()] + decoded + text[m.end():]
                if _is_dangerous(decoded) or (
                    _is_dangerous(in_context) and not _is_dangerous(text)
                ):
                    matches.append(
                        InjectionMatch(
                            "encoding_evasion",
                            m.group(0),
                            m.start(),
                            failure_type=ValidationFailureType.ENCODING_ATTEMPT,
                            detail=f"{encoding}: {decoded[:100]}",
                        )
                    )
                    break
        return matches

    def check_path_traversal(
        self, parameters: Mapping[str, Any] | None
    ) -> list[PathTraversalViolation]:
        """Report every parameter whose value references a path outside the working set."""
        violations: list[PathTraversalViolation] = []
        for name, value in (parameters or {}).items():
            text = "" if value is None else str(value)
            for pattern, violation in _PATH_PATTERNS:
                if pattern.search(text):
                    violations.append(PathTraversalViolation(str(name), text, violation))
                    break
        return violations

    def sanitize(self, parameters: Mapping[str, Any] | None) -> dict[str, str]:
        """Strip dangerous characters and escape quotes.

        Advisory cleanup only; sanitized parameters must still be validated.
        Parameters whose name is empty after stripping are dropped.
        """
        sanitized: dict[str, str] = {}
        for name, value in (parameters or {}).items():
            clean_name = _PARAMETER_NAME_STRIP.sub("", str(name))
            if not clean_name:
                continue
            text = "" if value is None else str(value)
            text = _SANITIZE_STRIP.sub("", text)
            text = text.replace('"', '\\"').replace("'", "\\'")
            sanitized[clean_name] = text
        return sanitized


def _is_dangerous(text: str) -> bool:
    return any(p.search(text) for p in _DANGEROUS_DECODED_PATTERNS)


def _decode(encoding: str, blob: str) -> str | None:
    """Decode an encoded run, or None when it does not decode to text."""
    try:
        if encoding == "base64":
            padded = blob + "=" * (-len(blob) % 4)
            raw = base64.b64decode(padded, validate=True)
            decoded = raw.decode("utf-8")
            return decoded if decoded.isprintable() else None
        if encoding == "hex":
            digits = blob[2:] if blob.lower().startswith("0x") else blob.replace("\\x", "")
            if len(digits) % 2:
                return None
            return bytes.fromhex(digits).decode("utf-8")
        if encoding == "unicode":
            return codecs.decode(blob, "unicode_escape")
        if encoding == "url":
            return unquote(blob)
        if encoding == "html_entity":
            return html.unescape(blob)
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None
    return None
