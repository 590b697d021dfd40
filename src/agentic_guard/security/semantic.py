"""Semantic threat analysis.

Looks for the intent behind a command rather than its syntax: each
threat category is a compiled, case-insensitive pattern tested against
the command text and every parameter value. Combination heuristics then
flag risky co-occurrences in the raw text.
"""

import re
from types import MappingProxyType
from typing import Any, Mapping, Sequence

from agentic_guard.security.models import SemanticResult
from agentic_guard.security.policy import CombinationRule, default_combinations

THREAT_PATTERNS: Mapping[str, tuple[str, ...]] = MappingProxyType({
    "privilege_escalation": (
        r"\b(sudo|runas|elevation|administrator|admin\s+rights|UAC\s+bypass)\b",
    ),
    "lateral_movement": (
        # Remote -ComputerName targets are checked against policy by LateralMovementGuard
        r"Invoke-Command.*-ComputerName",
        r"Enter-PSSession.*-ComputerName",
        r"ssh\s+\w+@",
        r"winrs\s+-r:",
    ),
    "data_exfiltration": (
        r"Invoke-WebRequest.*-Method\s+POST",
        r"curl.*--data",
        r"wget.*--post-data",
        r"Send-MailMessage.*-Attachments",
        r"Start-BitsTransfer.*http",
    ),
    "credential_theft": (
        r"mimikatz|sekurlsa|lsadump|procdump.*lsass",
        r"Get-Credential\s*\||ConvertFrom-SecureString",
        r"registry.*\bsam\b|registry.*\bsecurity\b",
    ),
    "obfuscation": (
        r"base64\s*--decode|FromBase64String",
        r"-enc\s+[A-Za-z0-9+/=]{20,}",
        r"char\[\].*join",
        r"\[char\]\d+\s*\+",
    ),
    "persistence": (
        r"schtasks.*/create|New-ScheduledTask",
        r"HKCU:\\Software\\Microsoft\\Windows\\CurrentVersion\\Run",
        r"startup.*\.lnk|startup.*\.bat",
        r"WMI.*EventConsumer",
    ),
    "destructive": (
        r"Format-Volume|Clear-Disk",
        r"Remove-Item.*-Recurse.*-Force",
        r"rd\s+/s\s+/q",
        r"del.*/f.*/s.*/q",
        r"Drop\s+Database|Truncate\s+Table",
    ),
    "remote_execution": (
        r"Invoke-Expression.*http",
        r"IEX.*DownloadString",
        r"Start-Process.*http",
        r"\|\s*iex\b|\|\s*Invoke-Expression",
    ),
})


def _compile_categories(
    patterns: Mapping[str, Sequence[str]],
) -> Mapping[str, re.Pattern]:
    return MappingProxyType({
        name: re.compile("|".join(f"(?:{p})" for p in group), re.IGNORECASE | re.DOTALL)
        for name, group in patterns.items()
    })


_COMPILED_THREATS = _compile_categories(THREAT_PATTERNS)


class SemanticAnalyzer:
    """Detects threat intent in commands and parameter values."""

    def __init__(self, combinations: Sequence[CombinationRule] | None = None):
        self._categories = _COMPILED_THREATS
        rules = combinations if combinations is not None else default_combinations()
        self._combinations: tuple[tuple[str, tuple[str, ...], tuple[str, ...]], ...] = tuple(
            (
                rule.message,
                tuple(s.lower() for s in rule.first),
                tuple(s.lower() for s in rule.second),
            )
            for rule in rules
        )

    @property
    def categories(self) -> tuple[str, ...]:
        return tuple(self._categories)

    def analyze(
        self,
        command: str,
        parameters: Mapping[str, Any] | None = None,
    ) -> SemanticResult:
        """Check a command and its parameters for threat indicators.

        Args:
            command: Command text.
            parameters: Optional parameters; each value is checked.

        Returns:
            SemanticResult, denied on the first category or combination hit.
        """
        category = self._match_category(command)
        if category:
            return SemanticResult(
                allowed=False,
                reason=f"Command contains {_describe(category)} indicators",
                category=category,
            )

        for name, value in (parameters or {}).items():
            if value is None:
                continue
            category = self._match_category(str(value))
            if category:
                return SemanticResult(
                    allowed=False,
                    reason=f"Parameter '{name}' contains {_describe(category)} indicators",
                    category=category,
                )

        message = self._match_combination(command)
        if message:
            return SemanticResult(allowed=False, reason=message, category="combination")

        return SemanticResult(allowed=True)

    def _match_category(self, text: str) -> str | None:
        for name, pattern in self._categories.items():
            if pattern.search(text):
                return name
        return None

    def _match_combination(self, command: str) -> str | None:
        lowered = command.lower()
        for message, first, second in self._combinations:
            if any(s in lowered for s in first) and any(s in lowered for s in second):
                return message
        return None


def _describe(category: str) -> str:
    return category.replace("_", " ")
