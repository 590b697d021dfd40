"""Lateral movement checks driven by policy.

Remote sessions, remote ``-ComputerName`` targets, ssh/winrs invocations,
internal network addresses and well-known remote-access ports are denied
unless the policy allows them. The checks run inside the semantic layer,
before the threat-category patterns.

Usage:
    guard = LateralMovementGuard(LateralMovementPolicy(allowed_targets=["localhost", "build01"]))
    guard.check("Get-Service -ComputerName build01").allowed  # True
    guard.check("Enter-PSSession -ComputerName db01").allowed  # False
"""

from __future__ import annotations

import ipaddress
import platform
import re
from typing import Any, Iterable, Mapping

from agentic_guard.security.models import LateralMovementResult
from agentic_guard.security.policy import LateralMovementPolicy

LOCAL_HOST_VARIABLE = "$env:computername"

_TOKEN_SPLIT = re.compile(r"[\s;|&(){}]+")
_COMPUTER_NAME = re.compile(r"-ComputerName\s+(\"[^\"]*\"|'[^']*'|\S+)", re.IGNORECASE)
_IPV4 = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")
_PORT_PARAMETER = re.compile(r"-(?:Port|RemotePort)\s+(\d{1,5})\b", re.IGNORECASE)
_HOST_PORT = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}:(\d{1,5})\b")

_TARGET_PARAMETERS = frozenset({"computername", "cn"})
_PORT_PARAMETERS = frozenset({"port", "remoteport"})

_PROTOCOL_MESSAGES = {
    "winrs": "WinRM (winrs) usage is not permitted",
    "ssh": "SSH usage is not permitted",
}


def command_tokens(command: str) -> list[str]:
    """Executable names in a command line, lowercased, paths and ``.exe`` stripped."""
    tokens = []
    for raw in _TOKEN_SPLIT.split(command):
        if not raw:
            continue
        name = re.split(r"[\\/]", raw)[-1].lower()
        if name.endswith(".exe"):
            name = name[: -len(".exe")]
        if name:
            tokens.append(name)
    return tokens


def _split_targets(value: str) -> list[str]:
    return [t.strip().strip("\"'") for t in value.split(",") if t.strip().strip("\"'")]


class LateralMovementGuard:
    """Applies a LateralMovementPolicy to a command and its parameters."""

    def __init__(self, policy: LateralMovementPolicy | None = None):
        self.policy = policy or LateralMovementPolicy()
        self._blocked = {name.lower(): name for name in self.policy.blocked_cmdlets}
        self._allowed_targets = {t.lower() for t in self.policy.allowed_targets}
        if LOCAL_HOST_VARIABLE in self._allowed_targets:
            node = platform.node().lower()
            if node:
                self._allowed_targets.update({node, node.split(".")[0]})
        self._networks = tuple(
            ipaddress.ip_network(n, strict=False) for n in self.policy.internal_networks
        )
        self._blocked_ports = frozenset(int(p) for p in self.policy.blocked_ports)

    def check(
        self,
        command: str,
        parameters: Mapping[str, Any] | None = None,
    ) -> LateralMovementResult:
        """Check a command for lateral movement.

        Args:
            command: Command text.
            parameters: Optional parameters; ComputerName and Port values
                are checked like their inline forms.

        Returns:
            LateralMovementResult, denied on the first violation.
        """
        p = self.policy
        if not p.enabled:
            return LateralMovementResult(allowed=True)

        params = {str(k).lower(): v for k, v in (parameters or {}).items() if v is not None}
        tokens = command_tokens(command)

        if p.block_remote_execution:
            for token in tokens:
                if token in self._blocked:
                    return _deny(
                        f"Remote execution cmdlet '{self._blocked[token]}' is not permitted",
                        "remote_cmdlet",
                        cmdlet=self._blocked[token],
                    )

            for target in self._targets(command, params):
                if target.lower() not in self._allowed_targets:
                    return _deny(
                        f"Remote computer name '{target}' is not permitted. "
                        "Only localhost is allowed.",
                        "remote_target",
                        target=target,
                    )

        if p.block_remote_protocols:
            for token in tokens:
                if token in _PROTOCOL_MESSAGES:
                    return _deny(_PROTOCOL_MESSAGES[token], "remote_protocol", protocol=token)

        texts = [command, *(str(v) for v in params.values())]

        if p.deny_internal_networks and self._networks:
            for text in texts:
                for address in _IPV4.findall(text):
                    if self._is_internal(address):
                        return _deny(
                            f"Access to internal network address '{address}' is not permitted",
                            "internal_network",
                            address=address,
                        )

        for port in self._ports(command, params):
            if port in self._blocked_ports:
                return _deny(f"Access to port {port} is not permitted", "blocked_port", port=str(port))

        return LateralMovementResult(allowed=True)

    def _targets(self, command: str, params: Mapping[str, Any]) -> Iterable[str]:
        for match in _COMPUTER_NAME.finditer(command):
            yield from _split_targets(match.group(1))
        for name in params.keys() & _TARGET_PARAMETERS:
            value = params[name]
            values = value if isinstance(value, (list, tuple)) else [value]
            for item in values:
                yield from _split_targets(str(item))

    def _ports(self, command: str, params: Mapping[str, Any]) -> Iterable[int]:
        for pattern in (_PORT_PARAMETER, _HOST_PORT):
            for match in pattern.finditer(command):
                yield int(match.group(1))
        for name in params.keys() & _PORT_PARAMETERS:
            try:
                yield int(params[name])
            except (TypeError, ValueError):
                continue

    def _is_internal(self, address: str) -> bool:
        try:
            ip = ipaddress.ip_address(address)
        except ValueError:
            return False
        return any(ip in network for network in self._networks)


def _deny(reason: str, violation_type: str, **details: str) -> LateralMovementResult:
    return LateralMovementResult(
        allowed=False,
        reason=reason,
        violation_type=violation_type,
        details=details,
    )
