"""Static risk analysis of maintainer lifecycle scripts.

Scripts are scanned line by line against a catalogue of dangerous
patterns and a table of risky commands. Every match adds a warning and
raises the risk score; commands touching protected system paths are
escalated to errors. The final verdict depends on the configured
security level.
"""

import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from pkginstall.core.errors import RiskThresholdExceededError, TransformationError
from pkginstall.security.pathmap import PathMapper
from pkginstall.security.policy import ScriptPolicy, SecurityLevel

logger = logging.getLogger(__name__)

# Risk added for every dangerous pattern match.
PATTERN_RISK = 2

# Scores are reported on a 0-10 scale; the raw score itself is unbounded.
MAX_REPORTED_RISK = 10

DANGEROUS_PATTERNS: tuple[str, ...] = (
    r"rm\s+(-[rf]+\s+)?/",  # rm with root paths
    r"chmod\s+([0-7]+\s+)?/",  # chmod of root paths
    r"chown\s+([^/]+\s+)?/",  # chown of root paths
    r"wget\s+.+\s+\|\s+([ba])?sh",  # wget piped to a shell
    r"curl\s+.+\s+\|\s+([ba])?sh",  # curl piped to a shell
    r"sudo",
    r"su\s+(-[a-z]+\s+)?root",
    r"eval\s+[\"']",
    r"exec\s+[0-9]+",
    r"set(uid|gid)",
    r">\s*/etc/",
    r">>\s*/etc/",
    r"apt(-get)?\s+(install|remove)",
    r"dpkg\s+(-i|--install)",
    r"update-alternatives",
    r"/etc/init\.d/",
    r"systemctl\s+(enable|disable|mask)",
)

# Command name -> base risk (5-10).
DANGEROUS_COMMANDS: dict[str, int] = {
    "rm": 7,
    "chmod": 6,
    "chown": 6,
    "wget": 5,
    "curl": 5,
    "dd": 8,
    "mkfs": 9,
    "mount": 7,
    "umount": 5,
    "apt": 6,
    "apt-get": 6,
    "dpkg": 5,
    "sudo": 9,
    "su": 9,
    "init": 10,
    "systemctl": 6,
    "service": 6,
    "useradd": 7,
    "usermod": 7,
    "groupadd": 6,
    "sysctl": 8,
    "iptables": 7,
    "update-rc.d": 6,
}

PROTECTED_PATHS: tuple[str, ...] = (
    "/bin",
    "/sbin",
    "/usr/bin",
    "/usr/sbin",
    "/lib",
    "/lib64",
    "/etc/passwd",
    "/etc/shadow",
    "/etc/sudoers",
    "/boot",
    "/dev",
    "/proc",
    "/sys",
    "/var/run",
    "/var/lock",
)

SHELL_INTERPRETERS: tuple[str, ...] = (
    "#!/bin/sh",
    "#!/bin/bash",
    "#!/usr/bin/env sh",
    "#!/usr/bin/env bash",
)

_PATH_RE = re.compile(r"(?:^|\s+)(/[^\s;|><\"']+)")


def extract_paths(line: str) -> list[str]:
    """Extract path-shaped tokens from a script line.

    Only unquoted tokens starting with '/' at the beginning of the line or
    after whitespace are considered.

    Args:
        line: A single script line.

    Returns:
        Paths in order of appearance.
    """
    return _PATH_RE.findall(line)


@dataclass(frozen=True, slots=True)
class ScriptValidationResult:
    """Outcome of validating one lifecycle script.

    Attributes:
        script_name: Lifecycle slot the script was validated for.
        valid: Whether the script passes the configured security level.
        warnings: Advisory findings.
        errors: Findings that block the script at medium/high levels.
        risk: Cumulative risk score (never decreases during a scan).
        details: Read-only extra information, including
            ``path_modifications`` (protected paths touched).
    """

    script_name: str
    valid: bool
    warnings: tuple[str, ...] = field(default_factory=tuple)
    errors: tuple[str, ...] = field(default_factory=tuple)
    risk: int = 0
    details: MappingProxyType[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def reported_risk(self) -> int:
        """Risk score capped for reporting."""
        return min(self.risk, MAX_REPORTED_RISK)

    @property
    def risk_band(self) -> str:
        """Human-readable risk band (Low, Medium or High)."""
        if self.risk < 3:
            return "Low"
        if self.risk < 7:
            return "Medium"
        return "High"


def risk_assessment(result: ScriptValidationResult) -> str:
    """Produce a human-readable assessment of a validation result."""
    return (
        f"Risk Assessment: {result.risk_band} (Score: {result.reported_risk}/{MAX_REPORTED_RISK})\n"
        f"Warnings: {len(result.warnings)}, Errors: {len(result.errors)}\n"
        f"Valid: {result.valid}"
    )


def _is_valid_for_level(level: SecurityLevel, errors: int, warnings: int, risk: int) -> bool:
    if level == SecurityLevel.LOW:
        return not (errors > 3 or risk > 8)
    if level == SecurityLevel.MEDIUM:
        return not (errors > 0 or risk > 6)
    return not (errors > 0 or warnings > 3 or risk > 4)


class ScriptValidator:
    """Validates lifecycle scripts against a security level.

    Attributes:
        policy: Script policy (security level and extra patterns).
    """

    def __init__(
        self,
        policy: ScriptPolicy | None = None,
        path_mapper: PathMapper | None = None,
    ) -> None:
        """Initialize the validator.

        Args:
            policy: Script policy. Defaults to medium security.
            path_mapper: Optional mapper used to check paths referenced by
                the script.
        """
        self.policy = policy or ScriptPolicy()
        self._path_mapper = path_mapper
        self._patterns = tuple(
            (p, re.compile(p)) for p in DANGEROUS_PATTERNS + self.policy.extra_dangerous_patterns
        )
        self._commands = tuple(
            (cmd, risk, re.compile(rf"\b{re.escape(cmd)}\b")) for cmd, risk in DANGEROUS_COMMANDS.items()
        )

    @property
    def security_level(self) -> SecurityLevel:
        """The security level verdicts are computed for."""
        return self.policy.security_level

    def validate(self, script_name: str, content: str) -> ScriptValidationResult:
        """Validate a lifecycle script.

        Args:
            script_name: Lifecycle slot (preinst, postinst, prerm, postrm).
            content: Full script text.

        Returns:
            Immutable ScriptValidationResult.
        """
        if not content.strip():
            return ScriptValidationResult(
                script_name=script_name,
                valid=True,
                warnings=("Script content is empty",),
                details=MappingProxyType({"path_modifications": (), "line_count": 0}),
            )

        warnings: list[str] = []
        errors: list[str] = []
        risk = 0
        touched: list[str] = []

        if not content.startswith(SHELL_INTERPRETERS):
            warnings.append("Script does not start with a valid shell interpreter line (shebang)")

        lines = content.splitlines()
        for line_number, line in enumerate(lines, start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue

            for pattern, regex in self._patterns:
                if regex.search(line):
                    message = f"Line {line_number}: Potentially dangerous pattern: {pattern}"
                    warnings.append(message)
                    risk += PATTERN_RISK
                    logger.debug(message)

            for cmd, base_risk, regex in self._commands:
                if not regex.search(line):
                    continue
                message = f"Line {line_number}: Potentially risky command: {cmd}"
                warnings.append(message)
                risk += base_risk // 3
                logger.debug(message)

                for protected in PROTECTED_PATHS:
                    if protected in line:
                        message = f"Line {line_number}: Command operates on protected path: {protected}"
                        errors.append(message)
                        risk += base_risk // 2
                        touched.append(protected)
                        logger.debug(message)

            if self._path_mapper is not None:
                warnings.extend(self._check_paths(self._path_mapper, line_number, line))

        valid = _is_valid_for_level(self.security_level, len(errors), len(warnings), risk)

        return ScriptValidationResult(
            script_name=script_name,
            valid=valid,
            warnings=tuple(warnings),
            errors=tuple(errors),
            risk=risk,
            details=MappingProxyType({"path_modifications": tuple(touched), "line_count": len(lines)}),
        )

    def require_valid(self, script_name: str, content: str) -> ScriptValidationResult:
        """Validate a script and raise if it breaches the security level.

        Raises:
            RiskThresholdExceededError: If the script is invalid.
        """
        result = self.validate(script_name, content)
        if not result.valid:
            msg = f"Script validation failed for {script_name}. {risk_assessment(result)}"
            if result.errors:
                msg += "\nSpecific issues:\n" + "\n".join(f"- {e}" for e in result.errors)
            raise RiskThresholdExceededError(msg, script_name, result)
        return result

    def _check_paths(self, mapper: PathMapper, line_number: int, line: str) -> list[str]:
        warnings: list[str] = []
        for path in extract_paths(line):
            # Variables and command substitutions are resolved at runtime
            if "$" in path or "`" in path:
                continue
            try:
                _, needs_symlink = mapper.transform(path)
            except TransformationError:
                message = f"Line {line_number}: Path cannot be transformed: {path}"
                warnings.append(message)
                logger.debug(message)
                continue
            if needs_symlink:
                message = f"Line {line_number}: Path would require symlink: {path}"
                warnings.append(message)
                logger.debug(message)
        return warnings
