"""Error taxonomy for pkginstall.

Every fatal condition raised by the library derives from PkgInstallError.
Subclasses map onto the failure categories the builder distinguishes:
policy violations (always fatal), transformation failures, symlink
failures (fatal per symlink, best-effort for the build), script risk
threshold breaches, timeouts and external tool failures.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pkginstall.security.scripts import ScriptValidationResult


class PkgInstallError(Exception):
    """Base exception for all pkginstall errors."""


# =============================================================================
# Policy violations
# =============================================================================


class PolicyViolationError(PkgInstallError):
    """A path or package violates the security policy.

    Attributes:
        path: The offending path (may be empty when not applicable).
        rule: Short identifier of the rule that triggered.
    """

    rule = "policy"

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path


class EmptyPathError(PolicyViolationError):
    """Raised when an empty path is validated."""

    rule = "empty-path"


class NotAbsoluteError(PolicyViolationError):
    """Raised when a relative path is validated."""

    rule = "not-absolute"


class PathTooLongError(PolicyViolationError):
    """Raised when a path exceeds the maximum configured length."""

    rule = "too-long"


class ForbiddenPathError(PolicyViolationError):
    """Raised when a path falls under a forbidden prefix."""

    rule = "forbidden-path"


class DotSegmentError(PolicyViolationError):
    """Raised when a path contains '..' and dot segments are disallowed."""

    rule = "dot-segment"


class PathTraversalError(PolicyViolationError):
    """Raised when a literal, encoded or unicode traversal pattern is found."""

    rule = "path-traversal"


class SymlinkPolicyError(PolicyViolationError):
    """Raised when a source/target symlink pair is not permitted."""

    rule = "symlink-policy"


class PackageAuditError(PolicyViolationError):
    """Raised when a staged package tree fails the whole-package audit.

    Attributes:
        invalid_files: Relative paths that failed validation.
    """

    rule = "package-audit"

    def __init__(self, message: str, path: str = "", invalid_files: list[str] | None = None) -> None:
        super().__init__(message, path)
        self.invalid_files = list(invalid_files or [])

    @property
    def count(self) -> int:
        """Number of invalid files found by the audit."""
        return len(self.invalid_files)


# =============================================================================
# Transformation
# =============================================================================


class TransformationError(PkgInstallError):
    """A path could not be mapped into the secure root."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path


class NoRuleMatchedError(TransformationError):
    """No configured system prefix matches the path."""


# =============================================================================
# Symlinks
# =============================================================================


class SymlinkError(PkgInstallError):
    """Base class for symlink queueing and creation failures."""


class SymlinkCollisionError(SymlinkError):
    """An entry already exists at the symlink target."""

    def __init__(self, target: str) -> None:
        super().__init__(f"Collision detected: target {target} already exists")
        self.target = target


class SymlinkCreationError(SymlinkError):
    """The operating system refused to create a symlink."""


class DuplicateSymlinkTargetError(SymlinkError):
    """A symlink with the same target is already queued."""

    def __init__(self, target: str) -> None:
        super().__init__(f"Duplicate symlink target: {target}")
        self.target = target


class SymlinkFlushError(SymlinkError):
    """One or more queued symlinks could not be created.

    Attributes:
        failures: Human-readable message per failed request.
        results: Per-request results of the whole pass.
    """

    def __init__(self, failures: list[str], results: list[Any] | None = None) -> None:
        super().__init__(f"Failed to create {len(failures)} symlink(s)")
        self.failures = list(failures)
        self.results = list(results or [])


# =============================================================================
# Scripts, build lifecycle and external tools
# =============================================================================


class RiskThresholdExceededError(PkgInstallError):
    """A lifecycle script breaches the configured security level.

    Attributes:
        script_name: Lifecycle slot of the rejected script.
        result: The validation result that led to rejection.
    """

    def __init__(self, message: str, script_name: str, result: ScriptValidationResult) -> None:
        super().__init__(message)
        self.script_name = script_name
        self.result = result


class BuildTimeoutError(PkgInstallError):
    """The build exceeded its wall-clock budget."""


class BuildCancelledError(PkgInstallError):
    """The build observed a cancellation request and stopped."""


class ExternalToolError(PkgInstallError):
    """The external archiver failed.

    Attributes:
        returncode: Exit status of the tool (None if it never ran).
        stderr: Captured diagnostic output, passed through verbatim.
    """

    def __init__(self, message: str, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class PackageMetadataError(PkgInstallError, ValueError):
    """Package metadata is incomplete or malformed."""


# =============================================================================
# Configuration
# =============================================================================


class ConfigError(PkgInstallError):
    """Base exception for configuration errors."""


class ConfigNotFoundError(ConfigError):
    """Raised when a configuration file does not exist."""


class ConfigParseError(ConfigError):
    """Raised when a configuration file is not valid TOML."""
