"""Path, symlink and package-tree validation.

This module enforces the security policy on individual paths, on
source/target symlink pairs and on whole staged package trees. Hard
violations raise a PolicyViolationError subclass; advisories (restricted
paths, unusual extensions, shell metacharacters, scripts in the payload)
are only logged.
"""

import logging
import os
import posixpath
import re
import unicodedata
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote

from pkginstall.core.errors import (
    DotSegmentError,
    EmptyPathError,
    ForbiddenPathError,
    NotAbsoluteError,
    PackageAuditError,
    PathTooLongError,
    PathTraversalError,
    PolicyViolationError,
    SymlinkPolicyError,
)
from pkginstall.security.pathmap import clean_path, is_under
from pkginstall.security.policy import DEFAULT_SECURE_ROOT, SecurityPolicy

logger = logging.getLogger(__name__)

# Name of the control subdirectory inside a staged package.
CONTROL_DIR = "DEBIAN"

# The only entries permitted inside the control subdirectory.
CONTROL_WHITELIST: frozenset[str] = frozenset(
    {"control", "preinst", "postinst", "prerm", "postrm", "conffiles", "shlibs", "triggers"}
)

# Percent-encoded traversal fragments (single, double, mixed, overlong UTF-8).
ENCODED_TRAVERSAL_PATTERNS: tuple[str, ...] = (
    "%2e%2e",
    "%2E%2E",
    "%252e%252e",
    "%252E%252E",
    "%2e.",
    "%2E.",
    ".%2e",
    ".%2E",
    "%2e%2e%2f",
    "%2E%2E%2F",
    "..%2f",
    "..%2F",
    "..%5c",
    "..%5C",
    ".%2f.",
    "%2e/",
    "/%2e%2e",
    "%c0%ae%c0%ae",
    "%c0%ae.",
    ".%c0%ae",
)

# Backslash and unicode look-alike traversal fragments.
UNICODE_TRAVERSAL_PATTERNS: tuple[str, ...] = (
    "..\\",
    "\\..\\",
    "\\../",
    "/..\\",
    "\uff0e\uff0e",  # fullwidth full stops
    "..\uff0f",  # fullwidth solidus
    "..\u2215",  # division slash
    "..\u2044",  # fraction slash
    "..\\u2215",
    "..\\u2044",
)

# Markers legitimate in quoted contexts; logged, never rejected.
SHELL_MARKERS: tuple[str, ...] = ("~", "$", "`")

SCRIPT_SUFFIX_RE = re.compile(r"\.(sh|bash|py|pl|rb)$")

# Maximum number of percent-decoding passes applied to a path.
_MAX_DECODE_PASSES = 3

_SEPARATOR_RE = re.compile("[/\\\\\u2215\u2044]")


def _has_dot_dot_segment(path: str) -> bool:
    """Check for a literal '..' segment.

    '/', '\\', division slash and fraction slash all separate segments.
    """
    return ".." in _SEPARATOR_RE.split(path)


def _extension(path: str) -> str:
    """Suffix from the last '.' of the final element, dotfiles included."""
    name = posixpath.basename(path)
    index = name.rfind(".")
    return name[index:] if index >= 0 else ""


@dataclass(frozen=True, slots=True)
class FileValidationResult:
    """Outcome of validating a single file destined for a package.

    Attributes:
        path: Absolute in-package path that was validated.
        valid: Whether the file may be packaged.
        message: Short summary of the outcome.
        errors: Policy violations found (empty when valid).
    """

    path: str
    valid: bool
    message: str
    errors: tuple[PolicyViolationError, ...] = field(default_factory=tuple)


class PathValidator:
    """Validates paths, symlinks and staged package trees.

    Attributes:
        policy: The immutable security policy being enforced.
        secure_root: Paths under this root are accepted once the hard
            structural checks pass.
    """

    def __init__(
        self,
        policy: SecurityPolicy | None = None,
        secure_root: str = DEFAULT_SECURE_ROOT,
    ) -> None:
        """Initialize the validator.

        Args:
            policy: Security policy to enforce. Defaults are used when omitted.
            secure_root: Root directory of transformed paths.
        """
        self.policy = policy or SecurityPolicy()
        self.secure_root = secure_root.rstrip("/") or "/"

    def validate_path(self, path: str) -> None:
        """Check a path against the security policy.

        Args:
            path: Absolute path to validate.

        Raises:
            EmptyPathError: If the path is empty.
            NotAbsoluteError: If the path is relative.
            PathTooLongError: If the path exceeds the maximum length.
            DotSegmentError: If the path contains '..' and the policy forbids it.
            ForbiddenPathError: If the path is under a forbidden prefix.
        """
        if not path:
            msg = "Path cannot be empty"
            raise EmptyPathError(msg, path)

        if not path.startswith("/"):
            msg = f"Path must be absolute: {path}"
            raise NotAbsoluteError(msg, path)

        if len(path) > self.policy.max_path_length:
            msg = f"Path exceeds maximum length of {self.policy.max_path_length} characters"
            raise PathTooLongError(msg, path)

        if self.policy.disallow_dot_dot and _has_dot_dot_segment(path):
            msg = f"Path contains forbidden '..' sequences: {path}"
            raise DotSegmentError(msg, path)

        clean = clean_path(path)

        for forbidden in self.policy.forbidden_paths:
            if is_under(clean, forbidden):
                msg = f"Path access forbidden: {path} (under {forbidden})"
                raise ForbiddenPathError(msg, path)

        for restricted in self.policy.restricted_paths:
            if is_under(clean, restricted):
                logger.warning("Accessing restricted path: %s", path)

        if is_under(clean, self.secure_root):
            return

        if not path.endswith("/"):
            ext = _extension(clean)
            if ext and ext not in self.policy.allowed_extensions:
                logger.warning("File has potentially unsafe extension: %s (%s)", ext, path)

    def validate_path_traversal(self, path: str) -> None:
        """Check a path for traversal attempts beyond basic normalization.

        Rejects literal '..' segments, percent-encoded (single, double and
        mixed) dot-dot fragments, backslash and unicode look-alikes, dot-dot
        hidden behind doubled slashes, and embedded NUL bytes. Shell
        metacharacters are only logged.

        Args:
            path: Path to inspect.

        Raises:
            EmptyPathError: If the path is empty.
            PathTraversalError: If any traversal pattern is detected.
        """
        if not path:
            msg = "Path cannot be empty"
            raise EmptyPathError(msg, path)

        if "\x00" in path:
            msg = "Null byte detected in path"
            raise PathTraversalError(msg, path)

        if _has_dot_dot_segment(path):
            if "//" in path:
                msg = f"Path traversal detected with multiple slashes: {path!r}"
            else:
                msg = f"Path traversal detected: contains '..' segment: {path!r}"
            raise PathTraversalError(msg, path)

        lowered = path.lower()
        for encoded in ENCODED_TRAVERSAL_PATTERNS:
            if encoded.lower() in lowered:
                msg = f"Encoded path traversal attempt detected: contains '{encoded}'"
                raise PathTraversalError(msg, path)

        for variant in UNICODE_TRAVERSAL_PATTERNS:
            if variant in path:
                msg = f"Unicode path traversal attempt detected: contains {variant!r}"
                raise PathTraversalError(msg, path)

        # Fullwidth dots and solidi fold to ASCII, so mixed forms like '．.' surface
        normalized = unicodedata.normalize("NFKC", path)
        if normalized != path and _has_dot_dot_segment(normalized):
            msg = f"Unicode path traversal attempt detected: {path!r}"
            raise PathTraversalError(msg, path)

        decoded = path
        for _ in range(_MAX_DECODE_PASSES):
            next_decoded = unquote(decoded)
            if next_decoded == decoded:
                break
            decoded = next_decoded
            if "\x00" in decoded or _has_dot_dot_segment(decoded):
                msg = f"Encoded path traversal attempt detected: {path!r}"
                raise PathTraversalError(msg, path)

        for marker in SHELL_MARKERS:
            if marker in path:
                logger.warning("Path contains potentially problematic element %r: %s", marker, path)

    def validate_symlink(self, source: str, target: str) -> None:
        """Check whether a symlink ``target -> source`` may be created.

        Args:
            source: Path the symlink points to.
            target: Location of the symlink itself.

        Raises:
            SymlinkPolicyError: If either path is invalid, the target is
                forbidden or already exists, or the link would point into
                its own subtree.
        """
        try:
            self.validate_path(source)
        except PolicyViolationError as e:
            msg = f"Invalid symlink source: {e}"
            raise SymlinkPolicyError(msg, source) from e

        try:
            self.validate_path(target)
        except ForbiddenPathError as e:
            msg = f"Symlink target points to forbidden path: {target}"
            raise SymlinkPolicyError(msg, target) from e
        except PolicyViolationError as e:
            msg = f"Invalid symlink target: {e}"
            raise SymlinkPolicyError(msg, target) from e

        if os.path.lexists(target):
            msg = f"Symlink target already exists: {target}"
            raise SymlinkPolicyError(msg, target)

        # Only catches targets nested below the source, not longer cycles.
        if is_under(clean_path(target), clean_path(source)):
            msg = f"Symlink would create a cycle: {source} -> {target}"
            raise SymlinkPolicyError(msg, target)

    def validate_package_file(self, path: str, is_dir: bool) -> FileValidationResult:
        """Validate a file or directory destined for the package payload.

        Args:
            path: Absolute in-package path.
            is_dir: Whether the entry is a directory.

        Returns:
            FileValidationResult describing the outcome.
        """
        try:
            self.validate_path(path)
        except PolicyViolationError as e:
            return FileValidationResult(
                path=path,
                valid=False,
                message="Path validation failed",
                errors=(e,),
            )

        if not is_dir and SCRIPT_SUFFIX_RE.search(path):
            logger.warning("Package contains executable script: %s", path)

        return FileValidationResult(path=path, valid=True, message="File validation passed")

    def validate_package(self, staging_root: str | Path) -> None:
        """Audit a whole staged package tree.

        The tree must contain the control subdirectory with a ``control``
        file; the control subdirectory may only hold whitelisted entries;
        every other entry is run through validate_package_file.

        Args:
            staging_root: Root of the staged package.

        Raises:
            PackageAuditError: If a required artifact is missing or any
                entry fails validation.
        """
        root = Path(staging_root)
        if not root.exists():
            msg = f"Package directory does not exist: {root}"
            raise PackageAuditError(msg, str(root))
        if not root.is_dir():
            msg = f"Package path is not a directory: {root}"
            raise PackageAuditError(msg, str(root))

        control_dir = root / CONTROL_DIR
        if not control_dir.is_dir():
            msg = f"{CONTROL_DIR} directory missing from package"
            raise PackageAuditError(msg, str(control_dir))
        if not (control_dir / "control").is_file():
            msg = f"control file missing from package ({CONTROL_DIR}/control)"
            raise PackageAuditError(msg, str(control_dir / "control"))

        invalid_files: list[str] = []

        for entry in sorted(control_dir.iterdir()):
            if entry.name not in CONTROL_WHITELIST or entry.is_dir():
                rel = f"{CONTROL_DIR}/{entry.name}"
                logger.warning("Invalid entry in %s directory: %s", CONTROL_DIR, rel)
                invalid_files.append(rel)

        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            if current == root:
                dirnames[:] = [d for d in dirnames if d != CONTROL_DIR]
            dirnames.sort()

            entries = [(name, True) for name in dirnames] + [(name, False) for name in sorted(filenames)]
            for name, is_dir in entries:
                rel = (current / name).relative_to(root).as_posix()
                result = self.validate_package_file("/" + rel, is_dir)
                if not result.valid:
                    invalid_files.append(rel)
                    for error in result.errors:
                        logger.warning("Invalid package file (%s): %s", rel, error)

        if invalid_files:
            msg = f"Package contains {len(invalid_files)} invalid file(s): {', '.join(invalid_files)}"
            raise PackageAuditError(msg, str(root), invalid_files)

    def warn_about_home(self, path: str) -> None:
        """Log an advisory when a file is placed under ``<secure_root>/home``."""
        if is_under(clean_path(path), self.secure_root + "/home"):
            logger.warning("Placing files in %s/home may not comply with standards: %s", self.secure_root, path)
