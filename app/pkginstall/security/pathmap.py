"""Secure path transformation.

Maps paths targeting sensitive system directories onto an isolated secure
root (default ``/opt``) and decides whether a deferred symlink back to the
conventional location is required at install time.

Rules are resolved longest-prefix-first with a lexical tie-break, so the
outcome never depends on configuration order.
"""

import logging
import posixpath
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum

from pkginstall.core.errors import NoRuleMatchedError, TransformationError
from pkginstall.security.policy import MapperConfig

logger = logging.getLogger(__name__)


def clean_path(path: str) -> str:
    """Lexically normalize a POSIX path.

    Collapses duplicate separators and resolves ``.`` and ``..`` segments
    without touching the filesystem.

    Args:
        path: Path to normalize.

    Returns:
        Normalized path ('.' for an empty input).
    """
    cleaned = posixpath.normpath(path)
    # normpath keeps a leading '//' (implementation-defined in POSIX)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def is_under(path: str, prefix: str) -> bool:
    """Check whether ``path`` equals ``prefix`` or lies beneath it.

    The comparison is segment-aware: ``/optional`` is not under ``/opt``.
    """
    if prefix == "/":
        return path.startswith("/")
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


class Membership(str, Enum):
    """How a directory set answers membership questions.

    Attributes:
        EXACT: The path must be one of the directories.
        SUBTREE: The path may be one of the directories or any descendant.
    """

    EXACT = "exact"
    SUBTREE = "subtree"


@dataclass(frozen=True, slots=True)
class DirectorySet:
    """Immutable set of directories with explicit membership semantics.

    Attributes:
        directories: Normalized directory paths.
    """

    directories: tuple[str, ...]

    @classmethod
    def of(cls, directories: tuple[str, ...] | list[str]) -> "DirectorySet":
        """Build a set from raw paths, normalizing and de-duplicating them."""
        seen: dict[str, None] = {}
        for directory in directories:
            if directory:
                seen[clean_path(directory)] = None
        return cls(directories=tuple(seen))

    def contains(self, path: str, mode: Membership) -> bool:
        """Check membership of ``path``.

        Args:
            path: Path to test (normalized before comparison).
            mode: EXACT for "this directory", SUBTREE for "this directory
                or any descendant".

        Returns:
            True if the path is a member under the given mode.
        """
        if not path:
            return False
        norm = clean_path(path)
        if mode == Membership.EXACT:
            return norm in self.directories
        return any(is_under(norm, directory) for directory in self.directories)

    def __iter__(self) -> Iterator[str]:
        return iter(self.directories)

    def __len__(self) -> int:
        return len(self.directories)


@dataclass(frozen=True, slots=True)
class MappingRule:
    """A single ``system prefix -> secure prefix`` rewrite rule.

    Attributes:
        system_prefix: Prefix of the original system path.
        secure_prefix: Replacement prefix under the secure root.
    """

    system_prefix: str
    secure_prefix: str

    def matches(self, path: str) -> bool:
        """Check whether the rule applies to a normalized path."""
        return is_under(path, self.system_prefix)

    def apply(self, path: str) -> str:
        """Rewrite the matching prefix of ``path``."""
        return self.secure_prefix + path[len(self.system_prefix.rstrip("/")) :]


def _ordered_rules(config: MapperConfig) -> tuple[MappingRule, ...]:
    """Build the rule table: defaults derived from the secure root, then overrides.

    Sorted by descending prefix length, ties broken lexically.
    """
    table: dict[str, str] = {}
    for prefix in config.system_prefixes:
        table[prefix] = config.secure_root + prefix
    for source, target in config.custom_mappings:
        table[clean_path(source)] = clean_path(target)

    rules = [MappingRule(system_prefix=s, secure_prefix=t) for s, t in table.items()]
    rules.sort(key=lambda r: (-len(r.system_prefix), r.system_prefix))
    return tuple(rules)


class PathMapper:
    """Transforms system paths into their secure-root equivalents.

    The mapper is a pure function of its configuration and input: it
    performs no I/O and holds no mutable state.

    Example:
        >>> mapper = PathMapper()
        >>> mapper.transform("/usr/bin/app")
        ('/opt/usr/bin/app', True)
    """

    def __init__(self, config: MapperConfig | None = None) -> None:
        """Initialize the mapper.

        Args:
            config: Mapper configuration. Defaults are used when omitted.
        """
        self._config = config or MapperConfig()
        self._rules = _ordered_rules(self._config)
        self._symlink_dirs = DirectorySet.of(self._config.symlink_dirs)

    @property
    def config(self) -> MapperConfig:
        """The configuration this mapper was built from."""
        return self._config

    @property
    def secure_root(self) -> str:
        """Root directory receiving transformed paths."""
        return self._config.secure_root

    @property
    def rules(self) -> tuple[MappingRule, ...]:
        """Mapping rules in resolution order."""
        return self._rules

    @property
    def mappings(self) -> dict[str, str]:
        """Copy of the ``system -> secure`` prefix table."""
        return {rule.system_prefix: rule.secure_prefix for rule in self._rules}

    @property
    def symlink_dirs(self) -> DirectorySet:
        """Directories for which deferred symlinks are required."""
        return self._symlink_dirs

    def is_transformed(self, path: str) -> bool:
        """Check if a path already lies under the secure root."""
        if not path:
            return False
        return is_under(clean_path(path), self.secure_root)

    def is_system_path(self, path: str) -> bool:
        """Check if a path falls under one of the mapped system prefixes."""
        if not path:
            return False
        norm = clean_path(path)
        return any(rule.matches(norm) for rule in self._rules)

    def needs_symlink(self, path: str) -> bool:
        """Check if the original path lies in a symlink-required directory."""
        needed = self._symlink_dirs.contains(path, Membership.SUBTREE)
        if needed:
            logger.debug("Symlink required for path: %s", path)
        return needed

    def transform(self, path: str) -> tuple[str, bool]:
        """Map a system path to its secure equivalent.

        Args:
            path: Absolute system path.

        Returns:
            Tuple of (transformed path, whether a deferred symlink is needed).

        Raises:
            TransformationError: If the path is empty.
            NoRuleMatchedError: If no system prefix matches the path.
        """
        if not path:
            msg = "Cannot transform empty path"
            raise TransformationError(msg, path)

        norm = clean_path(path)

        if self.is_transformed(norm):
            logger.debug("Path already transformed: %s", norm)
            return norm, False

        for rule in self._rules:
            if rule.matches(norm):
                transformed = rule.apply(norm)
                logger.debug("Transformed path: %s -> %s", norm, transformed)
                return transformed, self.needs_symlink(norm)

        msg = f"No transformation rule matched for path: {path}"
        raise NoRuleMatchedError(msg, path)
