"""Immutable security configuration.

Defines the configuration models consumed by the path mapper, the path
validator and the script validator. Each model is frozen: a component is
configured once at construction and never changes for the duration of a
build.
"""

from enum import Enum
from collections.abc import Mapping
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

DEFAULT_SECURE_ROOT = "/opt"

# System prefixes redirected into the secure root (/bin -> <root>/bin, ...).
DEFAULT_SYSTEM_PREFIXES: tuple[str, ...] = (
    "/bin",
    "/etc",
    "/var",
    "/usr",
    "/lib",
    "/lib64",
    "/sbin",
    "/home",
    "/share",
    "/include",
)

# Directories where legacy tooling expects real entries at install time.
DEFAULT_SYMLINK_DIRS: tuple[str, ...] = (
    "/etc/systemd/system",
    "/etc/init.d",
    "/usr/share/applications",
    "/usr/share/icons",
    "/usr/share/man",
    "/usr/local/bin",
    "/usr/bin",
    "/bin",
)

DEFAULT_FORBIDDEN_PATHS: tuple[str, ...] = (
    "/bin",
    "/sbin",
    "/usr/bin",
    "/usr/sbin",
    "/boot",
    "/proc",
    "/sys",
    "/dev",
)

DEFAULT_RESTRICTED_PATHS: tuple[str, ...] = (
    "/etc/passwd",
    "/etc/shadow",
    "/etc/sudoers",
    "/etc/ssh",
    "/etc/ssl/private",
)

DEFAULT_ALLOWED_EXTENSIONS: tuple[str, ...] = (
    ".txt",
    ".conf",
    ".service",
    ".socket",
    ".target",
    ".sh",
    ".xml",
    ".json",
    ".yml",
    ".yaml",
    ".desktop",
    ".png",
    ".svg",
    ".jpg",
    ".jpeg",
    ".gif",
    ".md",
    ".html",
    ".css",
    ".js",
)

DEFAULT_MAX_PATH_LENGTH = 4096


def _require_absolute(value: str, field_name: str) -> str:
    if not value.startswith("/"):
        msg = f"{field_name}: '{value}' must be an absolute path"
        raise ValueError(msg)
    return value


class SecurityLevel(str, Enum):
    """Strictness applied when judging lifecycle scripts.

    Attributes:
        LOW: Invalid only on more than 3 errors or risk above 8.
        MEDIUM: Invalid on any error or risk above 6.
        HIGH: Invalid on any error, more than 3 warnings or risk above 4.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class MapperConfig(BaseModel):
    """Configuration of the path mapper.

    Attributes:
        secure_root: Isolated prefix receiving redirected system paths.
        system_prefixes: Prefixes mapped to ``<secure_root><prefix>``.
        custom_mappings: Extra or overriding ``(system, secure)`` pairs. A
            mapping is accepted as input and dumped back as a table.
        symlink_dirs: Directories requiring a deferred symlink.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    secure_root: Annotated[
        str,
        Field(description="Isolated prefix for redirected system paths"),
    ] = DEFAULT_SECURE_ROOT
    system_prefixes: tuple[str, ...] = DEFAULT_SYSTEM_PREFIXES
    custom_mappings: tuple[tuple[str, str], ...] = ()
    symlink_dirs: tuple[str, ...] = DEFAULT_SYMLINK_DIRS

    @field_validator("secure_root")
    @classmethod
    def validate_secure_root(cls, v: str) -> str:
        """Secure root must be absolute and not the filesystem root."""
        _require_absolute(v, "secure_root")
        if v.rstrip("/") == "":
            msg = "secure_root: '/' cannot be used as secure root"
            raise ValueError(msg)
        return v.rstrip("/")

    @field_validator("system_prefixes", "symlink_dirs")
    @classmethod
    def validate_prefixes(cls, v: tuple[str, ...], info: Any) -> tuple[str, ...]:
        """All prefixes must be absolute."""
        name = info.field_name
        return tuple(_require_absolute(p, name).rstrip("/") or "/" for p in v if p)

    @field_validator("custom_mappings", mode="before")
    @classmethod
    def coerce_custom_mappings(cls, v: Any) -> Any:
        """Accept a ``{system: secure}`` table (TOML, keyword argument)."""
        if isinstance(v, Mapping):
            return tuple(v.items())
        return v

    @field_validator("custom_mappings")
    @classmethod
    def validate_custom_mappings(cls, v: tuple[tuple[str, str], ...]) -> tuple[tuple[str, str], ...]:
        """Both sides of a custom mapping must be absolute."""
        for source, target in v:
            _require_absolute(source, "custom_mappings")
            _require_absolute(target, "custom_mappings")
        return v

    @field_serializer("custom_mappings")
    def serialize_custom_mappings(self, v: tuple[tuple[str, str], ...]) -> dict[str, str]:
        return dict(v)


class SecurityPolicy(BaseModel):
    """Rules applied by the path validator.

    Attributes:
        forbidden_paths: Hard reject (exact or prefix match).
        restricted_paths: Warn only.
        allowed_extensions: Extensions that do not trigger an advisory.
        max_path_length: Longest accepted path.
        disallow_dot_dot: Reject literal '..' segments.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    forbidden_paths: tuple[str, ...] = DEFAULT_FORBIDDEN_PATHS
    restricted_paths: tuple[str, ...] = DEFAULT_RESTRICTED_PATHS
    allowed_extensions: tuple[str, ...] = DEFAULT_ALLOWED_EXTENSIONS
    max_path_length: Annotated[
        int,
        Field(ge=1, description="Maximum path length in characters"),
    ] = DEFAULT_MAX_PATH_LENGTH
    disallow_dot_dot: bool = True


class ScriptPolicy(BaseModel):
    """Rules applied by the script validator.

    Attributes:
        security_level: Verdict thresholds to apply.
        extra_dangerous_patterns: Regular expressions added to the catalogue.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    security_level: SecurityLevel = SecurityLevel.MEDIUM
    extra_dangerous_patterns: tuple[str, ...] = ()
