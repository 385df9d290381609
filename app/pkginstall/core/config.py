"""Project configuration.

A project is described by a ``pkginstall.toml`` file holding the package
metadata, build options and optional overrides of the mapper, path and
script policies. All models are immutable once loaded.
"""

import logging
import os
import tomllib
from enum import Enum
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Annotated, Any

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pkginstall.core.errors import ConfigError, ConfigNotFoundError, ConfigParseError
from pkginstall.debian.package import PackageMetadata, default_architecture
from pkginstall.security.policy import MapperConfig, ScriptPolicy, SecurityLevel, SecurityPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "pkginstall.toml"

DEFAULT_TIMEOUT_SECONDS = 600


class SymlinkFailurePolicy(str, Enum):
    """What the builder does when a deferred symlink cannot be queued.

    Attributes:
        BEST_EFFORT: Log the failure and continue the build.
        FAIL_FAST: Abort the build.
    """

    BEST_EFFORT = "best_effort"
    FAIL_FAST = "fail_fast"


class BuildOptions(BaseModel):
    """Feature flags and limits of a single build.

    Attributes:
        preserve_perms: Keep source file modes instead of normalizing them.
        verbose: Log progress and advisories.
        strict: Raise the script security level to high and make symlink
            queue failures fatal.
        disable_symlinks: Never queue deferred symlinks.
        ignore_script_validation: Force-accept scripts that fail validation.
        exclude_dirs: Directories to skip, relative to the source root or absolute.
        timeout_seconds: Wall-clock budget for build_with_timeout.
        symlink_failure_policy: Handling of symlink queue failures.
        security_level: Script security level (overridden by ``strict``).
        conflicts: Packages this package conflicts with.
        provides: Virtual packages this package provides.
        homepage: Project homepage for the control file.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    preserve_perms: bool = False
    verbose: bool = False
    strict: bool = False
    disable_symlinks: bool = False
    ignore_script_validation: bool = False
    exclude_dirs: tuple[str, ...] = ()
    timeout_seconds: Annotated[
        float,
        Field(gt=0, description="Build timeout in seconds"),
    ] = DEFAULT_TIMEOUT_SECONDS
    symlink_failure_policy: SymlinkFailurePolicy = SymlinkFailurePolicy.BEST_EFFORT
    security_level: SecurityLevel = SecurityLevel.MEDIUM
    conflicts: tuple[str, ...] = ()
    provides: tuple[str, ...] = ()
    homepage: str = ""

    @property
    def effective_security_level(self) -> SecurityLevel:
        """Script security level after applying ``strict``."""
        return SecurityLevel.HIGH if self.strict else self.security_level

    @property
    def effective_symlink_failure_policy(self) -> SymlinkFailurePolicy:
        """Symlink failure policy after applying ``strict``."""
        return SymlinkFailurePolicy.FAIL_FAST if self.strict else self.symlink_failure_policy


class PackageSection(BaseModel):
    """The ``[package]`` table: Debian package metadata."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    name: Annotated[str, Field(min_length=1)]
    version: Annotated[str, Field(min_length=1)]
    architecture: str = ""
    maintainer: str = ""
    description: str = ""
    section: str = ""
    priority: str = "optional"
    depends: tuple[str, ...] = ()

    def to_metadata(self) -> PackageMetadata:
        """Build PackageMetadata, defaulting the architecture to the host's."""
        return PackageMetadata(
            name=self.name,
            version=self.version,
            architecture=self.architecture or default_architecture(),
            maintainer=self.maintainer,
            description=self.description,
            section=self.section,
            priority=self.priority,
            depends=self.depends,
        )


class ProjectConfig(BaseModel):
    """Complete contents of a ``pkginstall.toml`` file.

    Attributes:
        source: Directory containing the files to package.
        output: Directory receiving the ``.deb``.
        script_files: Lifecycle script files; the slot is inferred from
            each file name.
        package: Package metadata.
        build: Build options.
        mapper: Path mapper configuration.
        security: Path validation policy.
        scripts: Script validation policy (extra patterns).
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    source: str = "."
    output: str = "."
    script_files: tuple[str, ...] = ()
    package: PackageSection
    build: BuildOptions = Field(default_factory=BuildOptions)
    mapper: MapperConfig = Field(default_factory=MapperConfig)
    security: SecurityPolicy = Field(default_factory=SecurityPolicy)
    scripts: ScriptPolicy = Field(default_factory=ScriptPolicy)


def load_config(path: Path | None = None) -> ProjectConfig:
    """Load a project configuration from a TOML file.

    Args:
        path: Path to the config file. Defaults to ``./pkginstall.toml``.

    Returns:
        Validated ProjectConfig.

    Raises:
        ConfigNotFoundError: If the config file doesn't exist.
        ConfigParseError: If the TOML syntax is invalid.
        ConfigError: If the content doesn't match the schema.
    """
    config_path = path or Path(DEFAULT_CONFIG_NAME)

    if not config_path.exists():
        raise ConfigNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigParseError(f"Invalid TOML syntax: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config: {e}") from e

    try:
        config = ProjectConfig.model_validate(data)
    except (ValueError, ValidationError) as e:
        raise ConfigError(f"Invalid config content: {e}") from e

    logger.debug("Loaded config from %s", config_path)
    return config


def save_config(config: ProjectConfig, path: Path) -> Path:
    """Write a project configuration to a TOML file.

    The file is written to a temporary sibling first and renamed into
    place with os.replace().

    Args:
        config: Configuration to save.
        path: Destination file.

    Returns:
        Path where the config was saved.

    Raises:
        ConfigError: If the file cannot be written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    data = _config_to_dict(config)

    tmp_path: Path | None = None
    try:
        with NamedTemporaryFile(mode="wb", dir=path.parent, delete=False, suffix=".tmp") as f:
            tmp_path = Path(f.name)
            tomli_w.dump(data, f)
        os.replace(str(tmp_path), str(path))
    except OSError as e:
        if tmp_path is not None and tmp_path.exists():
            tmp_path.unlink()
        raise ConfigError(f"Failed to write config: {e}") from e

    return path


def _config_to_dict(config: ProjectConfig) -> dict[str, Any]:
    """Convert a ProjectConfig into TOML-serializable data.

    Tables equal to their defaults are left out to keep the file short.
    """
    return config.model_dump(mode="json", exclude_defaults=True)
