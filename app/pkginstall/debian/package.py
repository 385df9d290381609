"""Package metadata and control file rendering."""

import platform
from dataclasses import dataclass, field

from pkginstall.core.errors import PackageMetadataError

# platform.machine() -> Debian architecture name
_ARCH_ALIASES: dict[str, str] = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "armhf",
    "armv6l": "armel",
    "i386": "i386",
    "i686": "i386",
    "ppc64le": "ppc64el",
    "s390x": "s390x",
    "riscv64": "riscv64",
}


def default_architecture() -> str:
    """Debian architecture of the build host, ``all`` if unknown."""
    return _ARCH_ALIASES.get(platform.machine().lower(), "all")


@dataclass(frozen=True, slots=True)
class PackageMetadata:
    """Metadata describing a Debian package.

    Attributes:
        name: Package name.
        version: Package version.
        architecture: Target architecture (e.g. amd64, all).
        maintainer: Maintainer name and email.
        description: Short description.
        section: Archive section (optional).
        priority: Package priority (optional).
        depends: Dependencies, one entry per package relation.
    """

    name: str
    version: str
    architecture: str
    maintainer: str
    description: str
    section: str = ""
    priority: str = ""
    depends: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        """Validate required fields."""
        if not self.name.strip():
            msg = "Package name cannot be empty"
            raise PackageMetadataError(msg)
        if not self.version.strip():
            msg = "Package version cannot be empty"
            raise PackageMetadataError(msg)
        for value, label in ((self.name, "name"), (self.version, "version"), (self.architecture, "architecture")):
            if any(c.isspace() for c in value):
                msg = f"Package {label} cannot contain whitespace: {value!r}"
                raise PackageMetadataError(msg)
        if "\n" in self.description or "\n" in self.maintainer:
            msg = "Maintainer and description must be single lines"
            raise PackageMetadataError(msg)

    @property
    def deb_filename(self) -> str:
        """Output file name following ``<name>_<version>_<arch>.deb``."""
        return f"{self.name}_{self.version}_{self.architecture}.deb"


def render_control(
    metadata: PackageMetadata,
    installed_size: int | None = None,
    conflicts: tuple[str, ...] | list[str] = (),
    provides: tuple[str, ...] | list[str] = (),
    homepage: str = "",
) -> str:
    """Render the ``DEBIAN/control`` file.

    Required fields come first, in fixed order; optional fields are only
    emitted when set.

    Args:
        metadata: Package metadata.
        installed_size: Installed size in kilobytes.
        conflicts: Packages this package conflicts with.
        provides: Virtual packages this package provides.
        homepage: Project homepage URL.

    Returns:
        Control file text terminated by a newline.
    """
    lines = [
        f"Package: {metadata.name}",
        f"Version: {metadata.version}",
        f"Architecture: {metadata.architecture}",
        f"Maintainer: {metadata.maintainer}",
        f"Description: {metadata.description}",
    ]

    if metadata.section:
        lines.append(f"Section: {metadata.section}")
    if metadata.priority:
        lines.append(f"Priority: {metadata.priority}")
    if metadata.depends:
        lines.append(f"Depends: {', '.join(metadata.depends)}")
    if conflicts:
        lines.append(f"Conflicts: {', '.join(conflicts)}")
    if provides:
        lines.append(f"Provides: {', '.join(provides)}")
    if installed_size is not None:
        lines.append(f"Installed-Size: {installed_size}")
    if homepage:
        lines.append(f"Homepage: {homepage}")

    return "\n".join(lines) + "\n"
