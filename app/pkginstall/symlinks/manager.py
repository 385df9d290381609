"""Collision-safe symlink creation."""

import logging
import os

from pkginstall.core.errors import SymlinkCollisionError, SymlinkCreationError
from pkginstall.security.pathmap import DirectorySet, Membership

logger = logging.getLogger(__name__)


class SymlinkManager:
    """Creates symlinks without ever overwriting existing entries.

    Attributes:
        allowed_dirs: Directories in which symlinks may be created
            (exact membership, descendants are not included).
    """

    def __init__(self, allowed_dirs: DirectorySet | list[str] | tuple[str, ...] = ()) -> None:
        """Initialize the manager.

        Args:
            allowed_dirs: Directories in which symlinks may be created.
        """
        if isinstance(allowed_dirs, DirectorySet):
            self.allowed_dirs = allowed_dirs
        else:
            self.allowed_dirs = DirectorySet.of(allowed_dirs)

    def create_symlink(self, source: str, target: str) -> None:
        """Create a symlink at ``target`` pointing to ``source``.

        os.symlink fails atomically when ``target`` exists (including
        dangling symlinks), so there is no window between the collision
        check and the creation.

        Args:
            source: Path the symlink points to.
            target: Location of the new symlink.

        Raises:
            SymlinkCollisionError: If an entry already exists at ``target``.
            SymlinkCreationError: On any other OS failure.
        """
        try:
            os.symlink(source, target)
        except FileExistsError as e:
            raise SymlinkCollisionError(target) from e
        except OSError as e:
            msg = f"Failed to create symlink from {source} to {target}: {e}"
            raise SymlinkCreationError(msg) from e
        logger.debug("Created symlink %s -> %s", target, source)

    def is_allowed(self, directory: str) -> bool:
        """Check whether symlinks may be created directly in ``directory``."""
        return self.allowed_dirs.contains(directory, Membership.EXACT)

    def find_existing(self) -> list[tuple[str, str]]:
        """List symlinks already present under the allowed directories.

        Unreadable entries and missing directories are skipped.

        Returns:
            ``(target, source)`` pairs with sources made absolute.
        """
        found: list[tuple[str, str]] = []
        for directory in self.allowed_dirs:
            if not os.path.isdir(directory):
                continue
            for dirpath, dirnames, filenames in os.walk(directory):
                dirnames.sort()
                for name in sorted(dirnames + filenames):
                    path = os.path.join(dirpath, name)
                    if not os.path.islink(path):
                        continue
                    try:
                        source = os.readlink(path)
                    except OSError as e:
                        logger.debug("Skipping unreadable symlink %s: %s", path, e)
                        continue
                    if not os.path.isabs(source):
                        source = os.path.normpath(os.path.join(dirpath, source))
                    found.append((path, source))
        return found
