"""Symlink creation and deferred-symlink queueing."""

from pkginstall.symlinks.manager import SymlinkManager
from pkginstall.symlinks.processor import SymlinkProcessor, SymlinkRequest, SymlinkResult

__all__ = [
    "SymlinkManager",
    "SymlinkProcessor",
    "SymlinkRequest",
    "SymlinkResult",
]
