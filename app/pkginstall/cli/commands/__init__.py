"""CLI commands for pkginstall.

This package contains all subcommand implementations.
"""

from pkginstall.cli.commands import build, init, path, script, symlink

__all__ = ["build", "init", "path", "script", "symlink"]
