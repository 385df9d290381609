"""Pytest configuration and shared fixtures.

This module contains fixtures used across all test modules.
"""

from pathlib import Path

import pytest
from pkginstall.debian.package import PackageMetadata
from pkginstall.security.pathmap import PathMapper
from pkginstall.security.validator import PathValidator
from pkginstall.utils.shell import CommandResult


@pytest.fixture
def metadata() -> PackageMetadata:
    """Minimal valid package metadata."""
    return PackageMetadata(
        name="myapp",
        version="1.0.0",
        architecture="amd64",
        maintainer="Jane Doe <jane@example.com>",
        description="Example application",
    )


@pytest.fixture
def mapper() -> PathMapper:
    """Path mapper with the default /opt secure root."""
    return PathMapper()


@pytest.fixture
def validator() -> PathValidator:
    """Path validator with the default policy."""
    return PathValidator()


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """Source tree laid out like the installed filesystem.

    Contains a config file, an executable helper and a desktop entry that
    requires a deferred symlink.
    """
    root = tmp_path / "src"
    (root / "etc" / "myapp").mkdir(parents=True)
    (root / "etc" / "myapp" / "myapp.conf").write_text("key = value\n")

    (root / "usr" / "lib" / "myapp").mkdir(parents=True)
    helper = root / "usr" / "lib" / "myapp" / "run.sh"
    helper.write_text("#!/bin/sh\necho running\n")
    helper.chmod(0o755)

    (root / "usr" / "share" / "applications").mkdir(parents=True)
    (root / "usr" / "share" / "applications" / "myapp.desktop").write_text("[Desktop Entry]\nName=MyApp\n")

    return root


@pytest.fixture
def dpkg_success() -> CommandResult:
    """Successful dpkg-deb result."""
    return CommandResult(
        args=("dpkg-deb",),
        stdout="dpkg-deb: building package 'myapp' in 'myapp_1.0.0_amd64.deb'.\n",
        stderr="",
        returncode=0,
    )
