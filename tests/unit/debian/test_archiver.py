"""Unit tests for the dpkg-deb archiver."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from pkginstall.core.errors import BuildTimeoutError, ExternalToolError
from pkginstall.debian.archiver import DpkgDebArchiver
from pkginstall.utils.shell import CommandResult


class TestDpkgDebArchiver:
    """Tests for DpkgDebArchiver.archive."""

    @patch("pkginstall.debian.archiver.run_command")
    def test_builds_package(self, mock_run: MagicMock, tmp_path: Path, dpkg_success: CommandResult) -> None:
        """dpkg-deb is called with root ownership and the remaining budget."""
        mock_run.return_value = dpkg_success
        output = tmp_path / "myapp_1.0.0_amd64.deb"

        result = DpkgDebArchiver().archive(tmp_path / "stage", output, timeout=30.0)

        assert result == output
        mock_run.assert_called_once_with(
            ["dpkg-deb", "--build", "--root-owner-group", str(tmp_path / "stage"), str(output)],
            timeout=30.0,
        )

    @patch("pkginstall.debian.archiver.run_command")
    def test_failure_passes_stderr_through(self, mock_run: MagicMock, tmp_path: Path) -> None:
        """Exit status and stderr are carried verbatim."""
        mock_run.return_value = CommandResult(
            args=("dpkg-deb",),
            stdout="",
            stderr="dpkg-deb: error: control directory has bad permissions\n",
            returncode=2,
        )

        with pytest.raises(ExternalToolError, match="bad permissions") as exc_info:
            DpkgDebArchiver().archive(tmp_path, tmp_path / "out.deb")

        assert exc_info.value.returncode == 2
        assert exc_info.value.stderr == "dpkg-deb: error: control directory has bad permissions\n"

    @patch("pkginstall.debian.archiver.run_command", side_effect=FileNotFoundError("dpkg-deb"))
    def test_missing_tool(self, _mock_run: MagicMock, tmp_path: Path) -> None:
        """A missing executable is an external tool failure."""
        with pytest.raises(ExternalToolError, match="not found"):
            DpkgDebArchiver().archive(tmp_path, tmp_path / "out.deb")

    @patch("pkginstall.debian.archiver.run_command")
    def test_timeout(self, mock_run: MagicMock, tmp_path: Path) -> None:
        """A subprocess timeout becomes a build timeout."""
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="dpkg-deb", timeout=1.0)

        with pytest.raises(BuildTimeoutError):
            DpkgDebArchiver().archive(tmp_path, tmp_path / "out.deb", timeout=1.0)

    @patch("pkginstall.debian.archiver.command_exists", return_value=False)
    def test_is_available(self, _mock_exists: MagicMock) -> None:
        """Availability is a PATH lookup of the executable."""
        assert not DpkgDebArchiver("dpkg-deb").is_available()
        _mock_exists.assert_called_once_with("dpkg-deb")
