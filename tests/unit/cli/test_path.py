"""Unit tests for the path command."""

from pkginstall.cli.main import app
from typer.testing import CliRunner

runner = CliRunner()


class TestTransformCommand:
    """Tests for pkginstall path transform."""

    def test_symlink_required(self) -> None:
        """Paths in symlink-managed directories report a deferred symlink."""
        result = runner.invoke(app, ["path", "transform", "/etc/systemd/system/myapp.service"])

        assert result.exit_code == 0
        assert "/opt/etc/systemd/system/myapp.service" in result.stdout
        assert "Deferred symlink required" in result.stdout

    def test_no_symlink(self) -> None:
        """Plain configuration files need no symlink."""
        result = runner.invoke(app, ["path", "transform", "/etc/myapp/myapp.conf"])

        assert result.exit_code == 0
        assert "/opt/etc/myapp/myapp.conf" in result.stdout
        assert "No symlink required" in result.stdout

    def test_dot_segments_are_resolved(self) -> None:
        """The input is normalized before a rule is chosen."""
        result = runner.invoke(app, ["path", "transform", "/usr/local/../bin/app"])

        assert result.exit_code == 0
        assert "-> /opt/usr/bin/app" in result.stdout

    def test_custom_secure_root(self) -> None:
        """--secure-root moves the redirection target."""
        result = runner.invoke(app, ["path", "transform", "/var/lib/myapp", "--secure-root", "/srv/secure"])

        assert result.exit_code == 0
        assert "/srv/secure/var/lib/myapp" in result.stdout

    def test_unmapped_path(self) -> None:
        """Paths outside every mapped prefix fail."""
        result = runner.invoke(app, ["path", "transform", "/README"])

        assert result.exit_code == 1
        assert "No transformation rule matched" in result.output

    def test_invalid_secure_root(self) -> None:
        """A relative secure root is reported instead of crashing."""
        result = runner.invoke(app, ["path", "transform", "/usr/bin/x", "--secure-root", "relative"])

        assert result.exit_code == 1
        assert "Invalid secure root" in result.output
        assert "absolute" in result.output
