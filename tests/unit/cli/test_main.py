"""Unit tests for the main CLI application."""

from pkginstall import __version__
from pkginstall.cli.main import app
from typer.testing import CliRunner

runner = CliRunner()


class TestMainApp:
    """Tests for global options."""

    def test_version(self) -> None:
        """--version prints the version and exits."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"pkginstall version {__version__}" in result.stdout

    def test_help_lists_commands(self) -> None:
        """Help shows every command group."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("build", "init", "symlink", "script", "path"):
            assert command in result.stdout

    def test_no_args_shows_help(self) -> None:
        """Running without arguments prints usage."""
        result = runner.invoke(app, [])
        assert "Usage" in result.output
