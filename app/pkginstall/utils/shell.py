"""Subprocess execution for external packaging tools."""

import shutil
import subprocess
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Result of an external command.

    Attributes:
        args: Command line that was executed.
        stdout: Captured standard output.
        stderr: Captured standard error.
        returncode: Exit code of the command.
    """

    args: tuple[str, ...]
    stdout: str
    stderr: str
    returncode: int

    @property
    def success(self) -> bool:
        """Check if the command exited with status 0."""
        return self.returncode == 0


def run_command(
    args: list[str],
    *,
    timeout: float | None = 60.0,
    cwd: str | None = None,
) -> CommandResult:
    """Run a command, capturing its output.

    Args:
        args: Command and arguments to execute.
        timeout: Maximum time in seconds to wait for the command.
        cwd: Working directory for the command.

    Returns:
        CommandResult with stdout, stderr and returncode.

    Raises:
        subprocess.TimeoutExpired: If the command exceeds ``timeout``.
        FileNotFoundError: If the executable is not found.
    """
    result = subprocess.run(
        args,
        capture_output=True,
        text=True,
        check=False,
        timeout=timeout,
        cwd=cwd,
    )
    return CommandResult(
        args=tuple(args),
        stdout=result.stdout,
        stderr=result.stderr,
        returncode=result.returncode,
    )


def command_exists(name: str) -> bool:
    """Check if a command exists in the system PATH."""
    return shutil.which(name) is not None
