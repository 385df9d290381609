"""Invocation of the external ``dpkg-deb`` archiver."""

import logging
import subprocess
from pathlib import Path

from pkginstall.core.errors import BuildTimeoutError, ExternalToolError
from pkginstall.utils.shell import command_exists, run_command

logger = logging.getLogger(__name__)

DPKG_DEB = "dpkg-deb"


class DpkgDebArchiver:
    """Builds a ``.deb`` from a staged package tree using dpkg-deb.

    The tool's exit status and stderr are its only feedback channel; both
    are carried verbatim on ExternalToolError.
    """

    def __init__(self, executable: str = DPKG_DEB) -> None:
        self.executable = executable

    def is_available(self) -> bool:
        """Check if the archiver executable is on PATH."""
        return command_exists(self.executable)

    def command(self, staging_dir: Path, output_path: Path) -> list[str]:
        """Command line used to archive ``staging_dir`` into ``output_path``."""
        return [self.executable, "--build", "--root-owner-group", str(staging_dir), str(output_path)]

    def archive(self, staging_dir: Path, output_path: Path, timeout: float | None = None) -> Path:
        """Archive a staged tree.

        Args:
            staging_dir: Root of the staged package (must hold DEBIAN/control).
            output_path: Destination ``.deb`` file.
            timeout: Seconds the tool may run, None for no limit.

        Returns:
            The output path.

        Raises:
            ExternalToolError: If the tool is missing or exits non-zero.
            BuildTimeoutError: If the tool exceeds ``timeout``.
        """
        args = self.command(staging_dir, output_path)
        logger.info("Running: %s", " ".join(args))

        try:
            result = run_command(args, timeout=timeout)
        except FileNotFoundError as e:
            msg = f"{self.executable} not found, install the dpkg package"
            raise ExternalToolError(msg) from e
        except subprocess.TimeoutExpired as e:
            msg = f"{self.executable} timed out after {timeout} seconds"
            raise BuildTimeoutError(msg) from e

        if not result.success:
            msg = f"Failed to build package: {self.executable} exited with status {result.returncode}"
            if result.stderr.strip():
                msg += f"\n{result.stderr.strip()}"
            raise ExternalToolError(msg, returncode=result.returncode, stderr=result.stderr)

        if result.stdout.strip():
            logger.debug("%s output: %s", self.executable, result.stdout.strip())
        return output_path
