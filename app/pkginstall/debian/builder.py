"""Secure Debian package builder.

The builder walks a source tree, redirects every path into the secure
root, validates each transformed path, stages the files, synthesizes a
postinst script for deferred symlinks, audits the staged tree and hands
it to dpkg-deb.

Failure policy per category:
- Transformation, path policy and traversal violations abort the build.
- Symlink queue failures are logged and collected (``best_effort``) or
  abort the build (``fail_fast``, implied by ``strict``).
- Scripts breaching the security level abort the build unless
  ``ignore_script_validation`` force-accepts them.
"""

import logging
import os
import shutil
import stat
import tempfile
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path

from pkginstall.core.cancel import CancellationToken
from pkginstall.core.config import BuildOptions, SymlinkFailurePolicy
from pkginstall.core.errors import (
    BuildCancelledError,
    BuildTimeoutError,
    PkgInstallError,
    PolicyViolationError,
    RiskThresholdExceededError,
    SymlinkError,
    TransformationError,
)
from pkginstall.debian.archiver import DpkgDebArchiver
from pkginstall.debian.package import PackageMetadata, render_control
from pkginstall.debian.scripts import LifecycleScript, render_symlink_script, slot_from_filename
from pkginstall.security.pathmap import PathMapper, clean_path, is_under
from pkginstall.security.policy import MapperConfig, ScriptPolicy, SecurityPolicy
from pkginstall.security.scripts import ScriptValidationResult, ScriptValidator, risk_assessment
from pkginstall.security.validator import CONTROL_DIR, PathValidator
from pkginstall.symlinks.manager import SymlinkManager
from pkginstall.symlinks.processor import SymlinkProcessor

logger = logging.getLogger(__name__)

STAGING_PREFIX = "pkginstall-build-"

# Bytes copied between two cancellation checks.
COPY_CHUNK_SIZE = 1024 * 1024


class BuildState(str, Enum):
    """Lifecycle of a single build."""

    CREATED = "created"
    WALKING = "walking"
    AWAITING_SYMLINK_SCRIPT = "awaiting_symlink_script"
    AUDITING = "auditing"
    ARCHIVING = "archiving"
    DONE = "done"
    FAILED = "failed"


class Builder:
    """Builds one Debian package from a source tree.

    A Builder runs at most once. The staging directory is allocated at
    construction and removed when the build finishes, whatever the outcome.

    Attributes:
        metadata: Package metadata.
        source_dir: Tree whose layout mirrors the installed filesystem.
        output_dir: Directory receiving the ``.deb``.
        staging_dir: Temporary tree handed to the archiver.
        options: Build options.
        state: Current build state.
        scripts: Accepted lifecycle scripts by slot.
        forced_scripts: Validation results of scripts force-accepted
            despite failing validation.
        symlink_failures: Symlink requests that could not be queued.
    """

    def __init__(
        self,
        metadata: PackageMetadata,
        source_dir: str | Path,
        output_dir: str | Path,
        options: BuildOptions | None = None,
        mapper_config: MapperConfig | None = None,
        security_policy: SecurityPolicy | None = None,
        script_policy: ScriptPolicy | None = None,
        archiver: DpkgDebArchiver | None = None,
    ) -> None:
        """Initialize the builder.

        Raises:
            FileNotFoundError: If the source directory does not exist.
            NotADirectoryError: If the source is not a directory.
            OSError: If the output or staging directory cannot be created.
        """
        self.metadata = metadata
        self.options = options or BuildOptions()

        self.source_dir = Path(source_dir).absolute()
        if not self.source_dir.exists():
            msg = f"Source directory does not exist: {self.source_dir}"
            raise FileNotFoundError(msg)
        if not self.source_dir.is_dir():
            msg = f"Source path is not a directory: {self.source_dir}"
            raise NotADirectoryError(msg)

        self.output_dir = Path(output_dir).absolute()
        self.output_dir.mkdir(mode=0o755, parents=True, exist_ok=True)

        self.path_mapper = PathMapper(mapper_config)
        self.path_validator = PathValidator(security_policy, secure_root=self.path_mapper.secure_root)

        base_policy = script_policy or ScriptPolicy()
        self.script_validator = ScriptValidator(
            base_policy.model_copy(update={"security_level": self.options.effective_security_level}),
            path_mapper=self.path_mapper,
        )
        self.symlink_processor = SymlinkProcessor(
            self.path_mapper,
            SymlinkManager(self.path_mapper.symlink_dirs),
            self.path_validator,
        )
        self.archiver = archiver or DpkgDebArchiver()

        self.scripts: dict[LifecycleScript, str] = {}
        self.forced_scripts: list[ScriptValidationResult] = []
        self.symlink_failures: list[str] = []
        self.state = BuildState.CREATED

        self._exclude_dirs = tuple(
            clean_path(d if os.path.isabs(d) else str(self.source_dir / d)) for d in self.options.exclude_dirs
        )
        self.staging_dir = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX))
        logger.debug("Allocated staging directory %s", self.staging_dir)

    # =========================================================================
    # Lifecycle scripts
    # =========================================================================

    def set_lifecycle_script(self, name: str | LifecycleScript, content: str) -> ScriptValidationResult:
        """Validate and store a maintainer script.

        Args:
            name: Lifecycle slot (preinst, postinst, prerm, postrm).
            content: Script text.

        Returns:
            The validation result.

        Raises:
            ValueError: If the slot name is unknown.
            RiskThresholdExceededError: If the script fails validation and
                ``ignore_script_validation`` is not set.
        """
        slot = LifecycleScript.parse(name) if isinstance(name, str) else name
        result = self.script_validator.validate(slot.value, content)

        for warning in result.warnings:
            logger.debug("Script warning (%s): %s", slot.value, warning)

        if not result.valid:
            if not self.options.ignore_script_validation:
                msg = f"Script validation failed for {slot.value}. {risk_assessment(result)}"
                if result.errors:
                    msg += "\nSpecific issues:\n" + "\n".join(f"- {e}" for e in result.errors)
                raise RiskThresholdExceededError(msg, slot.value, result)

            logger.warning(
                "Force-accepting %s despite failed validation (%s)",
                slot.value,
                risk_assessment(result).replace("\n", "; "),
            )
            for finding in result.errors + result.warnings:
                logger.warning("%s: %s", slot.value, finding)
            self.forced_scripts.append(result)
        else:
            logger.info("Script validation passed for %s: %s", slot.value, risk_assessment(result).replace("\n", "; "))

        self.scripts[slot] = content
        return result

    def load_lifecycle_script(self, path: str | Path) -> ScriptValidationResult:
        """Read a script file and store it in the slot named by its file name.

        Raises:
            ValueError: If the slot cannot be inferred from the file name.
            OSError: If the file cannot be read.
            RiskThresholdExceededError: See set_lifecycle_script.
        """
        slot = slot_from_filename(path)
        content = Path(path).read_text(encoding="utf-8")
        return self.set_lifecycle_script(slot, content)

    # =========================================================================
    # Build
    # =========================================================================

    @property
    def output_path(self) -> Path:
        """Destination of the ``.deb`` file."""
        return self.output_dir / self.metadata.deb_filename

    def build(self, token: CancellationToken | None = None) -> Path:
        """Run the build synchronously.

        Args:
            token: Cancellation token checked throughout the build.

        Returns:
            Path of the created ``.deb``.

        Raises:
            PkgInstallError: On any fatal condition (see module docstring).
        """
        token = token or CancellationToken()
        if self.state != BuildState.CREATED:
            msg = f"Builder already ran (state: {self.state.value})"
            raise PkgInstallError(msg)

        try:
            self._set_state(BuildState.WALKING)
            self._walk(token)

            queued = self.symlink_processor.snapshot()
            if queued:
                self._set_state(BuildState.AWAITING_SYMLINK_SCRIPT)
                logger.info("Creating postinst block for %d deferred symlink(s)", len(queued))
                existing = self.scripts.get(LifecycleScript.POSTINST)
                if existing and existing.strip():
                    content = existing.rstrip("\n") + "\n\n" + render_symlink_script(queued, include_shebang=False)
                else:
                    content = render_symlink_script(queued)
                self.set_lifecycle_script(LifecycleScript.POSTINST, content)

            if self.symlink_failures:
                logger.warning("%d symlink(s) could not be queued", len(self.symlink_failures))

            token.raise_if_cancelled("before writing control files")
            self._write_control_dir(self._installed_size())

            self._set_state(BuildState.AUDITING)
            token.raise_if_cancelled("before audit")
            self.path_validator.validate_package(self.staging_dir)

            self._set_state(BuildState.ARCHIVING)
            token.raise_if_cancelled("before archiving")
            output = self.archiver.archive(self.staging_dir, self.output_path, timeout=token.remaining())

            self._set_state(BuildState.DONE)
            logger.info("Package built: %s", output)
            return output
        except Exception:
            self._set_state(BuildState.FAILED)
            raise
        finally:
            self.cleanup()

    def build_with_timeout(self, timeout: float | None = None) -> Path:
        """Run build() on a worker thread with a wall-clock budget.

        On timeout the token is cancelled, the worker is awaited until it
        observes the cancellation, and the staging directory is removed.

        Args:
            timeout: Budget in seconds. Defaults to ``options.timeout_seconds``.

        Raises:
            BuildTimeoutError: If the build exceeds its budget.
            PkgInstallError: Any other build failure.
        """
        budget = timeout if timeout is not None else self.options.timeout_seconds
        token = CancellationToken(budget)

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="pkginstall-build") as executor:
            future = executor.submit(self.build, token)
            try:
                return future.result(timeout=budget)
            except TimeoutError:
                token.cancel()
                if future.exception() is None:
                    logger.debug("Build finished after the deadline, discarding result")
                self.cleanup()
                msg = f"Package build timed out after {budget} seconds"
                raise BuildTimeoutError(msg) from None
            except BuildCancelledError as e:
                msg = f"Package build timed out after {budget} seconds"
                raise BuildTimeoutError(msg) from e

    def cleanup(self) -> None:
        """Remove the staging directory."""
        if not self.staging_dir.exists():
            return
        try:
            shutil.rmtree(self.staging_dir)
            logger.debug("Removed staging directory %s", self.staging_dir)
        except OSError as e:
            logger.warning("Failed to remove staging directory %s: %s", self.staging_dir, e)

    # =========================================================================
    # Walk and staging
    # =========================================================================

    def _set_state(self, state: BuildState) -> None:
        logger.debug("Build state: %s -> %s", self.state.value, state.value)
        self.state = state

    def _is_excluded(self, path: str) -> bool:
        return any(is_under(path, excluded) for excluded in self._exclude_dirs)

    def _walk(self, token: CancellationToken) -> None:
        for dirpath, dirnames, filenames in os.walk(self.source_dir):
            current = Path(dirpath)

            kept: list[str] = []
            for name in sorted(dirnames):
                path = current / name
                if self._is_excluded(str(path)):
                    logger.debug("Excluded directory: %s", path)
                elif path.is_symlink():
                    logger.warning("Skipping symlinked directory: %s", path)
                else:
                    kept.append(name)
            dirnames[:] = kept

            entries = [(name, True) for name in kept] + [(name, False) for name in sorted(filenames)]
            for name, is_dir in entries:
                path = current / name
                if not is_dir and self._is_excluded(str(path)):
                    continue
                token.raise_if_cancelled(f"walking {path}")
                self._stage_entry(path, is_dir, token)

    def _stage_entry(self, src: Path, is_dir: bool, token: CancellationToken) -> None:
        original = "/" + src.relative_to(self.source_dir).as_posix()

        transformed, needs_symlink = self.path_mapper.transform(original)
        self.path_validator.validate_path(transformed)
        self.path_validator.validate_path_traversal(transformed)
        self.path_validator.warn_about_home(transformed)

        if needs_symlink and not is_dir and not self.options.disable_symlinks:
            self._queue_symlink(original, transformed)

        target = self.staging_dir / transformed.lstrip("/")
        try:
            if is_dir:
                target.mkdir(parents=True, exist_ok=True)
                # Owner keeps write access so children can be staged
                os.chmod(target, stat.S_IMODE(src.stat().st_mode) | stat.S_IRWXU)
            else:
                target.parent.mkdir(mode=0o755, parents=True, exist_ok=True)
                self._copy_file(src, target, token)
        except OSError as e:
            msg = f"Failed to stage {src} at {transformed}: {e}"
            raise PkgInstallError(msg) from e

        logger.debug("Staged %s -> %s", original, transformed)

    def _queue_symlink(self, original: str, transformed: str) -> None:
        try:
            self.symlink_processor.process_path(original, transformed)
        except (SymlinkError, PolicyViolationError, TransformationError) as e:
            if self.options.effective_symlink_failure_policy == SymlinkFailurePolicy.FAIL_FAST:
                raise
            logger.warning("Failed to queue symlink for %s: %s", original, e)
            self.symlink_failures.append(f"{original}: {e}")

    def _copy_file(self, src: Path, dst: Path, token: CancellationToken) -> None:
        with open(src, "rb") as fin, open(dst, "wb") as fout:
            while chunk := fin.read(COPY_CHUNK_SIZE):
                token.raise_if_cancelled(f"copying {src}")
                fout.write(chunk)

        src_mode = src.stat().st_mode
        if self.options.preserve_perms:
            mode = stat.S_IMODE(src_mode)
        else:
            mode = 0o755 if src_mode & 0o111 else 0o644
        os.chmod(dst, mode)

    # =========================================================================
    # Control directory
    # =========================================================================

    def _installed_size(self) -> int:
        """Staged payload size in kilobytes, rounded up."""
        total = 0
        for dirpath, dirnames, filenames in os.walk(self.staging_dir):
            if Path(dirpath) == self.staging_dir:
                dirnames[:] = [d for d in dirnames if d != CONTROL_DIR]
            for name in filenames:
                path = Path(dirpath) / name
                if path.is_file() and not path.is_symlink():
                    total += path.stat().st_size
        return (total + 1023) // 1024

    def _write_control_dir(self, installed_size: int) -> None:
        control_dir = self.staging_dir / CONTROL_DIR
        try:
            control_dir.mkdir(mode=0o755, exist_ok=True)

            control = control_dir / "control"
            control.write_text(
                render_control(
                    self.metadata,
                    installed_size=installed_size,
                    conflicts=self.options.conflicts,
                    provides=self.options.provides,
                    homepage=self.options.homepage,
                ),
                encoding="utf-8",
            )
            os.chmod(control, 0o644)

            for slot, content in self.scripts.items():
                script = control_dir / slot.value
                script.write_text(content, encoding="utf-8")
                os.chmod(script, 0o755)
        except OSError as e:
            msg = f"Failed to write {CONTROL_DIR} directory: {e}"
            raise PkgInstallError(msg) from e

        logger.debug("Wrote control file (Installed-Size: %d KB) and %d script(s)", installed_size, len(self.scripts))
