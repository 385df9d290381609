"""Unit tests for the package builder.

dpkg-deb is never invoked: run_command is patched with a side effect that
records the staged tree before the builder removes it.
"""

import logging
import os
import stat
import time
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from pkginstall.core.cancel import CancellationToken
from pkginstall.core.config import BuildOptions, SymlinkFailurePolicy
from pkginstall.core.errors import (
    BuildCancelledError,
    BuildTimeoutError,
    ExternalToolError,
    NoRuleMatchedError,
    PathTraversalError,
    PkgInstallError,
    RiskThresholdExceededError,
    SymlinkPolicyError,
)
from pkginstall.debian.builder import Builder, BuildState
from pkginstall.debian.package import PackageMetadata
from pkginstall.debian.scripts import LifecycleScript
from pkginstall.security.policy import ScriptPolicy
from pkginstall.utils.shell import CommandResult

RISKY_SCRIPT = "#!/bin/sh\nrm -rf /usr/bin/something\n"

# Flags every line of the generated link_if_absent block.
LINK_BLOCK_POLICY = ScriptPolicy(extra_dangerous_patterns=(r"link_if_absent", r"ln\s+-s", r"mkdir\s+-p"))


def record_staging(store: dict[str, Any]):
    """Side effect for run_command that snapshots the staged tree."""

    def _run(args: list[str], **kwargs: Any) -> CommandResult:
        staging = Path(args[3])
        store["args"] = args
        store["timeout"] = kwargs.get("timeout")
        store["modes"] = {
            p.relative_to(staging).as_posix(): stat.S_IMODE(p.stat().st_mode) for p in staging.rglob("*")
        }
        store["control"] = (staging / "DEBIAN" / "control").read_text()
        postinst = staging / "DEBIAN" / "postinst"
        store["postinst"] = postinst.read_text() if postinst.exists() else None
        return CommandResult(args=tuple(args), stdout="", stderr="", returncode=0)

    return _run


@pytest.fixture
def make_builder(metadata: PackageMetadata, source_tree: Path, tmp_path: Path):
    """Factory creating builders over the shared source tree."""

    def _make(**options: Any) -> Builder:
        return Builder(metadata, source_tree, tmp_path / "dist", options=BuildOptions(**options))

    return _make


class TestBuilderInit:
    """Tests for Builder construction."""

    def test_missing_source(self, metadata: PackageMetadata, tmp_path: Path) -> None:
        """A non-existent source directory is rejected."""
        with pytest.raises(FileNotFoundError):
            Builder(metadata, tmp_path / "missing", tmp_path / "dist")

    def test_source_is_file(self, metadata: PackageMetadata, tmp_path: Path) -> None:
        """The source must be a directory."""
        source = tmp_path / "file"
        source.write_text("x")

        with pytest.raises(NotADirectoryError):
            Builder(metadata, source, tmp_path / "dist")

    def test_creates_output_and_staging(self, make_builder, tmp_path: Path) -> None:
        """Output and staging directories exist after construction."""
        builder = make_builder()
        try:
            assert (tmp_path / "dist").is_dir()
            assert builder.staging_dir.is_dir()
            assert builder.state == BuildState.CREATED
            assert builder.output_path == tmp_path / "dist" / "myapp_1.0.0_amd64.deb"
        finally:
            builder.cleanup()

    def test_strict_raises_script_level(self, make_builder) -> None:
        """strict selects the high security level."""
        builder = make_builder(strict=True)
        try:
            assert builder.script_validator.security_level.value == "high"
        finally:
            builder.cleanup()


class TestBuild:
    """Tests for Builder.build."""

    @patch("pkginstall.debian.archiver.run_command")
    def test_stages_transformed_tree(self, mock_run: MagicMock, make_builder, tmp_path: Path) -> None:
        """Files land under the secure root with normalized modes."""
        store: dict[str, Any] = {}
        mock_run.side_effect = record_staging(store)
        builder = make_builder()

        output = builder.build()

        assert output == tmp_path / "dist" / "myapp_1.0.0_amd64.deb"
        assert builder.state == BuildState.DONE
        modes = store["modes"]
        assert modes["opt/etc/myapp/myapp.conf"] == 0o644
        assert modes["opt/usr/lib/myapp/run.sh"] == 0o755
        assert modes["DEBIAN"] == 0o755
        assert modes["DEBIAN/control"] == 0o644
        assert modes["DEBIAN/postinst"] == 0o755
        assert not any(path.startswith(("etc", "usr")) for path in modes)
        assert store["args"][:3] == ["dpkg-deb", "--build", "--root-owner-group"]

    @patch("pkginstall.debian.archiver.run_command")
    def test_control_file(self, mock_run: MagicMock, make_builder) -> None:
        """Control carries metadata, options and the installed size."""
        store: dict[str, Any] = {}
        mock_run.side_effect = record_staging(store)

        make_builder(conflicts=("oldapp",), homepage="https://example.com").build()

        control = store["control"]
        assert control.startswith("Package: myapp\nVersion: 1.0.0\nArchitecture: amd64\n")
        assert "Conflicts: oldapp\n" in control
        assert "Installed-Size: 1\n" in control
        assert control.endswith("Homepage: https://example.com\n")

    @patch("pkginstall.debian.archiver.run_command")
    def test_postinst_links_desktop_entry(self, mock_run: MagicMock, make_builder) -> None:
        """Files in symlink-managed directories get a deferred link."""
        store: dict[str, Any] = {}
        mock_run.side_effect = record_staging(store)

        builder = make_builder()
        builder.build()

        postinst = store["postinst"]
        assert postinst.startswith("#!/bin/sh\nset -e\n")
        assert (
            "link_if_absent '/opt/usr/share/applications/myapp.desktop' '/usr/share/applications/myapp.desktop'"
            in postinst
        )
        assert builder.scripts[LifecycleScript.POSTINST] == postinst

    @patch("pkginstall.debian.archiver.run_command")
    def test_staging_removed_after_success(self, mock_run: MagicMock, make_builder, dpkg_success) -> None:
        """The staging directory never outlives the build."""
        mock_run.return_value = dpkg_success
        builder = make_builder()

        builder.build()

        assert not builder.staging_dir.exists()

    @patch("pkginstall.debian.archiver.run_command")
    def test_preserve_perms(self, mock_run: MagicMock, make_builder, source_tree: Path) -> None:
        """Source modes are kept verbatim when requested."""
        (source_tree / "etc" / "myapp" / "myapp.conf").chmod(0o600)
        store: dict[str, Any] = {}
        mock_run.side_effect = record_staging(store)

        make_builder(preserve_perms=True).build()

        assert store["modes"]["opt/etc/myapp/myapp.conf"] == 0o600

    @patch("pkginstall.debian.archiver.run_command")
    def test_disable_symlinks(self, mock_run: MagicMock, make_builder) -> None:
        """No postinst is generated when symlinks are disabled."""
        store: dict[str, Any] = {}
        mock_run.side_effect = record_staging(store)

        make_builder(disable_symlinks=True).build()

        assert store["postinst"] is None
        assert "opt/usr/share/applications/myapp.desktop" in store["modes"]

    @patch("pkginstall.debian.archiver.run_command")
    def test_symlinked_file_is_dereferenced(self, mock_run: MagicMock, make_builder, source_tree: Path) -> None:
        """Symlinked files are staged as regular copies."""
        (source_tree / "etc" / "myapp" / "alias.conf").symlink_to(source_tree / "etc" / "myapp" / "myapp.conf")
        store: dict[str, Any] = {}
        mock_run.side_effect = record_staging(store)

        make_builder().build()

        assert store["modes"]["opt/etc/myapp/alias.conf"] == 0o644

    @patch("pkginstall.debian.archiver.run_command")
    def test_symlinked_directory_skipped(
        self, mock_run: MagicMock, make_builder, source_tree: Path, tmp_path: Path, caplog
    ) -> None:
        """Symlinked directories are not followed."""
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "secret.txt").write_text("secret")
        (source_tree / "etc" / "linked").symlink_to(outside)
        store: dict[str, Any] = {}
        mock_run.side_effect = record_staging(store)

        with caplog.at_level(logging.WARNING):
            make_builder().build()

        assert not any("linked" in path for path in store["modes"])
        assert "Skipping symlinked directory" in caplog.text


class TestBuildFailures:
    """Tests for fatal and non-fatal build failures."""

    def test_unmapped_top_level_file(self, make_builder, source_tree: Path) -> None:
        """Paths outside every mapped prefix abort the build."""
        (source_tree / ".git").mkdir()
        (source_tree / ".git" / "config").write_text("[core]\n")
        builder = make_builder()

        with pytest.raises(NoRuleMatchedError):
            builder.build()

        assert builder.state == BuildState.FAILED
        assert not builder.staging_dir.exists()

    @patch("pkginstall.debian.archiver.run_command")
    def test_excluded_directory(self, mock_run: MagicMock, make_builder, source_tree: Path) -> None:
        """Excluded directories are never walked."""
        (source_tree / ".git").mkdir()
        (source_tree / ".git" / "config").write_text("[core]\n")
        store: dict[str, Any] = {}
        mock_run.side_effect = record_staging(store)

        make_builder(exclude_dirs=(".git",)).build()

        assert not any(".git" in path for path in store["modes"])

    def test_encoded_traversal_is_fatal(self, make_builder, source_tree: Path) -> None:
        """An encoded traversal file name aborts the build."""
        (source_tree / "etc" / "%2e%2e").write_text("x")
        builder = make_builder()

        with pytest.raises(PathTraversalError):
            builder.build()

        assert builder.state == BuildState.FAILED
        assert not builder.staging_dir.exists()

    @patch("pkginstall.debian.archiver.run_command")
    def test_forbidden_symlink_is_best_effort(
        self, mock_run: MagicMock, make_builder, source_tree: Path, dpkg_success, caplog
    ) -> None:
        """A symlink into /usr/bin is recorded but does not abort the build."""
        (source_tree / "usr" / "bin").mkdir()
        (source_tree / "usr" / "bin" / "tool").write_text("#!/bin/sh\n")
        mock_run.return_value = dpkg_success
        builder = make_builder()

        with caplog.at_level(logging.WARNING):
            builder.build()

        assert builder.state == BuildState.DONE
        assert len(builder.symlink_failures) == 1
        assert builder.symlink_failures[0].startswith("/usr/bin/tool: ")
        assert "Failed to queue symlink" in caplog.text

    def test_forbidden_symlink_fatal_when_strict(self, make_builder, source_tree: Path) -> None:
        """strict turns symlink queue failures into build failures."""
        (source_tree / "usr" / "bin").mkdir()
        (source_tree / "usr" / "bin" / "tool").write_text("#!/bin/sh\n")
        builder = make_builder(strict=True)

        with pytest.raises(SymlinkPolicyError):
            builder.build()

        assert builder.state == BuildState.FAILED

    def test_fail_fast_policy(self, make_builder, source_tree: Path) -> None:
        """fail_fast can be selected without strict."""
        (source_tree / "usr" / "bin").mkdir()
        (source_tree / "usr" / "bin" / "tool").write_text("#!/bin/sh\n")
        builder = make_builder(symlink_failure_policy=SymlinkFailurePolicy.FAIL_FAST)

        with pytest.raises(SymlinkPolicyError):
            builder.build()

    @patch("pkginstall.debian.archiver.run_command")
    def test_archiver_failure(self, mock_run: MagicMock, make_builder) -> None:
        """dpkg-deb failures fail the build and still clean up."""
        mock_run.return_value = CommandResult(
            args=("dpkg-deb",), stdout="", stderr="dpkg-deb: error: boom\n", returncode=2
        )
        builder = make_builder()

        with pytest.raises(ExternalToolError, match="boom"):
            builder.build()

        assert builder.state == BuildState.FAILED
        assert not builder.staging_dir.exists()

    @patch("pkginstall.debian.archiver.run_command")
    def test_builder_runs_once(self, mock_run: MagicMock, make_builder, dpkg_success) -> None:
        """A second build on the same builder is refused."""
        mock_run.return_value = dpkg_success
        builder = make_builder()
        builder.build()

        with pytest.raises(PkgInstallError, match="already ran"):
            builder.build()

    def test_cancelled_token(self, make_builder) -> None:
        """A cancelled token stops the walk immediately."""
        token = CancellationToken()
        token.cancel()
        builder = make_builder()

        with pytest.raises(BuildCancelledError):
            builder.build(token)

        assert builder.state == BuildState.FAILED
        assert not builder.staging_dir.exists()


class TestLifecycleScripts:
    """Tests for maintainer script handling."""

    def test_invalid_slot(self, make_builder) -> None:
        """Only the four Debian slots are accepted."""
        builder = make_builder()
        try:
            with pytest.raises(ValueError, match="Invalid maintainer script name"):
                builder.set_lifecycle_script("config", "#!/bin/sh\n")
        finally:
            builder.cleanup()

    def test_risky_script_rejected(self, make_builder) -> None:
        """Scripts touching protected paths are rejected."""
        builder = make_builder()
        try:
            with pytest.raises(RiskThresholdExceededError, match="Specific issues") as exc_info:
                builder.set_lifecycle_script("preinst", RISKY_SCRIPT)
        finally:
            builder.cleanup()

        assert exc_info.value.script_name == "preinst"
        assert LifecycleScript.PREINST not in builder.scripts

    def test_risky_script_force_accepted(self, make_builder, caplog) -> None:
        """ignore_script_validation stores the script and records the findings."""
        builder = make_builder(ignore_script_validation=True)
        try:
            with caplog.at_level(logging.WARNING):
                result = builder.set_lifecycle_script("preinst", RISKY_SCRIPT)
        finally:
            builder.cleanup()

        assert not result.valid
        assert builder.forced_scripts == [result]
        assert builder.scripts[LifecycleScript.PREINST] == RISKY_SCRIPT
        assert "Force-accepting preinst" in caplog.text

    def test_load_lifecycle_script(self, make_builder, tmp_path: Path) -> None:
        """The slot is inferred from the file name."""
        script = tmp_path / "prerm.sh"
        script.write_text("#!/bin/sh\necho stopping\n")
        builder = make_builder()
        try:
            result = builder.load_lifecycle_script(script)
        finally:
            builder.cleanup()

        assert result.valid
        assert builder.scripts[LifecycleScript.PRERM] == "#!/bin/sh\necho stopping\n"

    @patch("pkginstall.debian.archiver.run_command")
    def test_user_postinst_is_extended(self, mock_run: MagicMock, make_builder) -> None:
        """The symlink block is appended to an existing postinst."""
        store: dict[str, Any] = {}
        mock_run.side_effect = record_staging(store)
        builder = make_builder()
        builder.set_lifecycle_script("postinst", "#!/bin/sh\nset -e\necho configured\n")

        builder.build()

        postinst = store["postinst"]
        assert postinst.startswith("#!/bin/sh\nset -e\necho configured\n\n")
        assert postinst.count("#!/bin/sh") == 1
        assert "link_if_absent '/opt/usr/share/applications/myapp.desktop'" in postinst

    @patch("pkginstall.debian.archiver.run_command")
    def test_scripts_written_to_control_dir(self, mock_run: MagicMock, make_builder) -> None:
        """Accepted scripts are staged executable."""
        store: dict[str, Any] = {}
        mock_run.side_effect = record_staging(store)
        builder = make_builder(disable_symlinks=True)
        builder.set_lifecycle_script("prerm", "#!/bin/sh\necho bye\n")

        builder.build()

        assert store["modes"]["DEBIAN/prerm"] == 0o755


class TestBuildWithTimeout:
    """Tests for Builder.build_with_timeout."""

    @patch("pkginstall.debian.archiver.run_command")
    def test_completes_within_budget(self, mock_run: MagicMock, make_builder, tmp_path: Path) -> None:
        """A fast build returns the package path and passes the remaining budget on."""
        store: dict[str, Any] = {}
        mock_run.side_effect = record_staging(store)

        output = make_builder().build_with_timeout(30)

        assert output == tmp_path / "dist" / "myapp_1.0.0_amd64.deb"
        assert 0 < store["timeout"] <= 30

    def test_timeout_cancels_worker(self, make_builder) -> None:
        """The worker observes cancellation and staging is removed."""

        def slow_walk(token: CancellationToken) -> None:
            while not token.cancelled:
                time.sleep(0.01)
            token.raise_if_cancelled("walking")

        builder = make_builder()
        with patch.object(Builder, "_walk", side_effect=slow_walk), pytest.raises(BuildTimeoutError, match="timed out"):
            builder.build_with_timeout(0.2)

        assert builder.state == BuildState.FAILED
        assert not os.path.exists(builder.staging_dir)


class TestGeneratedPostinst:
    """The generated symlink script is validated like any other script."""

    def test_rejected_script_aborts_build(
        self, metadata: PackageMetadata, source_tree: Path, tmp_path: Path
    ) -> None:
        """A generated postinst breaching the level fails the build."""
        builder = Builder(metadata, source_tree, tmp_path / "dist", script_policy=LINK_BLOCK_POLICY)

        with pytest.raises(RiskThresholdExceededError) as exc_info:
            builder.build()

        assert exc_info.value.script_name == "postinst"
        assert builder.state == BuildState.FAILED
        assert not builder.staging_dir.exists()
        assert not (tmp_path / "dist" / metadata.deb_filename).exists()

    @patch("pkginstall.debian.archiver.run_command")
    def test_force_accepted_script_is_packaged(
        self, mock_run: MagicMock, metadata: PackageMetadata, source_tree: Path, tmp_path: Path
    ) -> None:
        """ignore_script_validation keeps the generated postinst and records it."""
        store: dict[str, Any] = {}
        mock_run.side_effect = record_staging(store)
        builder = Builder(
            metadata,
            source_tree,
            tmp_path / "dist",
            options=BuildOptions(ignore_script_validation=True),
            script_policy=LINK_BLOCK_POLICY,
        )

        builder.build()

        assert builder.state == BuildState.DONE
        assert [result.script_name for result in builder.forced_scripts] == ["postinst"]
        assert not builder.forced_scripts[0].valid
        assert "link_if_absent '/opt/usr/share/applications/myapp.desktop'" in store["postinst"]
