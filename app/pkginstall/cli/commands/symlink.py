"""Symlink management commands.

Creates, lists and validates symlinks under the security model: targets
are validated, existing files are never overwritten without --force,
and sources are expected to live under the secure root.
"""

import json
import os
from enum import Enum
from pathlib import Path
from typing import Annotated

import typer

from pkginstall.cli.display import create_symlink_results_table, create_symlinks_table
from pkginstall.core.errors import PolicyViolationError, SymlinkError, SymlinkFlushError
from pkginstall.security.pathmap import PathMapper
from pkginstall.security.validator import PathValidator
from pkginstall.symlinks.manager import SymlinkManager
from pkginstall.symlinks.processor import SymlinkProcessor, SymlinkRequest
from pkginstall.utils.formatting import console, print_error, print_info, print_success, print_warning

app = typer.Typer(
    help="Manage secure symlinks.",
    no_args_is_help=True,
)


class OutputFormat(str, Enum):
    """Output format options for symlink listing."""

    TABLE = "table"
    JSON = "json"


def _components() -> tuple[PathMapper, PathValidator, SymlinkManager]:
    mapper = PathMapper()
    return mapper, PathValidator(secure_root=mapper.secure_root), SymlinkManager(mapper.symlink_dirs)


@app.command()
def create(
    source: Annotated[Path, typer.Option("--source", "-s", help="File the symlink points to.")],
    target: Annotated[Path, typer.Option("--target", "-t", help="Location of the symlink.")],
    description: Annotated[
        str,
        typer.Option("--description", "-d", help="Purpose of the symlink."),
    ] = "",
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Remove an existing entry at the target first."),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would be done without making changes."),
    ] = False,
) -> None:
    """Create a single symlink after full security validation.

    Examples:
        pkginstall symlink create -s /opt/myapp/bin/myapp -t /usr/local/bin/myapp
        pkginstall symlink create -s /opt/etc/myapp.service -t /etc/systemd/system/myapp.service -n
    """
    source_path = str(source.absolute())
    target_path = str(target.absolute())
    mapper, validator, manager = _components()

    if not os.path.exists(source_path):
        print_error(f"Source does not exist: {source_path}")
        raise typer.Exit(code=1)

    try:
        validator.validate_path(target_path)
        validator.validate_path_traversal(target_path)
    except PolicyViolationError as e:
        print_error(f"Target validation failed: {e} (rule: {e.rule})")
        raise typer.Exit(code=1) from e

    if os.path.lexists(target_path):
        if not force:
            print_error(f"Target already exists: {target_path}")
            print_info("Use --force to replace it.")
            raise typer.Exit(code=1)
        if dry_run:
            print_info(f"Would remove existing target: {target_path}")
            print_info(f"Would create symlink: {target_path} -> {source_path}")
            return
        try:
            os.remove(target_path)
        except OSError as e:
            print_error(f"Failed to remove existing target: {e}")
            raise typer.Exit(code=1) from e
        print_warning(f"Removed existing target: {target_path}")

    processor = SymlinkProcessor(mapper, manager, validator, dry_run=dry_run)
    request = SymlinkRequest(
        source=source_path,
        target=target_path,
        description=description or f"Symlink from {source_path} to {target_path}",
    )

    try:
        processor.queue(request)
        results = processor.flush()
    except SymlinkFlushError as e:
        console.print(create_symlink_results_table(e.results))
        raise typer.Exit(code=1) from e
    except (SymlinkError, PolicyViolationError) as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    console.print(create_symlink_results_table(results))
    if dry_run:
        print_info(f"Would create symlink: {target_path} -> {source_path}")
    else:
        print_success(f"Created symlink: {target_path} -> {source_path}")


@app.command("list")
def list_symlinks(
    output_format: Annotated[
        OutputFormat,
        typer.Option("--format", "-f", help="Output format.", case_sensitive=False),
    ] = OutputFormat.TABLE,
) -> None:
    """List existing symlinks in the symlink-managed directories."""
    _, _, manager = _components()
    existing = manager.find_existing()

    if output_format == OutputFormat.JSON:
        data = [{"target": target, "source": source} for target, source in existing]
        console.print_json(json.dumps({"existing": data}))
        return

    if not existing:
        print_info("No symlinks found in managed directories.")
        return

    rows = [("existing", target, source, "") for target, source in existing]
    console.print(create_symlinks_table(rows))
    console.print(f"\n[muted]Total: {len(existing)} existing symlink(s)[/muted]")


@app.command()
def validate(
    target: Annotated[Path, typer.Argument(help="Existing symlink to validate.")],
    strict: Annotated[
        bool,
        typer.Option("--strict", "-S", help="Treat advisory findings as failures."),
    ] = False,
) -> None:
    """Validate an existing symlink against the security policy.

    Examples:
        pkginstall symlink validate /etc/systemd/system/myapp.service
        pkginstall symlink validate --strict /usr/local/bin/myapp
    """
    target_path = str(target.absolute())
    mapper, validator, manager = _components()

    if not os.path.islink(target_path):
        if os.path.lexists(target_path):
            print_error(f"Target is not a symlink: {target_path}")
        else:
            print_error(f"Target does not exist: {target_path}")
        raise typer.Exit(code=1)

    source_path = os.readlink(target_path)
    if not os.path.isabs(source_path):
        source_path = os.path.normpath(os.path.join(os.path.dirname(target_path), source_path))

    console.print(f"Validating symlink: {target_path} -> {source_path}")
    failed = False

    for label, path in (("Target", target_path), ("Source", source_path)):
        try:
            validator.validate_path(path)
            console.print(f"  [success]OK[/success]   {label} path validation passed")
        except PolicyViolationError as e:
            console.print(f"  [warning]WARN[/warning] {label} path validation failed: {e}")
            failed = failed or strict

    try:
        validator.validate_path_traversal(target_path)
        console.print("  [success]OK[/success]   Traversal check passed")
    except PolicyViolationError as e:
        console.print(f"  [error]FAIL[/error] Traversal check failed: {e}")
        failed = True

    if os.path.exists(source_path):
        console.print("  [success]OK[/success]   Source exists")
    else:
        console.print("  [warning]WARN[/warning] Source does not exist (dangling symlink)")

    if manager.is_allowed(os.path.dirname(target_path)):
        console.print("  [success]OK[/success]   Target directory is symlink-managed")
    else:
        console.print("  [muted]INFO[/muted] Target directory is not symlink-managed")

    if mapper.is_transformed(source_path):
        console.print("  [success]OK[/success]   Source is under the secure root")
    elif mapper.is_system_path(source_path):
        console.print("  [warning]WARN[/warning] Source is a system path (potentially unsafe)")
        failed = failed or strict

    if failed:
        print_error("Symlink validation failed")
        raise typer.Exit(code=1)
    print_success("Symlink appears to be valid")
