"""Build command implementation.

Builds a .deb from a source tree, using pkginstall.toml when present and
command-line flags as overrides.
"""

from pathlib import Path
from typing import Annotated, Any

import typer
from pydantic import ValidationError

from pkginstall.core.config import (
    DEFAULT_CONFIG_NAME,
    BuildOptions,
    PackageSection,
    ProjectConfig,
    load_config,
)
from pkginstall.core.errors import ConfigError, PkgInstallError, PolicyViolationError
from pkginstall.debian.builder import Builder
from pkginstall.utils.formatting import console, print_error, print_info, print_success, print_warning

app = typer.Typer(
    help="Build a Debian package from a source tree.",
    invoke_without_command=True,
)


def _load_project(config_path: Path | None) -> tuple[ProjectConfig | None, Path]:
    """Load the project config, falling back to ./pkginstall.toml if it exists.

    Returns:
        Tuple of (config or None, directory relative paths resolve against).
    """
    path = config_path or Path(DEFAULT_CONFIG_NAME)
    if config_path is None and not path.exists():
        return None, Path.cwd()

    try:
        return load_config(path), path.absolute().parent
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e


def _merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Overlay flags that were actually given on top of config values."""
    merged = dict(base)
    merged.update({k: v for k, v in overrides.items() if v is not None})
    return merged


def _report_forced_scripts(builder: Builder) -> None:
    """Always surface findings of scripts accepted despite failing validation."""
    for result in builder.forced_scripts:
        print_warning(f"{result.script_name} failed validation and was force-accepted")
        for finding in result.errors + result.warnings:
            print_warning(f"  {result.script_name}: {finding}")


def _describe_error(e: PkgInstallError) -> str:
    if isinstance(e, PolicyViolationError):
        return f"{e} (rule: {e.rule})"
    return str(e)


@app.callback(invoke_without_command=True)
def build_package(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help=f"Project config file (default: ./{DEFAULT_CONFIG_NAME})."),
    ] = None,
    source: Annotated[
        Path | None,
        typer.Option("--source", "-s", help="Directory containing the files to package."),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Directory receiving the .deb file."),
    ] = None,
    name: Annotated[str | None, typer.Option("--name", help="Package name.")] = None,
    version: Annotated[str | None, typer.Option("--version", help="Package version.")] = None,
    architecture: Annotated[
        str | None,
        typer.Option("--arch", help="Package architecture (default: host architecture)."),
    ] = None,
    maintainer: Annotated[str | None, typer.Option("--maintainer", help="Maintainer name and email.")] = None,
    description: Annotated[str | None, typer.Option("--description", help="Short package description.")] = None,
    section: Annotated[str | None, typer.Option("--section", help="Archive section.")] = None,
    priority: Annotated[str | None, typer.Option("--priority", help="Package priority.")] = None,
    depends: Annotated[
        list[str] | None,
        typer.Option("--depends", help="Package dependency (repeatable)."),
    ] = None,
    conflicts: Annotated[
        list[str] | None,
        typer.Option("--conflicts", help="Conflicting package (repeatable)."),
    ] = None,
    provides: Annotated[
        list[str] | None,
        typer.Option("--provides", help="Provided virtual package (repeatable)."),
    ] = None,
    homepage: Annotated[str | None, typer.Option("--homepage", help="Project homepage URL.")] = None,
    scripts: Annotated[
        list[Path] | None,
        typer.Option("--script", help="Lifecycle script file, slot inferred from its name (repeatable)."),
    ] = None,
    exclude: Annotated[
        list[str] | None,
        typer.Option("--exclude", "-x", help="Directory to exclude, relative to the source (repeatable)."),
    ] = None,
    preserve_perms: Annotated[
        bool,
        typer.Option("--preserve-perms", help="Keep source file permissions."),
    ] = False,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="High script security level, symlink failures are fatal."),
    ] = False,
    disable_symlinks: Annotated[
        bool,
        typer.Option("--disable-symlinks", help="Do not create deferred symlinks."),
    ] = False,
    ignore_script_validation: Annotated[
        bool,
        typer.Option("--ignore-script-validation", help="Force-accept scripts that fail validation."),
    ] = False,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", "-t", help="Build timeout in seconds.", min=1),
    ] = None,
) -> None:
    """Build a Debian package with secure path transformation.

    Every file in the source tree is treated as if installed at its
    relative path (e.g. SOURCE/etc/myapp.conf -> /etc/myapp.conf) and is
    redirected under the secure root (/opt by default).

    Examples:
        pkginstall build --name myapp --version 1.0 --source ./root
        pkginstall build --config pkginstall.toml --strict
        pkginstall build --script postinst.sh --exclude .git
    """
    if ctx.invoked_subcommand is not None:
        return

    project, base_dir = _load_project(config)
    verbose = bool((ctx.obj or {}).get("verbose", False))

    package_data = _merge(
        project.package.model_dump() if project else {},
        {
            "name": name,
            "version": version,
            "architecture": architecture,
            "maintainer": maintainer,
            "description": description,
            "section": section,
            "priority": priority,
            "depends": tuple(depends) if depends else None,
        },
    )
    build_data = project.build.model_dump() if project else {}
    build_data = _merge(
        build_data,
        {
            "conflicts": tuple(conflicts) if conflicts else None,
            "provides": tuple(provides) if provides else None,
            "homepage": homepage,
            "timeout_seconds": timeout,
            "exclude_dirs": tuple(build_data.get("exclude_dirs", ())) + tuple(exclude or ()),
        },
    )
    for flag, value in (
        ("preserve_perms", preserve_perms),
        ("strict", strict),
        ("disable_symlinks", disable_symlinks),
        ("ignore_script_validation", ignore_script_validation),
        ("verbose", verbose),
    ):
        if value:
            build_data[flag] = True

    try:
        metadata = PackageSection.model_validate(package_data).to_metadata()
        options = BuildOptions.model_validate(build_data)
    except (ValidationError, ValueError) as e:
        print_error(f"Invalid package settings: {e}")
        raise typer.Exit(code=1) from e

    source_dir = source or base_dir / (project.source if project else ".")
    output_dir = output or base_dir / (project.output if project else ".")
    script_files = [base_dir / s for s in (project.script_files if project else ())] + list(scripts or [])

    try:
        builder = Builder(
            metadata,
            source_dir,
            output_dir,
            options=options,
            mapper_config=project.mapper if project else None,
            security_policy=project.security if project else None,
            script_policy=project.scripts if project else None,
        )
    except OSError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    if not builder.archiver.is_available():
        builder.cleanup()
        print_error(f"{builder.archiver.executable} not found. Install the dpkg package.")
        raise typer.Exit(code=1)

    print_info(f"Building {metadata.name} {metadata.version} ({metadata.architecture}) from {source_dir}")

    try:
        for script_file in script_files:
            result = builder.load_lifecycle_script(script_file)
            console.print(f"  Script [info]{result.script_name}[/info]: {result.risk_band} risk")
        deb = builder.build_with_timeout(options.timeout_seconds)
    except PkgInstallError as e:
        _report_forced_scripts(builder)
        print_error(_describe_error(e))
        raise typer.Exit(code=1) from e
    except (OSError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e
    finally:
        builder.cleanup()

    _report_forced_scripts(builder)
    if builder.symlink_failures:
        print_warning(f"{len(builder.symlink_failures)} symlink(s) could not be queued (use --verbose for details)")
    print_success(f"Package built: {deb}")
