"""Init command implementation.

Creates a starter pkginstall.toml for the current project.
"""

import re
from pathlib import Path
from typing import Annotated

import typer

from pkginstall.core.config import DEFAULT_CONFIG_NAME, PackageSection, ProjectConfig, save_config
from pkginstall.core.errors import ConfigError
from pkginstall.utils.formatting import console, print_error, print_info, print_success, print_warning

app = typer.Typer(
    help="Create a starter pkginstall.toml.",
    invoke_without_command=True,
)


def _default_name(directory: Path) -> str:
    """Derive a Debian-compatible package name from a directory name."""
    name = re.sub(r"[^a-z0-9.+-]+", "-", directory.name.lower()).strip("-.+")
    return name or "package"


@app.callback(invoke_without_command=True)
def init_config(
    ctx: typer.Context,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Output path for the config file."),
    ] = None,
    name: Annotated[
        str | None,
        typer.Option("--name", help="Package name (default: current directory name)."),
    ] = None,
    version: Annotated[str, typer.Option("--version", help="Initial package version.")] = "0.1.0",
    maintainer: Annotated[str, typer.Option("--maintainer", help="Maintainer name and email.")] = "",
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite an existing config file."),
    ] = False,
) -> None:
    """Write a pkginstall.toml with package metadata and default settings.

    Examples:
        pkginstall init
        pkginstall init --name myapp --maintainer "Jane Doe <jane@example.com>"
        pkginstall init --output packaging/pkginstall.toml --force
    """
    if ctx.invoked_subcommand is not None:
        return

    output_path = output or Path(DEFAULT_CONFIG_NAME)

    if output_path.exists():
        if not force:
            print_error(f"Config already exists: {output_path}")
            print_info("Use --force to overwrite or specify a different path with --output.")
            raise typer.Exit(code=1)
        print_warning(f"Overwriting existing config: {output_path}")

    package_name = name or _default_name(output_path.absolute().parent)
    config = ProjectConfig(
        source="root",
        output="dist",
        package=PackageSection(
            name=package_name,
            version=version,
            maintainer=maintainer,
            description=f"{package_name} packaged with pkginstall",
        ),
    )

    try:
        saved = save_config(config, output_path)
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    console.print()
    console.print("[bold]Project[/bold]")
    console.print(f"  Package: [info]{package_name}[/info] {version}")
    console.print(f"  Source: [muted]{config.source}/[/muted]  Output: [muted]{config.output}/[/muted]")
    console.print()
    print_success(f"Config written to {saved}")
