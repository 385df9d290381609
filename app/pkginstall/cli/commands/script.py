"""Lifecycle script commands."""

from pathlib import Path
from typing import Annotated

import typer

from pkginstall.cli.display import create_script_table, print_risk_summary
from pkginstall.debian.scripts import slot_from_filename
from pkginstall.security.pathmap import PathMapper
from pkginstall.security.policy import ScriptPolicy, SecurityLevel
from pkginstall.security.scripts import ScriptValidator
from pkginstall.utils.formatting import console, print_error

app = typer.Typer(
    help="Validate maintainer lifecycle scripts.",
    no_args_is_help=True,
)


@app.command()
def check(
    file: Annotated[Path, typer.Argument(help="Script file to validate.")],
    level: Annotated[
        SecurityLevel,
        typer.Option("--level", "-l", help="Security level to judge the script at.", case_sensitive=False),
    ] = SecurityLevel.MEDIUM,
    name: Annotated[
        str | None,
        typer.Option("--name", help="Lifecycle slot (default: inferred from the file name)."),
    ] = None,
) -> None:
    """Report the risk of a lifecycle script and exit non-zero if it is rejected.

    Examples:
        pkginstall script check debian/postinst
        pkginstall script check setup.sh --name postinst --level high
    """
    if name is None:
        try:
            name = slot_from_filename(file).value
        except ValueError:
            name = file.name

    try:
        content = file.read_text(encoding="utf-8")
    except OSError as e:
        print_error(f"Cannot read script: {e}")
        raise typer.Exit(code=1) from e

    validator = ScriptValidator(ScriptPolicy(security_level=level), path_mapper=PathMapper())
    result = validator.validate(name, content)

    if result.errors or result.warnings:
        console.print(create_script_table(result))
    print_risk_summary(result)

    if not result.valid:
        raise typer.Exit(code=1)
