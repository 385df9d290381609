"""Main CLI application entry point.

Defines the Typer application and global options.
"""

import logging
from typing import Annotated

import typer

from pkginstall import __version__
from pkginstall.cli.commands import build, init, path, script, symlink

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

app = typer.Typer(
    name="pkginstall",
    help="Build Debian packages that stay out of sensitive system locations.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"pkginstall version {__version__}")
        raise typer.Exit()


def setup_logging(verbose: bool) -> None:
    """Route library logging to stderr; advisories only show when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.ERROR,
        format=LOG_FORMAT,
        force=True,
    )


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Show progress, advisories and debug output.",
        ),
    ] = False,
) -> None:
    """pkginstall - secure Debian package builder.

    Redirects package contents from system directories into a secure
    root, validates every path and maintainer script, and installs
    deferred symlinks from a generated postinst script.
    """
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


app.add_typer(build.app, name="build")
app.add_typer(init.app, name="init")
app.add_typer(symlink.app, name="symlink")
app.add_typer(script.app, name="script")
app.add_typer(path.app, name="path")


if __name__ == "__main__":
    app()
