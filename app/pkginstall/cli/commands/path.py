"""Path inspection commands."""

from typing import Annotated

import typer
from pydantic import ValidationError

from pkginstall.core.errors import PolicyViolationError, TransformationError
from pkginstall.security.pathmap import PathMapper
from pkginstall.security.policy import MapperConfig
from pkginstall.security.validator import PathValidator
from pkginstall.utils.formatting import console, print_error

app = typer.Typer(
    help="Inspect secure path transformation.",
    no_args_is_help=True,
)


@app.command()
def transform(
    path: Annotated[str, typer.Argument(help="Absolute system path to transform.")],
    secure_root: Annotated[
        str | None,
        typer.Option("--secure-root", "-r", help="Secure root (default: /opt)."),
    ] = None,
) -> None:
    """Show where a system path is redirected and whether it needs a symlink.

    Examples:
        pkginstall path transform /etc/systemd/system/myapp.service
        pkginstall path transform /usr/bin/myapp --secure-root /srv/secure
    """
    try:
        config = MapperConfig(secure_root=secure_root) if secure_root else MapperConfig()
    except ValidationError as e:
        print_error(f"Invalid secure root: {e.errors()[0]['msg']}")
        raise typer.Exit(code=1) from e
    mapper = PathMapper(config)

    try:
        transformed, needs_symlink = mapper.transform(path)
    except TransformationError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e

    validator = PathValidator(secure_root=mapper.secure_root)
    try:
        validator.validate_path(transformed)
        validator.validate_path_traversal(transformed)
    except PolicyViolationError as e:
        print_error(f"{e} (rule: {e.rule})")
        raise typer.Exit(code=1) from e

    console.print(f"[muted]{path}[/muted] -> [info]{transformed}[/info]")
    if needs_symlink:
        console.print(f"Deferred symlink required: [warning]{path}[/warning] -> {transformed}")
    else:
        console.print("[muted]No symlink required[/muted]")
