"""Shared Rich display functions for validation results and symlinks."""

from rich.table import Table

from pkginstall.security.scripts import MAX_REPORTED_RISK, ScriptValidationResult
from pkginstall.symlinks.processor import SymlinkResult
from pkginstall.utils.formatting import console

_RISK_STYLES = {"Low": "risk_low", "Medium": "risk_medium", "High": "risk_high"}


def create_script_table(result: ScriptValidationResult) -> Table:
    """Create a Rich table listing the findings of a script validation.

    Errors are listed before warnings.

    Args:
        result: Validation result to display.

    Returns:
        Rich Table with Severity and Finding columns.
    """
    table = Table(
        title=f"Script Findings: {result.script_name}",
        show_header=True,
        header_style="bold_header",
        border_style="border",
    )
    table.add_column("Severity", width=9, justify="center")
    table.add_column("Finding")

    for error in result.errors:
        table.add_row("[error]error[/error]", error)
    for warning in result.warnings:
        table.add_row("[warning]warning[/warning]", f"[muted]{warning}[/muted]")

    return table


def print_risk_summary(result: ScriptValidationResult) -> None:
    """Print the risk band, score and verdict of a script validation."""
    style = _RISK_STYLES[result.risk_band]
    verdict = "[success]valid[/success]" if result.valid else "[error]invalid[/error]"
    console.print()
    console.print(
        f"Risk: [{style}]{result.risk_band}[/{style}] "
        f"(score {result.reported_risk}/{MAX_REPORTED_RISK}), "
        f"{len(result.warnings)} warning(s), {len(result.errors)} error(s): {verdict}"
    )


def create_symlinks_table(rows: list[tuple[str, str, str, str]]) -> Table:
    """Create a Rich table of symlinks.

    Args:
        rows: ``(kind, target, source, description)`` tuples.

    Returns:
        Rich Table configured for symlink display.
    """
    table = Table(
        title="Symlinks",
        show_header=True,
        header_style="bold_header",
        border_style="border",
    )
    table.add_column("Type", width=9)
    table.add_column("Target", no_wrap=True)
    table.add_column("Source", no_wrap=True)
    table.add_column("Description")

    for kind, target, source, description in rows:
        table.add_row(kind, target, f"[info]{source}[/info]", f"[muted]{description}[/muted]")

    return table


def create_symlink_results_table(results: list[SymlinkResult]) -> Table:
    """Create a Rich table of symlink creation results.

    Successful results show "OK" (or "DRY" in dry-run); failed results
    show "FAIL" with the error message.
    """
    table = Table(
        title="Results",
        show_header=True,
        header_style="bold_header",
        border_style="border",
    )
    table.add_column("Status", width=8, justify="center")
    table.add_column("Target", no_wrap=True)
    table.add_column("Source", no_wrap=True)
    table.add_column("Message")

    for result in results:
        if not result.success:
            status = "[error]FAIL[/error]"
            message = result.error or "Unknown error"
        elif result.dry_run:
            status = "[info]DRY[/info]"
            message = "Would be created"
        else:
            status = "[success]OK[/success]"
            message = result.request.description

        table.add_row(status, result.request.target, result.request.source, f"[muted]{message}[/muted]")

    return table
