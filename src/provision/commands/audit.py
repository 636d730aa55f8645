"""Audit command: scan a source tree for secrets and risky configuration."""

from pathlib import Path

import typer
from rich.markup import escape

from ..constants import EXIT_FAILURE
from ..core import Severity, run_audit
from ..output import get_output_context


def audit(
    path: Path = typer.Argument(
        Path("."),
        exists=True,
        file_okay=False,
        help="Directory to audit",
    ),
) -> None:
    """Check a repository for secrets and risky settings before publishing it.

    Exits with status 1 when critical findings are present.
    """
    ctx = get_output_context()
    report = run_audit(path)

    if ctx.json_mode:
        data = report.model_dump(mode="json")
        data["passed"] = report.passed
        ctx.print_json(data)
    else:
        ctx.print(f"[bold]Security audit:[/bold] {report.root}")
        for finding in report.findings:
            marker = "[red]✗[/red]" if finding.severity == Severity.CRITICAL else "[yellow]![/yellow]"
            where = ""
            if finding.path:
                where = f" ({finding.path}:{finding.line})" if finding.line else f" ({finding.path})"
            ctx.print(f"{marker} {escape(f'[{finding.check}] {finding.message}{where}')}")
        ctx.print(
            f"\nCritical: {len(report.critical)}  Warnings: {len(report.warnings)}  "
            f"Files scanned: {report.files_scanned}"
        )
        if report.passed:
            ctx.print("[bold green]Audit passed.[/bold green]")
        else:
            ctx.print("[bold red]Critical issues found; fix them before publishing.[/bold red]")

    if not report.passed:
        raise typer.Exit(EXIT_FAILURE)
