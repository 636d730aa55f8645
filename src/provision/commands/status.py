"""Status and run listing commands."""

import typer
from rich.table import Table

from ..constants import EXIT_FAILURE
from ..core import ProgressStore
from ..errors import ProgressStoreError
from ..models import StepState
from ..output import failure_report, get_output_context, outcome_table, run_summary
from .common import resolve_state_dir


def status(
    run: str | None = typer.Option(
        None,
        "--run",
        "-r",
        help="Run ID (defaults to most recent)",
    ),
) -> None:
    """Show the per-step state of a run."""
    ctx = get_output_context()
    store = ProgressStore(resolve_state_dir())

    if run is None:
        runs = store.list_runs()
        if not runs:
            ctx.error("No runs found. Start one with: provision install")
            raise typer.Exit(EXIT_FAILURE)
        run = runs[0]

    try:
        loaded = store.load(run)
    except ProgressStoreError as e:
        ctx.error(str(e))
        raise typer.Exit(EXIT_FAILURE) from None
    if loaded is None:
        ctx.error(f"Run not found: {run}")
        raise typer.Exit(EXIT_FAILURE)

    if ctx.json_mode:
        data = run_summary(loaded)
        data["log_path"] = str(store.log_path(loaded.run_id))
        ctx.print_json(data)
        return

    ctx.print(outcome_table(loaded))
    if loaded.resumed_from:
        ctx.print(f"Resumed from: {loaded.resumed_from}")
    report = failure_report(loaded)
    if report:
        ctx.print("\n[red]Failures:[/red]")
        for line in report:
            ctx.console.print(line, markup=False, highlight=False)
    ctx.print(f"Log: {store.log_path(loaded.run_id)}")


def runs() -> None:
    """List runs, newest first."""
    ctx = get_output_context()
    store = ProgressStore(resolve_state_dir())

    rows = []
    for run_id in store.list_runs():
        try:
            run = store.load(run_id)
        except ProgressStoreError as e:
            ctx.print(f"[yellow]Skipping {run_id}: {e}[/yellow]")
            continue
        if run is not None:
            rows.append(run)

    if ctx.json_mode:
        ctx.print_json(
            {
                "runs": [
                    {
                        "run_id": r.run_id,
                        "recipe": r.recipe,
                        "state": r.state.value,
                        "updated_at": r.updated_at.isoformat(),
                        "failed": r.count(StepState.FAILED),
                    }
                    for r in rows
                ]
            }
        )
        return

    if not rows:
        ctx.print("No runs found.")
        return

    table = Table(title="Runs")
    table.add_column("Run")
    table.add_column("Recipe")
    table.add_column("State")
    table.add_column("Done", justify="right")
    table.add_column("Updated")
    for r in rows:
        done = sum(1 for o in r.outcomes if o.resolved)
        table.add_row(
            r.run_id,
            r.recipe,
            r.state.value,
            f"{done}/{len(r.outcomes)}",
            r.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    ctx.print(table)
