"""Resume command: continue an interrupted or aborted run."""

import typer

from ..constants import EXIT_CONFIG_ERROR, EXIT_FAILURE
from ..core import ProgressStore
from ..errors import ProgressStoreError
from ..models import Run, RunState
from ..output import get_output_context
from ..recipes import recipe_name
from .common import (
    build_or_exit,
    credentials_or_exit,
    execute_or_exit,
    facts_or_exit,
    load_config_or_exit,
    new_orchestrator,
    report_run,
    resolve_state_dir,
)


def find_run(store: ProgressStore, run_id: str | None) -> Run:
    """Load ``run_id``, or the newest in-progress run, or the newest aborted one."""
    ctx = get_output_context()
    try:
        if run_id is not None:
            run = store.load(run_id)
            if run is None:
                ctx.error(f"Run not found: {run_id}")
                raise typer.Exit(EXIT_FAILURE)
            return run
        run = store.latest(RunState.IN_PROGRESS) or store.latest(RunState.ABORTED)
    except ProgressStoreError as e:
        ctx.error(str(e))
        raise typer.Exit(EXIT_FAILURE) from None
    if run is None:
        ctx.error("No run to resume. Start one with: provision install")
        raise typer.Exit(EXIT_FAILURE)
    return run


def resume(
    run: str | None = typer.Option(
        None,
        "--run",
        "-r",
        help="Run ID (defaults to the latest in-progress, then aborted, run)",
    ),
    non_interactive: bool = typer.Option(
        False,
        "--non-interactive",
        help="Read credentials from PROVISION_* environment variables only",
    ),
) -> None:
    """Resume a run, re-verifying steps that were interrupted."""
    ctx = get_output_context()
    state_dir = resolve_state_dir()
    config = load_config_or_exit(state_dir)
    stored = find_run(ProgressStore(state_dir), run)

    if stored.state == RunState.COMPLETED:
        ctx.success(
            f"Run {stored.run_id} already completed; nothing to do",
            {"run_id": stored.run_id, "state": stored.state.value},
        )
        return

    facts = facts_or_exit("auto")
    if recipe_name(facts.family) != stored.recipe:
        ctx.error(f"Run {stored.run_id} uses recipe '{stored.recipe}', not this host's")
        raise typer.Exit(EXIT_CONFIG_ERROR)

    creds = credentials_or_exit(facts, non_interactive)
    registry = build_or_exit(facts, creds, config, state_dir)
    orchestrator, store = new_orchestrator(registry, state_dir)

    resumed = orchestrator.prepare_resume(stored)
    ctx.print(f"[bold]Resuming:[/bold] {resumed.run_id}")
    executed = execute_or_exit(orchestrator, resumed, store)
    raise typer.Exit(report_run(executed, store, facts, config))
