"""Install command: provision ESET PROTECT on this host."""

import re

import typer

from ..constants import EXIT_CONFIG_ERROR
from ..models import PlatformFamily
from ..output import get_output_context
from ..recipes import recipe_name
from .common import (
    PLACEHOLDER_CREDENTIALS,
    build_or_exit,
    credentials_or_exit,
    execute_or_exit,
    facts_or_exit,
    load_config_or_exit,
    new_orchestrator,
    report_run,
    resolve_state_dir,
)
from .plan import validate_target

RUN_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def validate_run_id(value: str | None) -> str | None:
    if value is not None and not RUN_ID_RE.match(value):
        raise typer.BadParameter("may only contain letters, digits, '.', '_' and '-'")
    return value


def install(
    target: str = typer.Option(
        "auto",
        "--target",
        "-t",
        callback=validate_target,
        help="Expected platform (auto detects the current host)",
    ),
    run_id: str | None = typer.Option(
        None,
        "--run-id",
        callback=validate_run_id,
        help="Run ID (generated when omitted)",
    ),
    non_interactive: bool = typer.Option(
        False,
        "--non-interactive",
        help="Read credentials from PROVISION_* environment variables only",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show the steps that would run without touching the host",
    ),
) -> None:
    """Install ESET PROTECT On-Prem with its prerequisites.

    Steps whose effect is already present are skipped. When a step fails,
    its dependents are skipped as blocked while independent steps still run;
    the run can be continued later with 'provision resume'.
    """
    ctx = get_output_context()
    state_dir = resolve_state_dir()
    config = load_config_or_exit(state_dir)

    if dry_run or ctx.dry_run:
        facts = facts_or_exit(target)
        registry = build_or_exit(facts, PLACEHOLDER_CREDENTIALS, config, state_dir)
        order = registry.topological_order()
        if ctx.json_mode:
            ctx.print_json({"dry_run": True, "steps": [step.name for step in order]})
            return
        ctx.console.print(
            f"[cyan][DRY RUN][/cyan] Would run recipe '{recipe_name(facts.family)}' "
            f"({len(order)} steps):"
        )
        for step in order:
            ctx.console.print(f"  {step.name}: {step.title}")
        ctx.console.print(f"  State directory: {state_dir}")
        return

    facts = facts_or_exit("auto")
    if target != "auto" and facts.family.value != target:
        ctx.error(f"--target {target} does not match this host ({facts.family.value})")
        raise typer.Exit(EXIT_CONFIG_ERROR)
    if facts.family != PlatformFamily.WINDOWS and not facts.is_admin:
        ctx.error("This command must be run as root")
        raise typer.Exit(EXIT_CONFIG_ERROR)

    creds = credentials_or_exit(facts, non_interactive)
    registry = build_or_exit(facts, creds, config, state_dir)
    orchestrator, store = new_orchestrator(registry, state_dir)

    if run_id is not None and store.run_dir(run_id).exists():
        ctx.error(f"Run {run_id} already exists; continue it with: provision resume --run {run_id}")
        raise typer.Exit(EXIT_CONFIG_ERROR)

    run = orchestrator.new_run(run_id, recipe=recipe_name(facts.family))
    ctx.print(f"[bold]Run:[/bold] {run.run_id}")
    run = execute_or_exit(orchestrator, run, store)
    raise typer.Exit(report_run(run, store, facts, config))
