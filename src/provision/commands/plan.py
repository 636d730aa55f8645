"""Plan command: show the step graph without executing it."""

import typer
from rich.table import Table

from ..output import get_output_context
from ..recipes import TARGETS, recipe_name
from .common import (
    PLACEHOLDER_CREDENTIALS,
    build_or_exit,
    facts_or_exit,
    load_config_or_exit,
    resolve_state_dir,
)


def validate_target(value: str) -> str:
    if value not in TARGETS:
        raise typer.BadParameter(f"must be one of: {', '.join(TARGETS)}")
    return value


def plan(
    target: str = typer.Option(
        "auto",
        "--target",
        "-t",
        callback=validate_target,
        help="Platform to plan for (auto detects the current host)",
    ),
) -> None:
    """Print the steps in execution order with their dependencies."""
    ctx = get_output_context()
    state_dir = resolve_state_dir()
    config = load_config_or_exit(state_dir)
    facts = facts_or_exit(target)
    registry = build_or_exit(facts, PLACEHOLDER_CREDENTIALS, config, state_dir)
    order = registry.topological_order()
    recipe = recipe_name(facts.family)

    if ctx.json_mode:
        ctx.print_json(
            {
                "recipe": recipe,
                "family": facts.family.value,
                "steps": [
                    {
                        "name": step.name,
                        "depends_on": list(step.depends_on),
                        "description": step.title,
                        "max_attempts": step.retry.max_attempts,
                    }
                    for step in order
                ],
            }
        )
        return

    table = Table(title=f"Plan: {recipe} ({facts.family.value})")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Depends on")
    table.add_column("Description")
    for i, step in enumerate(order, start=1):
        table.add_row(str(i), step.name, ", ".join(step.depends_on), step.title)
    ctx.print(table)
