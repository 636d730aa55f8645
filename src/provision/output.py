"""Output formatting for provision CLI.

User-facing results (tables, summaries, failure reports) go through the
OutputContext; diagnostics go through logging.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from .models import ErrorKind, Run, RunState, StepOutcome, StepState

STATE_STYLES = {
    StepState.PENDING: "dim",
    StepState.RUNNING: "cyan",
    StepState.SUCCEEDED: "green",
    StepState.FAILED: "red",
    StepState.SKIPPED: "yellow",
}
RUN_STYLES = {
    RunState.IN_PROGRESS: "cyan",
    RunState.COMPLETED: "green",
    RunState.ABORTED: "red",
}


@dataclass
class OutputContext:
    """Context for output formatting."""

    console: Console
    json_mode: bool = False
    dry_run: bool = False
    state_dir: Path | None = None

    def print(self, message: Any, style: str | None = None) -> None:
        """Print message (or a rich renderable) respecting output mode."""
        if not self.json_mode:
            self.console.print(message, style=style)

    def print_json(self, data: dict[str, Any]) -> None:
        """Print JSON data."""
        if self.json_mode:
            print(json.dumps(data, indent=2, default=str))

    def result(self, data: dict[str, Any], message: str = "") -> None:
        """Print result in appropriate format."""
        if self.json_mode:
            self.print_json(data)
        elif message:
            self.console.print(message)

    def error(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Print error in appropriate format."""
        if self.json_mode:
            self.print_json({"error": message, **(data or {})})
        else:
            self.console.print(f"[red]Error: {message}[/red]")

    def success(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Print success message in appropriate format."""
        if self.json_mode:
            self.print_json({"success": message, **(data or {})})
        else:
            self.console.print(f"[green]{message}[/green]")


def describe_state(outcome: StepOutcome) -> str:
    """Human-readable state, e.g. ``skipped (satisfied)``."""
    if outcome.state == StepState.SKIPPED and outcome.skip_reason is not None:
        return f"skipped ({outcome.skip_reason.value})"
    if outcome.state == StepState.FAILED and outcome.last_error is not None:
        return f"failed ({outcome.last_error.kind.value})"
    return outcome.state.value


def outcome_table(run: Run) -> Table:
    """Per-step table of a run."""
    style = RUN_STYLES[run.state]
    table = Table(title=f"Run {run.run_id} [{style}]{run.state.value}[/{style}]")
    table.add_column("Step")
    table.add_column("State")
    table.add_column("Attempts", justify="right")
    table.add_column("Duration", justify="right")
    for outcome in run.outcomes:
        duration = ""
        if outcome.started_at and outcome.ended_at:
            duration = f"{(outcome.ended_at - outcome.started_at).total_seconds():.1f}s"
        state_style = STATE_STYLES[outcome.state]
        table.add_row(
            outcome.step,
            f"[{state_style}]{describe_state(outcome)}[/{state_style}]",
            str(outcome.attempts),
            duration,
        )
    return table


def failure_report(run: Run) -> list[str]:
    """One block per failed step: step, attempt, stderr tail and log path."""
    lines: list[str] = []
    for outcome in run.failed_steps():
        error = outcome.last_error
        if error is None:
            lines.append(f"{outcome.step}: failed")
            continue
        lines.append(f"{outcome.step}: {error.message} (attempt {error.attempt})")
        if error.stderr_tail:
            lines.extend(f"    {line}" for line in error.stderr_tail.splitlines())
        if error.log_path:
            lines.append(f"    log: {error.log_path}")
    return lines


def was_cancelled(run: Run) -> bool:
    return any(
        o.last_error is not None and o.last_error.kind == ErrorKind.CANCELLED
        for o in run.failed_steps()
    )


def run_summary(run: Run) -> dict[str, Any]:
    """JSON-friendly summary of a run."""
    return {
        "run_id": run.run_id,
        "recipe": run.recipe,
        "state": run.state.value,
        "resumed_from": run.resumed_from,
        "steps": [
            {
                "step": o.step,
                "state": o.state.value,
                "skip_reason": o.skip_reason.value if o.skip_reason else None,
                "attempts": o.attempts,
                "error": o.last_error.model_dump(mode="json") if o.last_error else None,
            }
            for o in run.outcomes
        ],
    }


# Global output context (set by cli.py main callback)
_ctx: OutputContext | None = None


def get_output_context() -> OutputContext:
    """Get the current output context.

    Returns a default OutputContext if not yet initialized by CLI.
    """
    if _ctx is None:
        return OutputContext(Console())
    return _ctx


def set_output_context(ctx: OutputContext) -> None:
    """Set the global output context. Called by CLI main callback."""
    global _ctx
    _ctx = ctx
