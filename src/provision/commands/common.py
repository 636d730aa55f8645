"""Helpers shared by CLI commands."""

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import typer

from ..config import ProvisionConfig, load_config
from ..constants import (
    EXIT_CANCELLED,
    EXIT_CONFIG_ERROR,
    EXIT_FAILURE,
    EXIT_IN_PROGRESS,
    EXIT_OK,
)
from ..core import Orchestrator, ProgressStore, StepRegistry, get_state_dir
from ..errors import (
    CredentialsError,
    DefinitionError,
    ProgressStoreError,
    RunAlreadyInProgressError,
    UnsupportedPlatformError,
)
from ..logging import attach_run_log, get_logger
from ..models import EnvironmentFacts, Run, RunState
from ..output import failure_report, get_output_context, outcome_table, run_summary, was_cancelled
from ..recipes import build_recipe, endpoints, facts_for_target
from ..services import CancelToken, Credentials, detect_facts, gather_credentials

log = get_logger("cli")

# Stand-ins used when only the shape of the graph matters (plan, dry run)
PLACEHOLDER_CREDENTIALS = Credentials(
    admin_password="********",
    db_password="********",
    mysql_root_password="********",
)


def resolve_state_dir() -> Path:
    """State directory from --state-dir, $PROVISION_STATE_DIR or the cwd."""
    return get_state_dir(get_output_context().state_dir)


def load_config_or_exit(state_dir: Path) -> ProvisionConfig:
    """Load config.toml, exiting with the configuration error code if it is invalid."""
    ctx = get_output_context()
    try:
        return load_config(state_dir)
    except (OSError, ValueError) as e:
        # tomllib.TOMLDecodeError and pydantic.ValidationError are ValueErrors
        ctx.error(f"Invalid configuration in {state_dir}: {e}")
        raise typer.Exit(EXIT_CONFIG_ERROR) from None


def facts_or_exit(target: str) -> EnvironmentFacts:
    """Detect the host (``auto``) or synthesize facts for an explicit target."""
    ctx = get_output_context()
    if target != "auto":
        return facts_for_target(target)
    try:
        return detect_facts()
    except UnsupportedPlatformError as e:
        ctx.error(str(e))
        raise typer.Exit(EXIT_CONFIG_ERROR) from None


def credentials_or_exit(facts: EnvironmentFacts, non_interactive: bool) -> Credentials:
    ctx = get_output_context()
    try:
        return gather_credentials(facts.family, non_interactive=non_interactive)
    except CredentialsError as e:
        ctx.error(str(e))
        raise typer.Exit(EXIT_CONFIG_ERROR) from None


def build_or_exit(
    facts: EnvironmentFacts, creds: Credentials, config: ProvisionConfig, state_dir: Path
) -> StepRegistry:
    ctx = get_output_context()
    try:
        return build_recipe(facts, creds, config, state_dir)
    except DefinitionError as e:
        ctx.error(f"Invalid step graph: {e}")
        raise typer.Exit(EXIT_CONFIG_ERROR) from None


@contextmanager
def sigint_cancels(token: CancelToken) -> Iterator[None]:
    """Route Ctrl-C to ``token`` while the block runs.

    The first interrupt requests a graceful stop (the in-flight command is
    terminated, remaining steps stay pending). A second one falls back to
    KeyboardInterrupt.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum, frame) -> None:
        if token.cancelled:
            raise KeyboardInterrupt
        log.warning("Interrupt received; stopping after the current command")
        token.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def exit_code_for(run: Run) -> int:
    if run.state == RunState.COMPLETED:
        return EXIT_OK
    if was_cancelled(run) or (run.state == RunState.ABORTED and not run.failed_steps()):
        return EXIT_CANCELLED
    return EXIT_FAILURE


def report_run(
    run: Run, store: ProgressStore, facts: EnvironmentFacts, config: ProvisionConfig
) -> int:
    """Print the outcome of an executed run and return the process exit code."""
    ctx = get_output_context()
    code = exit_code_for(run)
    log_path = store.log_path(run.run_id)

    if ctx.json_mode:
        data = run_summary(run)
        data["log_path"] = str(log_path)
        if code == EXIT_OK:
            data["endpoints"] = endpoints(facts, config)
        ctx.print_json(data)
        return code

    ctx.print(outcome_table(run))
    if code == EXIT_OK:
        ctx.console.print("\n[bold green]Installation completed successfully![/bold green]")
        for name, url in endpoints(facts, config).items():
            ctx.console.print(f"  {name.replace('_', ' ').title()}: {url}")
    elif code == EXIT_CANCELLED:
        ctx.console.print("\n[yellow]Run cancelled.[/yellow]")
        ctx.console.print(f"  Continue with: provision resume --run {run.run_id}")
    else:
        ctx.console.print("\n[red]Run aborted; failed steps:[/red]")
        for line in failure_report(run):
            ctx.console.print(line, markup=False, highlight=False)
        ctx.console.print(f"  Retry with: provision resume --run {run.run_id}")
    ctx.console.print(f"Log: {log_path}")
    return code


def execute_or_exit(orchestrator: Orchestrator, run: Run, store: ProgressStore) -> Run:
    """Execute a run with Ctrl-C routed to the orchestrator's cancel token."""
    ctx = get_output_context()
    attach_run_log(store.log_path(run.run_id))
    try:
        with sigint_cancels(orchestrator.cancel):
            return orchestrator.execute(run)
    except RunAlreadyInProgressError as e:
        ctx.error(str(e))
        raise typer.Exit(EXIT_IN_PROGRESS) from None
    except ProgressStoreError as e:
        ctx.error(str(e))
        raise typer.Exit(EXIT_FAILURE) from None


def new_orchestrator(
    registry: StepRegistry, state_dir: Path
) -> tuple[Orchestrator, ProgressStore]:
    store = ProgressStore(state_dir)
    return Orchestrator(registry, store, cancel=CancelToken()), store
