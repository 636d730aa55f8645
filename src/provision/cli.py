"""Provision CLI: idempotent, resumable ESET PROTECT installation."""

from pathlib import Path

import typer

from provision import __version__

from .commands import audit, init, install, plan, resume, runs, status
from .constants import STATE_DIR_ENV
from .logging import configure_logging
from .output import OutputContext, set_output_context


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"provision {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="provision",
    help="Idempotent, resumable provisioning of ESET PROTECT On-Prem servers",
    no_args_is_help=True,
)


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase verbosity (-v, -vv)",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress non-error output",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output in JSON format for automation",
    ),
    no_color: bool = typer.Option(
        False,
        "--no-color",
        help="Disable colored output",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Preview effects without applying changes",
    ),
    state_dir: Path | None = typer.Option(
        None,
        "--state-dir",
        envvar=STATE_DIR_ENV,
        help="Directory holding config.toml, runs and logs (default: ./.provision)",
    ),
) -> None:
    """Provision - idempotent ESET PROTECT installer."""
    console = configure_logging(
        verbosity=verbose,
        quiet=quiet,
        no_color=no_color,
    )
    set_output_context(
        OutputContext(console=console, json_mode=json_output, dry_run=dry_run, state_dir=state_dir)
    )


app.command()(init)
app.command()(plan)
app.command()(install)
app.command()(resume)
app.command()(status)
app.command()(runs)
app.command()(audit)


if __name__ == "__main__":
    app()
