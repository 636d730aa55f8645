"""Init command implementation."""

import shutil

from ..config import CONFIG_FILE, write_config_template
from ..output import get_output_context
from .common import resolve_state_dir

# Executables the Linux recipe shells out to
LINUX_TOOLS = ("systemctl", "wget", "tar", "mysql", "openssl", "keytool")
WINDOWS_TOOLS = ("msiexec", "curl.exe", "sc")


def init() -> None:
    """Create the state directory and a config.toml template."""
    ctx = get_output_context()
    state_dir = resolve_state_dir()
    config_path = state_dir / CONFIG_FILE

    if ctx.dry_run:
        ctx.console.print("[cyan][DRY RUN][/cyan] Would initialize provision state:")
        ctx.console.print(f"  Create directory: {state_dir}")
        ctx.console.print(f"  Create directory: {state_dir / 'runs'}")
        ctx.console.print(f"  Create directory: {state_dir / 'logs'}")
        if not config_path.exists():
            ctx.console.print(f"  Create config: {config_path}")
        else:
            ctx.console.print(f"  Config already exists: {config_path}")
        return

    state_dir.mkdir(parents=True, exist_ok=True)
    (state_dir / "runs").mkdir(exist_ok=True)
    (state_dir / "logs").mkdir(exist_ok=True)

    created = not config_path.exists()
    if created:
        write_config_template(state_dir)
        ctx.print(f"[green]Created config template:[/green] {config_path}")
    else:
        ctx.print(f"[yellow]Config already exists:[/yellow] {config_path}")

    # Missing tools are reported, not fatal: some are installed by the recipe itself
    tools = WINDOWS_TOOLS if shutil.which("msiexec") else LINUX_TOOLS
    missing = []
    for name in tools:
        if shutil.which(name):
            ctx.print(f"[green]✓[/green] {name}")
        else:
            ctx.print(f"[yellow]?[/yellow] {name}: not found in PATH")
            missing.append(name)

    ctx.result(
        {
            "state_dir": str(state_dir),
            "config": str(config_path),
            "config_created": created,
            "missing_tools": missing,
        },
        "\n[bold green]Provision initialized successfully![/bold green]",
    )
