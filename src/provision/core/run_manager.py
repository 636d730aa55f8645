"""Run identifiers and state directory helpers."""

import os
import re
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from ..constants import STATE_DIR_ENV, STATE_DIR_NAME


def generate_run_id(slug: str | None = None, taken: Callable[[str], bool] | None = None) -> str:
    """Generate run ID in format YYYYMMDD-HHMMSS-<slug>.

    IDs generated within the same second get a ``-2``, ``-3``... suffix
    while ``taken`` reports the candidate as already used.

    Args:
        slug: Optional slug (usually the recipe name)
        taken: Predicate telling whether an ID is already in use

    Returns:
        Generated run ID
    """
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    safe_slug = sanitize_slug(slug) if slug else "run"
    run_id = base = f"{timestamp}-{safe_slug}"
    counter = 2
    while taken is not None and taken(run_id):
        run_id = f"{base}-{counter}"
        counter += 1
    return run_id


def sanitize_slug(name: str) -> str:
    """Convert name to safe slug.

    Args:
        name: Name to sanitize

    Returns:
        Lowercase slug with only alphanumeric and hyphens
    """
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower())
    slug = slug.strip("-")
    return slug[:50] if slug else "unnamed"


def get_state_dir(override: Path | None = None) -> Path:
    """Resolve the state directory.

    Precedence: explicit override, then $PROVISION_STATE_DIR, then
    ./.provision in the current working directory.
    """
    if override is not None:
        return override
    env = os.environ.get(STATE_DIR_ENV)
    if env:
        return Path(env)
    return Path.cwd() / STATE_DIR_NAME


def get_run_dir(state_dir: Path, run_id: str) -> Path:
    """Get run directory path."""
    return state_dir / "runs" / run_id


def get_log_path(state_dir: Path, run_id: str) -> Path:
    """Get the durable log file of a run."""
    return state_dir / "logs" / f"{run_id}.log"


def list_runs(state_dir: Path) -> list[str]:
    """List all run IDs, newest first."""
    runs_dir = state_dir / "runs"
    if not runs_dir.exists():
        return []
    return sorted([d.name for d in runs_dir.iterdir() if d.is_dir()], reverse=True)
