"""Building blocks shared by recipes.

Probes (``*_installed``, ``service_active``...) are cheap and side-effect
free so they can serve as idempotency checks. Helpers that change the
host go through the step context, so they log, honour the attempt budget
and stop on cancellation.
"""

import shutil
import time
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path

from ..constants import DOWNLOAD_TIMEOUT, PROBE_TIMEOUT, SERVICE_TIMEOUT
from ..core.context import StepContext
from ..errors import TransientExecutionError
from ..models import CommandResult, PlatformProfile

NONINTERACTIVE_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------


def packages_installed(ctx: StepContext, profile: PlatformProfile, packages: Iterable[str]) -> bool:
    """True when every package is installed according to the package database."""
    names = list(packages)
    if not names or not profile.package_query:
        return False
    return ctx.succeeds([*profile.package_query, *names], timeout=PROBE_TIMEOUT)


def service_active(ctx: StepContext, service: str) -> bool:
    return ctx.succeeds(["systemctl", "is-active", "--quiet", service], timeout=PROBE_TIMEOUT)


def unit_exists(ctx: StepContext, service: str) -> bool:
    return ctx.succeeds(["systemctl", "cat", service], timeout=PROBE_TIMEOUT)


def file_contains(path: Path, marker: str) -> bool:
    try:
        return marker in path.read_text(errors="replace")
    except OSError:
        return False


def file_at_least(path: Path, size: int = 1) -> bool:
    """True when ``path`` is a regular file of at least ``size`` bytes."""
    try:
        return path.is_file() and path.stat().st_size >= size
    except OSError:
        return False


def stamp_fresh(path: Path, ttl_hours: float) -> bool:
    """True when the stamp file exists and is younger than ``ttl_hours``."""
    try:
        age = time.time() - path.stat().st_mtime
    except OSError:
        return False
    return age < ttl_hours * 3600


def touch_stamp(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.touch()


def newer_than(path: Path, reference: Path) -> bool:
    """True when ``path`` exists and was modified no earlier than ``reference``."""
    try:
        ref = reference.stat().st_mtime if reference.exists() else 0.0
        return path.stat().st_mtime >= ref
    except OSError:
        return False


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def backup_file(path: Path) -> Path | None:
    """Copy ``path`` to ``<path>.backup.<timestamp>``; None if it does not exist."""
    if not path.exists():
        return None
    backup = path.with_name(f"{path.name}.backup.{datetime.now().strftime('%Y%m%d-%H%M%S')}")
    shutil.copy2(path, backup)
    return backup


def download(
    ctx: StepContext,
    urls: str | Sequence[str],
    dest: Path,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> CommandResult:
    """Download the first reachable URL to ``dest`` with wget.

    Mirrors are tried in order; a partial file from a failed mirror is
    removed before the next one.

    Raises:
        TransientExecutionError: If every mirror failed
    """
    candidates = [urls] if isinstance(urls, str) else list(urls)
    dest.parent.mkdir(parents=True, exist_ok=True)
    result: CommandResult | None = None
    for i, url in enumerate(candidates):
        if i:
            ctx.log.warning("Previous mirror failed, trying %s", url)
        result = ctx.run(["wget", "-q", "-O", str(dest), url], timeout=timeout)
        if result.ok:
            return result
        dest.unlink(missing_ok=True)
    assert result is not None
    raise TransientExecutionError(f"Download failed: {candidates[-1]}", result)


def systemctl(ctx: StepContext, *args: str, check: bool = True) -> CommandResult:
    return ctx.run(["systemctl", *args], timeout=SERVICE_TIMEOUT, check=check)


def remove_tree(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)
