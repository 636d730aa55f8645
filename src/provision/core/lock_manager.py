"""Per-run execution locks.

``run.lock`` is created with O_CREAT | O_EXCL, so two processes racing on
the same run cannot both win. A lock left behind by a crash is taken over
once its holder is gone (same host, PID not running) or its heartbeat is
older than STALE_AFTER (any host).
"""

import contextlib
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path

from ..errors import RunAlreadyInProgressError
from ..logging import get_logger
from ..models import Lock

log = get_logger("lock")

LOCK_FILE = "run.lock"
STALE_AFTER = timedelta(hours=1)
TAKEOVER_ATTEMPTS = 3


def lock_path(run_dir: Path) -> Path:
    return run_dir / LOCK_FILE


def _is_pid_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user
        return True
    except OSError:
        return False
    return True


def get_current_lock(run_dir: Path) -> Lock | None:
    """Read the lock of a run directory; None if absent or unreadable."""
    try:
        return Lock.model_validate_json(lock_path(run_dir).read_text())
    except (OSError, ValueError):
        return None


def is_stale_lock(lock: Lock, stale_after: timedelta = STALE_AFTER) -> bool:
    """True when the holder is known dead or has stopped heartbeating."""
    if lock.is_local and not _is_pid_running(lock.pid):
        return True
    return datetime.now() - lock.last_heartbeat > stale_after


def _create_exclusive(path: Path, lock: Lock) -> bool:
    try:
        fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return False
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(lock.model_dump_json(indent=2))
    return True


def _replace(path: Path, lock: Lock) -> None:
    """Rewrite a lock we already hold without ever exposing a partial file."""
    fd, tmp_name = tempfile.mkstemp(prefix=".lock-", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(lock.model_dump_json(indent=2))
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def acquire_lock(run_dir: Path, run_id: str, command: str) -> Lock:
    """Take the execution lock of a run.

    Args:
        run_dir: Run directory (created if missing)
        run_id: Run being executed
        command: CLI command taking the lock, recorded for diagnostics

    Returns:
        The lock now held by this process

    Raises:
        RunAlreadyInProgressError: If a live process holds the lock, or the
            lock file cannot be read or replaced
    """
    run_dir.mkdir(parents=True, exist_ok=True)
    path = lock_path(run_dir)
    lock = Lock(pid=os.getpid(), run_id=run_id, command=command)

    for _ in range(TAKEOVER_ATTEMPTS):
        if _create_exclusive(path, lock):
            return lock

        holder = get_current_lock(run_dir)
        if holder is None:
            # Unreadable, or removed by its holder in the meantime
            continue
        if holder.is_mine:
            _replace(path, lock)
            return lock
        if not is_stale_lock(holder):
            raise RunAlreadyInProgressError(
                f"Run {run_id} already in progress on {holder.hostname} "
                f"(PID {holder.pid}, command: {holder.command})"
            )
        log.warning(
            "Taking over stale lock of run %s (PID %d on %s, last heartbeat %s)",
            run_id,
            holder.pid,
            holder.hostname,
            holder.last_heartbeat.isoformat(timespec="seconds"),
        )
        with contextlib.suppress(FileNotFoundError):
            path.unlink()

    raise RunAlreadyInProgressError(
        f"Failed to acquire lock for run {run_id}; if no provision process is running, "
        f"remove {path}"
    )


def release_lock(run_dir: Path) -> None:
    """Remove the lock if this process holds it."""
    holder = get_current_lock(run_dir)
    if holder is not None and holder.is_mine:
        lock_path(run_dir).unlink(missing_ok=True)


def update_heartbeat(run_dir: Path) -> None:
    """Refresh the heartbeat of a lock held by this process."""
    holder = get_current_lock(run_dir)
    if holder is not None and holder.is_mine:
        holder.last_heartbeat = datetime.now()
        _replace(lock_path(run_dir), holder)
