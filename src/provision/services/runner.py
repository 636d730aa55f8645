"""External command runner.

Runs one program with a timeout, drains stdout/stderr concurrently (one
reader thread per stream, so a chatty child never blocks on a full pipe),
forwards each line to the logger as it arrives, and returns a
``CommandResult``. A nonzero exit is a normal result, not an exception.
"""

import contextlib
import logging
import os
import shlex
import signal
import subprocess
import sys
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import IO

from ..constants import COMMAND_NOT_FOUND_EXIT, TERMINATE_GRACE_SECONDS
from ..errors import InvalidCommandError
from ..logging import StepLogger, get_logger
from ..models import CommandResult

POLL_INTERVAL = 0.1
READER_JOIN_TIMEOUT = 5.0
MASK = "********"
SENSITIVE_MARKERS = ("password", "passwd", "storepass", "keypass", "secret", "token")


class CancelToken:
    """Cooperative cancellation signal shared by the CLI, orchestrator and runner."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True early if cancelled."""
        return self._event.wait(max(seconds, 0.0))


def _is_sensitive(name: str, markers: Sequence[str]) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in markers)


def redact_args(args: Sequence[str], markers: Sequence[str] = SENSITIVE_MARKERS) -> list[str]:
    """Mask credential values in an argument list before it is logged.

    ``KEY=VALUE`` and ``--flag=value`` tokens whose key names a secret get
    their value masked. A bare flag naming a secret (``-storepass x``) masks
    the token that follows it.

    Args:
        args: Argument list as passed to the process
        markers: Case-insensitive substrings identifying secret names

    Returns:
        New list safe for logging
    """
    safe: list[str] = []
    mask_next = False
    for arg in args:
        if mask_next:
            safe.append(MASK)
            mask_next = False
            continue
        if "=" in arg:
            key, _ = arg.split("=", 1)
            if _is_sensitive(key, markers):
                safe.append(f"{key}={MASK}")
                continue
        elif arg.startswith("-") and _is_sensitive(arg, markers):
            mask_next = True
        safe.append(arg)
    return safe


def format_command(argv: Sequence[str], markers: Sequence[str] = SENSITIVE_MARKERS) -> str:
    """Render a redacted, shell-quoted command line."""
    return " ".join(shlex.quote(a) for a in redact_args(argv, markers))


def _build_argv(command: str | Sequence[str], args: Sequence[str]) -> list[str]:
    head = [command] if isinstance(command, str) else list(command)
    argv = [*head, *args]
    if not argv or not argv[0]:
        raise InvalidCommandError("Command must not be empty")
    for item in argv:
        if not isinstance(item, (str, os.PathLike)):
            raise InvalidCommandError(f"Command arguments must be strings, got {item!r}")
    return [os.fspath(a) for a in argv]


def _session_kwargs() -> dict:
    """Start the child in its own process group so the whole tree can be signalled."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _terminate_tree(process: subprocess.Popen) -> None:
    """Terminate the child and everything it spawned."""
    if process.poll() is not None:
        return
    if sys.platform == "win32":
        subprocess.run(
            ["taskkill", "/F", "/T", "/PID", str(process.pid)],
            capture_output=True,
            check=False,
        )
    else:
        with contextlib.suppress(ProcessLookupError, PermissionError):
            os.killpg(process.pid, signal.SIGTERM)
    try:
        process.wait(timeout=TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        if sys.platform != "win32":
            with contextlib.suppress(ProcessLookupError, PermissionError):
                os.killpg(process.pid, signal.SIGKILL)
        process.kill()
        process.wait()


def _drain(stream: IO[str], sink: list[str], emit: Callable[[str], None]) -> None:
    """Read lines until EOF, capturing and forwarding each one."""
    try:
        for line in iter(stream.readline, ""):
            line = line.rstrip("\r\n")
            sink.append(line)
            emit(line)
    finally:
        stream.close()


def _feed(stream: IO[str], data: str) -> None:
    # Child may exit without reading its input
    with contextlib.suppress(BrokenPipeError, OSError):
        stream.write(data)
        stream.close()


class CommandRunner:
    """Runs external programs and captures their results.

    Args:
        logger: Logger receiving the command line and streamed output
        stdout_level: Log level for streamed stdout lines
        stderr_level: Log level for streamed stderr lines
        markers: Secret-name markers used for argument redaction
    """

    def __init__(
        self,
        logger: StepLogger | None = None,
        stdout_level: int = logging.INFO,
        stderr_level: int = logging.WARNING,
        markers: Sequence[str] = SENSITIVE_MARKERS,
    ) -> None:
        self.log = logger or get_logger("runner")
        self.stdout_level = stdout_level
        self.stderr_level = stderr_level
        self.markers = tuple(markers)

    def run(
        self,
        command: str | Sequence[str],
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cwd: Path | None = None,
        input: str | None = None,
        cancel: CancelToken | None = None,
        label: str | None = None,
    ) -> CommandResult:
        """Run a command to completion, timeout, or cancellation.

        Args:
            command: Executable, or a full argv list
            args: Extra arguments appended to ``command``
            env: Variables overlaid on the current environment (never logged)
            timeout: Seconds before the process tree is killed
            cwd: Working directory
            input: Text written to the child's stdin
            cancel: Cancellation token checked while waiting
            label: Prefix for streamed output lines

        Returns:
            CommandResult; ``exit_code`` is None after timeout or cancellation

        Raises:
            InvalidCommandError: If the invocation is malformed
        """
        argv = _build_argv(command, args)
        display = format_command(argv, self.markers)
        prefix = f"[{label or Path(argv[0]).name}] "
        self.log.info("Running: %s", display)

        merged_env = {**os.environ, **env} if env else None
        start = time.monotonic()
        try:
            process = subprocess.Popen(
                argv,
                cwd=cwd,
                env=merged_env,
                stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                bufsize=1,  # Line buffered
                **_session_kwargs(),
            )
        except (FileNotFoundError, NotADirectoryError, PermissionError) as e:
            exit_code = 126 if isinstance(e, PermissionError) else COMMAND_NOT_FOUND_EXIT
            self.log.warning("%sfailed to start: %s", prefix, e)
            return CommandResult(
                command=display,
                exit_code=exit_code,
                stderr=str(e),
                duration=time.monotonic() - start,
            )

        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        assert process.stdout is not None and process.stderr is not None
        threads = [
            threading.Thread(
                target=_drain,
                args=(
                    process.stdout,
                    stdout_lines,
                    lambda line: self.log.log(self.stdout_level, "%s%s", prefix, line),
                ),
                daemon=True,
            ),
            threading.Thread(
                target=_drain,
                args=(
                    process.stderr,
                    stderr_lines,
                    lambda line: self.log.log(self.stderr_level, "%s%s", prefix, line),
                ),
                daemon=True,
            ),
        ]
        if input is not None:
            assert process.stdin is not None
            threads.append(threading.Thread(target=_feed, args=(process.stdin, input), daemon=True))
        for thread in threads:
            thread.start()

        timed_out = False
        cancelled = False
        try:
            while True:
                try:
                    process.wait(timeout=POLL_INTERVAL)
                    break
                except subprocess.TimeoutExpired:
                    pass
                if cancel is not None and cancel.cancelled:
                    cancelled = True
                    self.log.warning("%scancelled, terminating process tree", prefix)
                    _terminate_tree(process)
                    break
                if timeout is not None and time.monotonic() - start > timeout:
                    timed_out = True
                    self.log.warning("%stimed out after %s seconds", prefix, timeout)
                    _terminate_tree(process)
                    break
        finally:
            # Ensure process is terminated on any exception (including KeyboardInterrupt)
            if process.poll() is None:
                _terminate_tree(process)
            for thread in threads:
                thread.join(timeout=READER_JOIN_TIMEOUT)

        duration = time.monotonic() - start
        exit_code = None if timed_out or cancelled else process.returncode
        self.log.debug("%sexit=%s in %.1fs", prefix, exit_code, duration)
        return CommandResult(
            command=display,
            exit_code=exit_code,
            stdout="\n".join(stdout_lines),
            stderr="\n".join(stderr_lines),
            duration=duration,
            timed_out=timed_out,
            cancelled=cancelled,
        )
