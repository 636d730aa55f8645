"""Logging configuration for provision CLI.

Two sinks: a rich console handler with level-based styling, and an
append-only file handler per run. Step banners use a dedicated STEP level
so they show in both sinks at normal verbosity.
"""

import logging
import sys
from collections.abc import MutableMapping
from enum import IntEnum
from pathlib import Path
from typing import Any, TextIO

from rich.console import Console
from rich.logging import RichHandler

STEP = 25
logging.addLevelName(STEP, "STEP")

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
BANNER = "=" * 40

ROOT_LOGGER = "provision"


class LogLevel(IntEnum):
    """Log level enumeration."""

    QUIET = logging.WARNING
    NORMAL = logging.INFO
    VERBOSE = logging.DEBUG


class StepLogger(logging.LoggerAdapter):
    """Logger adapter adding ``step()`` for step banners.

    Extra context (e.g. the current step name) passed at construction is
    prefixed to every message.
    """

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, Any]:
        step = (self.extra or {}).get("step")
        if step:
            msg = f"[{step}] {msg}"
        return msg, kwargs

    def step(self, msg: str, *args: Any) -> None:
        """Log a step header."""
        if self.isEnabledFor(STEP):
            self.logger.log(STEP, BANNER)
            self.logger.log(STEP, msg, *args)
            self.logger.log(STEP, BANNER)

    def bind(self, step: str) -> "StepLogger":
        """Return a logger whose messages are prefixed with ``step``."""
        return StepLogger(self.logger, {"step": step})


def get_logger(name: str = ROOT_LOGGER) -> StepLogger:
    """Get a step-aware logger under the provision namespace."""
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return StepLogger(logging.getLogger(name), {})


def configure_logging(
    verbosity: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    stream: TextIO | None = None,
    debug: bool = False,
    log_file: Path | None = None,
) -> Console:
    """Configure logging based on CLI options.

    Args:
        verbosity: Number of -v flags (0=normal, 1=verbose, 2+=debug)
        quiet: Suppress non-error output (takes precedence over debug/verbosity)
        no_color: Disable colored output
        stream: Output stream for logs (stderr at call time by default)
        debug: Enable debug logging (equivalent to -vv, ignored if quiet is set)
        log_file: Optional durable log file (always records DEBUG and above)

    Returns:
        Configured Rich console for output

    Note:
        Flag precedence: quiet > debug > verbosity
        - If quiet=True, console level is WARNING regardless of other flags
        - If debug=True (and not quiet), console level is DEBUG
        - Otherwise verbosity determines level: 0=INFO, 1+=DEBUG
    """
    if quiet:
        level = LogLevel.QUIET
    elif debug or verbosity >= 2:
        level = logging.DEBUG
    elif verbosity >= 1:
        level = LogLevel.VERBOSE
    else:
        level = LogLevel.NORMAL

    console = Console(
        file=stream or sys.stderr,
        force_terminal=not no_color,
        no_color=no_color,
    )

    handler = RichHandler(
        console=console,
        show_time=debug or verbosity >= 2,
        show_path=debug or verbosity >= 2,
    )
    handler.setLevel(level)

    logger = logging.getLogger(ROOT_LOGGER)
    for existing in list(logger.handlers):
        if isinstance(existing, RichHandler):
            logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)

    if log_file is not None:
        attach_run_log(log_file)

    return console


def attach_run_log(path: Path) -> logging.FileHandler:
    """Add an append-only file sink for the provision logger.

    Any file sink previously attached for a different path is detached.

    Args:
        path: Log file path (parent directories are created)

    Returns:
        The attached handler
    """
    logger = logging.getLogger(ROOT_LOGGER)
    resolved = str(path.resolve())
    for existing in list(logger.handlers):
        if isinstance(existing, logging.FileHandler):
            if existing.baseFilename == resolved:
                return existing
            logger.removeHandler(existing)
            existing.close()

    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    return handler


def current_log_file() -> Path | None:
    """Return the path of the attached file sink, if any."""
    for handler in logging.getLogger(ROOT_LOGGER).handlers:
        if isinstance(handler, logging.FileHandler):
            return Path(handler.baseFilename)
    return None
