"""Shared test fixtures for provision tests."""

import logging
import os
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from typer.testing import CliRunner

from provision.core import Orchestrator, ProgressStore, StepRegistry
from provision.core.registry import Step
from provision.logging import ROOT_LOGGER
from provision.models import CommandResult
from provision.services import CancelToken


@pytest.fixture
def runner() -> CliRunner:
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Create temporary state directory."""
    d = tmp_path / ".provision"
    d.mkdir()
    return d


@pytest.fixture
def store(state_dir: Path) -> ProgressStore:
    return ProgressStore(state_dir)


@pytest.fixture(autouse=True)
def _detach_file_logs() -> Generator[None, None, None]:
    """Remove per-run file sinks attached during a test."""
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove PROVISION_* variables inherited from the developer's shell."""
    for key in list(os.environ):
        if key.startswith("PROVISION_"):
            monkeypatch.delenv(key)


def result(exit_code: int = 0, stderr: str = "", command: str = "fake") -> CommandResult:
    """Build a CommandResult without running anything."""
    return CommandResult(command=command, exit_code=exit_code, stderr=stderr)


class Recorder:
    """Step action that returns scripted exit codes and counts its calls."""

    def __init__(self, *exit_codes: int) -> None:
        self.exit_codes = list(exit_codes) or [0]
        self.calls = 0

    def __call__(self, ctx) -> CommandResult:
        code = self.exit_codes[min(self.calls, len(self.exit_codes) - 1)]
        self.calls += 1
        return result(code, stderr=f"exit {code}")


@pytest.fixture
def make_orchestrator(
    store: ProgressStore,
) -> Callable[..., Orchestrator]:
    """Build an orchestrator over the given steps that never really sleeps."""

    def factory(*steps: Step, cancel: CancelToken | None = None) -> Orchestrator:
        registry = StepRegistry()
        registry.register_all(steps)
        return Orchestrator(registry, store, cancel=cancel, sleep=lambda seconds: False)

    return factory
