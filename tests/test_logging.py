"""Tests for logging configuration."""

import io
import logging
from pathlib import Path

import pytest
from rich.logging import RichHandler

from provision.logging import (
    ROOT_LOGGER,
    STEP,
    attach_run_log,
    configure_logging,
    current_log_file,
    get_logger,
)


def rich_handler() -> RichHandler:
    return next(h for h in logging.getLogger(ROOT_LOGGER).handlers if isinstance(h, RichHandler))


class TestConfigureLogging:
    """Tests for configure_logging."""

    @pytest.mark.parametrize(
        ("kwargs", "level"),
        [
            ({}, logging.INFO),
            ({"verbosity": 1}, logging.DEBUG),
            ({"quiet": True, "verbosity": 2}, logging.WARNING),
            ({"debug": True}, logging.DEBUG),
        ],
    )
    def test_console_level(self, kwargs: dict, level: int) -> None:
        configure_logging(stream=io.StringIO(), **kwargs)
        assert rich_handler().level == level

    def test_reconfigure_replaces_console_handler(self) -> None:
        configure_logging(stream=io.StringIO())
        configure_logging(stream=io.StringIO())
        handlers = logging.getLogger(ROOT_LOGGER).handlers
        assert sum(isinstance(h, RichHandler) for h in handlers) == 1

    def test_log_file_attached(self, tmp_path: Path) -> None:
        path = tmp_path / "logs" / "run.log"
        configure_logging(stream=io.StringIO(), log_file=path)
        assert current_log_file() == path.resolve()


class TestRunLog:
    """Tests for the per-run file sink."""

    def test_debug_and_step_banners_written(self, tmp_path: Path) -> None:
        path = tmp_path / "run.log"
        attach_run_log(path)
        log = get_logger("orchestrator")
        log.debug("hidden on console")
        log.step("STEP: %s", "Install dependencies")
        for handler in logging.getLogger(ROOT_LOGGER).handlers:
            handler.flush()

        text = path.read_text()
        assert "hidden on console" in text
        assert "[STEP] provision.orchestrator: STEP: Install dependencies" in text
        assert "=" * 40 in text

    def test_attach_same_path_is_idempotent(self, tmp_path: Path) -> None:
        path = tmp_path / "run.log"
        first = attach_run_log(path)
        assert attach_run_log(path) is first

    def test_attach_new_path_replaces_old(self, tmp_path: Path) -> None:
        attach_run_log(tmp_path / "a.log")
        attach_run_log(tmp_path / "b.log")
        file_handlers = [
            h for h in logging.getLogger(ROOT_LOGGER).handlers if isinstance(h, logging.FileHandler)
        ]
        assert len(file_handlers) == 1
        assert current_log_file() == (tmp_path / "b.log").resolve()

    def test_log_is_append_only(self, tmp_path: Path) -> None:
        path = tmp_path / "run.log"
        path.write_text("previous run\n")
        attach_run_log(path)
        get_logger().info("resumed")
        for handler in logging.getLogger(ROOT_LOGGER).handlers:
            handler.flush()
        assert path.read_text().startswith("previous run\n")


class TestStepLogger:
    """Tests for StepLogger."""

    def test_get_logger_namespaced(self) -> None:
        assert get_logger("runner").logger.name == "provision.runner"
        assert get_logger("provision.store").logger.name == "provision.store"

    def test_bind_prefixes_step(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger=ROOT_LOGGER):
            get_logger("test").bind("install_deps").info("hello")
        assert "[install_deps] hello" in caplog.text

    def test_step_level_name(self) -> None:
        assert logging.getLevelName(STEP) == "STEP"
