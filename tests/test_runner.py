"""Tests for the external command runner."""

import logging
import sys
import threading

import pytest

from provision.errors import InvalidCommandError
from provision.services.runner import (
    MASK,
    CancelToken,
    CommandRunner,
    format_command,
    redact_args,
)

PY = sys.executable


@pytest.fixture
def cmd_runner() -> CommandRunner:
    return CommandRunner()


class TestRedaction:
    """Tests for argument redaction."""

    def test_key_value_masked(self) -> None:
        args = ["--db-admin-password=hunter2", "DBPASSWORD=x", "--db-user=era"]
        assert redact_args(args) == [
            f"--db-admin-password={MASK}",
            f"DBPASSWORD={MASK}",
            "--db-user=era",
        ]

    def test_flag_followed_by_value_masked(self) -> None:
        args = ["keytool", "-storepass", "s3cret", "-alias", "tomcat"]
        assert redact_args(args) == ["keytool", "-storepass", MASK, "-alias", "tomcat"]

    def test_keytool_passwords_masked(self) -> None:
        args = ["-storepass", "s3cret", "-keypass", "k3y", "-keystore", "/etc/tomcat.jks"]
        assert redact_args(args) == [
            "-storepass", MASK, "-keypass", MASK, "-keystore", "/etc/tomcat.jks"
        ]

    def test_flags_merely_containing_pass_kept(self) -> None:
        args = ["apt-get", "--bypass-cache", "install", "--compass=north", "mysql-server"]
        assert redact_args(args) == args

    def test_format_command_quotes(self) -> None:
        assert format_command(["echo", "a b", "TOKEN=x"]) == f"echo 'a b' 'TOKEN={MASK}'"


class TestRun:
    """Tests for CommandRunner.run."""

    def test_success_captures_output(self, cmd_runner: CommandRunner) -> None:
        script = "import sys; print('out'); print('err', file=sys.stderr)"
        result = cmd_runner.run([PY, "-c", script])
        assert result.ok
        assert result.exit_code == 0
        assert result.stdout == "out"
        assert result.stderr == "err"

    def test_nonzero_exit_is_a_result(self, cmd_runner: CommandRunner) -> None:
        result = cmd_runner.run(PY, ["-c", "raise SystemExit(3)"])
        assert result.exit_code == 3
        assert not result.ok

    def test_missing_executable(self, cmd_runner: CommandRunner) -> None:
        result = cmd_runner.run("definitely-not-a-real-command-xyz")
        assert result.exit_code == 127
        assert result.stderr

    def test_empty_command_rejected(self, cmd_runner: CommandRunner) -> None:
        with pytest.raises(InvalidCommandError):
            cmd_runner.run([])

    def test_non_string_argument_rejected(self, cmd_runner: CommandRunner) -> None:
        with pytest.raises(InvalidCommandError):
            cmd_runner.run([PY, 3])  # type: ignore[list-item]

    def test_timeout_kills_process(self, cmd_runner: CommandRunner) -> None:
        result = cmd_runner.run([PY, "-c", "import time; time.sleep(30)"], timeout=0.5)
        assert result.timed_out
        assert result.exit_code is None
        assert result.duration < 20

    def test_cancel_terminates_process(self, cmd_runner: CommandRunner) -> None:
        token = CancelToken()
        timer = threading.Timer(0.3, token.cancel)
        timer.start()
        try:
            result = cmd_runner.run([PY, "-c", "import time; time.sleep(30)"], cancel=token)
        finally:
            timer.cancel()
        assert result.cancelled
        assert result.exit_code is None

    def test_input_fed_to_stdin(self, cmd_runner: CommandRunner) -> None:
        result = cmd_runner.run(
            [PY, "-c", "import sys; print(sys.stdin.read().upper())"], input="select 1;"
        )
        assert result.stdout == "SELECT 1;"

    def test_env_overlay(self, cmd_runner: CommandRunner) -> None:
        result = cmd_runner.run(
            [PY, "-c", "import os; print(os.environ['MYSQL_PWD'])"], env={"MYSQL_PWD": "pw"}
        )
        assert result.stdout == "pw"

    def test_command_line_logged_redacted(
        self, cmd_runner: CommandRunner, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="provision"):
            result = cmd_runner.run([PY, "-c", "pass", "--admin-password=hunter2"])
        assert "hunter2" not in caplog.text
        assert "hunter2" not in result.command
        assert MASK in caplog.text

    def test_output_streamed_with_label(
        self, cmd_runner: CommandRunner, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.INFO, logger="provision"):
            cmd_runner.run([PY, "-c", "print('hello')"], label="install_deps")
        assert "[install_deps] hello" in caplog.text


class TestCancelToken:
    """Tests for CancelToken."""

    def test_wait_returns_early_when_cancelled(self) -> None:
        token = CancelToken()
        token.cancel()
        assert token.cancelled
        assert token.wait(10) is True

    def test_wait_times_out(self) -> None:
        assert CancelToken().wait(0.01) is False
