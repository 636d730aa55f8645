"""Tests for output formatting."""

import io
import json

from rich.console import Console

from provision.models import (
    ErrorInfo,
    ErrorKind,
    Run,
    RunState,
    SkipReason,
    StepOutcome,
    StepState,
)
from provision.output import (
    OutputContext,
    describe_state,
    failure_report,
    outcome_table,
    run_summary,
    was_cancelled,
)


def render(renderable) -> str:
    output = io.StringIO()
    Console(file=output, force_terminal=False, width=200).print(renderable)
    return output.getvalue()


def aborted_run() -> Run:
    return Run(
        run_id="20260101-000000-linux",
        recipe="linux",
        state=RunState.ABORTED,
        outcomes=[
            StepOutcome(step="update_packages", state=StepState.SUCCEEDED, attempts=1),
            StepOutcome(
                step="install_deps",
                state=StepState.FAILED,
                attempts=2,
                last_error=ErrorInfo(
                    kind=ErrorKind.TRANSIENT,
                    message="Exited with 100: apt-get install -y mysql-server",
                    attempt=2,
                    exit_code=100,
                    stderr_tail="E: Unable to locate package\nE: giving up",
                    log_path="/var/lib/provision/logs/20260101-000000-linux.log",
                ),
            ),
            StepOutcome(
                step="configure_mysql", state=StepState.SKIPPED, skip_reason=SkipReason.BLOCKED
            ),
        ],
    )


class TestOutputContext:
    """Tests for OutputContext."""

    def test_print_in_normal_mode(self) -> None:
        output = io.StringIO()
        ctx = OutputContext(console=Console(file=output, force_terminal=False))
        ctx.print("Hello world")
        assert "Hello world" in output.getvalue()

    def test_print_suppressed_in_json_mode(self) -> None:
        output = io.StringIO()
        ctx = OutputContext(console=Console(file=output, force_terminal=False), json_mode=True)
        ctx.print("Hello world")
        assert output.getvalue() == ""

    def test_error_in_json_mode(self, capsys) -> None:
        ctx = OutputContext(console=Console(), json_mode=True)
        ctx.error("Run not found", {"run_id": "x"})
        assert json.loads(capsys.readouterr().out) == {"error": "Run not found", "run_id": "x"}

    def test_result_prints_message_in_normal_mode(self) -> None:
        output = io.StringIO()
        ctx = OutputContext(console=Console(file=output, force_terminal=False))
        ctx.result({"a": 1}, "done")
        assert output.getvalue().strip() == "done"


class TestRunRendering:
    """Tests for run tables and reports."""

    def test_describe_state(self) -> None:
        run = aborted_run()
        assert describe_state(run.outcome("update_packages")) == "succeeded"
        assert describe_state(run.outcome("install_deps")) == "failed (transient)"
        assert describe_state(run.outcome("configure_mysql")) == "skipped (blocked)"

    def test_outcome_table(self) -> None:
        text = render(outcome_table(aborted_run()))
        assert "20260101-000000-linux" in text
        assert "aborted" in text
        assert "skipped (blocked)" in text
        assert "install_deps" in text

    def test_failure_report(self) -> None:
        lines = failure_report(aborted_run())
        assert lines[0] == (
            "install_deps: Exited with 100: apt-get install -y mysql-server (attempt 2)"
        )
        assert "    E: giving up" in lines
        assert lines[-1].endswith("20260101-000000-linux.log")

    def test_run_summary(self) -> None:
        summary = run_summary(aborted_run())
        assert summary["state"] == "aborted"
        steps = {s["step"]: s for s in summary["steps"]}
        assert steps["configure_mysql"]["skip_reason"] == "blocked"
        assert steps["install_deps"]["error"]["exit_code"] == 100
        json.dumps(summary)

    def test_was_cancelled(self) -> None:
        assert not was_cancelled(aborted_run())
        run = Run(
            run_id="r",
            state=RunState.ABORTED,
            outcomes=[
                StepOutcome(
                    step="a",
                    state=StepState.FAILED,
                    last_error=ErrorInfo(kind=ErrorKind.CANCELLED, message="Cancelled"),
                )
            ],
        )
        assert was_cancelled(run)
