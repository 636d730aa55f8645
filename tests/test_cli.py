"""CLI integration tests for provision."""

import json
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import Recorder
from typer.testing import CliRunner

from provision import __version__
from provision.cli import app
from provision.commands.common import PLACEHOLDER_CREDENTIALS
from provision.core import AuditReport, ProgressStore, Severity, StepRegistry
from provision.core.registry import Step
from provision.errors import ProgressStoreError, RunAlreadyInProgressError
from provision.models import (
    EnvironmentFacts,
    PlatformFamily,
    Run,
    RunState,
    StepOutcome,
    StepState,
)

DEBIAN_ROOT = EnvironmentFacts(
    os_id="debian", family=PlatformFamily.DEBIAN, is_admin=True, primary_ip="10.0.0.5"
)


def load_json(output: str) -> dict:
    """Extract the JSON document printed to stdout from mixed CLI output."""
    lines = output.splitlines()
    start = next(i for i, line in enumerate(lines) if line.startswith("{"))
    end = max(i for i, line in enumerate(lines) if line.startswith("}"))
    return json.loads("\n".join(lines[start : end + 1]))


def fake_registry(*exit_codes: int) -> StepRegistry:
    """Two-step graph: ``prepare`` then ``deploy`` (which exits with ``exit_codes``)."""
    registry = StepRegistry()
    registry.register(Step(name="prepare", action=Recorder(0), description="Prepare host"))
    registry.register(
        Step(
            name="deploy",
            action=Recorder(*exit_codes),
            depends_on=("prepare",),
            description="Deploy",
        )
    )
    return registry


def invoke(runner: CliRunner, state_dir: Path, *args: str):
    return runner.invoke(app, ["--no-color", "--state-dir", str(state_dir), *args])


class TestVersionCommand:
    """Tests for --version flag."""

    def test_version_shows_version(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"provision {__version__}" in result.stdout

    def test_version_short_flag(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert "provision" in result.stdout


class TestHelpCommand:
    """Tests for --help flag."""

    def test_help_shows_commands(self, runner: CliRunner) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("init", "plan", "install", "resume", "status", "runs", "audit"):
            assert command in result.stdout

    def test_no_args_shows_help(self, runner: CliRunner) -> None:
        """Typer's no_args_is_help returns exit code 2."""
        result = runner.invoke(app, [])
        assert result.exit_code == 2
        assert "Usage:" in result.output


class TestInitCommand:
    """Tests for provision init."""

    def test_init_creates_layout(self, runner: CliRunner, tmp_path: Path) -> None:
        state_dir = tmp_path / "state"
        result = invoke(runner, state_dir, "init")
        assert result.exit_code == 0
        assert (state_dir / "config.toml").exists()
        assert (state_dir / "runs").is_dir()
        assert (state_dir / "logs").is_dir()
        assert "initialized successfully" in result.output

    def test_init_keeps_existing_config(self, runner: CliRunner, state_dir: Path) -> None:
        (state_dir / "config.toml").write_text("# mine\n")
        result = runner.invoke(app, ["--json", "--state-dir", str(state_dir), "init"])
        assert result.exit_code == 0
        data = load_json(result.output)
        assert data["config_created"] is False
        assert (state_dir / "config.toml").read_text() == "# mine\n"

    def test_init_dry_run_touches_nothing(self, runner: CliRunner, tmp_path: Path) -> None:
        state_dir = tmp_path / "state"
        result = runner.invoke(
            app, ["--no-color", "--dry-run", "--state-dir", str(state_dir), "init"]
        )
        assert result.exit_code == 0
        assert "DRY RUN" in result.output
        assert not state_dir.exists()


class TestPlanCommand:
    """Tests for provision plan."""

    def test_plan_json(self, runner: CliRunner, state_dir: Path) -> None:
        result = runner.invoke(
            app, ["--json", "--state-dir", str(state_dir), "plan", "--target", "debian"]
        )
        assert result.exit_code == 0
        data = load_json(result.output)
        assert data["recipe"] == "linux"
        assert data["family"] == "debian"
        names = [s["name"] for s in data["steps"]]
        assert names[0] == "cleanup_mysql_repo"
        assert names.index("secure_mysql") < names.index("install_server")
        install_server = next(s for s in data["steps"] if s["name"] == "install_server")
        assert install_server["max_attempts"] == 1

    def test_plan_windows_table(self, runner: CliRunner, state_dir: Path) -> None:
        result = invoke(runner, state_dir, "plan", "-t", "windows")
        assert result.exit_code == 0
        assert "install_msi" in result.output

    def test_plan_unknown_target(self, runner: CliRunner, state_dir: Path) -> None:
        result = invoke(runner, state_dir, "plan", "--target", "solaris")
        assert result.exit_code == 2

    def test_plan_invalid_config(self, runner: CliRunner, state_dir: Path) -> None:
        (state_dir / "config.toml").write_text("[retry]\nmax_attempts = 0\n")
        result = invoke(runner, state_dir, "plan", "--target", "debian")
        assert result.exit_code == 2
        assert "Invalid configuration" in result.output


class TestInstallCommand:
    """Tests for provision install."""

    def test_dry_run_lists_steps(self, runner: CliRunner, state_dir: Path) -> None:
        result = runner.invoke(
            app,
            ["--json", "--state-dir", str(state_dir), "install", "--dry-run", "-t", "rhel"],
        )
        assert result.exit_code == 0
        data = load_json(result.output)
        assert data["dry_run"] is True
        assert "install_server" in data["steps"]
        assert not (state_dir / "runs").exists()

    def test_invalid_run_id(self, runner: CliRunner, state_dir: Path) -> None:
        result = invoke(runner, state_dir, "install", "--run-id", "../escape")
        assert result.exit_code == 2

    def test_requires_root(self, runner: CliRunner, state_dir: Path) -> None:
        facts = DEBIAN_ROOT.model_copy(update={"is_admin": False})
        with patch("provision.commands.install.facts_or_exit", return_value=facts):
            result = invoke(runner, state_dir, "install")
        assert result.exit_code == 2
        assert "must be run as root" in result.output

    def test_target_mismatch(self, runner: CliRunner, state_dir: Path) -> None:
        with patch("provision.commands.install.facts_or_exit", return_value=DEBIAN_ROOT):
            result = invoke(runner, state_dir, "install", "--target", "rhel")
        assert result.exit_code == 2
        assert "does not match" in result.output

    @pytest.fixture
    def host(self):
        """Pretend to be a Debian host running as root."""
        with (
            patch("provision.commands.install.facts_or_exit", return_value=DEBIAN_ROOT),
            patch(
                "provision.commands.install.credentials_or_exit",
                return_value=PLACEHOLDER_CREDENTIALS,
            ),
        ):
            yield

    @pytest.mark.usefixtures("host")
    def test_successful_install(self, runner: CliRunner, state_dir: Path) -> None:
        with patch("provision.commands.common.build_recipe", return_value=fake_registry(0)):
            result = runner.invoke(
                app, ["--json", "--state-dir", str(state_dir), "install", "--run-id", "r1"]
            )
        assert result.exit_code == 0
        data = load_json(result.output)
        assert data["state"] == "completed"
        assert data["endpoints"]["server_console"] == "https://10.0.0.5:2223"
        assert data["log_path"].endswith("r1.log")
        assert ProgressStore(state_dir).load("r1").state == RunState.COMPLETED

    @pytest.mark.usefixtures("host")
    def test_failed_install_reports_and_exits_1(
        self, runner: CliRunner, state_dir: Path
    ) -> None:
        with patch("provision.commands.common.build_recipe", return_value=fake_registry(7)):
            result = invoke(runner, state_dir, "install", "--run-id", "r1")
        assert result.exit_code == 1
        assert "deploy: Exited with 7" in result.output
        assert "exit 7" in result.output
        assert "provision resume --run r1" in result.output

    @pytest.mark.usefixtures("host")
    def test_existing_run_id_rejected(self, runner: CliRunner, state_dir: Path) -> None:
        (state_dir / "runs" / "r1").mkdir(parents=True)
        with patch("provision.commands.common.build_recipe", return_value=fake_registry(0)):
            result = invoke(runner, state_dir, "install", "--run-id", "r1")
        assert result.exit_code == 2
        assert "already exists" in result.output

    @pytest.mark.usefixtures("host")
    def test_concurrent_run_exits_3(self, runner: CliRunner, state_dir: Path) -> None:
        with (
            patch("provision.commands.common.build_recipe", return_value=fake_registry(0)),
            patch(
                "provision.core.orchestrator.acquire_lock",
                side_effect=RunAlreadyInProgressError("Run r1 already in progress (PID 1)"),
            ),
        ):
            result = invoke(runner, state_dir, "install", "--run-id", "r1")
        assert result.exit_code == 3
        assert "already in progress" in result.output

    @pytest.mark.usefixtures("host")
    def test_repeated_install_without_run_id(self, runner: CliRunner, state_dir: Path) -> None:
        with (
            patch("provision.commands.common.build_recipe", return_value=fake_registry(0)),
            patch("provision.core.run_manager.datetime") as clock,
        ):
            clock.now.return_value = datetime(2026, 10, 17, 17, 34, 41)
            first = invoke(runner, state_dir, "install")
            second = invoke(runner, state_dir, "install")
        assert first.exit_code == 0
        assert second.exit_code == 0
        assert len(ProgressStore(state_dir).list_runs()) == 2

    @pytest.mark.usefixtures("host")
    def test_store_error_exits_1(self, runner: CliRunner, state_dir: Path) -> None:
        with (
            patch("provision.commands.common.build_recipe", return_value=fake_registry(0)),
            patch.object(
                ProgressStore, "save", side_effect=ProgressStoreError("Disk full writing r1")
            ),
        ):
            result = invoke(runner, state_dir, "install", "--run-id", "r1")
        assert result.exit_code == 1
        assert "Disk full" in result.output


class TestResumeCommand:
    """Tests for provision resume."""

    def test_nothing_to_resume(self, runner: CliRunner, state_dir: Path) -> None:
        result = invoke(runner, state_dir, "resume")
        assert result.exit_code == 1
        assert "No run to resume" in result.output

    def test_unknown_run(self, runner: CliRunner, state_dir: Path) -> None:
        result = invoke(runner, state_dir, "resume", "--run", "missing")
        assert result.exit_code == 1
        assert "Run not found: missing" in result.output

    def test_completed_run_is_noop(self, runner: CliRunner, store: ProgressStore) -> None:
        store.save(Run(run_id="done", recipe="linux", state=RunState.COMPLETED))
        result = invoke(runner, store.state_dir, "resume", "--run", "done")
        assert result.exit_code == 0
        assert "nothing to do" in result.output

    def test_resume_aborted_run(self, runner: CliRunner, store: ProgressStore) -> None:
        store.save(
            Run(
                run_id="old",
                recipe="linux",
                state=RunState.ABORTED,
                outcomes=[
                    StepOutcome(step="prepare", state=StepState.SUCCEEDED, attempts=1, seq=1),
                    StepOutcome(step="deploy", state=StepState.FAILED, attempts=1, seq=2),
                ],
            )
        )
        registry = fake_registry(0)
        with (
            patch("provision.commands.resume.facts_or_exit", return_value=DEBIAN_ROOT),
            patch(
                "provision.commands.resume.credentials_or_exit",
                return_value=PLACEHOLDER_CREDENTIALS,
            ),
            patch("provision.commands.common.build_recipe", return_value=registry),
        ):
            result = runner.invoke(app, ["--json", "--state-dir", str(store.state_dir), "resume"])

        assert result.exit_code == 0
        data = load_json(result.output)
        assert data["state"] == "completed"
        assert data["resumed_from"] == "old"
        assert registry.get("prepare").action.calls == 0
        assert registry.get("deploy").action.calls == 1
        assert store.load("old").state == RunState.ABORTED

    def test_recipe_mismatch(self, runner: CliRunner, store: ProgressStore) -> None:
        store.save(Run(run_id="win", recipe="windows"))
        with patch("provision.commands.resume.facts_or_exit", return_value=DEBIAN_ROOT):
            result = invoke(runner, store.state_dir, "resume", "--run", "win")
        assert result.exit_code == 2


class TestStatusCommands:
    """Tests for provision status and provision runs."""

    def test_status_without_runs(self, runner: CliRunner, state_dir: Path) -> None:
        result = invoke(runner, state_dir, "status")
        assert result.exit_code == 1
        assert "No runs found" in result.output

    def test_status_shows_latest(self, runner: CliRunner, store: ProgressStore) -> None:
        store.save(
            Run(
                run_id="20260101-000000-linux",
                recipe="linux",
                outcomes=[StepOutcome(step="prepare", state=StepState.SUCCEEDED, attempts=1)],
            )
        )
        result = runner.invoke(app, ["--json", "--state-dir", str(store.state_dir), "status"])
        assert result.exit_code == 0
        data = load_json(result.output)
        assert data["run_id"] == "20260101-000000-linux"
        assert data["steps"][0]["state"] == "succeeded"

    def test_runs_empty(self, runner: CliRunner, state_dir: Path) -> None:
        result = invoke(runner, state_dir, "runs")
        assert result.exit_code == 0
        assert "No runs found." in result.output

    def test_runs_json(self, runner: CliRunner, store: ProgressStore) -> None:
        store.save(Run(run_id="20260101-000000-linux", recipe="linux"))
        store.save(Run(run_id="20260102-000000-linux", recipe="linux", state=RunState.ABORTED))
        result = runner.invoke(app, ["--json", "--state-dir", str(store.state_dir), "runs"])
        assert result.exit_code == 0
        runs = load_json(result.output)["runs"]
        assert [r["run_id"] for r in runs] == ["20260102-000000-linux", "20260101-000000-linux"]
        assert runs[0]["state"] == "aborted"


class TestAuditCommand:
    """Tests for provision audit."""

    def test_critical_findings_exit_1(self, runner: CliRunner, tmp_path: Path) -> None:
        report = AuditReport(root=str(tmp_path), files_scanned=3)
        report.add("env-files", Severity.CRITICAL, ".env file is tracked", ".env")
        with patch("provision.commands.audit.run_audit", return_value=report):
            result = runner.invoke(app, ["--no-color", "audit", str(tmp_path)])
        assert result.exit_code == 1
        assert "[env-files] .env file is tracked (.env)" in result.output
        assert "Critical: 1" in result.output

    def test_clean_audit_json(self, runner: CliRunner, tmp_path: Path) -> None:
        report = AuditReport(root=str(tmp_path), files_scanned=1)
        with patch("provision.commands.audit.run_audit", return_value=report):
            result = runner.invoke(app, ["--json", "audit", str(tmp_path)])
        assert result.exit_code == 0
        data = load_json(result.output)
        assert data["passed"] is True
        assert data["findings"] == []

    def test_missing_directory(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(app, ["audit", str(tmp_path / "missing")])
        assert result.exit_code == 2
