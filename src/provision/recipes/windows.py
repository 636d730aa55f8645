"""ESET PROTECT On-Prem on Windows (all-in-one MSI)."""

import shutil
import tempfile
from pathlib import Path

from ..config import ProvisionConfig
from ..constants import DOWNLOAD_TIMEOUT, INSTALLER_TIMEOUT, PROBE_TIMEOUT
from ..core.context import StepContext
from ..core.readiness import readiness_step
from ..core.registry import Step
from ..errors import FatalExecutionError
from ..models import CommandResult, EnvironmentFacts, ErrorKind
from ..services.credentials import Credentials
from .actions import file_at_least

MSI_REBOOT_REQUIRED = 3010
MSI_ANOTHER_INSTALL_RUNNING = 1618
MSI_FATAL_ERROR = 1603
GIB = 1024**3


def classify_msi_exit(result: CommandResult) -> ErrorKind:
    """Only "another installation is in progress" is worth retrying."""
    if result.exit_code == MSI_ANOTHER_INSTALL_RUNNING:
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def msiexec_args(
    msi: Path, log_path: Path, creds: Credentials, install_dir: Path | None = None
) -> list[str]:
    """Arguments for an unattended msiexec install (passwords are redacted in logs)."""
    args = [
        "/i",
        str(msi),
        "/qn",
        "/l*v",
        str(log_path),
        "ADDLOCAL=ALL",
        f"CONSOLEPASSWORD={creds.admin_password.get_secret_value()}",
        f"DBPASSWORD={creds.db_password.get_secret_value()}",
    ]
    if install_dir is not None:
        args.append(f"INSTALLDIR={install_dir}")
    return args


def free_space_gb(path: Path) -> float:
    return shutil.disk_usage(path).free / GIB


def windows_endpoints(facts: EnvironmentFacts, config: ProvisionConfig) -> dict[str, str]:
    return {"server_console": f"https://{facts.primary_ip}:{config.server.console_port}"}


def build_windows_steps(
    facts: EnvironmentFacts,
    creds: Credentials,
    config: ProvisionConfig,
    state_dir: Path,
) -> list[Step]:
    """Build the Windows installation graph."""
    win = config.windows
    download_dir = win.download_dir or Path(tempfile.gettempdir())
    msi_path = download_dir / win.msi_url.rsplit("/", 1)[-1]
    msi_log = state_dir / "logs" / "msiexec.log"
    system_drive = Path(download_dir.anchor or "C:\\")

    def prerequisites_met(ctx: StepContext) -> bool:
        return facts.is_admin and free_space_gb(system_drive) >= win.min_free_gb

    def check_prerequisites(ctx: StepContext) -> None:
        if not facts.is_admin:
            raise FatalExecutionError("This program must be run as Administrator")
        ctx.log.info("Administrator privileges: OK")
        free = free_space_gb(system_drive)
        ctx.log.info("Free disk space on %s: %.2f GB", system_drive, free)
        if free < win.min_free_gb:
            ctx.log.warning("Low disk space. Recommended minimum: %d GB", win.min_free_gb)

    def download_msi(ctx: StepContext) -> CommandResult:
        download_dir.mkdir(parents=True, exist_ok=True)
        result = ctx.run(
            ["curl.exe", "-fL", "-o", str(msi_path), win.msi_url], timeout=DOWNLOAD_TIMEOUT
        )
        if not result.ok:
            msi_path.unlink(missing_ok=True)
        return result

    def server_service_exists(ctx: StepContext) -> bool:
        return ctx.succeeds(["sc", "query", win.service], timeout=PROBE_TIMEOUT)

    def install_msi(ctx: StepContext) -> CommandResult:
        msi_log.parent.mkdir(parents=True, exist_ok=True)
        ctx.log.info("Installation in progress; detailed log: %s", msi_log)
        result = ctx.run(
            ["msiexec", *msiexec_args(msi_path, msi_log, creds, win.install_dir)],
            timeout=INSTALLER_TIMEOUT,
        )
        if result.exit_code == MSI_REBOOT_REQUIRED:
            ctx.log.warning("Installation succeeded; a reboot is required to complete it")
        elif result.exit_code == MSI_FATAL_ERROR:
            ctx.log.error("msiexec reported a fatal error; see %s", msi_log)
        return result

    def server_running(ctx: StepContext) -> bool:
        result = ctx.run(["sc", "query", win.service], timeout=PROBE_TIMEOUT)
        return result.ok and "RUNNING" in result.stdout

    retry = config.retry.policy()
    return [
        Step(
            name="check_prerequisites",
            action=check_prerequisites,
            check=prerequisites_met,
            description="Check prerequisites",
        ),
        Step(
            name="download_msi",
            action=download_msi,
            depends_on=("check_prerequisites",),
            check=lambda ctx: file_at_least(msi_path),
            retry=retry,
            description="Download ESET PROTECT installer",
        ),
        Step(
            name="install_msi",
            action=install_msi,
            depends_on=("download_msi",),
            check=server_service_exists,
            retry=config.retry.policy(
                success_exit_codes=frozenset({MSI_REBOOT_REQUIRED}),
                classify=classify_msi_exit,
            ),
            description="Install ESET PROTECT On-Prem",
        ),
        readiness_step(
            "verify_services",
            server_running,
            depends_on=("install_msi",),
            timeout=win.ready_timeout,
            interval=win.ready_interval,
            description="Verify installation",
        ),
    ]
