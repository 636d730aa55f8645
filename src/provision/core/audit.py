"""Repository security audit.

Scans a source tree for material that must not be published: tracked
secrets, credentials in history, weak ignore rules and risky permissions.
Git is reached through the command runner; outside a git checkout every
file under the root is scanned and history checks are skipped.
"""

import fnmatch
import ipaddress
import logging
import os
import re
import stat
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from ..logging import get_logger
from ..services.runner import CommandRunner

log = get_logger("audit")

MAX_SCAN_BYTES = 1_000_000
MAX_IP_FINDINGS = 10
HISTORY_DEPTH = 100

API_KEY_RE = re.compile(
    r"sk-[a-zA-Z0-9]{20,}|ghp_[a-zA-Z0-9]{36}|AKIA[0-9A-Z]{16}|AIza[0-9A-Za-z\-_]{35}"
)
PRIVATE_KEY_RE = re.compile(r"BEGIN (RSA |DSA |EC |OPENSSH )?PRIVATE KEY")
PASSWORD_RE = re.compile(r"password\s*=\s*[\"'][^\"']{3,}[\"']", re.IGNORECASE)
PASSWORD_ALLOW_RE = re.compile(
    r"prompt|read|input|your_password|example|changeit|TODO", re.IGNORECASE
)
DOCKER_ENV_PASSWORD_RE = re.compile(r"ENV.*PASSWORD.*=")
DOCKER_ENV_ALLOW_RE = re.compile(r"\$\{.*\}|changeme|your_.*password|example", re.IGNORECASE)
IPV4_RE = re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b")
IP_ALLOW_RE = re.compile(r"localhost|example|TODO|#", re.IGNORECASE)
WORKFLOW_SECRET_RE = re.compile(r"password|token|secret", re.IGNORECASE)
WORKFLOW_ALLOW_RE = re.compile(r"secrets\.|github\.token|GITHUB_TOKEN|description|input")

REQUIRED_GITIGNORE = (
    ".env",
    ".env.*",
    "!.env.example",
    "*.log",
    "logs/",
    ".DS_Store",
    "*.swp",
    "docker/backups/",
)
SENSITIVE_FILES = (
    "*.pem",
    "*.key",
    "*.p12",
    "*.pfx",
    "*.jks",
    "id_rsa",
    "id_dsa",
    ".aws/credentials",
    ".ssh/config",
)
COMPOSE_FILES = ("docker-compose.yml", "docker-compose.yaml", "compose.yml", "compose.yaml")


class Severity(str, Enum):
    """How serious a finding is."""

    CRITICAL = "critical"
    WARNING = "warning"


class Finding(BaseModel):
    """One audit finding."""

    check: str = Field(description="Check that produced the finding")
    severity: Severity = Field(description="Finding severity")
    message: str = Field(description="What was found")
    path: str | None = Field(default=None, description="File involved, relative to the root")
    line: int | None = Field(default=None, description="1-indexed line number")


class AuditReport(BaseModel):
    """Result of auditing one source tree."""

    root: str = Field(description="Audited directory")
    git: bool = Field(default=False, description="Whether git metadata was available")
    files_scanned: int = Field(default=0, description="Number of files scanned")
    findings: list[Finding] = Field(default_factory=list)

    @property
    def critical(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == Severity.CRITICAL]

    @property
    def warnings(self) -> list[Finding]:
        return [f for f in self.findings if f.severity == Severity.WARNING]

    @property
    def passed(self) -> bool:
        """True when there is nothing blocking publication."""
        return not self.critical

    def add(
        self,
        check: str,
        severity: Severity,
        message: str,
        path: str | None = None,
        line: int | None = None,
    ) -> None:
        self.findings.append(
            Finding(check=check, severity=severity, message=message, path=path, line=line)
        )


def _is_env_file(path: str) -> bool:
    return Path(path).name == ".env"


def _matches_sensitive(path: str) -> str | None:
    """Return the sensitive pattern ``path`` matches, if any."""
    name = Path(path).name
    for pattern in SENSITIVE_FILES:
        if "/" in pattern:
            if path == pattern or path.endswith("/" + pattern):
                return pattern
        elif fnmatch.fnmatch(name, pattern):
            return pattern
    return None


def _read_text(path: Path) -> str | None:
    """Read a text file for scanning; None for binaries, large or unreadable files."""
    try:
        if path.stat().st_size > MAX_SCAN_BYTES:
            return None
        data = path.read_bytes()
    except OSError:
        return None
    if b"\0" in data:
        return None
    return data.decode("utf-8", errors="replace")


def _git_files(root: Path, runner: CommandRunner) -> list[str] | None:
    result = runner.run(["git", "ls-files"], cwd=root, timeout=60)
    if not result.ok:
        return None
    return [line for line in result.stdout.splitlines() if line]


def _walk_files(root: Path) -> list[str]:
    files = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d != ".git"]
        for name in filenames:
            files.append(Path(dirpath, name).relative_to(root).as_posix())
    return sorted(files)


def _check_env_files(report: AuditReport, files: list[str]) -> None:
    for path in files:
        if _is_env_file(path):
            report.add("env-files", Severity.CRITICAL, ".env file is tracked", path)


def _check_sensitive_files(report: AuditReport, files: list[str]) -> None:
    for path in files:
        pattern = _matches_sensitive(path)
        if pattern:
            report.add(
                "sensitive-files",
                Severity.CRITICAL,
                f"Sensitive file type tracked ({pattern})",
                path,
            )


def _check_contents(report: AuditReport, root: Path, files: list[str]) -> None:
    """Line-oriented checks: secrets, passwords and public IPs."""
    ip_findings = 0
    for path in files:
        text = _read_text(root / path)
        if text is None:
            continue
        in_docker = path.startswith("docker/")
        is_readme = "README" in Path(path).name.upper()
        for lineno, line in enumerate(text.splitlines(), start=1):
            if API_KEY_RE.search(line):
                report.add("api-keys", Severity.CRITICAL, "API key or token", path, lineno)
            if PRIVATE_KEY_RE.search(line):
                report.add("private-keys", Severity.CRITICAL, "Private key", path, lineno)
            if PASSWORD_RE.search(line) and not PASSWORD_ALLOW_RE.search(line):
                report.add(
                    "passwords", Severity.WARNING, "Possible hardcoded password", path, lineno
                )
            if (
                in_docker
                and DOCKER_ENV_PASSWORD_RE.search(line)
                and not DOCKER_ENV_ALLOW_RE.search(line)
            ):
                report.add(
                    "passwords", Severity.WARNING, "Docker ENV password declaration", path, lineno
                )
            if ip_findings < MAX_IP_FINDINGS and not is_readme and not IP_ALLOW_RE.search(line):
                for match in IPV4_RE.findall(line):
                    if _is_public_ip(match):
                        report.add(
                            "public-ips", Severity.WARNING, f"Public IP address {match}", path,
                            lineno,
                        )
                        ip_findings += 1
                        break


def _is_public_ip(text: str) -> bool:
    try:
        return ipaddress.IPv4Address(text).is_global
    except ValueError:
        return False


def _check_gitignore(report: AuditReport, root: Path) -> None:
    gitignore = root / ".gitignore"
    lines = set(gitignore.read_text().splitlines()) if gitignore.exists() else set()
    for pattern in REQUIRED_GITIGNORE:
        if pattern not in lines:
            report.add(
                "gitignore",
                Severity.CRITICAL,
                f".gitignore should include: {pattern}",
                ".gitignore",
            )


def _check_permissions(report: AuditReport, root: Path, files: list[str]) -> None:
    for path in files:
        try:
            mode = (root / path).stat().st_mode
        except OSError:
            continue
        if mode & stat.S_IWOTH:
            report.add("permissions", Severity.WARNING, "World-writable file", path)
        if path.endswith(".sh") and not mode & stat.S_IXUSR:
            report.add("permissions", Severity.WARNING, "Shell script is not executable", path)


def _check_docker(report: AuditReport, root: Path, files: list[str]) -> None:
    for path in files:
        if Path(path).name not in COMPOSE_FILES:
            continue
        text = _read_text(root / path) or ""
        if re.search(r"privileged.*true", text):
            report.add("docker", Severity.WARNING, "Privileged container", path)
        if re.search(r"network_mode.*host", text):
            report.add("docker", Severity.WARNING, "Host network mode", path)
        example = (root / path).parent / ".env.example"
        if not example.exists():
            report.add(
                "docker",
                Severity.CRITICAL,
                "Missing .env.example template next to compose file",
                path,
            )


def _check_workflows(report: AuditReport, root: Path, files: list[str]) -> None:
    for path in files:
        if not path.startswith(".github/workflows/") or not path.endswith((".yml", ".yaml")):
            continue
        text = _read_text(root / path) or ""
        for lineno, line in enumerate(text.splitlines(), start=1):
            if WORKFLOW_SECRET_RE.search(line) and not WORKFLOW_ALLOW_RE.search(line):
                report.add(
                    "workflows", Severity.WARNING, "Review for hardcoded secret", path, lineno
                )


def _check_go_sum(report: AuditReport, root: Path, files: list[str]) -> None:
    present = set(files)
    for path in files:
        if Path(path).name != "go.mod" or any(p.startswith(".") for p in Path(path).parts):
            continue
        parent = Path(path).parent
        go_sum = (parent / "go.sum").as_posix() if parent != Path(".") else "go.sum"
        if go_sum not in present:
            report.add("dependencies", Severity.CRITICAL, "go.mod without go.sum", path)


def _check_history(report: AuditReport, root: Path, runner: CommandRunner) -> None:
    result = runner.run(
        ["git", "log", "--all", "--full-history", f"-{HISTORY_DEPTH}", "--pretty=format:",
         "--name-only"],
        cwd=root,
        timeout=120,
    )
    if not result.ok:
        log.warning("Could not read git history: %s", result.stderr_tail(3))
        return
    seen: set[str] = set()
    for path in result.stdout.splitlines():
        if path and _is_env_file(path) and path not in seen:
            seen.add(path)
            report.add(
                "history",
                Severity.CRITICAL,
                f".env file in the last {HISTORY_DEPTH} commits",
                path,
            )


def run_audit(root: Path, runner: CommandRunner | None = None) -> AuditReport:
    """Audit a source tree.

    Args:
        root: Repository root
        runner: Command runner used for git (a quiet one by default)

    Returns:
        Report with every finding
    """
    runner = runner or CommandRunner(
        logger=log, stdout_level=logging.DEBUG, stderr_level=logging.DEBUG
    )
    root = root.resolve()
    tracked = _git_files(root, runner)
    files = tracked if tracked is not None else _walk_files(root)
    report = AuditReport(root=str(root), git=tracked is not None, files_scanned=len(files))
    log.info("Auditing %d file(s) under %s", len(files), root)

    _check_env_files(report, files)
    _check_contents(report, root, files)
    _check_gitignore(report, root)
    _check_sensitive_files(report, files)
    _check_permissions(report, root, files)
    _check_docker(report, root, files)
    _check_workflows(report, root, files)
    _check_go_sum(report, root, files)
    if report.git:
        _check_history(report, root, runner)

    log.info(
        "Audit finished: %d critical, %d warning(s)", len(report.critical), len(report.warnings)
    )
    return report
