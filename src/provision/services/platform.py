"""Host detection and per-family platform profiles.

Everything here is computed once per invocation, before the step graph is
built. Recipes receive the resulting EnvironmentFacts and PlatformProfile
values and never look at the host themselves.
"""

import os
import platform
import shlex
import shutil
import socket
from collections.abc import Callable
from pathlib import Path

from ..errors import UnsupportedPlatformError
from ..logging import get_logger
from ..models import EnvironmentFacts, PlatformFamily, PlatformProfile

log = get_logger("platform")

OS_RELEASE = Path("/etc/os-release")

DEBIAN_IDS = {"ubuntu", "debian"}
RHEL_IDS = {"rhel", "centos", "rocky", "almalinux"}
FEDORA_IDS = {"fedora"}

JAVA_HOME_CANDIDATES = (
    Path("/usr/lib/jvm/java-11-openjdk-amd64"),
    Path("/usr/lib/jvm/java-11-openjdk"),
    Path("/usr/lib/jvm/jre-11-openjdk"),
    Path("/usr/lib/jvm/java-11"),
    Path("/usr/lib/jvm/java-1.11.0-openjdk"),
    Path("/usr/lib/jvm/jre-11"),
)

DEBIAN_PACKAGES = (
    "xvfb",
    "xauth",
    "cifs-utils",
    "krb5-user",
    "ldap-utils",
    "snmp",
    "lshw",
    "openssl",
    "mysql-server",
    "unixodbc",
    "odbcinst",
    "openjdk-11-jdk",
    "wget",
    "tar",
)
RHEL_PACKAGES = (
    "xorg-x11-server-Xvfb",
    "xorg-x11-xauth",
    "cifs-utils",
    "krb5-workstation",
    "openldap-clients",
    "net-snmp-utils",
    "lshw",
    "openssl",
    "mysql-server",
    "unixODBC",
    "java-11-openjdk",
    "java-11-openjdk-devel",
    "wget",
    "tar",
)

Which = Callable[[str], str | None]


def parse_os_release(text: str) -> dict[str, str]:
    """Parse os-release ``KEY=value`` lines (values may be shell-quoted)."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, raw = line.split("=", 1)
        try:
            parts = shlex.split(raw)
        except ValueError:
            parts = [raw.strip("\"'")]
        values[key] = parts[0] if parts else ""
    return values


def classify(os_id: str, which: Which = shutil.which) -> tuple[PlatformFamily, str]:
    """Map an os-release ID to a family and package manager.

    Unknown IDs fall back to whichever package manager is installed.

    Raises:
        UnsupportedPlatformError: If no known package manager is available
    """
    os_id = os_id.lower()
    if os_id in DEBIAN_IDS:
        return PlatformFamily.DEBIAN, "apt-get"
    if os_id in RHEL_IDS:
        return PlatformFamily.RHEL, "dnf" if which("dnf") else "yum"
    if os_id in FEDORA_IDS:
        return PlatformFamily.FEDORA, "dnf"

    log.warning("OS '%s' is not officially tested; guessing from the package manager", os_id)
    for manager, family in (
        ("apt-get", PlatformFamily.DEBIAN),
        ("dnf", PlatformFamily.RHEL),
        ("yum", PlatformFamily.RHEL),
    ):
        if which(manager):
            return family, manager
    raise UnsupportedPlatformError(f"Cannot determine package manager for OS: {os_id}")


def profile_for(family: PlatformFamily, package_manager: str | None = None) -> PlatformProfile:
    """Return the platform profile of a family."""
    if family == PlatformFamily.DEBIAN:
        return PlatformProfile(
            family=family,
            package_manager=package_manager or "apt-get",
            packages=DEBIAN_PACKAGES,
            package_query=("dpkg", "-s"),
            mysql_service="mysql",
            mysql_config=Path("/etc/mysql/my.cnf"),
            conflicting_repo_files=(Path("/etc/apt/sources.list.d/mysql.list"),),
            java_home_candidates=JAVA_HOME_CANDIDATES,
        )
    if family in (PlatformFamily.RHEL, PlatformFamily.FEDORA):
        return PlatformProfile(
            family=family,
            package_manager=package_manager or "dnf",
            packages=RHEL_PACKAGES,
            package_query=("rpm", "-q"),
            mysql_service="mysqld",
            mysql_config=Path("/etc/my.cnf"),
            conflicting_repo_files=(Path("/etc/yum.repos.d/mysql-community.repo"),),
            java_home_candidates=JAVA_HOME_CANDIDATES,
        )
    return PlatformProfile(family=PlatformFamily.WINDOWS, package_manager=package_manager or "")


def detect_java_home(
    candidates: tuple[Path, ...] = JAVA_HOME_CANDIDATES, which: Which = shutil.which
) -> Path | None:
    """Find a Java 11 home: well-known directories first, then ``java`` on PATH."""
    for path in candidates:
        if path.is_dir():
            return path
    java = which("java")
    if java:
        return Path(java).resolve().parent.parent
    return None


def primary_ip() -> str:
    """Best-effort primary IPv4 address (no packets are sent)."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("192.0.2.1", 9))
            return s.getsockname()[0]
    except OSError:
        return "127.0.0.1"


def is_admin() -> bool:
    """True when running as root or as a Windows administrator."""
    if hasattr(os, "geteuid"):
        return os.geteuid() == 0
    try:
        import ctypes

        return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
    except (AttributeError, OSError):
        return False


def detect_facts(
    os_release: Path = OS_RELEASE,
    system: str | None = None,
    which: Which = shutil.which,
) -> EnvironmentFacts:
    """Inspect the host.

    Args:
        os_release: Path to the os-release file (Linux)
        system: Override for ``platform.system()``
        which: Executable lookup (injectable for tests)

    Returns:
        Facts describing the host

    Raises:
        UnsupportedPlatformError: If the host cannot be mapped to a family
    """
    system = system or platform.system()
    hostname = socket.gethostname()

    if system == "Windows":
        return EnvironmentFacts(
            os_id="windows",
            os_name="Windows",
            os_version=platform.version(),
            family=PlatformFamily.WINDOWS,
            hostname=hostname,
            primary_ip=primary_ip(),
            is_admin=is_admin(),
        )

    if not os_release.exists():
        raise UnsupportedPlatformError(f"Cannot detect OS version: {os_release} not found")

    release = parse_os_release(os_release.read_text())
    os_id = release.get("ID", "")
    family, manager = classify(os_id, which)
    profile = profile_for(family, manager)
    facts = EnvironmentFacts(
        os_id=os_id,
        os_name=release.get("NAME", os_id),
        os_version=release.get("VERSION_ID", ""),
        family=family,
        package_manager=manager,
        java_home=detect_java_home(profile.java_home_candidates, which),
        hostname=hostname,
        primary_ip=primary_ip(),
        is_admin=is_admin(),
    )
    log.info("Detected OS: %s %s (%s, %s)", facts.os_name, facts.os_version, family.value, manager)
    return facts
