"""Platform profiles and environment facts.

Both are computed once, before the step graph is built, and handed to the
step closures. Nothing in a recipe looks at the host directly to decide
which package names or service names to use.
"""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class PlatformFamily(str, Enum):
    """Supported operating system families."""

    DEBIAN = "debian"
    RHEL = "rhel"
    FEDORA = "fedora"
    WINDOWS = "windows"


class PlatformProfile(BaseModel):
    """Per-family package and service naming.

    Attributes:
        family: Operating system family.
        package_manager: Package manager executable.
        packages: Packages required by the server and web console.
        package_query: Command prefix that exits 0 when all given packages are installed.
        mysql_service: systemd unit name of the MySQL server.
        mysql_config: MySQL configuration file that receives the tuning block.
        conflicting_repo_files: Vendor MySQL repository files that break installation.
        java_home_candidates: Directories probed for a Java 11 installation.
    """

    model_config = ConfigDict(frozen=True)

    family: PlatformFamily
    package_manager: str
    packages: tuple[str, ...] = ()
    package_query: tuple[str, ...] = ()
    mysql_service: str = "mysql"
    mysql_config: Path = Path("/etc/mysql/my.cnf")
    conflicting_repo_files: tuple[Path, ...] = ()
    java_home_candidates: tuple[Path, ...] = ()

    @property
    def update_command(self) -> list[str]:
        return [self.package_manager, "-y", "update"]

    @property
    def upgrade_command(self) -> list[str] | None:
        """Separate upgrade pass; only Debian splits index refresh from upgrade."""
        if self.family == PlatformFamily.DEBIAN:
            return [self.package_manager, "-y", "upgrade"]
        return None

    def install_command(self, packages: list[str] | tuple[str, ...]) -> list[str]:
        return [self.package_manager, "install", "-y", *packages]


class EnvironmentFacts(BaseModel):
    """Immutable snapshot of the host, computed once per invocation.

    Attributes:
        os_id: ``ID`` from /etc/os-release (or "windows").
        os_name: Human-readable OS name.
        os_version: OS version string.
        family: Operating system family.
        package_manager: Package manager executable, if any.
        java_home: Detected Java home directory, if any.
        hostname: Host name.
        primary_ip: First non-loopback IPv4 address, or hostname when unknown.
        is_admin: Running as root / Administrator.
    """

    model_config = ConfigDict(frozen=True)

    os_id: str = Field(description="OS identifier")
    os_name: str = Field(default="", description="OS display name")
    os_version: str = Field(default="", description="OS version")
    family: PlatformFamily = Field(description="OS family")
    package_manager: str | None = Field(default=None, description="Package manager")
    java_home: Path | None = Field(default=None, description="Detected Java home")
    hostname: str = Field(default="localhost", description="Host name")
    primary_ip: str = Field(default="127.0.0.1", description="Primary IPv4 address")
    is_admin: bool = Field(default=False, description="Running with admin privileges")
