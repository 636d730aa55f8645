"""Configuration management for provision."""

import tomllib
from pathlib import Path

import tomli_w
from pydantic import BaseModel, Field

from .core.retry import RetryPolicy

CONFIG_FILE = "config.toml"


class ProjectConfig(BaseModel):
    """Project-level configuration."""

    name: str = "eset-protect"
    work_dir: Path = Field(
        default=Path("/tmp/provision"), description="Scratch directory for downloads"
    )


class MySQLConfig(BaseModel):
    """MySQL server tuning and connection settings."""

    host: str = "localhost"
    port: int = 3306
    config_path: Path | None = Field(
        default=None, description="Override the platform's MySQL config file"
    )
    max_allowed_packet: str = "33M"
    innodb_log_file_size: str = "100M"
    innodb_log_files_in_group: int = 2
    ready_timeout: float = 60.0
    ready_interval: float = 3.0


class ODBCConfig(BaseModel):
    """MySQL Connector/ODBC download and registration."""

    version: str = "8.0.40"
    url: str = (
        "https://dev.mysql.com/get/Downloads/Connector-ODBC/8.0/"
        "mysql-connector-odbc-{version}-linux-glibc2.28-x86-64bit.tar.gz"
    )
    driver_name: str = "MySQL ODBC 8.0 Driver"
    ansi_driver_name: str = "MySQL ODBC 8.0"
    lib_dir: Path = Path("/usr/local/lib")
    bin_dir: Path = Path("/usr/local/bin")

    @property
    def download_url(self) -> str:
        return self.url.format(version=self.version)


class ServerConfig(BaseModel):
    """ESET PROTECT server installer."""

    installer_url: str = (
        "https://download.eset.com/com/eset/apps/business/era/server/linux/latest/"
        "server_linux_x86_64.sh"
    )
    service: str = "eraserver"
    cert_hostname: str = "*"
    console_port: int = 2223
    agent_port: int = 2222
    installer_log: Path = Path("/var/log/eset/RemoteAdministrator/EraServerInstaller.log")
    ready_timeout: float = 60.0
    ready_interval: float = 5.0


class TomcatConfig(BaseModel):
    """Apache Tomcat 9 installation."""

    version: str = "9.0.85"
    url: str = (
        "https://dlcdn.apache.org/tomcat/tomcat-9/v{version}/bin/apache-tomcat-{version}.tar.gz"
    )
    archive_url: str = (
        "https://archive.apache.org/dist/tomcat/tomcat-9/v{version}/bin/"
        "apache-tomcat-{version}.tar.gz"
    )
    home: Path = Path("/opt/tomcat")
    user: str = "tomcat"
    service: str = "tomcat"
    http_port: int = 8080
    ready_timeout: float = 60.0
    ready_interval: float = 5.0

    @property
    def download_urls(self) -> list[str]:
        """Primary mirror first, then the archive mirror."""
        return [
            self.url.format(version=self.version),
            self.archive_url.format(version=self.version),
        ]


class WebConsoleConfig(BaseModel):
    """Web console WAR deployment."""

    war_url: str = (
        "https://download.eset.com/com/eset/apps/business/era/webconsole/latest/era_x64.war"
    )
    min_war_bytes: int = 1_000_000
    deploy_timeout: float = 120.0
    deploy_interval: float = 5.0


class HTTPSConfig(BaseModel):
    """Self-signed HTTPS connector for Tomcat."""

    enabled: bool = True
    port: int = 8443
    keystore_password: str = "changeit"
    validity_days: int = 365
    key_size: int = 2048
    dname_suffix: str = "OU=IT, O=ESET, L=City, S=State, C=US"


class WindowsConfig(BaseModel):
    """Windows MSI installation."""

    msi_url: str = (
        "https://download.eset.com/com/eset/apps/business/era/server/windows/latest/"
        "era_server_x64.msi"
    )
    download_dir: Path | None = Field(
        default=None, description="Where the MSI is saved (default: %TEMP%)"
    )
    install_dir: Path | None = Field(default=None, description="INSTALLDIR for msiexec")
    service: str = "ERA_Server"
    min_free_gb: int = 20
    ready_timeout: float = 120.0
    ready_interval: float = 5.0


class PackagesConfig(BaseModel):
    """Package manager behaviour."""

    cache_ttl_hours: float = Field(
        default=24.0, description="Skip the package index refresh while younger than this"
    )
    extra: list[str] = Field(default_factory=list, description="Additional packages to install")


class RetryConfig(BaseModel):
    """Default retry policy for network-bound steps."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: float = 0.5

    def policy(self, **overrides) -> RetryPolicy:
        """Build a RetryPolicy from these defaults."""
        values = self.model_dump()
        values.update(overrides)
        return RetryPolicy(**values)


class ProvisionConfig(BaseModel):
    """Root configuration for provision."""

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    mysql: MySQLConfig = Field(default_factory=MySQLConfig)
    odbc: ODBCConfig = Field(default_factory=ODBCConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    tomcat: TomcatConfig = Field(default_factory=TomcatConfig)
    webconsole: WebConsoleConfig = Field(default_factory=WebConsoleConfig)
    https: HTTPSConfig = Field(default_factory=HTTPSConfig)
    windows: WindowsConfig = Field(default_factory=WindowsConfig)
    packages: PackagesConfig = Field(default_factory=PackagesConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)


def load_config(state_dir: Path) -> ProvisionConfig:
    """Load config from <state_dir>/config.toml.

    Args:
        state_dir: Path to the state directory

    Returns:
        Loaded configuration, or defaults if config.toml doesn't exist
    """
    config_path = state_dir / CONFIG_FILE
    if not config_path.exists():
        return ProvisionConfig()
    with open(config_path, "rb") as f:
        data = tomllib.load(f)
    return ProvisionConfig.model_validate(data)


def write_config_template(state_dir: Path) -> Path:
    """Write default config.toml template.

    Args:
        state_dir: Path to the state directory

    Returns:
        Path to the written config file
    """
    config_path = state_dir / CONFIG_FILE
    defaults = ProvisionConfig()
    template = {
        "project": {"name": defaults.project.name, "work_dir": str(defaults.project.work_dir)},
        "mysql": {
            "max_allowed_packet": defaults.mysql.max_allowed_packet,
            "innodb_log_file_size": defaults.mysql.innodb_log_file_size,
            "innodb_log_files_in_group": defaults.mysql.innodb_log_files_in_group,
        },
        "odbc": {"version": defaults.odbc.version},
        "server": {"cert_hostname": defaults.server.cert_hostname},
        "tomcat": {"version": defaults.tomcat.version, "home": str(defaults.tomcat.home)},
        "webconsole": {"deploy_timeout": defaults.webconsole.deploy_timeout},
        "https": {"enabled": True, "port": defaults.https.port},
        "windows": {"service": defaults.windows.service},
        # Package index refresh is skipped while the last one is younger than this
        "packages": {"cache_ttl_hours": defaults.packages.cache_ttl_hours, "extra": []},
        "retry": defaults.retry.model_dump(),
    }
    with open(config_path, "wb") as f:
        tomli_w.dump(template, f)
    return config_path
