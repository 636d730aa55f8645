"""ESET PROTECT On-Prem on Linux (Debian/Ubuntu, RHEL family, Fedora).

Installs MySQL and the ODBC connector, the ESET PROTECT server, Tomcat 9
with the web console, and a self-signed HTTPS connector. Every step has an
idempotency check, so re-running on a provisioned host changes nothing.

The graph only orders what must be ordered: the installer download and
the Tomcat branch do not wait on MySQL, and a failure in one branch leaves
independent branches running.
"""

import glob
import re
import shutil
import socket
from pathlib import Path

from ..config import MySQLConfig, ProvisionConfig, TomcatConfig
from ..constants import INSTALLER_TIMEOUT, PACKAGE_TIMEOUT, PROBE_TIMEOUT
from ..core.context import StepContext
from ..core.readiness import readiness_step
from ..core.registry import Step
from ..core.retry import NO_RETRY
from ..errors import FatalExecutionError
from ..models import CommandResult, EnvironmentFacts, PlatformFamily, PlatformProfile
from ..services.credentials import Credentials
from ..services.platform import detect_java_home
from .actions import (
    NONINTERACTIVE_ENV,
    backup_file,
    download,
    file_at_least,
    file_contains,
    newer_than,
    packages_installed,
    remove_tree,
    service_active,
    stamp_fresh,
    systemctl,
    touch_stamp,
    unit_exists,
)

MYSQL_MARKER = "# ESET Protect Configuration"
HTTPS_MARKER = "<!-- HTTPS Connector -->"
KEYSTORE_FILE = "conf/keystore.jks"
SYSTEMD_DIR = Path("/etc/systemd/system")
LD_CONF = Path("/etc/ld.so.conf.d/mysql-odbc.conf")
MYSQL_APT_CONFIG = "mysql-apt-config"


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def mysql_config_block(cfg: MySQLConfig) -> str:
    """Server tuning appended to the MySQL configuration file."""
    return (
        f"\n{MYSQL_MARKER}\n"
        "[mysqld]\n"
        f"max_allowed_packet={cfg.max_allowed_packet}\n"
        "log_bin_trust_function_creators=1\n"
        f"innodb_log_file_size={cfg.innodb_log_file_size}\n"
        f"innodb_log_files_in_group={cfg.innodb_log_files_in_group}\n"
    )


def render_tomcat_unit(cfg: TomcatConfig, java_home: Path) -> str:
    """systemd unit for the Tomcat service."""
    home = cfg.home
    return f"""[Unit]
Description=Apache Tomcat Web Application Container
After=network.target

[Service]
Type=forking

User={cfg.user}
Group={cfg.user}

Environment="JAVA_HOME={java_home}"
Environment="JAVA_OPTS=-Djava.security.egd=file:///dev/urandom -Djava.awt.headless=true"

Environment="CATALINA_BASE={home}"
Environment="CATALINA_HOME={home}"
Environment="CATALINA_PID={home}/temp/tomcat.pid"
Environment="CATALINA_OPTS=-Xms512M -Xmx1024M -server -XX:+UseParallelGC"

ExecStart={home}/bin/startup.sh
ExecStop={home}/bin/shutdown.sh

RestartSec=10
Restart=always

[Install]
WantedBy=multi-user.target
"""


def insert_https_connector(server_xml: str, port: int, keystore_password: str) -> str:
    """Replace any connector on ``port`` with a TLS connector before ``</Service>``.

    Raises:
        ValueError: If the document has no ``</Service>`` element
    """
    marker = re.escape(HTTPS_MARKER)
    existing = re.compile(
        rf"[ \t]*(?:{marker}\s*)?<Connector port=\"{port}\".*?</Connector>[ \t]*\n?",
        re.DOTALL,
    )
    cleaned = existing.sub("", server_xml)
    if "</Service>" not in cleaned:
        raise ValueError("server.xml has no </Service> element")
    connector = (
        f"    {HTTPS_MARKER}\n"
        f'    <Connector port="{port}" protocol="org.apache.coyote.http11.Http11NioProtocol"\n'
        '               maxThreads="150" SSLEnabled="true">\n'
        "        <SSLHostConfig>\n"
        f'            <Certificate certificateKeystoreFile="{KEYSTORE_FILE}"\n'
        f'                         certificateKeystorePassword="{keystore_password}"\n'
        '                         type="RSA" />\n'
        "        </SSLHostConfig>\n"
        "    </Connector>\n"
    )
    head, sep, tail = cleaned.rpartition("</Service>")
    return f"{head}{connector}{sep}{tail}"


def has_https_connector(server_xml: str, port: int) -> bool:
    pattern = rf"<Connector port=\"{port}\"[^>]*SSLEnabled=\"true\""
    return re.search(pattern, server_xml) is not None


ERA_CONTEXT_XML = """<?xml version="1.0" encoding="UTF-8"?>
<Context path="/era">
    <!-- Force HTTPS -->
</Context>
"""


def sql_quote(value: str) -> str:
    """Quote a value as a MySQL string literal."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


HARDENING_SQL = """DELETE FROM mysql.user WHERE User='';
DELETE FROM mysql.user WHERE User='root' AND Host NOT IN ('localhost', '127.0.0.1', '::1');
DROP DATABASE IF EXISTS test;
DELETE FROM mysql.db WHERE Db='test' OR Db='test\\_%';
FLUSH PRIVILEGES;
"""

HARDENED_QUERY = (
    "SELECT (SELECT COUNT(*) FROM mysql.user WHERE User='')"
    " + (SELECT COUNT(*) FROM information_schema.schemata WHERE schema_name='test')"
)


def secure_mysql_sql(root_password: str, set_password: bool) -> str:
    """SQL fed to the mysql client on stdin to secure the server."""
    sql = HARDENING_SQL
    if set_password:
        sql = (
            "ALTER USER 'root'@'localhost' IDENTIFIED WITH mysql_native_password BY "
            f"{sql_quote(root_password)};\n" + sql
        )
    return sql


def server_installer_args(creds: Credentials, config: ProvisionConfig) -> list[str]:
    """Arguments for the unattended server installer (secrets are redacted in logs)."""
    return [
        "--skip-license",
        "--db-type=MySQL Server",
        f"--db-driver={config.odbc.driver_name}",
        f"--db-hostname={config.mysql.host}",
        f"--db-port={config.mysql.port}",
        "--db-admin-username=root",
        f"--db-admin-password={creds.mysql_root}",
        f"--server-root-password={creds.admin_password.get_secret_value()}",
        f"--db-user-username={creds.db_user}",
        f"--db-user-password={creds.db_password.get_secret_value()}",
        f"--cert-hostname={config.server.cert_hostname}",
    ]


def linux_endpoints(facts: EnvironmentFacts, config: ProvisionConfig) -> dict[str, str]:
    """Service URLs shown after a successful install."""
    ip = facts.primary_ip
    endpoints = {
        "server_console": f"https://{ip}:{config.server.console_port}",
        "webconsole_http": f"http://{ip}:{config.tomcat.http_port}/era",
    }
    if config.https.enabled:
        endpoints["webconsole_https"] = f"https://{ip}:{config.https.port}/era"
    return endpoints


# ---------------------------------------------------------------------------
# Step graph
# ---------------------------------------------------------------------------


def build_linux_steps(
    facts: EnvironmentFacts,
    profile: PlatformProfile,
    creds: Credentials,
    config: ProvisionConfig,
    state_dir: Path,
) -> list[Step]:
    """Build the Linux installation graph.

    Args:
        facts: Host facts
        profile: Platform profile of the host family
        creds: Installation credentials
        config: Loaded configuration
        state_dir: State directory (stamps live under ``stamps/``)

    Returns:
        Steps in declaration order
    """
    retry = config.retry.policy()
    work_dir = config.project.work_dir
    stamps = state_dir / "stamps"
    mysql_config = config.mysql.config_path or profile.mysql_config
    mysql_service = profile.mysql_service
    packages = [*profile.packages, *config.packages.extra]
    tomcat = config.tomcat
    webapps = tomcat.home / "webapps"
    installer_path = work_dir / "server_linux_x86_64.sh"
    mysql_env = {"MYSQL_PWD": creds.mysql_root}

    # -- repositories and packages -------------------------------------------

    def repo_conflicts(ctx: StepContext) -> list[str]:
        found = [str(p) for p in profile.conflicting_repo_files if p.exists()]
        if profile.family == PlatformFamily.DEBIAN and ctx.succeeds(
            ["dpkg", "-s", MYSQL_APT_CONFIG], timeout=PROBE_TIMEOUT
        ):
            found.append(MYSQL_APT_CONFIG)
        return found

    def cleanup_mysql_repo(ctx: StepContext) -> None:
        for path in profile.conflicting_repo_files:
            if path.exists():
                ctx.log.info("Removing MySQL repository configuration %s", path)
                path.unlink()
        if profile.family == PlatformFamily.DEBIAN:
            if ctx.succeeds(["dpkg", "-s", MYSQL_APT_CONFIG], timeout=PROBE_TIMEOUT):
                result = ctx.run(
                    [profile.package_manager, "purge", "-y", MYSQL_APT_CONFIG],
                    env=NONINTERACTIVE_ENV,
                    timeout=PACKAGE_TIMEOUT,
                )
                if not result.ok:
                    ctx.log.warning("Could not purge %s, continuing", MYSQL_APT_CONFIG)
            for leftover in glob.glob("/tmp/mysql-apt-config*.deb"):
                Path(leftover).unlink(missing_ok=True)

    update_stamp = stamps / "update_packages"

    def update_packages(ctx: StepContext) -> CommandResult | None:
        result = ctx.run(profile.update_command, env=NONINTERACTIVE_ENV, timeout=PACKAGE_TIMEOUT)
        upgrade = profile.upgrade_command
        if not result.ok:
            if upgrade is not None:
                return result
            ctx.log.warning("Package update had issues, continuing")
        if upgrade is not None:
            if not ctx.run(upgrade, env=NONINTERACTIVE_ENV, timeout=PACKAGE_TIMEOUT).ok:
                ctx.log.warning("Package upgrade had issues, continuing")
        touch_stamp(update_stamp)
        return None

    def dependencies_present(ctx: StepContext) -> bool:
        return packages_installed(ctx, profile, packages) and ctx.succeeds(
            ["java", "-version"], timeout=PROBE_TIMEOUT
        )

    def install_dependencies(ctx: StepContext) -> None:
        ctx.log.info("Installing: %s", " ".join(packages))
        ctx.run(
            profile.install_command(packages),
            env=NONINTERACTIVE_ENV,
            timeout=PACKAGE_TIMEOUT,
            check=True,
        )
        java = ctx.run(["java", "-version"], timeout=PROBE_TIMEOUT)
        if not java.ok:
            raise FatalExecutionError("Java installation verification failed", java)
        version = (java.stderr or java.stdout).strip().splitlines()
        ctx.log.info("Java installed: %s", version[0] if version else "unknown")

    # -- MySQL ------------------------------------------------------------------

    def configure_mysql(ctx: StepContext) -> None:
        backup = backup_file(mysql_config)
        if backup:
            ctx.log.info("Backed up MySQL configuration to %s", backup)
        mysql_config.parent.mkdir(parents=True, exist_ok=True)
        with open(mysql_config, "a", encoding="utf-8") as f:
            f.write(mysql_config_block(config.mysql))
        ctx.log.info("MySQL configuration updated")

    restart_stamp = stamps / "restart_mysql"

    def mysql_restarted(ctx: StepContext) -> bool:
        return newer_than(restart_stamp, mysql_config) and service_active(ctx, mysql_service)

    def restart_mysql(ctx: StepContext) -> None:
        systemctl(ctx, "restart", mysql_service)
        touch_stamp(restart_stamp)

    def mysql_root_works(ctx: StepContext, password: str) -> bool:
        return ctx.succeeds(
            ["mysql", "-u", "root", "-e", "SELECT 1;"],
            env={"MYSQL_PWD": password},
            timeout=PROBE_TIMEOUT,
        )

    def mysql_secured(ctx: StepContext) -> bool:
        result = ctx.run(
            ["mysql", "-u", "root", "-N", "-B", "-e", HARDENED_QUERY],
            env=mysql_env,
            timeout=PROBE_TIMEOUT,
        )
        return result.ok and result.stdout.strip() == "0"

    def secure_mysql(ctx: StepContext) -> None:
        if mysql_root_works(ctx, ""):
            ctx.log.info("Configuring MySQL security for fresh installation")
            ctx.run(
                ["mysql", "-u", "root"],
                env={"MYSQL_PWD": ""},
                input=secure_mysql_sql(creds.mysql_root, set_password=True),
                timeout=PROBE_TIMEOUT,
                check=True,
            )
        elif mysql_root_works(ctx, creds.mysql_root):
            ctx.log.info("MySQL root already uses the configured password")
            ctx.run(
                ["mysql", "-u", "root"],
                env=mysql_env,
                input=secure_mysql_sql(creds.mysql_root, set_password=False),
                timeout=PROBE_TIMEOUT,
                check=True,
            )
        else:
            raise FatalExecutionError(
                "MySQL root has a password, but it is not the configured password. "
                "Set PROVISION_MYSQL_ROOT_PASSWORD or reset the MySQL root password."
            )
        if not mysql_root_works(ctx, creds.mysql_root):
            raise FatalExecutionError("Cannot authenticate to MySQL with the configured password")

    # -- ODBC ---------------------------------------------------------------------

    odbc = config.odbc

    def odbc_registered(ctx: StepContext) -> bool:
        result = ctx.run(["odbcinst", "-q", "-d"], timeout=PROBE_TIMEOUT)
        return result.ok and odbc.driver_name in result.stdout

    def install_odbc_driver(ctx: StepContext) -> None:
        odbc_work = work_dir / "odbc"
        remove_tree(odbc_work)
        odbc_work.mkdir(parents=True)
        url = odbc.download_url
        archive = odbc_work / url.rsplit("/", 1)[-1]
        download(ctx, url, archive)
        ctx.run(["tar", "xzf", str(archive), "-C", str(odbc_work)], check=True)
        extracted = odbc_work / archive.name.removesuffix(".tar.gz")

        odbc.bin_dir.mkdir(parents=True, exist_ok=True)
        odbc.lib_dir.mkdir(parents=True, exist_ok=True)
        for item in (extracted / "bin").iterdir():
            shutil.copy2(item, odbc.bin_dir / item.name)
        for item in (extracted / "lib").iterdir():
            if item.is_file():
                shutil.copy2(item, odbc.lib_dir / item.name)

        LD_CONF.write_text(f"{odbc.lib_dir}\n")
        ctx.run(["ldconfig"], check=True)
        cache = ctx.run(["ldconfig", "-p"], timeout=PROBE_TIMEOUT)
        if "myodbc" not in cache.stdout:
            raise FatalExecutionError("ODBC libraries not found in library cache", cache)

        installer = str(odbc.bin_dir / "myodbc-installer")
        for name, library in (
            (odbc.driver_name, "libmyodbc8w.so"),
            (odbc.ansi_driver_name, "libmyodbc8a.so"),
        ):
            ctx.run(
                [installer, "-a", "-d", "-n", name, "-t", f"Driver={odbc.lib_dir / library}"],
                check=True,
            )
        if not odbc_registered(ctx):
            raise FatalExecutionError(f"ODBC driver '{odbc.driver_name}' registration failed")
        remove_tree(odbc_work)

    # -- ESET PROTECT server ---------------------------------------------------

    def installer_ready(ctx: StepContext) -> bool:
        return file_at_least(installer_path)

    def download_installer(ctx: StepContext) -> None:
        download(ctx, config.server.installer_url, installer_path)
        installer_path.chmod(0o755)
        ctx.log.info("Installer ready at %s", installer_path)

    def server_installed(ctx: StepContext) -> bool:
        return unit_exists(ctx, config.server.service)

    def install_server(ctx: StepContext) -> None:
        ctx.log.info("Running ESET PROTECT installation; this may take several minutes")
        result = ctx.run(
            [str(installer_path), *server_installer_args(creds, config)],
            timeout=INSTALLER_TIMEOUT,
        )
        if not result.ok:
            ctx.log.error("Check the installer log: %s", config.server.installer_log)
            raise FatalExecutionError("ESET PROTECT installation failed", result)
        if file_contains(config.server.installer_log, "Error:"):
            ctx.log.warning("Errors found in installer log %s", config.server.installer_log)

    def start_server(ctx: StepContext) -> None:
        ctx.log.warning("Server service is not running, attempting to start")
        systemctl(ctx, "start", config.server.service, check=False)

    # -- Tomcat and web console ------------------------------------------------

    release_notes = tomcat.home / "RELEASE-NOTES"
    unit_file = SYSTEMD_DIR / f"{tomcat.service}.service"

    def tomcat_installed(ctx: StepContext) -> bool:
        return (
            file_contains(release_notes, f"Apache Tomcat Version {tomcat.version}")
            and unit_file.exists()
            and service_active(ctx, tomcat.service)
        )

    def install_tomcat(ctx: StepContext) -> None:
        if tomcat.home.exists() and not file_contains(release_notes, "Apache Tomcat Version 9"):
            ctx.log.warning("Unsupported Tomcat found in %s, removing", tomcat.home)
            systemctl(ctx, "stop", tomcat.service, check=False)
            systemctl(ctx, "disable", tomcat.service, check=False)
            remove_tree(tomcat.home)

        if not ctx.succeeds(["id", "-u", tomcat.user], timeout=PROBE_TIMEOUT):
            ctx.log.info("Creating %s user", tomcat.user)
            ctx.run(
                ["useradd", "-r", "-m", "-U", "-d", str(tomcat.home), "-s", "/bin/false",
                 tomcat.user],
                check=True,
            )

        tomcat_work = work_dir / "tomcat"
        remove_tree(tomcat_work)
        tomcat_work.mkdir(parents=True)
        archive = tomcat_work / f"apache-tomcat-{tomcat.version}.tar.gz"
        download(ctx, tomcat.download_urls, archive)
        ctx.run(["tar", "xzf", str(archive), "-C", str(tomcat_work)], check=True)

        remove_tree(tomcat.home)
        shutil.move(str(tomcat_work / f"apache-tomcat-{tomcat.version}"), str(tomcat.home))
        ctx.run(["chown", "-R", f"{tomcat.user}:{tomcat.user}", str(tomcat.home)], check=True)
        ctx.run(["chmod", "-R", "u+x", str(tomcat.home / "bin")], check=True)

        java_home = detect_java_home(profile.java_home_candidates) or facts.java_home
        if java_home is None:
            raise FatalExecutionError("Java 11 not found; cannot configure Tomcat")
        unit_file.write_text(render_tomcat_unit(tomcat, java_home))
        ctx.log.info("Created %s (JAVA_HOME=%s)", unit_file, java_home)

        systemctl(ctx, "daemon-reload")
        systemctl(ctx, "enable", tomcat.service, check=False)
        systemctl(ctx, "start", tomcat.service)
        remove_tree(tomcat_work)

    war_path = webapps / "era.war"
    deploy_dir = webapps / "era"

    def webconsole_deployed(ctx: StepContext) -> bool:
        return file_at_least(war_path, config.webconsole.min_war_bytes) and deploy_dir.is_dir()

    def deploy_webconsole(ctx: StepContext) -> None:
        ctx.log.info("Stopping Tomcat for clean deployment")
        systemctl(ctx, "stop", tomcat.service, check=False)
        remove_tree(deploy_dir)
        remove_tree(war_path)

        download(ctx, config.webconsole.war_url, war_path)
        size = war_path.stat().st_size
        ctx.log.info("WAR file size: %d bytes", size)
        if size < config.webconsole.min_war_bytes:
            head = war_path.read_bytes()[:2048].decode("utf-8", errors="replace")
            ctx.log.debug("WAR head:\n%s", "\n".join(head.splitlines()[:20]))
            raise FatalExecutionError(
                f"Downloaded WAR file appears to be invalid ({size} bytes)"
            )
        ctx.run(["chown", f"{tomcat.user}:{tomcat.user}", str(war_path)], check=True)
        war_path.chmod(0o644)
        systemctl(ctx, "start", tomcat.service)

    def tomcat_crashed(ctx: StepContext) -> str | None:
        if service_active(ctx, tomcat.service):
            return None
        catalina = tomcat.home / "logs" / "catalina.out"
        if catalina.exists():
            tail = catalina.read_text(errors="replace").splitlines()[-50:]
            ctx.log.error("Last lines of %s:\n%s", catalina, "\n".join(tail))
        return "Tomcat stopped unexpectedly during web console deployment"

    # -- HTTPS ------------------------------------------------------------------

    https = config.https
    keystore = tomcat.home / KEYSTORE_FILE
    server_xml = tomcat.home / "conf" / "server.xml"
    era_context = tomcat.home / "conf" / "Catalina" / "localhost" / "era.xml"

    def https_configured(ctx: StepContext) -> bool:
        try:
            xml = server_xml.read_text()
        except OSError:
            return False
        return keystore.exists() and era_context.exists() and has_https_connector(xml, https.port)

    def configure_https(ctx: StepContext) -> None:
        keystore.unlink(missing_ok=True)
        ctx.log.info("Generating self-signed certificate")
        ctx.run(
            [
                "keytool", "-genkey", "-noprompt",
                "-alias", "tomcat",
                "-dname", f"CN={facts.primary_ip}, {https.dname_suffix}",
                "-keyalg", "RSA",
                "-keysize", str(https.key_size),
                "-validity", str(https.validity_days),
                "-keystore", str(keystore),
                "-storepass", https.keystore_password,
                "-keypass", https.keystore_password,
            ],
            check=True,
        )
        ctx.run(["chown", f"{tomcat.user}:{tomcat.user}", str(keystore)], check=True)
        keystore.chmod(0o600)

        shutil.copy2(server_xml, server_xml.with_name("server.xml.backup"))
        try:
            updated = insert_https_connector(
                server_xml.read_text(), https.port, https.keystore_password
            )
        except ValueError as e:
            raise FatalExecutionError(f"{server_xml}: {e}") from e
        server_xml.write_text(updated)

        era_context.parent.mkdir(parents=True, exist_ok=True)
        era_context.write_text(ERA_CONTEXT_XML)
        ctx.run(
            ["chown", "-R", f"{tomcat.user}:{tomcat.user}", str(tomcat.home / "conf" / "Catalina")],
            check=True,
        )
        ctx.log.info("Restarting Tomcat to apply HTTPS configuration")
        systemctl(ctx, "restart", tomcat.service)

    def https_listening(ctx: StepContext) -> bool:
        try:
            with socket.create_connection(("127.0.0.1", https.port), timeout=3):
                return True
        except OSError:
            return False

    steps = [
        Step(
            name="cleanup_mysql_repo",
            action=cleanup_mysql_repo,
            check=lambda ctx: not repo_conflicts(ctx),
            description="Remove conflicting MySQL repositories",
        ),
        Step(
            name="update_packages",
            action=update_packages,
            depends_on=("cleanup_mysql_repo",),
            check=lambda ctx: stamp_fresh(update_stamp, config.packages.cache_ttl_hours),
            retry=retry,
            description="Update system packages",
        ),
        Step(
            name="install_dependencies",
            action=install_dependencies,
            depends_on=("update_packages",),
            check=dependencies_present,
            retry=retry,
            description="Install required dependencies",
        ),
        Step(
            name="configure_mysql",
            action=configure_mysql,
            depends_on=("install_dependencies",),
            check=lambda ctx: file_contains(mysql_config, MYSQL_MARKER),
            description="Configure MySQL",
        ),
        Step(
            name="restart_mysql",
            action=restart_mysql,
            depends_on=("configure_mysql",),
            check=mysql_restarted,
            description="Restart MySQL service",
        ),
        readiness_step(
            "wait_for_mysql",
            lambda ctx: service_active(ctx, mysql_service),
            depends_on=("restart_mysql",),
            timeout=config.mysql.ready_timeout,
            interval=config.mysql.ready_interval,
            description="Wait for MySQL",
        ),
        Step(
            name="secure_mysql",
            action=secure_mysql,
            depends_on=("wait_for_mysql",),
            check=mysql_secured,
            description="Secure MySQL installation",
        ),
        Step(
            name="install_odbc_driver",
            action=install_odbc_driver,
            depends_on=("install_dependencies",),
            check=odbc_registered,
            retry=retry,
            description="Install MySQL ODBC connector",
        ),
        Step(
            name="download_installer",
            action=download_installer,
            check=installer_ready,
            retry=retry,
            description="Download ESET PROTECT installer",
        ),
        Step(
            name="install_server",
            action=install_server,
            depends_on=("secure_mysql", "install_odbc_driver", "download_installer"),
            check=server_installed,
            retry=NO_RETRY,
            description="Install ESET PROTECT On-Prem",
        ),
        readiness_step(
            "verify_server",
            lambda ctx: service_active(ctx, config.server.service),
            depends_on=("install_server",),
            timeout=config.server.ready_timeout,
            interval=config.server.ready_interval,
            on_not_ready=start_server,
            description="Verify ESET PROTECT server",
        ),
        Step(
            name="install_tomcat",
            action=install_tomcat,
            depends_on=("install_dependencies",),
            check=tomcat_installed,
            retry=retry,
            description=f"Install Apache Tomcat {tomcat.version}",
        ),
        readiness_step(
            "wait_for_tomcat",
            lambda ctx: service_active(ctx, tomcat.service),
            depends_on=("install_tomcat",),
            timeout=tomcat.ready_timeout,
            interval=tomcat.ready_interval,
            description="Wait for Tomcat",
        ),
        Step(
            name="deploy_webconsole",
            action=deploy_webconsole,
            depends_on=("wait_for_tomcat", "verify_server"),
            check=webconsole_deployed,
            retry=retry,
            description="Install ESET PROTECT Web Console",
        ),
        readiness_step(
            "wait_for_webconsole",
            lambda ctx: deploy_dir.is_dir(),
            depends_on=("deploy_webconsole",),
            timeout=config.webconsole.deploy_timeout,
            interval=config.webconsole.deploy_interval,
            guard=tomcat_crashed,
            description="Wait for Web Console deployment",
        ),
    ]
    if https.enabled:
        steps += [
            Step(
                name="configure_https",
                action=configure_https,
                depends_on=("wait_for_webconsole",),
                check=https_configured,
                description="Configure HTTPS for Tomcat",
            ),
            readiness_step(
                "wait_for_https",
                https_listening,
                depends_on=("configure_https",),
                timeout=tomcat.ready_timeout,
                interval=tomcat.ready_interval,
                description="Wait for HTTPS connector",
            ),
        ]
    return steps
