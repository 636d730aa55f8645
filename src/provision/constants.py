"""Constants for provision CLI."""

# Subprocess timeouts (seconds)
PROBE_TIMEOUT = 30
PACKAGE_TIMEOUT = 1800  # 30 minutes for package manager operations
DOWNLOAD_TIMEOUT = 900
INSTALLER_TIMEOUT = 3600  # vendor installer / msiexec
SERVICE_TIMEOUT = 120

# Grace period between SIGTERM and SIGKILL when tearing down a process tree
TERMINATE_GRACE_SECONDS = 5

# Exit code reported when the executable cannot be found (shell convention)
COMMAND_NOT_FOUND_EXIT = 127

# Lines of stderr kept in failure reports
STDERR_TAIL_LINES = 20

# State directory
STATE_DIR_NAME = ".provision"
STATE_DIR_ENV = "PROVISION_STATE_DIR"

# CLI exit codes
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_IN_PROGRESS = 3
EXIT_CANCELLED = 130
