"""Centralized constants for the Xray updater."""

# Upstream project
DEFAULT_RELEASE_REPO = "XTLS/Xray-core"
DEFAULT_GITHUB_API_URL = "https://api.github.com"

# Installed binary
DEFAULT_PRODUCT_NAME = "Xray"
DEFAULT_VERSION_FLAG = "-version"
DEFAULT_EXECUTABLE_NAME = "xray"
DEFAULT_BINARY_PATH = "/usr/local/bin/xray"
BACKUP_SUFFIX = ".bak"

# Service control
DEFAULT_SERVICE_NAME = "xray"
DEFAULT_INIT_SCRIPT = "/etc/init.d/xray"
SYSTEMCTL = "systemctl"

# Network (seconds)
CONNECT_TIMEOUT_SECONDS = 15
REQUEST_TIMEOUT_SECONDS = 30
DOWNLOAD_TIMEOUT_SECONDS = 300
PROBE_TIMEOUT_SECONDS = 10
DOWNLOAD_RETRIES = 3
RETRY_DELAY_SECONDS = 2
DEFAULT_PROBE_URL = "https://github.com"
DEFAULT_FALLBACK_PROXY_URL = "http://127.0.0.1:7890"

# Filesystem
DEFAULT_LOG_FILE = "/var/log/xray_update.log"
DEFAULT_LOCK_PATH = "/run/xray-update.lock"
STAGING_PREFIX = "xray-update."
EXTRACT_DIRNAME = "xray-update"
DOWNLOAD_CHUNK_SIZE = 64 * 1024

# Subprocesses (seconds)
COMMAND_TIMEOUT_SECONDS = 60

# Diagnostics
MAX_DIAGNOSTIC_CHARS = 500

# Exit codes
EXIT_OK = 0
EXIT_DEGRADED = 3
EXIT_UNEXPECTED = 1
