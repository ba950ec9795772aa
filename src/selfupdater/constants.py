"""Centralized constants for selfupdater."""

from datetime import timedelta

# State
LAST_CHECK_FILENAME = "last_check.json"
STATE_DIR_MODE = 0o700
STATE_FILE_MODE = 0o600

# Checks
DEFAULT_CHECK_INTERVAL = timedelta(hours=24)
BACKGROUND_CHECK_TIMEOUT = 5  # seconds, independent of caller deadlines
DEFAULT_HTTP_TIMEOUT = 30.0

# Downloads
DOWNLOAD_CHUNK_SIZE = 32 * 1024
CACHE_MAX_AGE = timedelta(days=7)
DEFAULT_CHECKSUM_ALGO = "sha256"

# Installer
BACKUP_SUFFIX = ".backup"
WINDOWS_OLD_SUFFIX = ".old"
VERIFY_ARGS = ("--version",)
VERIFY_TIMEOUT = 10  # seconds
