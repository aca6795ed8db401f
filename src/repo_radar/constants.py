import os
from pathlib import Path

"""Global constants and filesystem layout for Repo Radar.

This module defines the data directory (adhering to XDG standards where
applicable), the persisted store file names, and the default Git parsing and
scanning values used across the application.
"""

# --- Identity ---
APP_NAME = "repo-radar"
"""str: The human-readable application name (also the logger name)."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

DATA_DIR = _BASE_STATE / "repo-radar"
"""Path: The directory holding the cache, operation log, and metadata stores."""

CACHE_FILE_NAME = "repo-cache.json"
"""str: Discovery cache file name (root folder -> repository paths)."""

OPLOG_FILE_NAME = "repo-operations.log.jsonl"
"""str: Append-only operation log, one JSON record per line."""

METADATA_FILE_NAME = "repo-metadata.json"
"""str: Per-repository action timestamps and last command output."""

LOG_FILE_NAME = "repo-radar.log"
"""str: Rotating diagnostic log file name."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/repo-radar"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

# --- Scanning ---
GIT_DIR_NAME = ".git"

DEFAULT_SKIP_DIRS = frozenset(
    ["node_modules", "dist", "build", ".venv", "__pycache__", GIT_DIR_NAME]
)
"""frozenset[str]: Directory names the scanner never enters."""

# --- Git / Logic Constants ---
DEFAULT_HOSTS = ["github.com"]
"""list[str]: Hosting services whose remote URLs yield an owner/repo slug."""

DETACHED_BRANCH = "DETACHED"
"""str: Branch sentinel used when HEAD is not on a branch."""

MISSING_BRANCH = "-"
"""str: Branch placeholder for repositories that are expected but absent."""

UNTRACKED_MARKER = "??"
"""str: Porcelain status prefix marking an untracked path."""

DEFAULT_GIT_TIMEOUT = 120
"""int: Seconds before a Git subprocess is abandoned."""

DEFAULT_MAX_OUTPUT = 8 * 1024 * 1024
"""int: Characters kept from each captured stream before truncation."""

DEFAULT_LOG_WINDOW = 400
"""int: Most recent operation log entries returned by a read."""

AUTH_ERROR_PATTERNS = (
    "authentication failed",
    "could not read username",
    "permission denied",
    "repository not found",
    "access denied",
    "fatal: could not read",
)
"""
tuple[str, ...]: Lower-case fragments of Git output that suggest a
credential problem. Matching is advisory only.
"""

AUTH_HINT = " Authentication issue detected; verify your Git credentials/token."
