import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DATA_DIR,
    DEFAULT_GIT_TIMEOUT,
    DEFAULT_HOSTS,
    DEFAULT_LOG_WINDOW,
    DEFAULT_MAX_OUTPUT,
    DEFAULT_SKIP_DIRS,
)

logger = logging.getLogger(APP_NAME)

_QUANTITY = re.compile(r"(\d+(?:\.\d+)?)\s*([a-z]*)")

_SIZE_UNITS = {
    "": 1,
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
}

_TIME_UNITS = {
    "": 1,
    **dict.fromkeys(["s", "sec", "secs", "second", "seconds"], 1),
    **dict.fromkeys(["m", "min", "mins", "minute", "minutes"], 60),
    **dict.fromkeys(["h", "hr", "hrs", "hour", "hours"], 3600),
}


def _parse_quantity(value: Any, units: dict[str, int], kind: str) -> int:
    """Scales a number with an optional unit suffix by the unit's factor.

    Integers pass through unchanged. A bare number in a string uses the base
    unit, so "512" and 512 are equivalent.

    Raises:
        ValueError: If the value is a boolean, negative, or has an unknown unit.
    """
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    match = None
    if isinstance(value, (str, float)):
        match = _QUANTITY.fullmatch(str(value).strip().lower())
    if not match or match.group(2) not in units:
        raise ValueError(f"Invalid {kind} format '{value}'")
    return int(float(match.group(1)) * units[match.group(2)])


def parse_size(value: int | str) -> int:
    """Converts a size such as '8MB', '512 kb' or '4096' to bytes."""
    return _parse_quantity(value, _SIZE_UNITS, "size")


def parse_time(value: int | str) -> int:
    """Converts a duration such as '2m', '90 seconds' or '1.5h' to seconds."""
    return _parse_quantity(value, _TIME_UNITS, "time")


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"Expected a list of strings, got {value!r}")
    return list(value)


@dataclass(frozen=True)
class Settings:
    """The explicit per-request input to the orchestrator.

    Attributes:
        root_folder (str): Directory tree scanned for working copies.
        expected_slugs (list[str]): owner/repo slugs that should exist locally.
    """

    root_folder: str
    expected_slugs: list[str] = field(default_factory=list)


@dataclass
class ScanConfig:
    """Discovery settings.

    Attributes:
        root_folder (str): The default root folder to scan.
        expected_repos (list[str]): owner/repo slugs expected under the root.
        skip_dirs (list[str]): Directory names skipped in addition to the defaults.
    """

    root_folder: str = ""
    expected_repos: list[str] = field(default_factory=list)
    skip_dirs: list[str] = field(default_factory=list)

    @property
    def all_skip_dirs(self) -> frozenset[str]:
        return DEFAULT_SKIP_DIRS | frozenset(self.skip_dirs)


@dataclass
class GitConfig:
    """Process runner settings.

    Attributes:
        executable (str): Git executable name or path.
        timeout (int): Seconds before a Git command is killed (0 disables).
        max_output_size (int): Characters kept per captured stream.
        hosts (list[str]): Hosting services recognized when parsing slugs.
    """

    executable: str = "git"
    timeout: int = DEFAULT_GIT_TIMEOUT
    max_output_size: int = DEFAULT_MAX_OUTPUT
    hosts: list[str] = field(default_factory=lambda: list(DEFAULT_HOSTS))


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        log_window (int): Operation log entries returned by a read.
        max_log_size (int): Max bytes for the diagnostic log before rotation.
    """

    log_window: int = DEFAULT_LOG_WINDOW
    max_log_size: int = 5 * 1024 * 1024


@dataclass
class EngineConfig:
    """Orchestrator settings.

    Attributes:
        max_workers (int): Parallel status resolutions (0 picks automatically).
    """

    max_workers: int = 0

    def worker_count(self) -> int:
        if self.max_workers > 0:
            return self.max_workers
        # Status resolution is subprocess-bound, not CPU-bound.
        return min(32, (os.cpu_count() or 1) + 4)


@dataclass
class StorageConfig:
    """Persistence settings.

    Attributes:
        data_dir (str): Override for the store directory (empty = default).
    """

    data_dir: str = ""

    @property
    def path(self) -> Path:
        return Path(self.data_dir).expanduser() if self.data_dir else DATA_DIR


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        scan (ScanConfig): Discovery settings.
        git (GitConfig): Process runner settings.
        limits (LimitsConfig): Resource limits.
        engine (EngineConfig): Orchestrator settings.
        storage (StorageConfig): Persistence settings.
    """

    scan: ScanConfig = field(default_factory=ScanConfig)
    git: GitConfig = field(default_factory=GitConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from disk, applying defaults where necessary.

        Args:
            path (Path | None): The TOML file to read. Defaults to CONFIG_FILE.

        Returns:
            Config: The populated configuration object.
        """
        instance = cls()
        config_path = path or CONFIG_FILE
        if config_path.exists():
            instance._merge_from_file(config_path)
        return instance

    def settings(self) -> Settings:
        """Builds the explicit orchestrator input from the configured scan section."""
        return Settings(
            root_folder=os.path.expanduser(self.scan.root_folder),
            expected_slugs=list(self.scan.expected_repos),
        )

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
            return
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return

        for section in ("scan", "git", "limits", "engine", "storage"):
            if section in data:
                if not isinstance(data[section], dict):
                    logger.warning(f"Config section [{section}] is not a table.")
                    continue
                current = getattr(self, section)
                setattr(
                    self,
                    section,
                    self._update_dataclass(section, current, data[section]),
                )

        unknown = set(data) - {"scan", "git", "limits", "engine", "storage"}
        if unknown:
            logger.warning(
                f"Unknown config sections: {', '.join(sorted(unknown))}. Ignoring."
            )

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k in ["max_output_size", "max_log_size"]:
                    filtered_updates[k] = parse_size(v)
                elif k == "timeout":
                    filtered_updates[k] = parse_time(v)
                elif k in ["expected_repos", "skip_dirs", "hosts"]:
                    filtered_updates[k] = _string_list(v)
                elif k in ["log_window", "max_workers"]:
                    if not isinstance(v, int) or v < 0:
                        raise ValueError(f"Expected a non-negative integer, got {v!r}")
                    filtered_updates[k] = v
                else:
                    if not isinstance(v, str):
                        raise ValueError(f"Expected a string, got {v!r}")
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
