import contextlib
import json
import logging
import os
import secrets
import string
import time
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CACHE_FILE_NAME,
    DATA_DIR,
    DEFAULT_LOG_WINDOW,
    METADATA_FILE_NAME,
    OPLOG_FILE_NAME,
)
from .models import (
    Action,
    DiscoveryCache,
    OperationLogEntry,
    RepoMetadata,
    utc_now,
)

logger = logging.getLogger(APP_NAME)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_entry_id() -> str:
    """Generates an operation id: epoch milliseconds plus a short random suffix."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"{int(time.time() * 1000)}-{suffix}"


class RadarStore:
    """The three on-disk stores backing the engine.

    Each file is independent. Whole-document files are replaced atomically;
    the operation log is appended one line at a time. Every read fails open:
    a missing or unparsable file yields the empty default.

    Attributes:
        data_dir (Path): The directory holding the store files.
    """

    def __init__(self, data_dir: Path | None = None):
        self.data_dir = Path(data_dir) if data_dir else DATA_DIR

    @property
    def cache_file(self) -> Path:
        return self.data_dir / CACHE_FILE_NAME

    @property
    def log_file(self) -> Path:
        return self.data_dir / OPLOG_FILE_NAME

    @property
    def metadata_file(self) -> Path:
        return self.data_dir / METADATA_FILE_NAME

    # --- Helpers ---

    def _read_json(self, path: Path) -> Any:
        """Reads a JSON document, returning None if absent or unreadable."""
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable store file {path.name}: {e}")
            return None

    def _write_json(self, path: Path, data: Any) -> bool:
        """Persists a JSON document atomically.

        Returns:
            bool: True if the document was written.
        """
        tmp_file = path.with_suffix(path.suffix + ".tmp")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())  # Force hardware write

            # Atomic pointer swap at the filesystem level
            os.replace(tmp_file, path)
            return True
        except OSError as e:
            logger.warning(f"Failed to write {path.name}: {e}")
            with contextlib.suppress(OSError):
                tmp_file.unlink(missing_ok=True)
            return False

    # --- Discovery cache ---

    def read_cache(self) -> DiscoveryCache | None:
        """Returns the last discovery result, or None if there is none usable."""
        data = self._read_json(self.cache_file)
        if not isinstance(data, dict):
            return None
        try:
            return DiscoveryCache.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Ignoring malformed discovery cache: {e}")
            return None

    def write_cache(self, cache: DiscoveryCache) -> None:
        """Overwrites the discovery cache wholesale."""
        self._write_json(self.cache_file, cache.to_dict())

    # --- Operation log ---

    def append_log(self, entry: OperationLogEntry) -> None:
        """Appends one record to the operation log."""
        line = json.dumps(entry.to_dict()) + "\n"
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            logger.warning(f"Failed to append to operation log: {e}")

    def log_operation(
        self,
        repo: str,
        action: Action,
        success: bool,
        message: str,
        stdout: str = "",
        stderr: str = "",
    ) -> OperationLogEntry:
        """Builds a new operation log entry, appends it, and returns it."""
        entry = OperationLogEntry(
            id=new_entry_id(),
            timestamp=utc_now(),
            repo=repo,
            action=action,
            success=success,
            message=message,
            stdout=stdout,
            stderr=stderr,
        )
        self.append_log(entry)
        return entry

    def read_logs(
        self, max_entries: int = DEFAULT_LOG_WINDOW
    ) -> list[OperationLogEntry]:
        """Reads the most recent operation log entries, newest first.

        Malformed lines are skipped. Entries older than the window are ignored,
        never deleted.

        Args:
            max_entries (int, optional): The size of the window.

        Returns:
            list[OperationLogEntry]: At most `max_entries` entries.
        """
        if max_entries <= 0 or not self.log_file.exists():
            return []
        try:
            with open(self.log_file, encoding="utf-8", errors="replace") as f:
                lines = f.readlines()
        except OSError as e:
            logger.warning(f"Failed to read operation log: {e}")
            return []

        entries: list[OperationLogEntry] = []
        for line in reversed(lines):
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
                entries.append(OperationLogEntry.from_dict(data))
            except (ValueError, KeyError, TypeError) as e:
                logger.debug(f"Skipping malformed log line: {e}")
                continue
            if len(entries) >= max_entries:
                break
        return entries

    # --- Metadata ---

    def read_metadata(self) -> dict[str, RepoMetadata]:
        """Returns the whole metadata map keyed by repository path."""
        data = self._read_json(self.metadata_file)
        if not isinstance(data, dict):
            return {}
        return {
            str(path): RepoMetadata.from_dict(value)
            for path, value in data.items()
            if isinstance(value, dict)
        }

    def read_repo_metadata(self, repo_path: str) -> RepoMetadata | None:
        """Returns the metadata recorded for one repository, if any."""
        return self.read_metadata().get(repo_path)

    def record_action(
        self, repo_path: str, action: Action, output: str, timestamp: str
    ) -> RepoMetadata:
        """Stamps an executed action and its output (read-modify-write).

        Args:
            repo_path (str): The repository key.
            action (Action): The executed action.
            output (str): Combined output, stored as `lastCommandOutput`.
            timestamp (str): When the action ran.

        Returns:
            RepoMetadata: The updated record.
        """
        store = self.read_metadata()
        entry = store.get(repo_path) or RepoMetadata()
        entry.stamp(action, timestamp)
        entry.last_command_output = output
        store[repo_path] = entry
        self._write_json(
            self.metadata_file, {path: meta.to_dict() for path, meta in store.items()}
        )
        return entry
