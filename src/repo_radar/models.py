"""Data records exchanged between the engine and its presentation layer.

Every record serializes to a plain JSON dictionary with camelCase keys so the
persisted stores and the `--json` CLI output share one shape.
"""

import datetime
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


def utc_now() -> str:
    """Returns the current time as an ISO-8601 UTC string."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


class Badge(StrEnum):
    """Derived status tags summarizing one aspect of a repository."""

    CLEAN = "CLEAN"
    DIRTY = "DIRTY"
    AHEAD = "AHEAD"
    BEHIND = "BEHIND"
    DIVERGED = "DIVERGED"
    NO_UPSTREAM = "NO_UPSTREAM"
    DETACHED_HEAD = "DETACHED_HEAD"
    ERROR = "ERROR"
    NO_ACCESS = "NO_ACCESS"
    MISSING_LOCALLY = "MISSING_LOCALLY"


class Action(StrEnum):
    """Operations recorded in the operation log."""

    FETCH = "fetch"
    REBASE_PULL = "rebase-pull"
    PUSH = "push"
    CLONE = "clone"
    SCAN = "scan"


REPO_ACTIONS = (Action.FETCH, Action.REBASE_PULL, Action.PUSH)
"""tuple[Action, ...]: Actions that run against an existing working copy."""


@dataclass
class RepoMetadata:
    """Persisted per-repository record of the latest executed actions.

    Attributes:
        fetch_at (str | None): When the last fetch ran.
        rebase_pull_at (str | None): When the last rebase-pull ran.
        push_at (str | None): When the last push ran.
        last_command_output (str | None): Combined output of the latest attempt.
    """

    fetch_at: str | None = None
    rebase_pull_at: str | None = None
    push_at: str | None = None
    last_command_output: str | None = None

    _KEYS = {
        "fetch_at": "fetchAt",
        "rebase_pull_at": "rebasePullAt",
        "push_at": "pushAt",
        "last_command_output": "lastCommandOutput",
    }

    def stamp(self, action: Action, timestamp: str) -> None:
        """Records the timestamp for a repository action."""
        if action == Action.FETCH:
            self.fetch_at = timestamp
        elif action == Action.REBASE_PULL:
            self.rebase_pull_at = timestamp
        elif action == Action.PUSH:
            self.push_at = timestamp

    def to_dict(self) -> dict[str, Any]:
        return {
            key: getattr(self, attr)
            for attr, key in self._KEYS.items()
            if getattr(self, attr) is not None
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RepoMetadata":
        values = {}
        for attr, key in cls._KEYS.items():
            value = data.get(key)
            if isinstance(value, str):
                values[attr] = value
        return cls(**values)


@dataclass
class RepoStatus:
    """One snapshot of one repository at one point in time.

    A record carrying `Badge.MISSING_LOCALLY` is synthesized for an expected
    remote and holds no resolved git data.
    """

    path: str
    name: str
    branch: str
    id: str = ""
    detached_head: bool = False
    dirty: bool = False
    modified_count: int = 0
    untracked_count: int = 0
    origin_url: str = ""
    remote_slug: str | None = None
    upstream: str | None = None
    ahead: int = 0
    behind: int = 0
    badges: list[Badge] = field(default_factory=list)
    last_refresh_time: str = field(default_factory=utc_now)
    error: str | None = None
    timestamps: RepoMetadata | None = None

    def __post_init__(self) -> None:
        if not self.id:
            self.id = self.path

    @property
    def missing(self) -> bool:
        return Badge.MISSING_LOCALLY in self.badges

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "name": self.name,
            "branch": self.branch,
            "detachedHead": self.detached_head,
            "dirty": self.dirty,
            "modifiedCount": self.modified_count,
            "untrackedCount": self.untracked_count,
            "originUrl": self.origin_url,
            "remoteSlug": self.remote_slug,
            "upstream": self.upstream,
            "ahead": self.ahead,
            "behind": self.behind,
            "badges": [str(b) for b in self.badges],
            "lastRefreshTime": self.last_refresh_time,
            "error": self.error,
            "timestamps": self.timestamps.to_dict() if self.timestamps else None,
        }


@dataclass(frozen=True)
class OperationLogEntry:
    """Immutable record appended to the operation log."""

    id: str
    timestamp: str
    repo: str
    action: Action
    success: bool
    message: str
    stdout: str = ""
    stderr: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "repo": self.repo,
            "action": str(self.action),
            "success": self.success,
            "message": self.message,
            "stdout": self.stdout,
            "stderr": self.stderr,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OperationLogEntry":
        """Builds an entry from a decoded log line.

        Raises:
            KeyError: If a required field is missing.
            ValueError: If the action is not a known value.
        """
        return cls(
            id=str(data["id"]),
            timestamp=str(data["timestamp"]),
            repo=str(data["repo"]),
            action=Action(data["action"]),
            success=bool(data["success"]),
            message=str(data.get("message", "")),
            stdout=str(data.get("stdout", "")),
            stderr=str(data.get("stderr", "")),
        )


@dataclass
class DiscoveryCache:
    """Last discovery result, valid only for the root it was scanned from."""

    root_folder: str
    repos: list[str]
    scanned_at: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rootFolder": self.root_folder,
            "repos": list(self.repos),
            "scannedAt": self.scanned_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DiscoveryCache":
        repos = data["repos"]
        if not isinstance(repos, list):
            raise ValueError("Cache 'repos' must be a list")
        return cls(
            root_folder=str(data["rootFolder"]),
            repos=[str(r) for r in repos],
            scanned_at=str(data.get("scannedAt", "")),
        )


@dataclass
class ActionResult:
    """Outcome of a gated repository action.

    Attributes:
        ok (bool): True if Git ran and exited zero.
        action (Action): The requested action.
        repo_path (str): The repository the action targeted.
        message (str): Human-readable summary.
        stdout (str): Captured standard output (empty when blocked).
        stderr (str): Captured standard error (empty when blocked).
        blocked_reason (str | None): Set when a precondition refused the action.
        timed_out (bool): True if the Git process hit the configured timeout.
        timestamp (str): When the result was produced.
    """

    ok: bool
    action: Action
    repo_path: str
    message: str
    stdout: str = ""
    stderr: str = ""
    blocked_reason: str | None = None
    timed_out: bool = False
    timestamp: str = field(default_factory=utc_now)

    @property
    def blocked(self) -> bool:
        return self.blocked_reason is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "action": str(self.action),
            "repoPath": self.repo_path,
            "message": self.message,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "blockedReason": self.blocked_reason,
            "timedOut": self.timed_out,
            "timestamp": self.timestamp,
        }


@dataclass
class CloneResult(ActionResult):
    """Outcome of a clone; `cloned_path` is set only on success."""

    cloned_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["clonedPath"] = self.cloned_path
        return data
