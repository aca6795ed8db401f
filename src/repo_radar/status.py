"""Resolution of a single repository's synchronization state.

`resolve_status` runs a fixed sequence of Git queries and folds every failure
into a field of the returned `RepoStatus`; it never raises for Git errors.
The parsing helpers are pure functions so they can be tested in isolation.
"""

import logging
import os
import re
from collections.abc import Iterable
from pathlib import Path
from urllib.parse import urlsplit

from .config import Config
from .constants import APP_NAME, DEFAULT_HOSTS, DETACHED_BRANCH, UNTRACKED_MARKER
from .git_wrapper import GitRepo
from .models import Badge, RepoStatus, utc_now
from .storage import RadarStore

logger = logging.getLogger(APP_NAME)

# git@host:owner/repo(.git) and host:owner/repo shapes.
_SCP_LIKE = re.compile(r"^(?:[^@/\s]+@)?(?P<host>[^:/\s]+):(?P<path>[^\s]+)$")


def parse_porcelain(output: str) -> tuple[int, int]:
    """Counts changed entries in `git status --porcelain` output.

    Args:
        output (str): The raw porcelain text.

    Returns:
        tuple[int, int]: (modified_count, untracked_count). Every non-empty
        line counts towards exactly one of the two.
    """
    modified = 0
    untracked = 0
    for line in output.split("\n"):
        line = line.rstrip()
        if not line:
            continue
        if line.startswith(UNTRACKED_MARKER):
            untracked += 1
        else:
            modified += 1
    return modified, untracked


def parse_ahead_behind(output: str) -> tuple[int, int]:
    """Parses `rev-list --left-right --count` output into (ahead, behind).

    Each side falls back to 0 independently if it is missing or not an integer.
    """
    parts = output.split()

    def _count(index: int) -> int:
        try:
            return max(int(parts[index]), 0)
        except (IndexError, ValueError):
            return 0

    return _count(0), _count(1)


def _slug_from_path(path: str) -> str | None:
    path = path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    segments = path.split("/")
    if len(segments) != 2 or not all(segments):
        return None
    return "/".join(segments)


def parse_remote_slug(url: str, hosts: Iterable[str] = DEFAULT_HOSTS) -> str | None:
    """Extracts an `owner/repo` slug from an SSH or HTTPS remote URL.

    Args:
        url (str): The remote URL (e.g., 'git@github.com:owner/repo.git').
        hosts (Iterable[str], optional): Recognized hosting services.

    Returns:
        str | None: The slug, or None for unknown hosts and malformed URLs.
    """
    url = url.strip()
    if not url:
        return None
    allowed = {h.lower() for h in hosts}

    if "://" in url:
        try:
            parts = urlsplit(url)
            host = (parts.hostname or "").lower()
        except ValueError:
            return None
        if host not in allowed:
            return None
        return _slug_from_path(parts.path)

    match = _SCP_LIKE.match(url)
    if not match or match.group("host").lower() not in allowed:
        return None
    return _slug_from_path(match.group("path"))


def derive_badges(
    *,
    error: bool,
    detached: bool,
    upstream: str | None,
    dirty: bool,
    ahead: int,
    behind: int,
    no_access: bool = False,
) -> list[Badge]:
    """Derives status badges in their fixed evaluation order.

    `DIVERGED` replaces standalone `AHEAD`/`BEHIND`. `CLEAN` means no other
    negative signal (dirty, ahead, behind, detached) holds.
    """
    badges = []
    if no_access:
        badges.append(Badge.NO_ACCESS)
    if error:
        badges.append(Badge.ERROR)
    if detached:
        badges.append(Badge.DETACHED_HEAD)
    if not upstream:
        badges.append(Badge.NO_UPSTREAM)
    if dirty:
        badges.append(Badge.DIRTY)
    if ahead > 0 and behind > 0:
        badges.append(Badge.DIVERGED)
    else:
        if ahead > 0:
            badges.append(Badge.AHEAD)
        if behind > 0:
            badges.append(Badge.BEHIND)
    if not dirty and ahead == 0 and behind == 0 and not detached:
        badges.append(Badge.CLEAN)
    return badges


def has_access(repo_path: Path) -> bool:
    """Checks that the process may list and enter the repository directory."""
    return os.access(repo_path, os.R_OK | os.X_OK)


def resolve_status(
    repo_path: Path | str,
    config: Config | None = None,
    store: RadarStore | None = None,
) -> RepoStatus:
    """Resolves the current status of one repository.

    All queries are attempted even if an earlier one failed; only the
    ahead/behind count is skipped when there is no upstream. Only a failed
    porcelain status sets `error`.

    Args:
        repo_path (Path | str): The working-copy root.
        config (Config | None): Runner and host settings. Defaults to Config().
        store (RadarStore | None): Metadata source. None skips the merge.

    Returns:
        RepoStatus: The resolved snapshot.
    """
    config = config or Config()
    path = Path(repo_path)
    repo = GitRepo(
        path,
        timeout=config.git.timeout,
        max_output=config.git.max_output_size,
        executable=config.git.executable,
    )
    now = utc_now()
    no_access = not has_access(path)

    # 1. Branch
    branch_res = repo.symbolic_branch()
    branch_name = branch_res.stdout.strip()
    detached = not branch_res.ok or not branch_name
    branch = DETACHED_BRANCH if detached else branch_name

    # 2. Working tree
    status_res = repo.status_porcelain()
    modified, untracked = parse_porcelain(status_res.stdout)
    dirty = (modified + untracked) > 0
    error = None
    if not status_res.ok:
        error = status_res.stderr.strip() or "Unable to read git status"
        logger.debug(f"STATUS ERROR {path.name}: {error}")

    # 3. Upstream
    upstream_res = repo.upstream()
    upstream = upstream_res.stdout.strip() if upstream_res.ok else ""
    upstream = upstream or None

    # 4. Ahead / behind
    ahead = behind = 0
    if upstream:
        counts_res = repo.ahead_behind(upstream)
        if counts_res.ok:
            ahead, behind = parse_ahead_behind(counts_res.stdout)

    # 5. Origin
    origin_res = repo.remote_url("origin")
    origin_url = origin_res.stdout.strip() if origin_res.ok else ""
    slug = parse_remote_slug(origin_url, config.git.hosts)

    badges = derive_badges(
        error=error is not None,
        detached=detached,
        upstream=upstream,
        dirty=dirty,
        ahead=ahead,
        behind=behind,
        no_access=no_access,
    )

    # 6. Persisted metadata
    metadata = store.read_repo_metadata(str(path)) if store else None

    return RepoStatus(
        path=str(path),
        name=path.name,
        branch=branch,
        detached_head=detached,
        dirty=dirty,
        modified_count=modified,
        untracked_count=untracked,
        origin_url=origin_url,
        remote_slug=slug,
        upstream=upstream,
        ahead=ahead,
        behind=behind,
        badges=badges,
        last_refresh_time=now,
        error=error,
        timestamps=metadata,
    )
