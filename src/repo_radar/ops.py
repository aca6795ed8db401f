import logging
import re
from pathlib import Path

from .config import Config
from .constants import APP_NAME, AUTH_ERROR_PATTERNS, AUTH_HINT, DEFAULT_HOSTS
from .git_wrapper import GitRepo, GitResult, run_git
from .models import (
    REPO_ACTIONS,
    Action,
    ActionResult,
    Badge,
    CloneResult,
    RepoStatus,
    utc_now,
)
from .status import resolve_status
from .storage import RadarStore

logger = logging.getLogger(APP_NAME)

_SHORTHAND = re.compile(r"^[^/\s]+/[^/\s]+$")


def is_auth_error(text: str) -> bool:
    """Best-effort check for credential failures in Git output.

    The phrases vary across locales and Git versions, so a match is advisory.

    Args:
        text (str): Combined stdout and stderr.

    Returns:
        bool: True if a known authentication failure phrase is present.
    """
    lower = text.lower()
    return any(fragment in lower for fragment in AUTH_ERROR_PATTERNS)


def check_preconditions(status: RepoStatus, action: Action) -> str | None:
    """Applies the safety policy for an action against a fresh status.

    Args:
        status (RepoStatus): The current state of the repository.
        action (Action): The requested action.

    Returns:
        str | None: The reason the action is blocked, or None if it may run.
    """
    if Badge.NO_ACCESS in status.badges:
        return "Action blocked: no read access to this repository folder."

    if action == Action.REBASE_PULL:
        if status.detached_head:
            return "Pull (rebase) blocked: repository is in detached HEAD state."
        if not status.upstream:
            return "Pull (rebase) blocked: no upstream tracking branch configured."
        if status.dirty:
            return (
                "Pull (rebase) blocked: working tree is dirty. "
                "Commit, discard, or stash manually first."
            )
        if status.ahead > 0 and status.behind > 0:
            return (
                "Pull (rebase) blocked: branch is diverged from upstream. "
                "Resolve manually."
            )

    if action == Action.PUSH:
        if status.detached_head:
            return "Push blocked: repository is in detached HEAD state."
        if not status.upstream:
            return "Push blocked: no upstream tracking branch configured."
        if status.ahead == 0:
            return "Push blocked: there are no local commits ahead of upstream."

    return None


def _outcome_message(action: Action, res: GitResult, timeout: int) -> str:
    """Summarizes an executed command, appending the auth hint on failure."""
    if res.ok:
        return f"{action} completed."
    if res.timed_out:
        return f"{action} timed out after {timeout}s."
    hint = AUTH_HINT if is_auth_error(res.combined) else ""
    return f"{action} failed.{hint}"


def run_action(
    repo_path: Path | str,
    action: Action | str,
    config: Config | None = None,
    store: RadarStore | None = None,
) -> ActionResult:
    """Runs a gated fetch, rebase-pull, or push against one repository.

    Status is always re-resolved first so the policy sees the current state.
    Every attempt is appended to the operation log; only executed attempts
    update the metadata store.

    Args:
        repo_path (Path | str): The working-copy root.
        action (Action | str): 'fetch', 'rebase-pull', or 'push'.
        config (Config | None): Runner settings. Defaults to Config().
        store (RadarStore | None): Persistence. Defaults to the configured store.

    Returns:
        ActionResult: The blocked or executed outcome.

    Raises:
        ValueError: If `action` is not a repository action.
    """
    action = Action(action)
    if action not in REPO_ACTIONS:
        raise ValueError(f"Unsupported repository action: {action}")

    config = config or Config()
    store = store or RadarStore(config.storage.path)

    # 1. Fresh precondition snapshot.
    status = resolve_status(repo_path, config, store)
    # Log and metadata entries share the key the status lookup reads.
    path_str = status.path
    if reason := check_preconditions(status, action):
        logger.info(f"BLOCKED {status.name}: {reason}")
        store.log_operation(path_str, action, False, reason)
        return ActionResult(
            ok=False,
            action=action,
            repo_path=path_str,
            message=reason,
            blocked_reason=reason,
        )

    # 2. Execute.
    repo = GitRepo(
        repo_path,
        timeout=config.git.timeout,
        max_output=config.git.max_output_size,
        executable=config.git.executable,
    )
    if action == Action.FETCH:
        res = repo.fetch()
    elif action == Action.REBASE_PULL:
        res = repo.pull_rebase()
    else:
        res = repo.push()

    timestamp = utc_now()
    message = _outcome_message(action, res, config.git.timeout)
    if res.ok:
        logger.info(f"SUCCESS {status.name}: {message}")
    else:
        logger.warning(f"FAILED {status.name}: {message}")

    # 3. Record.
    store.log_operation(path_str, action, res.ok, message, res.stdout, res.stderr)
    store.record_action(path_str, action, res.combined, timestamp)

    return ActionResult(
        ok=res.ok,
        action=action,
        repo_path=path_str,
        message=message,
        stdout=res.stdout,
        stderr=res.stderr,
        timed_out=res.timed_out,
        timestamp=timestamp,
    )


def to_clone_url(value: str, hosts: list[str] = DEFAULT_HOSTS) -> str:
    """Normalizes clone input into a URL.

    Full URLs and SSH specs pass through; `owner/repo` expands to HTTPS on the
    first configured host; anything else is returned unchanged for Git to judge.
    """
    trimmed = value.strip()
    if "://" in trimmed or trimmed.startswith("git@"):
        return trimmed
    if _SHORTHAND.match(trimmed) and hosts:
        return f"https://{hosts[0]}/{trimmed}.git"
    return trimmed


def clone_target_name(clone_url: str) -> str:
    """Returns the folder name Git creates for a clone URL."""
    name = re.split(r"[/:]", clone_url.rstrip("/"))[-1]
    if name.endswith(".git"):
        name = name[: -len(".git")]
    return name


def clone_repo(
    root_folder: Path | str,
    value: str,
    config: Config | None = None,
    store: RadarStore | None = None,
) -> CloneResult:
    """Clones a repository into the root folder unless the destination exists.

    Args:
        root_folder (Path | str): Directory the clone is created in.
        value (str): A URL, SSH spec, or `owner/repo` shorthand.
        config (Config | None): Runner settings. Defaults to Config().
        store (RadarStore | None): Persistence. Defaults to the configured store.

    Returns:
        CloneResult: The outcome; `cloned_path` is set on success.
    """
    config = config or Config()
    store = store or RadarStore(config.storage.path)
    timestamp = utc_now()
    clone_url = to_clone_url(value, config.git.hosts)
    root = Path(root_folder)
    destination = root / clone_target_name(clone_url)

    if destination.exists():
        reason = "Clone blocked: destination folder already exists."
        logger.info(f"BLOCKED clone {clone_url}: {destination} exists.")
        return CloneResult(
            ok=False,
            action=Action.CLONE,
            repo_path=str(destination),
            message=reason,
            blocked_reason=reason,
            timestamp=timestamp,
        )

    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"Could not create clone root {root}: {e}")

    res = run_git(
        root,
        ["clone", clone_url],
        timeout=config.git.timeout,
        max_output=config.git.max_output_size,
        executable=config.git.executable,
    )
    message = _outcome_message(Action.CLONE, res, config.git.timeout)
    if res.ok:
        logger.info(f"SUCCESS clone {clone_url} -> {destination}")
    else:
        logger.warning(f"FAILED clone {clone_url}: {message}")

    store.log_operation(
        str(destination), Action.CLONE, res.ok, message, res.stdout, res.stderr
    )

    return CloneResult(
        ok=res.ok,
        action=Action.CLONE,
        repo_path=str(destination),
        message=message,
        stdout=res.stdout,
        stderr=res.stderr,
        timed_out=res.timed_out,
        timestamp=timestamp,
        cloned_path=str(destination) if res.ok else None,
    )
