"""Tests for the gated action executor and clone flow."""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from conftest import fail, ok

from repo_radar.config import Config
from repo_radar.constants import AUTH_HINT
from repo_radar.git_wrapper import GitResult
from repo_radar.models import Action, Badge, RepoStatus
from repo_radar.ops import (
    check_preconditions,
    clone_repo,
    clone_target_name,
    is_auth_error,
    run_action,
    to_clone_url,
)
from repo_radar.status import resolve_status
from repo_radar.storage import RadarStore


def make_status(**overrides: object) -> RepoStatus:
    """Builds a clean, tracked, up-to-date status with selected overrides."""
    values: dict = {
        "path": "/src/widgets",
        "name": "widgets",
        "branch": "main",
        "upstream": "origin/main",
        "badges": [Badge.CLEAN],
    }
    values.update(overrides)
    return RepoStatus(**values)


# --- Precondition policy ---


@pytest.mark.parametrize(
    ("overrides", "action", "fragment"),
    [
        ({"detached_head": True}, Action.REBASE_PULL, "detached HEAD"),
        ({"upstream": None}, Action.REBASE_PULL, "no upstream"),
        ({"dirty": True}, Action.REBASE_PULL, "working tree is dirty"),
        ({"ahead": 1, "behind": 2}, Action.REBASE_PULL, "diverged"),
        ({"detached_head": True}, Action.PUSH, "detached HEAD"),
        ({"upstream": None, "ahead": 3}, Action.PUSH, "no upstream"),
        ({"ahead": 0}, Action.PUSH, "no local commits ahead"),
        ({"badges": [Badge.NO_ACCESS]}, Action.FETCH, "no read access"),
    ],
)
def test_check_preconditions_blocks(
    overrides: dict, action: Action, fragment: str
) -> None:
    reason = check_preconditions(make_status(**overrides), action)
    assert reason is not None
    assert fragment in reason


@pytest.mark.parametrize(
    ("overrides", "action"),
    [
        ({"dirty": True, "detached_head": True, "upstream": None}, Action.FETCH),
        ({"behind": 4}, Action.REBASE_PULL),
        ({}, Action.REBASE_PULL),
        ({"ahead": 2}, Action.PUSH),
        ({"ahead": 2, "dirty": True}, Action.PUSH),
        ({"ahead": 2, "behind": 1}, Action.PUSH),
    ],
)
def test_check_preconditions_allows(overrides: dict, action: Action) -> None:
    assert check_preconditions(make_status(**overrides), action) is None


def test_detached_precedes_other_pull_reasons() -> None:
    status = make_status(detached_head=True, upstream=None, dirty=True)
    reason = check_preconditions(status, Action.REBASE_PULL)
    assert reason == "Pull (rebase) blocked: repository is in detached HEAD state."


@pytest.mark.parametrize(
    "text",
    [
        "remote: Invalid username or password.\nfatal: Authentication failed for 'x'",
        "fatal: could not read Username for 'https://github.com'",
        "git@github.com: Permission denied (publickey).",
        "ERROR: Repository not found.",
    ],
)
def test_is_auth_error_matches_known_phrases(text: str) -> None:
    assert is_auth_error(text)


def test_is_auth_error_ignores_other_failures() -> None:
    assert not is_auth_error("fatal: unable to access: Could not resolve host")


# --- run_action ---


def test_push_with_nothing_ahead_never_invokes_push(
    tmp_path: Path,
    config: Config,
    store: RadarStore,
    mock_git: Callable[..., MagicMock],
) -> None:
    """A blocked push issues only status queries and records the refusal."""
    mock_run = mock_git(actions={"push": ok("pushed")})

    result = run_action(tmp_path, Action.PUSH, config, store)

    assert result.ok is False
    assert result.blocked
    assert "no local commits ahead" in result.message
    subcommands = [c.args[1][0] for c in mock_run.call_args_list]
    assert "push" not in subcommands

    [entry] = store.read_logs()
    assert entry.action == Action.PUSH
    assert entry.success is False
    assert store.read_repo_metadata(str(tmp_path)) is None


def test_dirty_rebase_pull_is_blocked(
    tmp_path: Path,
    config: Config,
    store: RadarStore,
    mock_git: Callable[..., MagicMock],
) -> None:
    mock_run = mock_git(status=ok(" M file.txt\n"), counts=ok("0\t3\n"))

    result = run_action(tmp_path, "rebase-pull", config, store)

    assert result.blocked
    assert "dirty" in result.message
    assert result.stdout == "" and result.stderr == ""
    assert "pull" not in [c.args[1][0] for c in mock_run.call_args_list]
    assert store.read_logs()[0].success is False


def test_fetch_success_records_log_and_metadata(
    tmp_path: Path,
    config: Config,
    store: RadarStore,
    mock_git: Callable[..., MagicMock],
) -> None:
    mock_run = mock_git(actions={"fetch": ok("", "From github.com:octo/widgets\n")})

    result = run_action(tmp_path, Action.FETCH, config, store)

    assert result.ok is True
    assert result.message == "fetch completed."
    assert mock_run.call_args.args[1] == ["fetch", "--prune"]

    [entry] = store.read_logs()
    assert entry.success is True
    assert entry.repo == str(tmp_path)
    assert entry.stderr == "From github.com:octo/widgets\n"

    meta = store.read_repo_metadata(str(tmp_path))
    assert meta is not None
    assert meta.fetch_at == result.timestamp
    assert meta.last_command_output == "From github.com:octo/widgets"


def test_action_metadata_is_found_through_a_trailing_slash_path(
    tmp_path: Path,
    config: Config,
    store: RadarStore,
    mock_git: Callable[..., MagicMock],
) -> None:
    """Verifies that differently spelled paths share one metadata entry."""
    mock_git(actions={"fetch": ok()})

    result = run_action(str(tmp_path) + "/", Action.FETCH, config, store)
    status = resolve_status(tmp_path, config, store)

    assert result.repo_path == str(tmp_path)
    assert status.timestamps is not None
    assert status.timestamps.fetch_at == result.timestamp
    assert store.read_logs()[0].repo == str(tmp_path)


def test_push_runs_when_ahead(
    tmp_path: Path,
    config: Config,
    store: RadarStore,
    mock_git: Callable[..., MagicMock],
) -> None:
    mock_git(counts=ok("2\t0\n"), actions={"push": ok("", "main -> main\n")})

    result = run_action(tmp_path, Action.PUSH, config, store)

    assert result.ok is True
    assert store.read_repo_metadata(str(tmp_path)).push_at == result.timestamp


def test_failed_action_appends_auth_hint_and_updates_metadata(
    tmp_path: Path,
    config: Config,
    store: RadarStore,
    mock_git: Callable[..., MagicMock],
) -> None:
    mock_git(
        counts=ok("0\t1\n"),
        actions={"pull": fail("fatal: Authentication failed for 'https://x'")},
    )

    result = run_action(tmp_path, Action.REBASE_PULL, config, store)

    assert result.ok is False
    assert not result.blocked
    assert result.message == f"rebase-pull failed.{AUTH_HINT}"
    meta = store.read_repo_metadata(str(tmp_path))
    assert meta.rebase_pull_at == result.timestamp
    assert "Authentication failed" in meta.last_command_output


def test_failed_action_without_auth_phrase_has_no_hint(
    tmp_path: Path,
    config: Config,
    store: RadarStore,
    mock_git: Callable[..., MagicMock],
) -> None:
    mock_git(actions={"fetch": fail("fatal: Could not resolve host: github.com")})

    result = run_action(tmp_path, Action.FETCH, config, store)

    assert result.message == "fetch failed."


def test_timed_out_action(
    tmp_path: Path,
    config: Config,
    store: RadarStore,
    mock_git: Callable[..., MagicMock],
) -> None:
    config.git.timeout = 30
    timed_out = GitResult(ok=False, stdout="", stderr="", timed_out=True)
    mock_git(actions={"fetch": timed_out})

    result = run_action(tmp_path, Action.FETCH, config, store)

    assert result.timed_out is True
    assert result.message == "fetch timed out after 30s."
    assert store.read_logs()[0].success is False


@pytest.mark.parametrize("action", ["clone", "scan", "teleport"])
def test_run_action_rejects_non_repository_actions(
    tmp_path: Path, config: Config, store: RadarStore, action: str
) -> None:
    with pytest.raises(ValueError):
        run_action(tmp_path, action, config, store)


def test_run_action_uses_fresh_status(
    mocker: MagicMock, config: Config, store: RadarStore
) -> None:
    """The precondition check always sees a newly resolved snapshot."""
    mock_resolve = mocker.patch(
        "repo_radar.ops.resolve_status",
        return_value=make_status(ahead=0),
    )
    mock_repo_cls = mocker.patch("repo_radar.ops.GitRepo")

    result = run_action("/src/widgets", Action.PUSH, config, store)

    mock_resolve.assert_called_once_with("/src/widgets", config, store)
    mock_repo_cls.assert_not_called()
    assert result.blocked


# --- Clone ---


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("octo/widgets", "https://github.com/octo/widgets.git"),
        ("  octo/widgets  ", "https://github.com/octo/widgets.git"),
        ("https://github.com/octo/widgets", "https://github.com/octo/widgets"),
        ("git@github.com:octo/widgets.git", "git@github.com:octo/widgets.git"),
        ("ssh://git@host/octo/widgets.git", "ssh://git@host/octo/widgets.git"),
        ("widgets", "widgets"),
    ],
)
def test_to_clone_url(value: str, expected: str) -> None:
    assert to_clone_url(value) == expected


def test_to_clone_url_uses_first_configured_host() -> None:
    url = to_clone_url("team/svc", ["gitlab.example.org", "github.com"])
    assert url == "https://gitlab.example.org/team/svc.git"


@pytest.mark.parametrize(
    ("url", "name"),
    [
        ("https://github.com/octo/widgets.git", "widgets"),
        ("https://github.com/octo/widgets/", "widgets"),
        ("git@github.com:octo/widgets.git", "widgets"),
        ("git@github.com:widgets.git", "widgets"),
    ],
)
def test_clone_target_name(url: str, name: str) -> None:
    assert clone_target_name(url) == name


def test_clone_blocked_when_destination_exists(
    tmp_path: Path, config: Config, store: RadarStore, mocker: MagicMock
) -> None:
    (tmp_path / "widgets").mkdir()
    mock_run = mocker.patch("repo_radar.ops.run_git")

    result = clone_repo(tmp_path, "octo/widgets", config, store)

    assert result.ok is False
    assert result.blocked
    assert "destination folder already exists" in result.message
    assert result.cloned_path is None
    mock_run.assert_not_called()


def test_clone_success(
    tmp_path: Path, config: Config, store: RadarStore, mocker: MagicMock
) -> None:
    root = tmp_path / "projects"
    mock_run = mocker.patch(
        "repo_radar.ops.run_git", return_value=ok("", "Cloning into 'widgets'...\n")
    )

    result = clone_repo(root, "octo/widgets", config, store)

    assert root.is_dir()
    assert mock_run.call_args.args == (
        root,
        ["clone", "https://github.com/octo/widgets.git"],
    )
    assert result.ok is True
    assert result.message == "clone completed."
    assert result.cloned_path == str(root / "widgets")

    [entry] = store.read_logs()
    assert entry.action == Action.CLONE
    assert entry.repo == str(root / "widgets")
    assert store.read_metadata() == {}


def test_clone_failure_reports_auth_hint(
    tmp_path: Path, config: Config, store: RadarStore, mocker: MagicMock
) -> None:
    mocker.patch(
        "repo_radar.ops.run_git", return_value=fail("ERROR: Repository not found.")
    )

    result = clone_repo(tmp_path, "octo/private", config, store)

    assert result.ok is False
    assert not result.blocked
    assert result.cloned_path is None
    assert result.message == f"clone failed.{AUTH_HINT}"
    assert store.read_logs()[0].success is False
