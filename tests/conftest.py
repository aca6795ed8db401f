"""Shared fixtures for the Repo Radar test suite."""

from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from repo_radar.config import Config
from repo_radar.git_wrapper import GitResult
from repo_radar.storage import RadarStore


@pytest.fixture
def store(tmp_path: Path) -> RadarStore:
    """A store rooted in a throwaway data directory."""
    return RadarStore(tmp_path / "state")


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """A default configuration whose stores live under tmp_path."""
    conf = Config()
    conf.storage.data_dir = str(tmp_path / "state")
    conf.engine.max_workers = 2
    return conf


def ok(stdout: str = "", stderr: str = "") -> GitResult:
    return GitResult(ok=True, stdout=stdout, stderr=stderr, code=0)


def fail(stderr: str = "fatal: error", stdout: str = "") -> GitResult:
    return GitResult(ok=False, stdout=stdout, stderr=stderr, code=128)


def fake_git(
    *,
    branch: GitResult | None = None,
    status: GitResult | None = None,
    upstream: GitResult | None = None,
    counts: GitResult | None = None,
    origin: GitResult | None = None,
    actions: dict[str, GitResult] | None = None,
) -> Callable[..., GitResult]:
    """Builds a `run_git` replacement answering each query by its subcommand."""
    answers = {
        "symbolic-ref": branch or ok("main\n"),
        "status": status or ok(""),
        "rev-parse": upstream or ok("origin/main\n"),
        "rev-list": counts or ok("0\t0\n"),
        "remote": origin or ok("git@github.com:octo/widgets.git\n"),
    }
    answers.update(actions or {})

    def _run(cwd: Path, args: list[str], **kwargs: object) -> GitResult:
        return answers.get(args[0], fail(f"unexpected git {args[0]}"))

    return _run


@pytest.fixture
def mock_git(mocker: MagicMock) -> Callable[..., MagicMock]:
    """Patches the process runner with canned answers and returns the mock."""

    def _install(**kwargs: object) -> MagicMock:
        return mocker.patch(
            "repo_radar.git_wrapper.run_git", side_effect=fake_git(**kwargs)
        )

    return _install
