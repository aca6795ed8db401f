import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME, DEFAULT_GIT_TIMEOUT, DEFAULT_MAX_OUTPUT

logger = logging.getLogger(APP_NAME)

TRUNCATION_MARKER = "\n... [output truncated]"

_CHUNK_SIZE = 64 * 1024

# Seconds to wait for pipe readers after a killed process.
_KILL_GRACE = 5


@dataclass(frozen=True)
class GitResult:
    """Captured outcome of a single Git invocation.

    Attributes:
        ok (bool): True if the process exited with status zero.
        stdout (str): Captured standard output (possibly truncated).
        stderr (str): Captured standard error (possibly truncated).
        code (int | None): The exit status, or None if the process never finished.
        timed_out (bool): True if the process was killed by the timeout.
    """

    ok: bool
    stdout: str
    stderr: str
    code: int | None = None
    timed_out: bool = False

    @property
    def combined(self) -> str:
        """Returns stdout and stderr joined as one stripped block of text."""
        return f"{self.stdout}\n{self.stderr}".strip()


class _StreamCollector(threading.Thread):
    """Drains one pipe in chunks, keeping at most `limit` characters.

    Excess output is read and discarded so the child never blocks on a full
    pipe. A non-positive limit keeps everything.
    """

    def __init__(self, stream, limit: int):
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self.chunks: list[str] = []
        self.size = 0
        self.truncated = False

    def run(self) -> None:
        with self.stream:
            for chunk in iter(lambda: self.stream.read(_CHUNK_SIZE), ""):
                if self.limit <= 0:
                    self.chunks.append(chunk)
                    continue
                room = self.limit - self.size
                if room <= 0:
                    self.truncated = True
                    continue
                if len(chunk) > room:
                    chunk = chunk[:room]
                    self.truncated = True
                self.chunks.append(chunk)
                self.size += len(chunk)

    @property
    def text(self) -> str:
        text = "".join(self.chunks)
        return text + TRUNCATION_MARKER if self.truncated else text


def run_git(
    cwd: Path | str,
    args: list[str],
    timeout: float | None = DEFAULT_GIT_TIMEOUT,
    max_output: int = DEFAULT_MAX_OUTPUT,
    executable: str = "git",
) -> GitResult:
    """Executes Git with an explicit working directory and argument vector.

    No shell is involved, so repository paths and user input are never
    interpolated. This function never raises: a non-zero exit, a timeout, or a
    missing executable all come back as a failed `GitResult`. Each stream is
    read in chunks and capped while the process runs, so a huge output never
    sits in memory in full.

    Args:
        cwd (Path | str): The working directory for the process.
        args (list[str]): Arguments passed after the executable.
        timeout (float | None, optional): Seconds before the process is killed.
                                          None or 0 disables the limit.
        max_output (int, optional): Characters kept per stream.
        executable (str, optional): The Git executable name or path.

    Returns:
        GitResult: The captured outcome.
    """
    env = os.environ.copy()
    # Credential prompts would block a headless process indefinitely.
    env["GIT_TERMINAL_PROMPT"] = "0"

    try:
        proc = subprocess.Popen(
            [executable, *args],
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            env=env,
        )
    except OSError as e:
        # Missing executable, unreadable or vanished working directory.
        logger.debug(f"Git could not start in {cwd}: {e}")
        return GitResult(ok=False, stdout="", stderr=str(e))

    out = _StreamCollector(proc.stdout, max_output)
    err = _StreamCollector(proc.stderr, max_output)
    out.start()
    err.start()

    try:
        code = proc.wait(timeout=timeout or None)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()
        out.join(_KILL_GRACE)
        err.join(_KILL_GRACE)
        logger.warning(f"TIMEOUT {cwd}: git {' '.join(args)} exceeded {timeout}s")
        return GitResult(ok=False, stdout=out.text, stderr=err.text, timed_out=True)

    out.join()
    err.join()

    if code != 0:
        logger.debug(f"git {' '.join(args)} exited {code} in {cwd}: {err.text.strip()}")

    return GitResult(ok=code == 0, stdout=out.text, stderr=err.text, code=code)


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Each method issues exactly one Git invocation through `run_git`. Queries
    return the raw `GitResult` so callers decide how a failure degrades.

    Attributes:
        path (Path): The file system path to the repository root.
        timeout (float | None): Per-command timeout in seconds.
        max_output (int): Characters kept per captured stream.
        executable (str): The Git executable name or path.
    """

    def __init__(
        self,
        path: Path | str,
        timeout: float | None = DEFAULT_GIT_TIMEOUT,
        max_output: int = DEFAULT_MAX_OUTPUT,
        executable: str = "git",
    ):
        self.path = Path(path)
        self.timeout = timeout
        self.max_output = max_output
        self.executable = executable

    def _run(self, args: list[str]) -> GitResult:
        """Executes a Git command within the repository context."""
        return run_git(
            self.path,
            args,
            timeout=self.timeout,
            max_output=self.max_output,
            executable=self.executable,
        )

    def symbolic_branch(self) -> GitResult:
        """Resolves the short name of the checked-out branch (empty if detached)."""
        return self._run(["symbolic-ref", "--short", "-q", "HEAD"])

    def status_porcelain(self) -> GitResult:
        """Returns the porcelain (machine-readable) status of the working tree."""
        return self._run(["status", "--porcelain"])

    def upstream(self) -> GitResult:
        """Resolves the remote-tracking ref configured for the current branch."""
        return self._run(
            ["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{upstream}"]
        )

    def ahead_behind(self, upstream: str) -> GitResult:
        """Counts commits on each side of `HEAD...upstream` in a single call.

        Args:
            upstream (str): The tracking ref (e.g., 'origin/main').
        """
        return self._run(["rev-list", "--left-right", "--count", f"HEAD...{upstream}"])

    def remote_url(self, remote: str = "origin") -> GitResult:
        """Retrieves the configured URL of a remote."""
        return self._run(["remote", "get-url", remote])

    def fetch(self) -> GitResult:
        """Fetches from the default remote, pruning deleted remote branches."""
        return self._run(["fetch", "--prune"])

    def pull_rebase(self) -> GitResult:
        """Pulls from the upstream branch, rebasing local commits on top."""
        return self._run(["pull", "--rebase"])

    def push(self) -> GitResult:
        """Pushes the current branch to its upstream."""
        return self._run(["push"])
