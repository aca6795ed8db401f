import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .constants import APP_NAME, DEFAULT_SKIP_DIRS, GIT_DIR_NAME

logger = logging.getLogger(APP_NAME)


@dataclass
class ScanResult:
    """Outcome of one directory walk.

    Attributes:
        repos (list[str]): Sorted absolute paths of working-copy roots.
        unreadable (int): Directories skipped because they could not be listed.
    """

    repos: list[str] = field(default_factory=list)
    unreadable: int = 0


def _list_subdirs(directory: str) -> tuple[list[str], bool]:
    """Lists the names of non-symlinked child directories.

    Returns:
        tuple[list[str], bool]: The child directory names, and whether a
        `.git` directory is among them.
    """
    names = []
    is_repo = False
    with os.scandir(directory) as it:
        for entry in it:
            try:
                if not entry.is_dir(follow_symlinks=False):
                    continue
            except OSError:
                continue
            if entry.name == GIT_DIR_NAME:
                is_repo = True
            names.append(entry.name)
    return names, is_repo


def scan(root: Path | str, skip_dirs: Iterable[str] = DEFAULT_SKIP_DIRS) -> ScanResult:
    """Walks a directory tree and collects Git working-copy roots.

    A directory with a direct `.git` child is reported and not descended into,
    so nested repositories stay invisible. Directories named in `skip_dirs`
    are never entered. Unreadable directories are counted, not raised.

    Args:
        root (Path | str): The directory to walk.
        skip_dirs (Iterable[str], optional): Directory names to prune.

    Returns:
        ScanResult: The sorted repository roots and the unreadable count.
    """
    skip = frozenset(skip_dirs)
    result = ScanResult()
    found: set[str] = set()
    stack = [os.path.abspath(os.fspath(root))]

    while stack:
        current = stack.pop()
        try:
            children, is_repo = _list_subdirs(current)
        except OSError as e:
            logger.debug(f"Skipping unreadable directory {current}: {e}")
            result.unreadable += 1
            continue

        if is_repo:
            found.add(current)
            continue

        stack.extend(
            os.path.join(current, name) for name in children if name not in skip
        )

    result.repos = sorted(found)
    if result.unreadable:
        logger.debug(
            f"Scan of {root} skipped {result.unreadable} unreadable directories."
        )
    return result


def discover_repos(
    root: Path | str, skip_dirs: Iterable[str] = DEFAULT_SKIP_DIRS
) -> list[str]:
    """Returns the sorted list of Git working-copy roots beneath `root`."""
    return scan(root, skip_dirs).repos
