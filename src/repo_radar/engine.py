"""Orchestration of discovery, parallel status resolution, and expected remotes.

The engine keeps no state of its own between calls: the configuration and the
per-request `Settings` are passed in explicitly, and the only durable state
lives in the `RadarStore` files.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path

from .config import Config, Settings
from .constants import APP_NAME, LOG_FILE_NAME, MISSING_BRANCH
from .models import Action, Badge, DiscoveryCache, OperationLogEntry, RepoStatus
from .scanner import scan
from .status import resolve_status
from .storage import RadarStore

logger = logging.getLogger(APP_NAME)


def _normalize_slugs(slugs: list[str]) -> list[str]:
    """Trims, lower-cases, and de-duplicates slugs, preserving first-seen order."""
    cleaned = (s.strip().lower() for s in slugs)
    return list(dict.fromkeys(s for s in cleaned if s))


def missing_repo(root_folder: str, slug: str) -> RepoStatus:
    """Synthesizes the placeholder for an expected remote absent on disk."""
    repo_name = slug.split("/")[1] if "/" in slug else slug
    return RepoStatus(
        id=f"missing-{slug}",
        path=os.path.join(root_folder, repo_name),
        name=slug,
        branch=MISSING_BRANCH,
        remote_slug=slug,
        badges=[Badge.MISSING_LOCALLY],
    )


def discover(
    settings: Settings,
    force_rescan: bool,
    config: Config,
    store: RadarStore,
) -> list[str]:
    """Returns repository paths, from the cache when it is valid for the root.

    The cache is bypassed when `force_rescan` is set or the cached root differs
    from the configured one; a fresh walk always overwrites it.
    """
    cache = store.read_cache()
    if not force_rescan and cache and cache.root_folder == settings.root_folder:
        logger.debug(f"Using cached discovery from {cache.scanned_at}.")
        return cache.repos

    result = scan(settings.root_folder, config.scan.all_skip_dirs)
    logger.info(
        f"SCAN {settings.root_folder}: {len(result.repos)} repositories, "
        f"{result.unreadable} unreadable directories skipped."
    )
    store.write_cache(
        DiscoveryCache(root_folder=settings.root_folder, repos=result.repos)
    )
    return result.repos


def get_repos(
    settings: Settings,
    force_rescan: bool = False,
    config: Config | None = None,
    store: RadarStore | None = None,
) -> list[RepoStatus]:
    """Resolves the status of every repository under the configured root.

    Args:
        settings (Settings): Root folder and expected slugs for this request.
        force_rescan (bool, optional): Ignore the discovery cache.
        config (Config | None): Engine settings. Defaults to Config().
        store (RadarStore | None): Persistence. Defaults to the configured store.

    Returns:
        list[RepoStatus]: Resolved and synthesized entries sorted by name.
    """
    if not settings.root_folder:
        return []

    # Cache entries and placeholder paths are keyed on the absolute root.
    root_folder = os.path.abspath(os.path.expanduser(settings.root_folder))
    settings = replace(settings, root_folder=root_folder)

    config = config or Config()
    store = store or RadarStore(config.storage.path)

    repo_paths = discover(settings, force_rescan, config, store)

    # Each resolution touches only its own working copy.
    statuses: list[RepoStatus] = []
    if repo_paths:
        workers = min(config.engine.worker_count(), len(repo_paths))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            statuses = list(
                executor.map(lambda p: resolve_status(p, config, store), repo_paths)
            )

    message = (
        "Repository rescan completed."
        if force_rescan
        else "Repository status refresh completed."
    )
    store.log_operation(settings.root_folder, Action.SCAN, True, message)

    present = {s.remote_slug.lower() for s in statuses if s.remote_slug}
    for slug in _normalize_slugs(settings.expected_slugs):
        if slug not in present:
            statuses.append(missing_repo(settings.root_folder, slug))

    return sorted(statuses, key=lambda s: s.name.lower())


def get_logs(
    config: Config | None = None, store: RadarStore | None = None
) -> list[OperationLogEntry]:
    """Returns the most recent operation log entries, newest first."""
    config = config or Config()
    store = store or RadarStore(config.storage.path)
    return store.read_logs(config.limits.log_window)


def log_file_path(config: Config) -> Path:
    """Returns where the rotating diagnostic log lives for a configuration."""
    return config.storage.path / LOG_FILE_NAME
