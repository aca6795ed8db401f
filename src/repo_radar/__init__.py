"""Repo Radar: status and safe synchronization for a tree of Git working copies.

This package provides the repository discovery scanner, the per-repository
status resolver, the gated fetch/pull/push/clone executor, the persisted
cache/log/metadata stores, and the command-line interface that drives them.
"""

from . import (
    cli,
    config,
    constants,
    engine,
    git_wrapper,
    models,
    ops,
    scanner,
    status,
    storage,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "engine",
    "git_wrapper",
    "models",
    "ops",
    "scanner",
    "status",
    "storage",
]
