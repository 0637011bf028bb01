"""Destructive filesystem helpers used by the mover, eviction and retention."""

import logging
import os
import shutil
from pathlib import Path

log = logging.getLogger("tiering.tree_ops")


def remove_path(path) -> None:
    """Delete a file or a whole directory tree. A missing path is a no-op."""
    path = Path(path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        try:
            path.unlink()
        except FileNotFoundError:
            pass


def prune_empty_dirs(root) -> int:
    """Remove empty directories below root, deepest first. root itself is kept."""
    root = Path(root)
    if not root.is_dir():
        return 0
    removed = 0
    for dirpath, dirnames, filenames in os.walk(root, topdown=False):
        path = Path(dirpath)
        if path == root:
            continue
        try:
            path.rmdir()
            removed += 1
        except OSError:
            # not empty, or removed concurrently
            continue
    if removed:
        log.debug(f"Pruned {removed} empty directories under {root}")
    return removed


def prune_parents(path, stop_at) -> None:
    """Remove path's empty ancestors up to, but not including, stop_at."""
    path, stop_at = Path(path), Path(stop_at)
    while path != stop_at and stop_at in path.parents:
        try:
            path.rmdir()
        except OSError:
            return
        path = path.parent
