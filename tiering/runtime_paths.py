"""Writable-path resolution shared by log files and lock files."""

from pathlib import Path


def _touch(path: Path):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a"):
        pass


def resolve_writable_path(primary, runtime_dir) -> Path:
    """Return primary if it can be opened for append, else runtime_dir/<name>.

    Raises OSError when neither location is writable.
    """
    primary = Path(primary)
    try:
        _touch(primary)
        return primary
    except OSError:
        fallback = Path(runtime_dir) / primary.name
        _touch(fallback)
        return fallback
