"""Filesystem helpers shared by the tiering tests."""

import os
import shutil
import time
from pathlib import Path

from disk_inventory import DiskUsage, iter_files
from media_config import Category, load_settings
from rsync_transfer import TransferResult


def make_settings(tmp, **overrides):
    """Settings rooted in a temp dir, with every category root created."""
    tmp = Path(tmp)
    for tier in ("ssd", "hd"):
        for category in Category:
            (tmp / tier / category.value).mkdir(parents=True, exist_ok=True)
    environ = {
        "SSD_ROOT": str(tmp / "ssd"),
        "HD_MOUNT": str(tmp / "hd"),
        "ARCHIVE_REQUIRE_MOUNT": "0",
        "RUNTIME_DIR": str(tmp / "runtime"),
        "LOG_DIR": str(tmp / "logs"),
        "LOCK_STORAGE": str(tmp / "locks" / "storage.lock"),
        "LOCK_MEDIA": str(tmp / "locks" / "media.lock"),
    }
    environ.update({k: str(v) for k, v in overrides.items()})
    return load_settings(env_file=tmp / "absent.env", environ=environ)


def write_file(path, size: int = 16, age: float | None = None, now: float | None = None) -> Path:
    """Create a file of size bytes, optionally backdated by age seconds."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)
    if age is not None:
        mtime = (time.time() if now is None else now) - age
        os.utime(path, (mtime, mtime))
    return path


class FakeTransfer:
    """shutil-backed stand-in for RsyncTransfer that records its calls."""

    def __init__(self, fail: bool = False, bwlimit: int = 20000):
        self.fail = fail
        self.bwlimit = bwlimit
        self.calls = []

    def with_bwlimit(self, bwlimit: int):
        clone = FakeTransfer(self.fail, bwlimit)
        clone.calls = self.calls
        return clone

    def _failed(self):
        return TransferResult(False, 23, error="simulated failure")

    def copy_file(self, src, dst):
        self.calls.append(("copy_file", Path(src), Path(dst), self.bwlimit))
        if self.fail:
            return self._failed()
        Path(dst).parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dst)
        return TransferResult(True, 0, 1, Path(src).stat().st_size)

    def copy_tree(self, src_dir, dst_dir, skip_existing: bool = False):
        self.calls.append(("copy_tree", Path(src_dir), Path(dst_dir), self.bwlimit))
        if self.fail:
            return self._failed()
        entries = iter_files(src_dir)
        return self._copy(src_dir, dst_dir, [e.rel for e in entries], skip_existing)

    def copy_files(self, src_root, dst_root, rel_paths, skip_existing: bool = True):
        self.calls.append(("copy_files", Path(src_root), Path(dst_root), self.bwlimit))
        if self.fail:
            return self._failed()
        return self._copy(src_root, dst_root, list(rel_paths), skip_existing)

    def _copy(self, src_root, dst_root, rel_paths, skip_existing):
        files = nbytes = 0
        for rel in rel_paths:
            src, dst = Path(src_root) / rel, Path(dst_root) / rel
            if not src.exists() or (skip_existing and dst.exists()):
                continue
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src, dst)
            files += 1
            nbytes += src.stat().st_size
        Path(dst_root).mkdir(parents=True, exist_ok=True)
        return TransferResult(True, 0, files, nbytes)


class FakeDisk:
    """Capacity model where usage is the bytes stored under root."""

    def __init__(self, root, capacity: int):
        self.root = Path(root)
        self.capacity = capacity
        self.calls = 0

    def __call__(self, path):
        self.calls += 1
        used = sum(e.size for e in iter_files(self.root))
        return DiskUsage(self.capacity, used, self.capacity - used)
