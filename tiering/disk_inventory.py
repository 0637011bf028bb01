"""
Read-only inventory of the storage tiers.

Capacity, bucket listings and file listings. Nothing here mutates the
filesystem; absent paths yield zero or empty results and files that vanish
while being listed are skipped.
"""

import logging
import math
import os
import shutil
import stat
import time
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

from media_buckets import Bucket, parse_day, parse_hour
from media_config import Category, Settings, Tier

log = logging.getLogger("tiering.inventory")


@dataclass(frozen=True)
class DiskUsage:
    total: int
    used: int
    free: int

    @property
    def used_percent(self) -> int:
        """Used share rounded up, as df reports it (reserved blocks excluded)."""
        denominator = self.used + self.free
        if denominator <= 0:
            return 0
        return math.ceil(self.used * 100 / denominator)

    @property
    def free_percent(self) -> int:
        return 100 - self.used_percent

    def after_freeing(self, nbytes: int) -> "DiskUsage":
        nbytes = min(nbytes, self.used)
        return DiskUsage(self.total, self.used - nbytes, self.free + nbytes)


@dataclass(frozen=True)
class FileEntry:
    path: Path
    rel: str
    size: int
    mtime: float


@dataclass(frozen=True)
class SubtreeStats:
    files: int = 0
    bytes: int = 0
    oldest_mtime: float | None = None
    newest_mtime: float | None = None

    @property
    def oldest(self) -> date | None:
        return None if self.oldest_mtime is None else datetime.fromtimestamp(self.oldest_mtime).date()

    @property
    def newest(self) -> date | None:
        return None if self.newest_mtime is None else datetime.fromtimestamp(self.newest_mtime).date()

    def describe(self) -> str:
        if not self.files:
            return "0 files"
        return f"{self.files} files, {self.bytes} bytes, {self.oldest} .. {self.newest}"


def disk_usage(path) -> DiskUsage | None:
    try:
        usage = shutil.disk_usage(path)
    except FileNotFoundError:
        return None
    return DiskUsage(usage.total, usage.used, usage.free)


def usage_percent(path) -> int:
    usage = disk_usage(path)
    return usage.used_percent if usage else 0


def free_percent(path) -> int:
    return 100 - usage_percent(path)


def is_mounted(path) -> bool:
    return os.path.ismount(path)


def _subdirs(path: Path) -> list[Path]:
    try:
        with os.scandir(path) as it:
            entries = [Path(e.path) for e in it if e.is_dir(follow_symlinks=False)]
    except (FileNotFoundError, NotADirectoryError):
        return []
    return sorted(entries)


def _day_dirs(root: Path):
    """Yield (day_dir, camera) for root/YYYY-MM-DD and root/<camera>/YYYY-MM-DD."""
    for entry in _subdirs(root):
        if parse_day(entry.name):
            yield entry, None
            continue
        for sub in _subdirs(entry):
            if parse_day(sub.name):
                yield sub, entry.name


def list_buckets(root, category: Category, granularity: str = "day") -> list[Bucket]:
    """List buckets under a category root, oldest first.

    granularity is "day", "hour" (day directories holding HH subdirectories
    expand to one bucket per hour) or "camera" (root/YYYY-MM-DD/HH/<camera>).
    """
    root = Path(root)
    buckets = []
    if granularity == "camera":
        for day_dir in _subdirs(root):
            day = parse_day(day_dir.name)
            if day is None:
                continue
            for hour_dir in _subdirs(day_dir):
                hour = parse_hour(hour_dir.name)
                if hour is None:
                    continue
                for cam_dir in _subdirs(hour_dir):
                    buckets.append(Bucket(day, category, hour=hour, camera=cam_dir.name, path=cam_dir))
        return sorted(buckets)

    for day_dir, camera in _day_dirs(root):
        day = parse_day(day_dir.name)
        if granularity == "hour":
            hours = [(parse_hour(p.name), p) for p in _subdirs(day_dir)]
            hours = [(h, p) for h, p in hours if h is not None]
            if hours:
                buckets.extend(Bucket(day, category, hour=h, camera=camera, path=p) for h, p in hours)
                continue
        buckets.append(Bucket(day, category, camera=camera, path=day_dir))
    return sorted(buckets)


def iter_files(root, min_age: float | None = None, max_age: float | None = None,
               modified_before: float | None = None, now: float | None = None) -> list[FileEntry]:
    """Regular files under root sorted by relative path.

    Age bounds are exclusive and in seconds: min_age < age < max_age.
    modified_before keeps files whose mtime is strictly earlier.
    """
    root = Path(root)
    if not root.is_dir():
        return []
    now = time.time() if now is None else now
    entries = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in filenames:
            path = Path(dirpath) / name
            try:
                st = path.lstat()
            except FileNotFoundError:
                log.debug(f"{path} vanished while listing")
                continue
            if not stat.S_ISREG(st.st_mode):
                continue
            age = now - st.st_mtime
            if min_age is not None and not age > min_age:
                continue
            if max_age is not None and not age < max_age:
                continue
            if modified_before is not None and not st.st_mtime < modified_before:
                continue
            entries.append(FileEntry(path, path.relative_to(root).as_posix(), st.st_size, st.st_mtime))
    entries.sort(key=lambda e: e.rel)
    return entries


def count_files(path) -> int:
    """Regular files directly inside path."""
    try:
        with os.scandir(path) as it:
            return sum(1 for e in it if e.is_file(follow_symlinks=False))
    except (FileNotFoundError, NotADirectoryError):
        return 0


def subtree_stats(path, files: list[FileEntry] | None = None) -> SubtreeStats:
    if files is None:
        files = iter_files(path)
    if not files:
        return SubtreeStats()
    mtimes = [f.mtime for f in files]
    return SubtreeStats(
        files=len(files),
        bytes=sum(f.size for f in files),
        oldest_mtime=min(mtimes),
        newest_mtime=max(mtimes),
    )


def storage_status(settings: Settings) -> dict:
    """Capacity and per-category inventory of both tiers."""
    status = {}
    for tier in Tier:
        mount = settings.mount(tier)
        usage = disk_usage(mount)
        categories = {}
        for category in Category:
            root = settings.root(tier, category)
            categories[category.value] = {
                "path": str(root),
                "exists": root.is_dir(),
                "stats": subtree_stats(root),
            }
        status[tier.value] = {
            "mount": str(mount),
            "mounted": is_mounted(mount),
            "usage": usage,
            "categories": categories,
        }
    return status
