#!/usr/bin/env python3
"""
Fast -> archive migration job.

Modes:
  incremental  recordings day directories older than the keep window are
               copied then removed; other categories copy files older than
               the window and keep the fast copy
  file         copy files within an age window, skipping existing ones;
               never deletes
  full         drain every category; a fast file is removed only once its
               archive copy is confirmed
  emergency    full without a bandwidth limit

Run via cron or a systemd timer.
"""

import logging
import os
import sys
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from cli_common import EXIT_FAILURE, EXIT_OK, base_parser, load_or_exit, run_job
from disk_inventory import is_mounted, iter_files, list_buckets, subtree_stats
from job_lock import STORAGE
from job_logging import bytes_human
from media_config import Category, Settings, Tier
from rsync_transfer import RsyncTransfer
from tree_ops import prune_empty_dirs, prune_parents, remove_path

log = logging.getLogger("tiering.mover")

MODES = ("incremental", "file", "full", "emergency")


@dataclass
class MoveStats:
    category: Category
    candidates: int = 0
    candidate_bytes: int = 0
    copied: int = 0
    copied_bytes: int = 0
    failed: int = 0
    deleted: int = 0
    kept: int = 0
    oldest: date | None = None
    newest: date | None = None

    def add_range(self, oldest: date | None, newest: date | None):
        if oldest and (self.oldest is None or oldest < self.oldest):
            self.oldest = oldest
        if newest and (self.newest is None or newest > self.newest):
            self.newest = newest

    def summary(self) -> str:
        span = f", {self.oldest} .. {self.newest}" if self.oldest else ""
        return (
            f"{self.category.value}: {self.candidates} candidates ({bytes_human(self.candidate_bytes)}{span}), "
            f"copied {self.copied} ({bytes_human(self.copied_bytes)}), deleted {self.deleted}, "
            f"kept {self.kept}, failed {self.failed}"
        )


class Mover:
    def __init__(self, settings: Settings, transfer=None, dry_run: bool = False,
                 now=time.time, alerts=None):
        self.settings = settings
        self.transfer = transfer or RsyncTransfer(settings.bwlimit, settings.owner)
        self.dry_run = dry_run
        self._now = now
        self.alerts = alerts

    def keep_from(self) -> date:
        """First day that stays on the fast tier (keep_days=2 keeps today and yesterday)."""
        today = datetime.fromtimestamp(self._now()).date()
        return today - timedelta(days=self.settings.keep_ssd_days - 1)

    def check_preconditions(self) -> int | None:
        """Return an exit code when the run must stop, None to continue."""
        s = self.settings
        if not any(s.root(Tier.FAST, c).is_dir() for c in Category):
            log.error(f"No fast-tier media directories found under {s.ssd_root}")
            return EXIT_FAILURE
        if s.archive_require_mount and not is_mounted(s.hd_mount):
            log.info(f"Archive tier {s.hd_mount} is not mounted, nothing to do")
            return EXIT_OK
        if not self.dry_run:
            for category in Category:
                s.root(Tier.ARCHIVE, category).mkdir(parents=True, exist_ok=True)
        return None

    def run(self, mode: str) -> int:
        if mode not in MODES:
            raise ValueError(f"Unknown mode {mode!r}, expected one of {MODES}")
        code = self.check_preconditions()
        if code is not None:
            return code

        transfer = self.transfer.with_bwlimit(0) if mode == "emergency" else self.transfer
        log.info(f"Mover starting: mode={mode}, bwlimit={transfer.bwlimit or 'unlimited'}")
        window = self._file_window() if mode == "file" else None

        results = []
        for category in Category:
            src = self.settings.root(Tier.FAST, category)
            dst = self.settings.root(Tier.ARCHIVE, category)
            if not src.is_dir():
                log.info(f"{category.value}: {src} does not exist, skipping")
                continue
            stats = MoveStats(category)
            if mode == "incremental" and category == Category.RECORDINGS:
                self._move_days(stats, src, dst, transfer)
            elif mode == "incremental":
                self._copy_older(stats, src, dst, transfer)
            elif mode == "file":
                self._copy_window(stats, src, dst, transfer, *window)
            else:
                self._drain(stats, src, dst, transfer)
            log.info(stats.summary())
            results.append(stats)

        failed = sum(s.failed for s in results)
        log.info(
            f"Mover finished: mode={mode}, copied {sum(s.copied for s in results)} files "
            f"({bytes_human(sum(s.copied_bytes for s in results))}), "
            f"deleted {sum(s.deleted for s in results)}, failed {failed}"
        )
        if failed:
            if self.alerts:
                self.alerts.notify("error", "mover", f"{failed} transfer(s) failed in {mode} mode")
            return EXIT_FAILURE
        return EXIT_OK

    # --- incremental ---

    def _move_days(self, stats: MoveStats, src, dst, transfer):
        keep_from = self.keep_from()
        buckets = [b for b in list_buckets(src, Category.RECORDINGS, "day") if b.day < keep_from]
        if self.settings.max_days_per_run > 0:
            buckets = buckets[: self.settings.max_days_per_run]
        if not buckets:
            log.info(f"recordings: nothing older than {keep_from}")
            return

        for bucket in buckets:
            day_stats = subtree_stats(bucket.path)
            stats.candidates += day_stats.files
            stats.candidate_bytes += day_stats.bytes
            stats.add_range(bucket.day, bucket.day)
            rel = bucket.path.relative_to(src)
            if self.dry_run:
                log.info(f"[dry-run] would move {rel} ({day_stats.describe()})")
                continue

            result = transfer.copy_tree(bucket.path, dst / rel)
            if not result.ok:
                stats.failed += 1
                log.error(f"Copy of {rel} failed (rc={result.returncode}): {result.error}")
                continue
            stats.copied += day_stats.files
            stats.copied_bytes += day_stats.bytes
            try:
                remove_path(bucket.path)
            except OSError as e:
                stats.failed += 1
                log.error(f"Copied {rel} but could not remove the fast copy: {e}")
                continue
            stats.deleted += day_stats.files
            prune_parents(bucket.path.parent, src)
            log.info(f"Moved {rel} ({bytes_human(day_stats.bytes)})")

    def _copy_older(self, stats: MoveStats, src, dst, transfer):
        cutoff = datetime.combine(self.keep_from(), datetime.min.time()).timestamp()
        for entry in iter_files(src, modified_before=cutoff, now=self._now()):
            target = dst / entry.rel
            try:
                if target.stat().st_size == entry.size:
                    continue
            except FileNotFoundError:
                pass
            stats.candidates += 1
            stats.candidate_bytes += entry.size
            mday = datetime.fromtimestamp(entry.mtime).date()
            stats.add_range(mday, mday)
            if self.dry_run:
                log.debug(f"[dry-run] would copy {entry.rel}")
                continue
            result = transfer.copy_file(entry.path, target)
            if result.ok:
                stats.copied += 1
                stats.copied_bytes += entry.size
            else:
                stats.failed += 1
                log.error(f"Copy of {stats.category.value}/{entry.rel} failed: {result.error}")

    # --- file ---

    def _file_window(self) -> tuple[int, int | None]:
        min_age = self.settings.file_min_age_minutes * 60
        max_age = self.settings.file_max_age_minutes * 60 or None
        if max_age is not None and max_age <= min_age:
            log.warning(
                f"FILE_MAX_AGE_MINUTES ({self.settings.file_max_age_minutes}) <= "
                f"FILE_MIN_AGE_MINUTES ({self.settings.file_min_age_minutes}), ignoring the upper bound"
            )
            max_age = None
        return min_age, max_age

    def _copy_window(self, stats: MoveStats, src, dst, transfer, min_age, max_age):
        entries = [
            e for e in iter_files(src, min_age=min_age, max_age=max_age, now=self._now())
            if not (dst / e.rel).exists()
        ]
        cap = self.settings.file_max_files_per_run
        if cap > 0 and len(entries) > cap:
            log.info(f"{stats.category.value}: {len(entries)} pending, copying the first {cap}")
            entries = entries[:cap]
        if not entries:
            return
        stats.candidates = len(entries)
        stats.candidate_bytes = sum(e.size for e in entries)
        stats.add_range(*_date_range(entries))
        if self.dry_run:
            for entry in entries:
                log.debug(f"[dry-run] would copy {entry.rel}")
            return

        result = transfer.copy_files(src, dst, [e.rel for e in entries], skip_existing=True)
        if not result.ok:
            log.error(f"Batch copy of {stats.category.value} failed (rc={result.returncode}): {result.error}")
        for entry in entries:
            if (dst / entry.rel).exists():
                stats.copied += 1
                stats.copied_bytes += entry.size
            elif not result.ok:
                stats.failed += 1

    # --- full / emergency ---

    def _drain(self, stats: MoveStats, src, dst, transfer):
        entries = iter_files(src, now=self._now())
        before = subtree_stats(src, entries)
        log.info(f"{stats.category.value} before: {before.describe()}")
        if not entries:
            return
        stats.candidates = before.files
        stats.candidate_bytes = before.bytes
        stats.add_range(before.oldest, before.newest)
        if self.dry_run:
            log.info(f"[dry-run] would drain {src} -> {dst}")
            return

        result = transfer.copy_tree(src, dst)
        if not result.ok:
            stats.failed += 1
            log.error(
                f"Copy of {src} failed (rc={result.returncode}): {result.error}; "
                f"removing only confirmed copies"
            )

        for entry in entries:
            target = dst / entry.rel
            if not entry.path.exists():
                if target.exists():
                    stats.copied += 1
                    stats.copied_bytes += entry.size
                continue
            if not _copy_confirmed(entry, target):
                stats.kept += 1
                log.warning(f"Archive copy of {stats.category.value}/{entry.rel} not confirmed, keeping it")
                continue
            stats.copied += 1
            stats.copied_bytes += entry.size
            try:
                os.remove(entry.path)
            except FileNotFoundError:
                continue
            except OSError as e:
                stats.failed += 1
                log.error(f"Could not remove {entry.path}: {e}")
                continue
            stats.deleted += 1

        prune_empty_dirs(src)
        log.info(f"{stats.category.value} after: {subtree_stats(src).describe()}")


def _copy_confirmed(entry, target) -> bool:
    """The archive copy exists and matches the current fast file in size and mtime."""
    try:
        dst_stat = target.stat()
        src_stat = entry.path.stat()
    except FileNotFoundError:
        return False
    return dst_stat.st_size == src_stat.st_size and int(dst_stat.st_mtime) == int(src_stat.st_mtime)


def _date_range(entries) -> tuple[date | None, date | None]:
    if not entries:
        return None, None
    mtimes = [e.mtime for e in entries]
    return datetime.fromtimestamp(min(mtimes)).date(), datetime.fromtimestamp(max(mtimes)).date()


def build_parser():
    parser = base_parser("nvr-mover", "Move aging media from the fast tier to the archive tier")
    parser.add_argument("--mode", choices=MODES, default="file")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_or_exit(args.env_file)
    transfer = RsyncTransfer(settings.bwlimit, settings.owner, progress=args.progress)

    def body(alerts):
        mover = Mover(settings, transfer=transfer, dry_run=args.dry_run, alerts=alerts)
        return mover.run(args.mode)

    return run_job(args, settings, "mover", STORAGE, body)


if __name__ == "__main__":
    sys.exit(main())
