#!/usr/bin/env python3
"""
Gap reconciliation for recordings.

Compares file counts of every settled day/hour/camera directory on the
fast tier with its archive counterpart and copies whatever is missing.
Existing archive files are never overwritten.
"""

import logging
import sys
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path

from cli_common import EXIT_FAILURE, EXIT_OK, base_parser, load_or_exit, run_job
from disk_inventory import count_files, is_mounted, list_buckets
from job_lock import STORAGE
from media_config import Category, Settings, Tier
from rsync_transfer import RsyncTransfer

log = logging.getLogger("tiering.reconcile")


@dataclass(frozen=True)
class Gap:
    day: date
    hour: int
    camera: str
    fast_count: int
    archive_count: int
    fast_path: Path
    archive_path: Path

    @property
    def key(self) -> str:
        return f"{self.day.isoformat()}/{self.hour:02d}/{self.camera}"

    @property
    def missing(self) -> int:
        return self.fast_count - self.archive_count


@dataclass
class ReconcileResult:
    scanned: int = 0
    gaps: int = 0
    processed: int = 0
    repaired: int = 0
    copied: int = 0
    discrepancies: int = 0
    failed: int = 0


class GapReconciler:
    def __init__(self, settings: Settings, transfer=None, dry_run: bool = False, now=time.time,
                 min_age_minutes: int | None = None, max_dirs: int | None = None):
        self.settings = settings
        self.transfer = transfer or RsyncTransfer(settings.reconcile_bwlimit, settings.owner)
        self.dry_run = dry_run
        self._now = now
        self.min_age_minutes = settings.reconcile_min_age_minutes if min_age_minutes is None else min_age_minutes
        self.max_dirs = settings.reconcile_max_dirs_per_run if max_dirs is None else max_dirs

    def find_gaps(self, result: ReconcileResult | None = None) -> list[Gap]:
        """Settled directories whose archive copy holds fewer files, oldest first."""
        fast_root = self.settings.root(Tier.FAST, Category.RECORDINGS)
        archive_root = self.settings.root(Tier.ARCHIVE, Category.RECORDINGS)
        now = self._now()
        gaps = []
        for bucket in list_buckets(fast_root, Category.RECORDINGS, "camera"):
            # hour directories are named in UTC
            hour_start = datetime.combine(bucket.day, datetime.min.time(), tzinfo=timezone.utc)
            age_minutes = (now - hour_start.timestamp()) / 60 - bucket.hour * 60
            if age_minutes < self.min_age_minutes:
                continue
            if result is not None:
                result.scanned += 1
            archive_path = archive_root / bucket.path.relative_to(fast_root)
            fast_count = count_files(bucket.path)
            archive_count = count_files(archive_path)
            if archive_count < fast_count:
                gaps.append(Gap(bucket.day, bucket.hour, bucket.camera, fast_count, archive_count,
                                bucket.path, archive_path))
        return gaps

    def run(self) -> ReconcileResult:
        result = ReconcileResult()
        if self.settings.archive_require_mount and not is_mounted(self.settings.hd_mount):
            log.info(f"Archive tier {self.settings.hd_mount} is not mounted, nothing to do")
            return result
        gaps = self.find_gaps(result)
        result.gaps = len(gaps)
        if not gaps:
            log.info(f"No gaps found ({result.scanned} directories older than {self.min_age_minutes} min)")
            return result
        if self.max_dirs > 0 and len(gaps) > self.max_dirs:
            log.info(f"{len(gaps)} gaps found, repairing the oldest {self.max_dirs}")
            gaps = gaps[: self.max_dirs]

        for gap in gaps:
            result.processed += 1
            if self.dry_run:
                log.info(f"[dry-run] {gap.key}: fast={gap.fast_count} archive={gap.archive_count}, "
                         f"would copy {gap.missing}")
                continue
            self.repair(gap, result)

        log.info(
            f"Reconcile finished: {result.gaps} gaps, {result.processed} processed, "
            f"{result.repaired} repaired, {result.copied} files copied, {result.failed} failed"
        )
        return result

    def repair(self, gap: Gap, result: ReconcileResult):
        before = count_files(gap.archive_path)
        transfer = self.transfer.copy_tree(gap.fast_path, gap.archive_path, skip_existing=True)
        after = count_files(gap.archive_path)
        copied = after - before
        if not transfer.ok:
            result.failed += 1
            log.error(f"{gap.key}: repair failed (rc={transfer.returncode}): {transfer.error}")
            return
        result.repaired += 1
        result.copied += max(copied, 0)
        log.info(f"{gap.key}: archive before={before} after={after} copied={copied}")
        if copied <= 0:
            result.discrepancies += 1
            log.warning(f"{gap.key}: fast has {gap.fast_count} files, archive {before}, but nothing was copied")


def build_parser():
    parser = base_parser("nvr-reconcile", "Copy recordings missing from the archive tier")
    parser.add_argument("--min-age-min", type=int, default=None,
                        help="Only consider hours at least this many minutes old")
    parser.add_argument("--max-dirs", type=int, default=None,
                        help="Maximum directories to repair per run (0 = unlimited)")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_or_exit(args.env_file)

    def body(alerts):
        transfer = RsyncTransfer(settings.reconcile_bwlimit, settings.owner, progress=args.progress)
        reconciler = GapReconciler(settings, transfer=transfer, dry_run=args.dry_run,
                                   min_age_minutes=args.min_age_min, max_dirs=args.max_dirs)
        result = reconciler.run()
        if result.failed:
            alerts.notify("error", "reconcile", f"{result.failed} gap repair(s) failed")
            return EXIT_FAILURE
        return EXIT_OK

    return run_job(args, settings, "reconcile", STORAGE, body)


if __name__ == "__main__":
    sys.exit(main())
