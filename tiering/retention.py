#!/usr/bin/env python3
"""
Per-category retention for clips, snapshots and exports.

Each tier is handled on its own: a file is deleted when its age in whole
days is greater than the category's TTL (find -mtime +N semantics), then
empty directories are pruned.
"""

import logging
import os
import sys
import time
from dataclasses import dataclass
from datetime import date, datetime

from cli_common import EXIT_FAILURE, EXIT_OK, base_parser, load_or_exit, run_job
from disk_inventory import iter_files
from job_lock import MEDIA
from job_logging import bytes_human
from media_config import Category, Settings, Tier
from tree_ops import prune_empty_dirs

log = logging.getLogger("tiering.retention")

RETAINED = (Category.CLIPS, Category.SNAPSHOTS, Category.EXPORTS)
DAY = 86400


def is_expired(mtime: float, ttl_days: int, now: float) -> bool:
    """True when the file is more than ttl_days whole days old."""
    return int((now - mtime) // DAY) > ttl_days


@dataclass
class RetentionStats:
    category: Category
    tier: Tier
    deleted: int = 0
    freed_bytes: int = 0
    failed: int = 0
    oldest: date | None = None
    newest: date | None = None

    def summary(self) -> str:
        span = f" ({self.oldest} .. {self.newest})" if self.oldest else ""
        return (
            f"{self.tier.value}/{self.category.value}: deleted {self.deleted} files, "
            f"{bytes_human(self.freed_bytes)}{span}, failed {self.failed}"
        )


class RetentionEnforcer:
    def __init__(self, settings: Settings, dry_run: bool = False, now=time.time):
        self.settings = settings
        self.dry_run = dry_run
        self._now = now

    def run(self) -> list[RetentionStats]:
        results = []
        for tier in (Tier.FAST, Tier.ARCHIVE):
            for category in RETAINED:
                stats = self.enforce(tier, category)
                if stats is not None:
                    log.info(stats.summary())
                    results.append(stats)
        return results

    def enforce(self, tier: Tier, category: Category) -> RetentionStats | None:
        root = self.settings.root(tier, category)
        if not root.is_dir():
            log.info(f"{tier.value}/{category.value}: {root} does not exist, skipping")
            return None
        ttl = self.settings.ttl_days[category]
        now = self._now()
        stats = RetentionStats(category, tier)

        for entry in iter_files(root, now=now):
            if not is_expired(entry.mtime, ttl, now):
                continue
            if self.dry_run:
                log.debug(f"[dry-run] would delete {tier.value}/{category.value}/{entry.rel}")
            else:
                try:
                    os.remove(entry.path)
                except FileNotFoundError:
                    log.debug(f"{entry.path} already gone")
                    continue
                except OSError as e:
                    stats.failed += 1
                    log.error(f"Failed to delete {entry.path}: {e}")
                    continue
            stats.deleted += 1
            stats.freed_bytes += entry.size
            day = datetime.fromtimestamp(entry.mtime).date()
            stats.oldest = day if stats.oldest is None else min(stats.oldest, day)
            stats.newest = day if stats.newest is None else max(stats.newest, day)

        if not self.dry_run:
            prune_empty_dirs(root)
        return stats


def main(argv=None) -> int:
    args = base_parser("nvr-retention", "Delete clips, snapshots and exports past their TTL").parse_args(argv)
    settings = load_or_exit(args.env_file)

    def body(alerts):
        ttls = ", ".join(f"{c.value}={settings.ttl_days[c]}d" for c in RETAINED)
        log.info(f"Retention starting: {ttls}")
        results = RetentionEnforcer(settings, dry_run=args.dry_run).run()
        failed = sum(r.failed for r in results)
        log.info(
            f"Retention finished: deleted {sum(r.deleted for r in results)} files, "
            f"{bytes_human(sum(r.freed_bytes for r in results))} freed, {failed} failed"
        )
        if failed:
            alerts.notify("error", "retention", f"{failed} file(s) could not be deleted")
            return EXIT_FAILURE
        return EXIT_OK

    return run_job(args, settings, "retention", MEDIA, body)


if __name__ == "__main__":
    sys.exit(main())
