#!/usr/bin/env python3
"""
Capacity-driven eviction of the oldest media buckets.

prune   delete until at least MIN_FREE_PCT of the tier is free
vacuum  delete while usage is at or above HD_USAGE_THRESHOLD

Buckets from all four categories are pooled and deleted strictly oldest
first, re-measuring the tier after every deletion. --before overrides the
capacity policy and deletes everything older than a cutoff date.
"""

import logging
import sys
from dataclasses import dataclass
from datetime import date, datetime

from cli_common import (
    EXIT_FAILURE, EXIT_OK, EXIT_TARGET_NOT_MET, base_parser, load_or_exit, run_job,
)
from disk_inventory import disk_usage, is_mounted, list_buckets, subtree_stats
from job_lock import MEDIA
from job_logging import bytes_human
from media_buckets import Bucket
from media_config import Category, Settings, Tier
from tree_ops import prune_parents, remove_path

log = logging.getLogger("tiering.eviction")


@dataclass
class EvictionResult:
    policy: str
    tier: Tier
    start_percent: int = 0
    final_percent: int = 0
    triggered: bool = False
    target_met: bool = True
    buckets: int = 0
    freed_bytes: int = 0
    failed: int = 0

    def exit_code(self) -> int:
        if self.failed:
            return EXIT_FAILURE
        if not self.target_met:
            return EXIT_TARGET_NOT_MET
        return EXIT_OK


class Evictor:
    def __init__(self, settings: Settings, tier: Tier = Tier.ARCHIVE, dry_run: bool = False,
                 usage=disk_usage, alerts=None):
        self.settings = settings
        self.tier = tier
        self.dry_run = dry_run
        self._usage = usage
        self.alerts = alerts

    @property
    def mount(self):
        return self.settings.mount(self.tier)

    def unmounted(self) -> bool:
        """True when the archive tier must be a mountpoint and is not."""
        if self.tier != Tier.ARCHIVE or not self.settings.archive_require_mount:
            return False
        if is_mounted(self.mount):
            return False
        log.info(f"Archive tier {self.mount} is not mounted, nothing to do")
        return True

    def candidates(self) -> list[Bucket]:
        """Buckets of every category on the tier, oldest first."""
        pooled = []
        for category in Category:
            root = self.settings.root(self.tier, category)
            pooled.extend(list_buckets(root, category, self.settings.evict_granularity))
        return sorted(pooled)

    def prune(self) -> EvictionResult:
        target = self.settings.min_free_percent
        log.info(f"Prune: keep at least {target}% free on {self.mount}")
        return self._evict("prune", lambda u: u.free_percent >= target)

    def vacuum(self) -> EvictionResult:
        threshold = self.settings.max_used_percent
        log.info(f"Vacuum: keep usage of {self.mount} below {threshold}%")
        return self._evict("vacuum", lambda u: u.used_percent < threshold)

    def evict_before(self, cutoff: date, by: str = "name") -> EvictionResult:
        """Delete every bucket older than cutoff regardless of capacity.

        by="name" compares the bucket's date; by="mtime" requires every file
        in the bucket to have been modified before the cutoff.
        """
        if by not in ("name", "mtime"):
            raise ValueError(f"Unknown cutoff mode {by!r}")
        if self.unmounted():
            return EvictionResult(f"before {cutoff} by {by}", self.tier)
        result = EvictionResult(f"before {cutoff} by {by}", self.tier, triggered=True)
        usage = self._usage(self.mount)
        result.start_percent = usage.used_percent if usage else 0
        cutoff_ts = datetime.combine(cutoff, datetime.min.time()).timestamp()

        for bucket in self.candidates():
            stats = subtree_stats(bucket.path)
            if by == "name" or stats.newest_mtime is None:
                eligible = bucket.day < cutoff
            else:
                eligible = stats.newest_mtime < cutoff_ts
            if not eligible:
                continue
            if self._delete(bucket, stats.bytes, result) and usage:
                usage = usage.after_freeing(stats.bytes)

        final = usage if self.dry_run else self._usage(self.mount)
        result.final_percent = final.used_percent if final else 0
        self._report(result)
        return result

    def _evict(self, policy: str, satisfied) -> EvictionResult:
        result = EvictionResult(policy, self.tier)
        if self.unmounted():
            return result
        usage = self._usage(self.mount)
        if usage is None:
            log.info(f"{self.mount} is not available, nothing to do")
            return result
        result.start_percent = result.final_percent = usage.used_percent
        if satisfied(usage):
            log.info(f"{self.mount} at {usage.used_percent}% used, nothing to do")
            return result

        result.triggered = True
        queue = self.candidates()
        log.info(f"{self.mount} at {usage.used_percent}% used, {len(queue)} candidate buckets")
        while not satisfied(usage):
            if not queue:
                result.target_met = False
                break
            bucket = queue.pop(0)
            if not bucket.path.exists():
                continue
            size = subtree_stats(bucket.path).bytes
            if not self._delete(bucket, size, result):
                continue
            if self.dry_run:
                usage = usage.after_freeing(size)
            else:
                usage = self._usage(self.mount) or usage.after_freeing(size)
            log.debug(f"{self.mount} now at {usage.used_percent}% used")

        result.final_percent = usage.used_percent
        self._report(result)
        if not result.target_met:
            message = (
                f"{policy}: no buckets left to delete on {self.mount}, "
                f"still at {usage.used_percent}% used"
            )
            log.warning(message)
            if self.alerts:
                self.alerts.notify("warning", policy, message)
        return result

    def _delete(self, bucket: Bucket, size: int, result: EvictionResult) -> bool:
        root = self.settings.root(self.tier, bucket.category)
        if not self.dry_run:
            try:
                remove_path(bucket.path)
            except OSError as e:
                result.failed += 1
                log.error(f"Failed to delete {bucket} at {bucket.path}: {e}")
                return False
            prune_parents(bucket.path.parent, root)
        result.buckets += 1
        result.freed_bytes += size
        verb = "[dry-run] would delete" if self.dry_run else "Deleted"
        log.info(
            f"{verb} {bucket.key} [{bucket.category.value}] freed {bytes_human(size)} "
            f"(total {bytes_human(result.freed_bytes)})"
        )
        return True

    def _report(self, result: EvictionResult):
        log.info(
            f"{result.policy} finished: {result.buckets} buckets, {bytes_human(result.freed_bytes)} freed, "
            f"{result.failed} failed, {result.start_percent}% -> {result.final_percent}% used"
        )


def _cutoff(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValueError(f"invalid date {value!r}, expected YYYY-MM-DD")


def build_parser(policy: str):
    descriptions = {
        "prune": "Delete the oldest media until the minimum free space is restored",
        "vacuum": "Delete the oldest media while usage is above the threshold",
    }
    parser = base_parser(f"nvr-{policy}", descriptions[policy])
    parser.add_argument("--tier", choices=[t.value for t in Tier], default=Tier.ARCHIVE.value)
    parser.add_argument("--before", type=_cutoff, default=None,
                        help="Delete every bucket older than this date (YYYY-MM-DD)")
    parser.add_argument("--by", choices=("name", "mtime"), default="name",
                        help="How --before compares buckets")
    return parser


def _main(policy: str, argv=None) -> int:
    args = build_parser(policy).parse_args(argv)
    settings = load_or_exit(args.env_file)

    def body(alerts):
        evictor = Evictor(settings, Tier(args.tier), dry_run=args.dry_run, alerts=alerts)
        if args.before:
            result = evictor.evict_before(args.before, args.by)
        else:
            result = getattr(evictor, policy)()
        return result.exit_code()

    return run_job(args, settings, policy, MEDIA, body)


def prune_main(argv=None) -> int:
    return _main("prune", argv)


def vacuum_main(argv=None) -> int:
    return _main("vacuum", argv)


if __name__ == "__main__":
    policy = sys.argv[1] if len(sys.argv) > 1 and sys.argv[1] in ("prune", "vacuum") else None
    if policy is None:
        print("usage: eviction.py {prune,vacuum} [options]", file=sys.stderr)
        sys.exit(2)
    sys.exit(_main(policy, sys.argv[2:]))
