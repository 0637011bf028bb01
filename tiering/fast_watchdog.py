#!/usr/bin/env python3
"""
Fast-tier watchdog.

Meant to run every few minutes. When fast-tier usage climbs above
SSD_EMERGENCY_THRESHOLD it runs the mover immediately, at most once per
WATCHDOG_COOLDOWN_MINUTES.
"""

import logging
import sys
import time

from cli_common import EXIT_OK, base_parser, load_or_exit, run_job
from disk_inventory import disk_usage
from job_lock import STORAGE
from media_config import Settings
from mover import MODES, Mover
from rsync_transfer import RsyncTransfer

log = logging.getLogger("tiering.watchdog")

STATE_FILE = "watchdog.last"


class Watchdog:
    def __init__(self, settings: Settings, mover: Mover | None = None, dry_run: bool = False,
                 now=time.time, usage=disk_usage, alerts=None):
        self.settings = settings
        self.dry_run = dry_run
        self._now = now
        self._usage = usage
        self.alerts = alerts
        self.mover = mover or Mover(settings, dry_run=dry_run, now=now, alerts=alerts)

    @property
    def state_path(self):
        return self.settings.runtime_dir / STATE_FILE

    @property
    def mode(self) -> str:
        if self.settings.watchdog_use_emergency:
            return "emergency"
        mode = self.settings.watchdog_mode
        if mode not in MODES:
            log.warning(f"Invalid WATCHDOG_MODE {mode!r}, using file")
            return "file"
        return mode

    def last_trigger(self) -> float | None:
        try:
            return float(self.state_path.read_text().strip())
        except (FileNotFoundError, ValueError):
            return None

    def in_cooldown(self) -> bool:
        last = self.last_trigger()
        if last is None:
            return False
        return self._now() - last < self.settings.watchdog_cooldown_minutes * 60

    def check(self) -> int:
        threshold = self.settings.ssd_emergency_threshold
        usage = self._usage(self.settings.ssd_root)
        if usage is None:
            log.warning(f"Fast tier {self.settings.ssd_root} is not available")
            return EXIT_OK
        if usage.used_percent <= threshold:
            log.debug(f"Fast tier at {usage.used_percent}% used (threshold {threshold}%)")
            return EXIT_OK
        if self.in_cooldown():
            log.info(f"Fast tier at {usage.used_percent}% used, still in cooldown")
            return EXIT_OK

        mode = self.mode
        message = f"Fast tier at {usage.used_percent}% used (threshold {threshold}%), running mover in {mode} mode"
        log.warning(message)
        if self.alerts:
            self.alerts.notify("warning", "watchdog", message)
        code = self.mover.run(mode)
        if not self.dry_run:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            self.state_path.write_text(f"{int(self._now())}\n")
        log.info(f"Mover finished with exit code {code}")
        return code


def main(argv=None) -> int:
    args = base_parser("nvr-watchdog", "Run the mover when the fast tier is nearly full").parse_args(argv)
    settings = load_or_exit(args.env_file)

    def body(alerts):
        transfer = RsyncTransfer(settings.bwlimit, settings.owner, progress=args.progress)
        mover = Mover(settings, transfer=transfer, dry_run=args.dry_run, alerts=alerts)
        return Watchdog(settings, mover=mover, dry_run=args.dry_run, alerts=alerts).check()

    return run_job(args, settings, "watchdog", STORAGE, body)


if __name__ == "__main__":
    sys.exit(main())
