"""
Shared command-line plumbing for the tiering jobs.

Each job parses its flags, loads Settings, then hands a body callable to
run_job(), which configures logging, takes the job's lock and maps the
outcome to an exit code.
"""

import argparse
import sys
from pathlib import Path

from alert_client import AlertClient
from disk_inventory import storage_status
from job_lock import JobLock, LockBusy, is_held
from job_logging import bytes_human, setup_logging
from media_config import LOCK_DOMAINS, ConfigError, Settings, load_settings

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_TARGET_NOT_MET = 3


def base_parser(prog: str, description: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description=description)
    parser.add_argument("--dry-run", action="store_true", help="Select and report without changing anything")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--progress", action="store_true", help="Show rsync progress")
    parser.add_argument("--status", action="store_true", help="Print capacity and inventory, then exit")
    parser.add_argument("--stdout", action="store_true", help="Mirror the log to stdout")
    parser.add_argument("--env-file", default=None, help="Configuration file (default: ./.env)")
    return parser


def load_or_exit(env_file: str | None) -> Settings:
    """Load Settings, exiting with EXIT_CONFIG on any configuration problem."""
    try:
        if env_file and not Path(env_file).is_file():
            raise ConfigError(f"Env file {env_file} does not exist")
        return load_settings(env_file)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        raise SystemExit(EXIT_CONFIG)


def print_status(settings: Settings, out=None):
    out = out or sys.stdout
    for tier, info in storage_status(settings).items():
        usage = info["usage"]
        if usage is None:
            print(f"[{tier}] {info['mount']}: not available", file=out)
        else:
            print(
                f"[{tier}] {info['mount']}: {usage.used_percent}% used, "
                f"{bytes_human(usage.free)} free, mounted={info['mounted']}",
                file=out,
            )
        for category, cat in info["categories"].items():
            state = cat["stats"].describe() if cat["exists"] else "missing"
            print(f"  {category:<11} {cat['path']}: {state}", file=out)
    for domain in LOCK_DOMAINS:
        path = settings.lock_path(domain)
        print(f"lock {domain}: {'held' if is_held(path) else 'free'} ({path})", file=out)


def run_job(args, settings: Settings, tag: str, lock_domain: str, body) -> int:
    """Run body(alerts) under the job's lock and return its exit code."""
    if args.status:
        print_status(settings)
        return EXIT_OK

    alerts = AlertClient.from_settings(settings)
    try:
        log, _ = setup_logging(tag, settings.log_file(tag), settings.runtime_dir,
                               mirror_stdout=args.stdout, verbose=args.verbose)
    except OSError as e:
        print(f"{tag}: no writable log file: {e}", file=sys.stderr)
        alerts.notify("error", tag, f"{tag} could not open a log file: {e}")
        return EXIT_FAILURE
    if args.dry_run:
        log.info("Dry run: no files will be copied or deleted")

    try:
        with JobLock(settings.lock_path(lock_domain), settings.runtime_dir):
            return body(alerts)
    except LockBusy as e:
        log.info(f"{e}; another {lock_domain} job is running, exiting")
        return EXIT_OK
    except Exception as e:
        log.exception(f"{tag} failed: {e}")
        alerts.notify("error", tag, f"{tag} failed: {e}")
        return EXIT_FAILURE
