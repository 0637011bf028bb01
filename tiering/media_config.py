"""
Tiering configuration.

Settings are read once per process from defaults, an optional .env file,
an optional .env.local beside it and finally the process environment, in
that order of increasing priority. Every job receives the resulting
Settings object explicitly.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from dotenv import dotenv_values


class ConfigError(ValueError):
    """Raised when the configuration is incomplete or malformed."""
    pass


class Category(str, Enum):
    RECORDINGS = "recordings"
    CLIPS = "clips"
    EXPORTS = "exports"
    SNAPSHOTS = "snapshots"


class Tier(str, Enum):
    FAST = "fast"
    ARCHIVE = "archive"


GRANULARITIES = ("day", "hour")
LOCK_DOMAINS = ("storage", "media")
JOBS = ("mover", "prune", "vacuum", "retention", "reconcile", "watchdog")

_TIER_PREFIX = {Tier.FAST: "SSD", Tier.ARCHIVE: "HD"}


@dataclass(frozen=True)
class Settings:
    ssd_root: Path
    hd_mount: Path
    fast_roots: dict = field(default_factory=dict)
    archive_roots: dict = field(default_factory=dict)
    keep_ssd_days: int = 2
    ttl_days: dict = field(default_factory=dict)
    min_free_percent: int = 15
    max_used_percent: int = 90
    evict_granularity: str = "day"
    file_min_age_minutes: int = 20
    file_max_age_minutes: int = 180
    file_max_files_per_run: int = 0
    max_days_per_run: int = 30
    bwlimit: int = 20000
    reconcile_min_age_minutes: int = 120
    reconcile_max_dirs_per_run: int = 20
    reconcile_bwlimit: int = 20000
    owner: str | None = None
    lock_files: dict = field(default_factory=dict)
    log_files: dict = field(default_factory=dict)
    runtime_dir: Path = Path(".runtime")
    archive_require_mount: bool = True
    alert_webhook_url: str | None = None
    alert_timeout: int = 10
    notify_cmd: str | None = None
    ssd_emergency_threshold: int = 85
    watchdog_cooldown_minutes: int = 15
    watchdog_mode: str = "file"
    watchdog_use_emergency: bool = False

    def root(self, tier: Tier, category: Category) -> Path:
        roots = self.fast_roots if tier == Tier.FAST else self.archive_roots
        return roots[category]

    def mount(self, tier: Tier) -> Path:
        return self.ssd_root if tier == Tier.FAST else self.hd_mount

    def lock_path(self, domain: str) -> Path:
        return self.lock_files[domain]

    def log_file(self, job: str) -> Path:
        return self.log_files[job]


def resolve_media_path(configured: Path, mount: Path, category: Category) -> Path:
    """Return the first existing location for a category root.

    Falls back to <mount>/frigate/<category> and <mount>/<category> when the
    configured path is missing, and to the configured path when none exist.
    """
    for candidate in (configured, mount / "frigate" / category.value, mount / category.value):
        if candidate.is_dir():
            return candidate
    return configured


def _read_env_files(env_file: Path) -> dict:
    values = {}
    for path in (env_file, env_file.with_name(env_file.name + ".local")):
        if path.is_file():
            values.update({k: v for k, v in dotenv_values(path).items() if v is not None})
    return values


def _int(values: dict, key: str, default: int, minimum: int = 0, maximum: int | None = None) -> int:
    raw = values.get(key, "")
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise ConfigError(f"{key} must be {bounds}, got {value}")
    return value


def _percent(values: dict, key: str, default: int) -> int:
    return _int(values, key, default, minimum=0, maximum=100)


def _bool(values: dict, key: str, default: bool) -> bool:
    raw = str(values.get(key, "")).strip().lower()
    if raw == "":
        return default
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{key} must be a boolean, got {raw!r}")


def _default_runtime_dir(values: dict) -> Path:
    if values.get("RUNTIME_DIR"):
        return Path(values["RUNTIME_DIR"])
    if values.get("XDG_RUNTIME_DIR"):
        return Path(values["XDG_RUNTIME_DIR"]) / "nvr-tiering"
    return Path.home() / ".cache" / "nvr-tiering"


def load_settings(env_file: str | Path | None = None, environ: dict | None = None) -> Settings:
    """Build Settings from env files and the environment.

    A missing env file is not an error; missing required variables and
    malformed values raise ConfigError before any job touches data.
    """
    environ = dict(os.environ) if environ is None else dict(environ)
    env_path = Path(env_file or environ.get("TIERING_ENV_FILE") or ".env")
    values = _read_env_files(env_path)
    values.update(environ)

    missing = [key for key in ("SSD_ROOT", "HD_MOUNT") if not values.get(key)]
    if missing:
        raise ConfigError(f"Missing required setting(s): {', '.join(missing)}")
    ssd_root = Path(values["SSD_ROOT"])
    hd_mount = Path(values["HD_MOUNT"])

    roots = {Tier.FAST: {}, Tier.ARCHIVE: {}}
    for tier, mount in ((Tier.FAST, ssd_root), (Tier.ARCHIVE, hd_mount)):
        for category in Category:
            key = f"{_TIER_PREFIX[tier]}_{category.value.upper()}"
            configured = Path(values[key]) if values.get(key) else mount / category.value
            roots[tier][category] = resolve_media_path(configured, mount, category)

    granularity = str(values.get("EVICT_GRANULARITY") or "day").strip().lower()
    if granularity not in GRANULARITIES:
        raise ConfigError(f"EVICT_GRANULARITY must be one of {GRANULARITIES}, got {granularity!r}")

    uid = str(values.get("FRIGATE_UID") or "").strip()
    gid = str(values.get("FRIGATE_GID") or "").strip()
    owner = None
    if uid or gid:
        if not (uid.isdigit() and gid.isdigit()):
            raise ConfigError("FRIGATE_UID and FRIGATE_GID must both be numeric when set")
        owner = f"{uid}:{gid}"

    bwlimit = _int(values, "BWLIMIT", 20000)
    log_dir = Path(values.get("LOG_DIR") or "/var/log")

    return Settings(
        ssd_root=ssd_root,
        hd_mount=hd_mount,
        fast_roots=roots[Tier.FAST],
        archive_roots=roots[Tier.ARCHIVE],
        keep_ssd_days=_int(values, "KEEP_SSD_DAYS", 2, minimum=1),
        ttl_days={
            Category.CLIPS: _int(values, "CLIPS_KEEP_DAYS", 2),
            Category.SNAPSHOTS: _int(values, "SNAPSHOTS_KEEP_DAYS", 2),
            Category.EXPORTS: _int(values, "EXPORTS_KEEP_DAYS", 30),
        },
        min_free_percent=_percent(values, "MIN_FREE_PCT", 15),
        max_used_percent=_percent(values, "HD_USAGE_THRESHOLD", 90),
        evict_granularity=granularity,
        file_min_age_minutes=_int(values, "FILE_MIN_AGE_MINUTES", 20),
        file_max_age_minutes=_int(values, "FILE_MAX_AGE_MINUTES", 180),
        file_max_files_per_run=_int(values, "FILE_MAX_FILES_PER_RUN", 0),
        max_days_per_run=_int(values, "MAX_DAYS_PER_RUN", 30),
        bwlimit=bwlimit,
        reconcile_min_age_minutes=_int(values, "RECONCILE_MIN_AGE_MINUTES", 120),
        reconcile_max_dirs_per_run=_int(values, "RECONCILE_MAX_DIRS_PER_RUN", 20),
        reconcile_bwlimit=_int(values, "RECONCILE_BWLIMIT", bwlimit),
        owner=owner,
        lock_files={
            "storage": Path(values.get("LOCK_STORAGE") or "/tmp/frigate-storage.lock"),
            "media": Path(values.get("LOCK_MEDIA") or "/tmp/frigate-media.lock"),
        },
        log_files={
            job: Path(values.get(f"LOG_{job.upper()}") or log_dir / f"frigate-{job}.log")
            for job in JOBS
        },
        runtime_dir=_default_runtime_dir(values),
        archive_require_mount=_bool(values, "ARCHIVE_REQUIRE_MOUNT", True),
        alert_webhook_url=values.get("ALERT_WEBHOOK_URL") or None,
        alert_timeout=_int(values, "ALERT_TIMEOUT", 10, minimum=1),
        notify_cmd=values.get("NOTIFY_CMD") or None,
        ssd_emergency_threshold=_percent(values, "SSD_EMERGENCY_THRESHOLD", 85),
        watchdog_cooldown_minutes=_int(values, "WATCHDOG_COOLDOWN_MINUTES", 15),
        watchdog_mode=str(values.get("WATCHDOG_MODE") or "file").strip().lower(),
        watchdog_use_emergency=_bool(values, "WATCHDOG_USE_EMERGENCY", False),
    )
