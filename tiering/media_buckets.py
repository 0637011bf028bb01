"""Time buckets of media assets (a day, an hour, or an hour of one camera)."""

import re
from dataclasses import dataclass, field
from datetime import date
from functools import total_ordering
from pathlib import Path

from media_config import Category

DAY_RE = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")
HOUR_RE = re.compile(r"^[0-9]{2}$")


def parse_day(name: str) -> date | None:
    """Parse a YYYY-MM-DD directory name; None for anything else."""
    if not DAY_RE.match(name):
        return None
    try:
        return date.fromisoformat(name)
    except ValueError:
        return None


def parse_hour(name: str) -> int | None:
    if not HOUR_RE.match(name):
        return None
    hour = int(name)
    return hour if hour < 24 else None


@total_ordering
@dataclass(frozen=True)
class Bucket:
    """A directory of assets identified by day, optional hour and optional camera.

    Buckets order by (day, hour, category, camera). A bucket without an hour
    sorts before hour 00 of the same day. The path is not part of the identity.
    """

    day: date
    category: Category
    hour: int | None = None
    camera: str | None = None
    path: Path | None = field(default=None, compare=False)

    def sort_key(self) -> tuple:
        hour = -1 if self.hour is None else self.hour
        return (self.day, hour, self.category.value, self.camera or "")

    def __lt__(self, other):
        if not isinstance(other, Bucket):
            return NotImplemented
        return self.sort_key() < other.sort_key()

    @property
    def key(self) -> str:
        parts = [self.day.isoformat()]
        if self.hour is not None:
            parts.append(f"{self.hour:02d}")
        if self.camera:
            parts.append(self.camera)
        return "/".join(parts)

    def __str__(self):
        return f"{self.category.value}:{self.key}"
