"""Mapping between instants, cadence-aligned intervals and snapshot keys.

Upstream publishes one analysis every ``cadence_hours`` (00/06/12/18Z for the
default cadence of 6). An instant belongs to the interval whose cycle is the
instant rounded down to that cadence, and every interval is identified by a
``YYYYMMDDHH`` key which doubles as the on-disk filename.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

DEFAULT_CADENCE_HOURS = 6
KEY_PATTERN = re.compile(r"[0-9]{10}")


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _check_cadence(cadence_hours: int) -> int:
    if cadence_hours <= 0 or 24 % cadence_hours != 0:
        raise ValueError(f"cadence must be a positive divisor of 24 hours, got {cadence_hours}")
    return cadence_hours


@dataclass(frozen=True, slots=True)
class Interval:
    cycle: datetime
    cadence_hours: int = field(default=DEFAULT_CADENCE_HOURS, compare=False)

    @property
    def date_label(self) -> str:
        cycle = self.cycle
        return f"{cycle.year:04d}{cycle.month:02d}{cycle.day:02d}"

    @property
    def hour_label(self) -> str:
        return f"{self.cycle.hour:02d}"

    @property
    def key(self) -> str:
        return snapshot_key(self)

    @property
    def cadence(self) -> timedelta:
        return timedelta(hours=self.cadence_hours)

    def shift(self, steps: int) -> "Interval":
        return Interval(cycle=self.cycle + steps * self.cadence, cadence_hours=self.cadence_hours)

    def previous(self) -> "Interval":
        return self.shift(-1)

    def next(self) -> "Interval":
        return self.shift(1)


def round_down(instant: datetime, cadence_hours: int = DEFAULT_CADENCE_HOURS) -> Interval:
    """Return the interval containing ``instant``."""
    _check_cadence(cadence_hours)
    instant = ensure_utc(instant)
    hour = (instant.hour // cadence_hours) * cadence_hours
    cycle = instant.replace(hour=hour, minute=0, second=0, microsecond=0)
    return Interval(cycle=cycle, cadence_hours=cadence_hours)


def snapshot_key(interval: Interval) -> str:
    return interval.date_label + interval.hour_label


def parse_key(key: str, cadence_hours: int = DEFAULT_CADENCE_HOURS) -> Interval:
    _check_cadence(cadence_hours)
    if not isinstance(key, str) or not KEY_PATTERN.fullmatch(key):
        raise ValueError(f"invalid snapshot key: {key!r}")
    cycle = datetime.strptime(key, "%Y%m%d%H").replace(tzinfo=timezone.utc)
    if cycle.hour % cadence_hours != 0:
        raise ValueError(f"snapshot key {key!r} is not aligned to a {cadence_hours}h cadence")
    return Interval(cycle=cycle, cadence_hours=cadence_hours)


__all__ = [
    "DEFAULT_CADENCE_HOURS",
    "Interval",
    "ensure_utc",
    "parse_key",
    "round_down",
    "snapshot_key",
]
