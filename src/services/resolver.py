from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator, Literal, Optional

from config import settings
from services.snapshot_store import SnapshotStore, snapshot_store
from services.time_grid import Interval, ensure_utc, round_down

logger = logging.getLogger("windhub.resolver")

SearchStrategy = Literal["backward_first", "closest"]
SEARCH_STRATEGIES: tuple[SearchStrategy, ...] = ("backward_first", "closest")


class InvalidQueryTime(ValueError):
    """Raised when a requested time is missing or not ISO-8601."""


class SearchExhausted(LookupError):
    """No snapshot exists within the requested search limit."""


class SnapshotNotFoundYet(LookupError):
    """No snapshot has been harvested within the latest look-back window."""


@dataclass(frozen=True, slots=True)
class ResolvedSnapshot:
    interval: Interval
    path: Path
    requested: datetime

    @property
    def key(self) -> str:
        return self.interval.key

    @property
    def offset_hours(self) -> float:
        return (self.interval.cycle - self.requested).total_seconds() / 3600.0


def parse_query_time(value: Any) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise InvalidQueryTime("Invalid timeIso")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise InvalidQueryTime("Invalid timeIso") from exc
    try:
        return ensure_utc(parsed)
    except OverflowError as exc:
        raise InvalidQueryTime("Invalid timeIso") from exc


def normalize_search_limit(value: Any, *, default: int | None = None, maximum: int | None = None) -> int:
    """Coerce a caller supplied searchLimit to whole days.

    Missing, non-numeric and non-positive values fall back to the default;
    values above the configured maximum are clamped.
    """
    fallback = default if default is not None else settings.default_search_limit_days
    ceiling = maximum if maximum is not None else settings.max_search_limit_days
    try:
        days = int(value)
    except (TypeError, ValueError):
        return fallback
    if days < 1:
        return fallback
    return min(days, ceiling)


def _walk(anchor: Interval, offsets: range) -> list[Interval]:
    intervals = []
    for k in offsets:
        try:
            intervals.append(anchor.shift(k))
        except OverflowError:
            # past the ends of the calendar
            break
    return intervals


class SnapshotResolver:
    def __init__(
        self,
        store: SnapshotStore | None = None,
        *,
        cadence_hours: int | None = None,
        latest_lookback: timedelta | None = None,
    ) -> None:
        self._store = store if store is not None else snapshot_store
        self._cadence_hours = cadence_hours or settings.snapshot_cadence_hours
        if latest_lookback is None:
            days = settings.latest_lookback_days or settings.harvest_horizon_days
            latest_lookback = timedelta(days=days)
        self._latest_lookback = latest_lookback

    def latest(self, now: Optional[datetime] = None) -> ResolvedSnapshot:
        reference = ensure_utc(now) if now is not None else datetime.now(timezone.utc)
        candidate = round_down(reference, self._cadence_hours)
        while reference - candidate.cycle <= self._latest_lookback:
            if self._store.exists(candidate.key):
                return self._resolved(candidate, reference)
            logger.debug("%s doesnt exist yet, trying previous interval", candidate.key)
            candidate = candidate.previous()
        raise SnapshotNotFoundYet("No wind data has been harvested yet")

    def nearest(
        self,
        target: datetime,
        search_limit_days: int | None = None,
        *,
        strategy: SearchStrategy = "backward_first",
    ) -> ResolvedSnapshot:
        if strategy not in SEARCH_STRATEGIES:
            raise ValueError(f"unknown search strategy: {strategy}")
        target = ensure_utc(target)
        limit_days = normalize_search_limit(search_limit_days)
        for candidate in self.candidates(target, limit_days, strategy=strategy):
            if self._store.exists(candidate.key):
                return self._resolved(candidate, target)
        raise SearchExhausted("No data within searchLimit")

    def candidates(
        self,
        target: datetime,
        limit_days: int,
        *,
        strategy: SearchStrategy = "backward_first",
    ) -> Iterator[Interval]:
        """Yield the intervals checked for ``target`` in search order.

        The window holds every interval reachable in whole cadence steps that
        stay strictly inside ``limit_days`` of the target. ``backward_first``
        checks all older intervals before any newer one; ``closest`` orders the
        same window by distance from the target, preferring the older interval
        on ties.
        """
        target = ensure_utc(target)
        anchor = round_down(target, self._cadence_hours)
        limit = timedelta(days=limit_days)
        steps = math.ceil(limit / anchor.cadence)

        backward = _walk(anchor, range(0, -steps, -1))
        forward = _walk(anchor, range(1, steps))
        if strategy == "backward_first":
            yield from backward
            yield from forward
            return
        window = backward + forward
        window.sort(key=lambda interval: (abs(interval.cycle - target), interval.cycle))
        yield from window

    def _resolved(self, interval: Interval, requested: datetime) -> ResolvedSnapshot:
        return ResolvedSnapshot(interval=interval, path=self._store.path_for(interval.key), requested=requested)


snapshot_resolver = SnapshotResolver()

__all__ = [
    "InvalidQueryTime",
    "ResolvedSnapshot",
    "SEARCH_STRATEGIES",
    "SearchExhausted",
    "SearchStrategy",
    "SnapshotNotFoundYet",
    "SnapshotResolver",
    "normalize_search_limit",
    "parse_query_time",
    "snapshot_resolver",
]
