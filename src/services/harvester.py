"""Acquisition loop for GFS wind snapshots.

A run starts at the interval containing ``start`` (default: now) and walks
backward one cadence at a time until it finds a cycle that NOMADS serves.
Unpublished cycles and transport failures are treated alike: the only useful
reaction to either is to try an older cycle. The walk never goes further back
than the harvest horizon.

When a cycle is downloaded, converted and committed, the run continues with
the preceding cycle if it is missing locally, so gaps left by earlier runs fill
themselves in over successive ticks.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Literal, Optional

from config import settings
from services.converter import ConversionError, Grib2JsonConverter, grib2json_converter
from services.snapshot_store import SnapshotAlreadyExists, SnapshotStore, snapshot_store
from services.time_grid import Interval, ensure_utc, round_down
from services.upstream import GfsUpstream, UpstreamNotFound, UpstreamTransportError, gfs_upstream

logger = logging.getLogger("windhub.harvester")

CandidateOutcome = Literal[
    "transport_error",
    "not_published",
    "already_present",
    "conversion_failed",
    "committed",
]

HarvestStatus = Literal[
    "running",
    "already_present",
    "backfill_complete",
    "horizon_reached",
    "conversion_failed",
    "skipped",
    "failed",
]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    iso = value.astimezone(timezone.utc).isoformat(timespec="seconds")
    if iso.endswith("+00:00"):
        return iso[:-6] + "Z"
    return iso


@dataclass(slots=True)
class CandidateAttempt:
    key: str
    outcome: CandidateOutcome
    status_code: int | None = None
    detail: str | None = None


@dataclass(slots=True)
class HarvestReport:
    started_at: datetime
    start_key: str | None
    status: HarvestStatus = "running"
    attempts: list[CandidateAttempt] = field(default_factory=list)
    committed: list[str] = field(default_factory=list)
    finished_at: datetime | None = None
    detail: str | None = None

    def record(
        self,
        key: str,
        outcome: CandidateOutcome,
        *,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        self.attempts.append(CandidateAttempt(key=key, outcome=outcome, status_code=status_code, detail=detail))
        if outcome == "committed":
            self.committed.append(key)

    def finish(self, status: HarvestStatus, detail: str | None = None) -> "HarvestReport":
        self.status = status
        self.detail = detail
        self.finished_at = _utc_now()
        return self

    @property
    def attempted_keys(self) -> list[str]:
        return [attempt.key for attempt in self.attempts]

    @property
    def duration_s(self) -> float | None:
        if self.finished_at is None:
            return None
        return max(0.0, (self.finished_at - self.started_at).total_seconds())

    def to_payload(self) -> dict[str, Any]:
        return {
            "started_at": _isoformat(self.started_at),
            "finished_at": _isoformat(self.finished_at),
            "duration_s": self.duration_s,
            "start_key": self.start_key,
            "status": self.status,
            "detail": self.detail,
            "committed": list(self.committed),
            "attempts": [asdict(attempt) for attempt in self.attempts],
        }

    @classmethod
    def aborted(cls, status: Literal["skipped", "failed"], detail: str) -> "HarvestReport":
        return cls(started_at=_utc_now(), start_key=None).finish(status, detail)


class Harvester:
    def __init__(
        self,
        *,
        store: SnapshotStore | None = None,
        upstream: GfsUpstream | None = None,
        converter: Grib2JsonConverter | None = None,
        raw_dir: Path | str | None = None,
        cadence_hours: int | None = None,
        horizon: timedelta | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store if store is not None else snapshot_store
        self._upstream = upstream if upstream is not None else gfs_upstream
        self._converter = converter if converter is not None else grib2json_converter
        self._raw_dir = Path(raw_dir if raw_dir is not None else settings.raw_dir).expanduser()
        self._cadence_hours = cadence_hours or settings.snapshot_cadence_hours
        self._horizon = horizon if horizon is not None else timedelta(days=settings.harvest_horizon_days)
        self._clock = clock

    @property
    def horizon(self) -> timedelta:
        return self._horizon

    async def run(self, start: Optional[datetime] = None) -> HarvestReport:
        now = ensure_utc(self._clock())
        origin = ensure_utc(start) if start is not None else now
        candidate = round_down(origin, self._cadence_hours)
        report = HarvestReport(started_at=now, start_key=candidate.key)
        logger.info("Harvest starting at %s", candidate.key)

        while True:
            status, interval = await self._walk(candidate, now, report)
            if status != "committed":
                report.finish(status)
                break
            previous = interval.previous()
            if self._store.exists(previous.key):
                logger.info("Got %s already, no need to harvest further", previous.key)
                report.finish("backfill_complete")
                break
            logger.info("Attempting to harvest older data %s", previous.key)
            candidate = previous

        logger.info(
            "Harvest finished: status=%s committed=%s attempts=%d",
            report.status,
            ",".join(report.committed) or "-",
            len(report.attempts),
        )
        return report

    async def _walk(
        self,
        candidate: Interval,
        now: datetime,
        report: HarvestReport,
    ) -> tuple[HarvestStatus | Literal["committed"], Interval]:
        while True:
            if now - candidate.cycle > self._horizon:
                logger.info("Hit harvest horizon at %s; harvest complete or there is a big gap in data", candidate.key)
                return "horizon_reached", candidate

            key = candidate.key
            try:
                async with self._upstream.open(candidate) as response:
                    if await asyncio.to_thread(self._store.exists, key):
                        logger.info("Already have %s, not looking further", key)
                        report.record(key, "already_present")
                        return "already_present", candidate
                    raw_path = await self._download(key, response)
            except UpstreamNotFound as exc:
                report.record(key, "not_published", status_code=exc.status_code)
                candidate = candidate.previous()
                continue
            except UpstreamTransportError as exc:
                logger.warning("Upstream transport failure for %s: %s", key, exc)
                report.record(key, "transport_error", detail=str(exc))
                candidate = candidate.previous()
                continue

            status = await self._convert_and_commit(key, raw_path, report)
            return status, candidate

    async def _download(self, key: str, response: Any) -> Path:
        self._raw_dir.mkdir(parents=True, exist_ok=True)
        raw_path = self._raw_dir / f"{key}.f000"
        logger.info("piping %s", key)
        started = time.perf_counter()
        size = 0
        try:
            handle = await asyncio.to_thread(raw_path.open, "wb")
            try:
                async for chunk in response.aiter_bytes():
                    await asyncio.to_thread(handle.write, chunk)
                    size += len(chunk)
            finally:
                handle.close()
        except BaseException:
            raw_path.unlink(missing_ok=True)
            raise
        logger.debug("Downloaded %s (%d bytes in %.1fs)", key, size, time.perf_counter() - started)
        return raw_path

    async def _convert_and_commit(
        self,
        key: str,
        raw_path: Path,
        report: HarvestReport,
    ) -> HarvestStatus | Literal["committed"]:
        try:
            payload = await self._converter.convert(raw_path)
        except ConversionError as exc:
            logger.error("Conversion failed for %s: %s", key, exc)
            report.record(key, "conversion_failed", detail=str(exc))
            return "conversion_failed"
        finally:
            # raw grib data is not kept
            raw_path.unlink(missing_ok=True)

        try:
            await asyncio.to_thread(self._store.write, key, payload)
        except SnapshotAlreadyExists:
            logger.info("Snapshot %s was stored concurrently, skipping", key)
            report.record(key, "already_present")
            return "already_present"
        report.record(key, "committed")
        return "committed"


harvester = Harvester()

__all__ = [
    "CandidateAttempt",
    "CandidateOutcome",
    "HarvestReport",
    "HarvestStatus",
    "Harvester",
    "harvester",
]
