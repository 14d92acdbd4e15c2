from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Optional

from config import settings
from services.harvester import HarvestReport, Harvester, harvester as default_harvester

logger = logging.getLogger("windhub.scheduler")


class HarvestScheduler:
    """Fires the harvester on a fixed interval, one run at a time.

    A tick or manual trigger that arrives while a harvest is still running is
    not queued; it returns a ``skipped`` report straight away.
    """

    def __init__(
        self,
        harvester: Harvester | None = None,
        *,
        interval_minutes: float | None = None,
        history_limit: int | None = None,
        log_path: Path | str | None = None,
    ) -> None:
        self._harvester = harvester if harvester is not None else default_harvester
        minutes = interval_minutes if interval_minutes is not None else settings.harvest_interval_minutes
        if minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self._interval_seconds = float(minutes) * 60.0
        limit = history_limit if history_limit is not None else settings.harvest_history_limit
        self._history: Deque[HarvestReport] = deque(maxlen=max(1, limit))
        configured_log = log_path if log_path is not None else settings.harvest_log_path
        self._log_path = Path(configured_log).expanduser() if configured_log else None
        self._run_lock = asyncio.Lock()
        self._scheduler_task: Optional[asyncio.Task[None]] = None
        self._scheduler_stop: Optional[asyncio.Event] = None

    @property
    def interval_minutes(self) -> float:
        return self._interval_seconds / 60.0

    @property
    def running(self) -> bool:
        return self._scheduler_task is not None and not self._scheduler_task.done()

    @property
    def harvest_in_progress(self) -> bool:
        return self._run_lock.locked()

    async def start(self) -> None:
        if self.running:
            return
        self._scheduler_stop = asyncio.Event()
        self._scheduler_task = asyncio.create_task(self._scheduler_loop(), name="wind-harvest")
        logger.info("Harvest scheduler started (interval=%.1f min)", self.interval_minutes)

    async def stop(self) -> None:
        if self._scheduler_task is None:
            return
        stop_event = self._scheduler_stop
        if stop_event is not None:
            stop_event.set()
        task = self._scheduler_task
        self._scheduler_task = None
        self._scheduler_stop = None
        try:
            await task
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            pass
        except Exception as exc:  # pragma: no cover - defensive logging
            logger.warning("Harvest scheduler terminated with error: %s", exc)
        else:
            logger.info("Harvest scheduler stopped")

    async def trigger(self, start: Optional[datetime] = None) -> HarvestReport:
        if self._run_lock.locked():
            logger.info("Harvest already in progress; skipping tick")
            report = HarvestReport.aborted("skipped", "harvest already in progress")
            await self._record(report)
            return report
        async with self._run_lock:
            try:
                report = await self._harvester.run(start)
            except Exception as exc:
                logger.exception("Harvest run failed")
                report = HarvestReport.aborted("failed", f"{type(exc).__name__}: {exc}")
        await self._record(report)
        return report

    async def history(self, limit: int | None = None) -> list[dict[str, Any]]:
        entries = list(self._history)
        if limit is not None:
            entries = entries[-max(0, limit):] if limit > 0 else []
        return [report.to_payload() for report in entries]

    def status(self) -> dict[str, Any]:
        last = self._history[-1] if self._history else None
        return {
            "enabled": settings.harvest_enabled,
            "scheduler_running": self.running,
            "harvest_in_progress": self.harvest_in_progress,
            "interval_minutes": self.interval_minutes,
            "log_path": str(self._log_path) if self._log_path else None,
            "last_report": last.to_payload() if last is not None else None,
        }

    def clear(self) -> None:
        self._history.clear()

    async def _scheduler_loop(self) -> None:
        assert self._scheduler_stop is not None
        stop_event = self._scheduler_stop
        while not stop_event.is_set():
            await self.trigger()
            if stop_event.is_set():
                break
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval_seconds)
            except asyncio.TimeoutError:
                continue
        logger.debug("Harvest scheduler loop exiting")

    async def _record(self, report: HarvestReport) -> None:
        self._history.append(report)
        if self._log_path is None:
            return
        line = json.dumps(report.to_payload())
        try:
            await asyncio.to_thread(self._append_line, self._log_path, line)
        except OSError as exc:
            logger.warning("Failed to append harvest log %s: %s", self._log_path, exc)

    @staticmethod
    def _append_line(path: Path, line: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


harvest_scheduler = HarvestScheduler()

__all__ = ["HarvestScheduler", "harvest_scheduler"]
