from __future__ import annotations

import asyncio
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from services.resolver import InvalidQueryTime, parse_query_time
from services.scheduler import harvest_scheduler
from services.snapshot_store import snapshot_store

router = APIRouter(prefix="/harvest", tags=["harvest"])


class HarvestAttemptModel(BaseModel):
    key: str
    outcome: str
    status_code: int | None = None
    detail: str | None = None


class HarvestReportModel(BaseModel):
    started_at: str | None = None
    finished_at: str | None = None
    duration_s: float | None = Field(default=None, ge=0.0)
    start_key: str | None = None
    status: str
    detail: str | None = None
    committed: list[str] = Field(default_factory=list)
    attempts: list[HarvestAttemptModel] = Field(default_factory=list)


class SnapshotStoreStats(BaseModel):
    snapshot_dir: str
    count: int
    bytes: int
    oldest_key: str | None = None
    newest_key: str | None = None


class HarvestStatusResponse(BaseModel):
    enabled: bool
    scheduler_running: bool
    harvest_in_progress: bool
    interval_minutes: float
    log_path: str | None = None
    last_report: HarvestReportModel | None = None
    store: SnapshotStoreStats
    recent_reports: list[HarvestReportModel] = Field(default_factory=list)


@router.get("/status", response_model=HarvestStatusResponse)
async def harvest_status(history_limit: int = Query(5, ge=0, le=50)) -> dict[str, Any]:
    payload = harvest_scheduler.status()
    payload["store"] = await asyncio.to_thread(snapshot_store.stats)
    payload["recent_reports"] = await harvest_scheduler.history(limit=history_limit)
    return payload


@router.get("/history", response_model=list[HarvestReportModel])
async def harvest_history(limit: int = Query(20, ge=1, le=500)) -> list[dict[str, Any]]:
    return await harvest_scheduler.history(limit=limit)


@router.post("/run", response_model=HarvestReportModel)
async def run_harvest(
    start: Optional[str] = Query(None, description="ISO-8601 instant to walk back from (default: now)"),
) -> dict[str, Any]:
    start_at = None
    if start is not None:
        try:
            start_at = parse_query_time(start)
        except InvalidQueryTime as exc:
            raise HTTPException(status_code=400, detail="Invalid start") from exc
    if harvest_scheduler.harvest_in_progress:
        raise HTTPException(status_code=409, detail="Harvest already in progress")
    report = await harvest_scheduler.trigger(start_at)
    return report.to_payload()
