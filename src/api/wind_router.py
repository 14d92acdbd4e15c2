from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import FileResponse, PlainTextResponse
from pydantic import BaseModel

from services.resolver import (
    InvalidQueryTime,
    ResolvedSnapshot,
    SearchExhausted,
    SearchStrategy,
    SnapshotNotFoundYet,
    normalize_search_limit,
    parse_query_time,
    snapshot_resolver,
)
from services.snapshot_store import snapshot_store

logger = logging.getLogger("windhub.api.wind")

router = APIRouter(prefix="/wind", tags=["wind"])


class SnapshotListResponse(BaseModel):
    count: int
    keys: list[str]


def _snapshot_response(resolved: ResolvedSnapshot) -> FileResponse:
    return FileResponse(
        resolved.path,
        media_type="application/json",
        headers={"X-Snapshot-Key": resolved.key},
    )


@router.get("", response_class=PlainTextResponse)
async def wind_root() -> str:
    return "hello wind hub.. go to /wind/latest for wind data.."


@router.get("/alive", response_class=PlainTextResponse)
async def wind_alive() -> str:
    return "wind hub is alive"


@router.get("/latest", response_class=FileResponse)
async def latest_snapshot():
    """Newest harvested snapshot, walking back from the current interval."""
    try:
        resolved = snapshot_resolver.latest()
    except SnapshotNotFoundYet as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _snapshot_response(resolved)


@router.get("/nearest", response_class=FileResponse)
async def nearest_snapshot(
    time_iso: Optional[str] = Query(None, alias="timeIso", description="ISO-8601 instant to look around"),
    search_limit: Optional[str] = Query(None, alias="searchLimit", description="Search radius in whole days"),
    strategy: SearchStrategy = Query("backward_first", description="Search order inside the search window"),
):
    try:
        target = parse_query_time(time_iso)
    except InvalidQueryTime as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    limit_days = normalize_search_limit(search_limit)
    try:
        resolved = snapshot_resolver.nearest(target, limit_days, strategy=strategy)
    except SearchExhausted as exc:
        logger.info("No snapshot within %d day(s) of %s", limit_days, target.isoformat())
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _snapshot_response(resolved)


@router.get("/snapshots", response_model=SnapshotListResponse)
async def list_snapshots() -> SnapshotListResponse:
    keys = snapshot_store.keys()
    return SnapshotListResponse(count=len(keys), keys=keys)
