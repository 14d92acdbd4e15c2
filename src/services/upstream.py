from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from config import settings
from services.time_grid import Interval

logger = logging.getLogger("windhub.upstream")

# Fixed selection: 10 m wind components and surface temperature over the whole globe.
GFS_SELECTION = {
    "lev_10_m_above_ground": "on",
    "lev_surface": "on",
    "var_TMP": "on",
    "var_UGRD": "on",
    "var_VGRD": "on",
    "leftlon": 0,
    "rightlon": 360,
    "toplat": 90,
    "bottomlat": -90,
}


class UpstreamError(RuntimeError):
    """Base class for failures to obtain a snapshot from NOMADS."""


class UpstreamNotFound(UpstreamError):
    """NOMADS answered with a non-200 status, usually because the cycle is not published yet."""

    def __init__(self, key: str, status_code: int) -> None:
        super().__init__(f"upstream returned {status_code} for {key}")
        self.key = key
        self.status_code = status_code


class UpstreamTransportError(UpstreamError):
    """Connection, timeout or mid-stream failure while talking to NOMADS."""


def build_query(interval: Interval) -> dict[str, object]:
    params: dict[str, object] = {"file": f"gfs.t{interval.hour_label}z.pgrb2.1p00.f000"}
    params.update(GFS_SELECTION)
    params["dir"] = f"/gfs.{interval.date_label}/{interval.hour_label}/atmos"
    return params


class GfsUpstream:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float | None = None,
    ) -> None:
        self._base_url = base_url or settings.gfs_filter_url
        self._client = client
        self._timeout = timeout if timeout is not None else settings.upstream_request_timeout

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"User-Agent": settings.upstream_user_agent}
            self._client = httpx.AsyncClient(headers=headers, timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @asynccontextmanager
    async def open(self, interval: Interval) -> AsyncIterator[httpx.Response]:
        """Stream the GRIB2 payload for ``interval``.

        The yielded response has a 200 status and an unread body. Any
        ``httpx.HTTPError`` raised while the body is consumed inside the block
        surfaces as :class:`UpstreamTransportError`.
        """
        client = await self._get_client()
        key = interval.key
        try:
            async with client.stream("GET", self._base_url, params=build_query(interval)) as response:
                logger.info("response %s | %s", response.status_code, key)
                if response.status_code != 200:
                    raise UpstreamNotFound(key, response.status_code)
                yield response
        except httpx.HTTPError as exc:
            logger.debug("Transport failure for %s: %s", key, exc)
            raise UpstreamTransportError(f"{type(exc).__name__} while fetching {key}: {exc}") from exc


gfs_upstream = GfsUpstream()

__all__ = [
    "GFS_SELECTION",
    "GfsUpstream",
    "UpstreamError",
    "UpstreamNotFound",
    "UpstreamTransportError",
    "build_query",
    "gfs_upstream",
]
