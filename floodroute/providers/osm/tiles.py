"""
OpenStreetMap raster tile download.
"""

import logging
from typing import Optional

import httpx

from floodroute.errors import NetworkUnavailable, RequestTimeout, TileFetchFailed
from floodroute.providers.base import TileSource

logger = logging.getLogger(__name__)


class OSMTileSource(TileSource):
    """
    Downloads PNG tiles over HTTP.

    Args:
        timeout: Request timeout in seconds
        user_agent: User-Agent header (required by the OSM tile usage policy)
        client: Pre-built client (tests inject one with a MockTransport)
    """

    def __init__(
        self,
        timeout: float = 10.0,
        user_agent: str = "floodroute/0.1",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": user_agent},
            follow_redirects=True,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch(self, url: str) -> bytes:
        try:
            resp = await self._client.get(url)
        except httpx.TimeoutException as e:
            raise RequestTimeout(f"Tile request timed out: {e}", url=url) from e
        except httpx.HTTPError as e:
            raise NetworkUnavailable(f"Tile server unreachable: {e}", url=url) from e

        if resp.status_code != 200 or not resp.content:
            raise TileFetchFailed(url, f"HTTP {resp.status_code}")
        return resp.content
