"""
OSRM routing engine.

Calls the OSRM HTTP route service and normalizes its GeoJSON geometries
(``[lon, lat]`` pairs) and maneuver steps into RouteGeometry models.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from floodroute.errors import NetworkUnavailable, RequestTimeout
from floodroute.providers.base import RoutingEngine
from floodroute.providers.models import Coordinate, RouteGeometry, RouteStep

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}
NO_ROUTE_CODES = {"NoRoute", "NoSegment"}


class _TransientStatus(Exception):
    """OSRM answered with a status worth one more try."""


def _format_osrm_error(resp: httpx.Response) -> str:
    """Decode OSRM JSON error payloads, falling back to the body text."""
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and (data.get("code") or data.get("message")):
        return f"OSRM {resp.status_code} {data.get('code', '')}: {data.get('message', '')}".strip()

    body = (resp.text or "").strip().replace("\n", " ")
    if len(body) > 240:
        body = body[:240] + "..."
    return f"OSRM {resp.status_code}: {body}" if body else f"OSRM HTTP {resp.status_code}"


class OSRMRoutingEngine(RoutingEngine):
    """
    Routing through an OSRM server.

    Args:
        base_url: Server root, e.g. https://router.project-osrm.org
        profile: Routing profile (driving, walking, cycling)
        timeout: Request timeout in seconds
        user_agent: User-Agent header
        client: Pre-built client (tests inject one with a MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        profile: str = "driving",
        timeout: float = 15.0,
        user_agent: str = "floodroute/0.1",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": user_agent, "accept": "application/json"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.25, max=2),
        retry=retry_if_exception_type(_TransientStatus),
        reraise=True,
    )
    async def _get(self, url: str, params: Dict[str, str]) -> httpx.Response:
        try:
            resp = await self._client.get(url, params=params)
        except httpx.TimeoutException as e:
            raise RequestTimeout(f"OSRM timed out: {e}", url=url) from e
        except httpx.HTTPError as e:
            raise NetworkUnavailable(f"OSRM unreachable: {e}", url=url) from e

        if resp.status_code in RETRYABLE_STATUS:
            logger.warning(f"OSRM HTTP {resp.status_code} for {url}")
            raise _TransientStatus(_format_osrm_error(resp))
        return resp

    def route_url(self, start: Coordinate, end: Coordinate) -> str:
        coords = f"{start.longitude},{start.latitude};{end.longitude},{end.latitude}"
        return f"{self.base_url}/route/v1/{self.profile}/{coords}"

    async def route(
        self,
        start: Coordinate,
        end: Coordinate,
        alternatives: bool = False,
    ) -> List[RouteGeometry]:
        url = self.route_url(start, end)
        params = {
            "overview": "full",
            "geometries": "geojson",
            "steps": "true",
            "alternatives": "true" if alternatives else "false",
        }

        logger.debug(f"🗺️ OSRM request {url} alternatives={alternatives}")
        try:
            resp = await self._get(url, params)
        except _TransientStatus as e:
            raise NetworkUnavailable(str(e), url=url) from e

        try:
            data = resp.json()
        except ValueError:
            data = {}

        code = data.get("code") if isinstance(data, dict) else None
        if code in NO_ROUTE_CODES:
            logger.info(f"OSRM found no route between {start.as_tuple()} and {end.as_tuple()}")
            return []
        if resp.status_code != 200:
            raise NetworkUnavailable(_format_osrm_error(resp), url=url)
        if code != "Ok":
            logger.warning(f"OSRM answered with code {code!r}")
            return []

        try:
            routes = [self._parse_route(r) for r in data.get("routes") or []]
        except (KeyError, TypeError, ValueError) as e:
            raise NetworkUnavailable(f"Malformed OSRM route: {e}", url=url) from e
        logger.debug(f"OSRM returned {len(routes)} routes")
        return routes

    @staticmethod
    def _parse_route(route: Dict[str, Any]) -> RouteGeometry:
        coordinates = [
            Coordinate(latitude=float(lat), longitude=float(lon))
            for lon, lat in route["geometry"]["coordinates"]
        ]
        steps: List[RouteStep] = []
        for leg in route.get("legs") or []:
            for step in leg.get("steps") or []:
                maneuver = step.get("maneuver") or {}
                location = maneuver.get("location")
                steps.append(
                    RouteStep(
                        distance_m=float(step.get("distance", 0.0)),
                        duration_s=float(step.get("duration", 0.0)),
                        maneuver_type=maneuver.get("type", ""),
                        modifier=maneuver.get("modifier"),
                        street_name=step.get("name") or "",
                        location=(
                            Coordinate(latitude=float(location[1]), longitude=float(location[0]))
                            if location
                            else None
                        ),
                        exit=maneuver.get("exit"),
                    )
                )
        return RouteGeometry(
            coordinates=coordinates,
            distance_m=float(route.get("distance", 0.0)),
            duration_s=float(route.get("duration", 0.0)),
            steps=steps,
        )
