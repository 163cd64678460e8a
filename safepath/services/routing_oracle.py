"""
Directions provider client

The engine only needs ``fetch_routes(origin, destination, avoid_polygons)``;
GoogleDirectionsOracle implements it against the Google Directions API with
retries, and tests supply their own fake with the same signature.
"""

import asyncio
import logging
import re
from typing import List, Optional, Protocol, Sequence

import httpx

from ..config import Settings, get_settings
from ..exceptions import RoutingOracleError, RoutingUnavailableError
from ..models.domain import CandidateRoute, Coordinate, RouteStep
from . import geomath

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")


class RoutingOracle(Protocol):
    async def fetch_routes(
        self,
        origin: Coordinate,
        destination: Coordinate,
        avoid_polygons: Optional[Sequence[Sequence[Coordinate]]] = None,
    ) -> List[CandidateRoute]:
        ...


def decode_polyline(encoded: str) -> List[Coordinate]:
    """Decode Google's encoded polyline format."""
    points = []
    index = 0
    lat = 0
    lng = 0
    while index < len(encoded):
        for coord in range(2):
            shift = 0
            result = 0
            while True:
                b = ord(encoded[index]) - 63
                index += 1
                result |= (b & 0x1F) << shift
                shift += 5
                if b < 0x20:
                    break
            delta = ~(result >> 1) if (result & 1) else (result >> 1)
            if coord == 0:
                lat += delta
            else:
                lng += delta
        points.append(Coordinate(latitude=lat / 1e5, longitude=lng / 1e5))
    return points


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text or "").strip()


def parse_directions(payload: dict) -> List[CandidateRoute]:
    """Directions API JSON -> CandidateRoutes (first leg of each route)"""
    candidates = []
    for route in payload.get("routes", []):
        legs = route.get("legs") or []
        if not legs:
            continue
        leg = legs[0]
        encoded = route.get("overview_polyline", {}).get("points", "")
        polyline = tuple(decode_polyline(encoded)) if encoded else ()

        steps = tuple(
            RouteStep(
                start_location=Coordinate(step["start_location"]["lat"], step["start_location"]["lng"]),
                end_location=Coordinate(step["end_location"]["lat"], step["end_location"]["lng"]),
                distance_m=float(step.get("distance", {}).get("value", 0)),
                duration_s=float(step.get("duration", {}).get("value", 0)),
                instruction=strip_html(step.get("html_instructions", "")),
            )
            for step in leg.get("steps", [])
        )

        candidates.append(CandidateRoute(
            polyline=polyline,
            steps=steps,
            distance_m=float(leg.get("distance", {}).get("value", 0)),
            duration_s=float(leg.get("duration", {}).get("value", 0)),
            summary=route.get("summary", ""),
        ))
    return candidates


def avoids_polygons(candidate: CandidateRoute, avoid_polygons: Optional[Sequence[Sequence[Coordinate]]]) -> bool:
    if not avoid_polygons:
        return True
    return not any(geomath.polyline_intersects_polygon(candidate.polyline, polygon) for polygon in avoid_polygons)


class GoogleDirectionsOracle:
    """Google Directions API client with timeout, retries and exponential backoff"""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self.client = client or httpx.AsyncClient(timeout=self.settings.route_request_timeout_ms / 1000)

    async def aclose(self):
        await self.client.aclose()

    async def fetch_routes(
        self,
        origin: Coordinate,
        destination: Coordinate,
        avoid_polygons: Optional[Sequence[Sequence[Coordinate]]] = None,
    ) -> List[CandidateRoute]:
        params = {
            "origin": f"{origin.latitude},{origin.longitude}",
            "destination": f"{destination.latitude},{destination.longitude}",
            "alternatives": "true",
            "key": self.settings.google_maps_api_key,
        }
        payload = await self._get_with_retries(params)

        status = payload.get("status", "OK")
        if status == "ZERO_RESULTS":
            return []
        if status != "OK":
            raise RoutingOracleError(f"Directions request failed: {status}")

        candidates = parse_directions(payload)
        if avoid_polygons:
            # The provider has no polygon avoidance; prefer candidates that miss the zones
            clear = [c for c in candidates if avoids_polygons(c, avoid_polygons)]
            if clear:
                candidates = clear
            else:
                logger.info("Every alternative crosses a danger zone; keeping all candidates")
        return candidates

    async def _get_with_retries(self, params: dict) -> dict:
        attempts = self.settings.retry_attempts
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            if attempt > 0:
                delay = self.settings.retry_backoff_seconds * (2 ** (attempt - 1))
                await asyncio.sleep(delay)
            try:
                response = await self.client.get(self.settings.directions_base_url, params=params)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = e
                logger.warning(f"Directions request attempt {attempt + 1}/{attempts} failed: {e}")
                continue

            if response.status_code >= 500 or response.status_code == 429:
                last_error = RoutingOracleError(f"Directions API returned {response.status_code}")
                logger.warning(f"Directions API error {response.status_code} on attempt {attempt + 1}/{attempts}")
                continue
            if response.status_code >= 400:
                raise RoutingOracleError(f"Directions API rejected request: {response.status_code}")

            return response.json()

        raise RoutingUnavailableError(f"Directions API unavailable after {attempts} attempts: {last_error}")
