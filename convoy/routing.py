"""
Route fetching for simulated drives.

Resolves two place names to coordinates (Nominatim search) and asks an
OSRM server for the driving route between them. Used once per hosted
session when simulation is enabled; any failure is reported as a
SimulationSetupError and the session carries on without a simulated
position source.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import requests

from .config import HTTP_TIMEOUT, USER_AGENT, get_nominatim_url, get_osrm_url
from .errors import SimulationSetupError
from .models import TrailPoint

logger = logging.getLogger(__name__)


class RouteProvider:
    """Geocoding + routing client."""

    def __init__(
        self,
        nominatim_url: Optional[str] = None,
        osrm_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = HTTP_TIMEOUT,
    ) -> None:
        self.nominatim_url = nominatim_url or get_nominatim_url()
        self.osrm_url = (osrm_url or get_osrm_url()).rstrip("/")
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = USER_AGENT
        self.timeout = timeout

    def geocode(self, place: str) -> Tuple[float, float]:
        """
        Resolve a place name to (lat, lng).

        Raises:
            SimulationSetupError: lookup failed or nothing matched
        """
        try:
            resp = self.session.get(
                self.nominatim_url,
                params={"q": place, "format": "json", "limit": 1},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise SimulationSetupError(f"Geocoding '{place}' failed: {exc}") from exc

        if not data:
            raise SimulationSetupError(f"Place not found: {place}")
        try:
            return float(data[0]["lat"]), float(data[0]["lon"])
        except (KeyError, TypeError, ValueError) as exc:
            raise SimulationSetupError(f"Unexpected geocoding result for '{place}'") from exc

    def route(self, start: Tuple[float, float], end: Tuple[float, float]) -> List[TrailPoint]:
        """Driving route between two (lat, lng) pairs, as an ordered polyline."""
        # OSRM takes lon,lat pairs
        coords = f"{start[1]},{start[0]};{end[1]},{end[0]}"
        try:
            resp = self.session.get(
                f"{self.osrm_url}/{coords}",
                params={"overview": "full", "geometries": "geojson"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise SimulationSetupError(f"Route lookup failed: {exc}") from exc

        routes = data.get("routes") or []
        if not routes:
            raise SimulationSetupError("No route found between the two places")
        try:
            coordinates = routes[0]["geometry"]["coordinates"]
            points = [TrailPoint(lat=c[1], lng=c[0]) for c in coordinates]
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise SimulationSetupError("Unexpected route geometry") from exc
        if not points:
            raise SimulationSetupError("Route has no points")
        return points

    def fetch_route(self, start_place: str, end_place: str) -> List[TrailPoint]:
        """Geocode both places and return the route between them."""
        logger.info("Fetching route %s -> %s", start_place, end_place)
        start = self.geocode(start_place)
        end = self.geocode(end_place)
        points = self.route(start, end)
        logger.info("Route has %d points", len(points))
        return points
