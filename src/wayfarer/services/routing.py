"""Route providers: turn an origin/destination pair into a walkable route."""

from abc import ABC, abstractmethod
from typing import Any

import aiohttp
import structlog

from wayfarer.config import get_settings
from wayfarer.core.geo import Location, calculate_bearing, compass_direction, distance_between
from wayfarer.services.models import Route, RouteInstruction

logger = structlog.get_logger(__name__)

ROUTE_PROFILES = ("walking", "cycling", "driving")
MAPBOX_BASE_URL = "https://api.mapbox.com/directions/v5/mapbox"

# Average walking speed used when no routing service is involved
WALKING_SPEED_MPS = 1.4


class RouteProvider(ABC):
    """Abstract routing service."""

    @abstractmethod
    async def get_route(
        self, origin: Location, destination: Location, mode: str = "walking"
    ) -> Route | None:
        """
        Compute a route.

        Args:
            origin: Start of the leg (usually the user's position)
            destination: Target waypoint
            mode: Routing profile

        Returns:
            Route, or None if no route could be computed
        """
        pass


class MapboxRouteProvider(RouteProvider):
    """Route provider backed by the Mapbox Directions API."""

    def __init__(
        self,
        access_token: str | None = None,
        base_url: str = MAPBOX_BASE_URL,
        timeout_seconds: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """
        Initialize the provider.

        Args:
            access_token: Mapbox token; defaults to settings.mapbox_access_token
            base_url: Directions endpoint prefix
            timeout_seconds: HTTP timeout per request
            session: Shared aiohttp session (a short-lived one is opened per call if None)
        """
        self.access_token = access_token or get_settings().mapbox_access_token
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._session = session

    def _build_url(self, origin: Location, destination: Location, mode: str) -> str:
        coords = (
            f"{origin.longitude},{origin.latitude};{destination.longitude},{destination.latitude}"
        )
        return f"{self.base_url}/{mode}/{coords}"

    async def get_route(
        self, origin: Location, destination: Location, mode: str = "walking"
    ) -> Route | None:
        """Fetch a route from Mapbox; any failure yields None."""
        if not self.access_token:
            logger.error("mapbox_token_not_configured")
            return None

        if mode not in ROUTE_PROFILES:
            logger.warning("route_profile_unknown", mode=mode)
            return None

        url = self._build_url(origin, destination, mode)
        params = {
            "access_token": self.access_token,
            "geometries": "geojson",
            "steps": "true",
            "overview": "full",
            "annotations": "distance,duration",
        }

        try:
            if self._session is not None:
                data = await self._fetch(self._session, url, params)
            else:
                async with aiohttp.ClientSession() as session:
                    data = await self._fetch(session, url, params)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.error("route_request_failed", mode=mode, error=str(e))
            return None

        if data is None:
            return None

        return self._parse_route(data)

    async def _fetch(
        self, session: aiohttp.ClientSession, url: str, params: dict[str, str]
    ) -> dict[str, Any] | None:
        async with session.get(
            url, params=params, timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
        ) as resp:
            if resp.status != 200:
                logger.error("route_http_error", status=resp.status)
                return None
            data = await resp.json()
            return data if isinstance(data, dict) else None

    def _parse_route(self, data: dict[str, Any]) -> Route | None:
        routes = data.get("routes") or []
        if data.get("code") != "Ok" or not routes:
            logger.error("route_calculation_failed", code=data.get("code"))
            return None

        route = routes[0]
        try:
            coordinates = route.get("geometry", {}).get("coordinates", [])
            legs = route.get("legs") or [{}]
            instructions = [
                RouteInstruction(
                    instruction=step["maneuver"].get("instruction", ""),
                    distance_meters=step.get("distance", 0.0),
                    duration_seconds=step.get("duration", 0.0),
                    maneuver_type=step["maneuver"].get("type", ""),
                )
                for step in legs[0].get("steps", [])
            ]
            return Route(
                distance_meters=route["distance"],
                duration_seconds=route["duration"],
                polyline=tuple((lat, lon) for lon, lat in coordinates),
                steps=tuple(instructions),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error("route_payload_malformed", error=str(e))
            return None


class StraightLineRouteProvider(RouteProvider):
    """
    Offline route provider.

    Produces a single great-circle leg with one compass instruction. Used when
    no routing token is configured and by the demo CLI.
    """

    def __init__(self, speed_mps: float = WALKING_SPEED_MPS) -> None:
        if speed_mps <= 0:
            raise ValueError("speed_mps must be positive")
        self.speed_mps = speed_mps

    async def get_route(
        self, origin: Location, destination: Location, mode: str = "walking"
    ) -> Route | None:
        """Build the direct leg from origin to destination."""
        distance = distance_between(origin, destination)
        bearing = calculate_bearing(
            origin.latitude, origin.longitude, destination.latitude, destination.longitude
        )
        instruction = RouteInstruction(
            instruction=f"Head {compass_direction(bearing)}",
            distance_meters=distance,
            duration_seconds=distance / self.speed_mps,
            maneuver_type="depart",
        )
        return Route(
            distance_meters=distance,
            duration_seconds=distance / self.speed_mps,
            polyline=(origin.as_tuple(), destination.as_tuple()),
            steps=(instruction,),
        )


def default_route_provider() -> RouteProvider:
    """Mapbox when a token is configured, straight-line otherwise."""
    settings = get_settings()
    if settings.mapbox_access_token:
        return MapboxRouteProvider(access_token=settings.mapbox_access_token)
    logger.info("route_provider_fallback", provider="straight_line")
    return StraightLineRouteProvider()
