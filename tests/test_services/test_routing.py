"""Tests for route providers."""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from wayfarer.config import get_settings
from wayfarer.core.geo import Location, distance_between
from wayfarer.services.routing import (
    WALKING_SPEED_MPS,
    MapboxRouteProvider,
    StraightLineRouteProvider,
    default_route_provider,
)

ORIGIN = Location(40.7580, -73.9855)
DESTINATION = Location(40.7614, -73.9776)

DIRECTIONS_OK = {
    "code": "Ok",
    "routes": [
        {
            "distance": 1234.0,
            "duration": 900.0,
            "geometry": {
                "coordinates": [[-73.9855, 40.758], [-73.9800, 40.760], [-73.9776, 40.7614]]
            },
            "legs": [
                {
                    "steps": [
                        {
                            "distance": 600.0,
                            "duration": 430.0,
                            "maneuver": {"instruction": "Head north on 7th Ave", "type": "depart"},
                        },
                        {
                            "distance": 634.0,
                            "duration": 470.0,
                            "maneuver": {"instruction": "You have arrived", "type": "arrive"},
                        },
                    ]
                }
            ],
        }
    ],
}


class FakeDirections:
    """Mapbox Directions stand-in."""

    def __init__(self):
        self.response = DIRECTIONS_OK
        self.status = 200
        self.requests = []

    async def handle(self, request):
        self.requests.append(request)
        return web.json_response(self.response, status=self.status)


@pytest.fixture
def directions():
    return FakeDirections()


@pytest.fixture
async def mapbox(directions):
    app = web.Application()
    app.router.add_get("/directions/v5/mapbox/{profile}/{coordinates}", directions.handle)
    server = TestServer(app)
    await server.start_server()
    yield MapboxRouteProvider(
        access_token="test-token", base_url=str(server.make_url("/directions/v5/mapbox"))
    )
    await server.close()


class TestMapboxRouteProvider:
    """Test the Mapbox Directions adapter."""

    async def test_parses_route(self, mapbox, directions):
        """Test a successful response becomes a Route."""
        route = await mapbox.get_route(ORIGIN, DESTINATION)

        assert route.distance_meters == 1234.0
        assert route.duration_seconds == 900.0
        assert route.polyline[0] == (40.758, -73.9855)
        assert route.polyline[-1] == (40.7614, -73.9776)
        assert [s.maneuver_type for s in route.steps] == ["depart", "arrive"]
        assert route.steps[0].instruction == "Head north on 7th Ave"
        assert route.summary() == "1.2 km · 15 min walk"

    async def test_request_shape(self, mapbox, directions):
        """Test the profile, lon/lat order and query parameters."""
        await mapbox.get_route(ORIGIN, DESTINATION, mode="cycling")

        request = directions.requests[0]
        assert request.match_info["profile"] == "cycling"
        assert request.match_info["coordinates"] == "-73.9855,40.758;-73.9776,40.7614"
        assert request.query["access_token"] == "test-token"
        assert request.query["geometries"] == "geojson"
        assert request.query["steps"] == "true"
        assert request.query["overview"] == "full"

    async def test_no_route_code(self, mapbox, directions):
        """Test a non-Ok code yields None."""
        directions.response = {"code": "NoRoute", "routes": []}
        assert await mapbox.get_route(ORIGIN, DESTINATION) is None

    async def test_http_error(self, mapbox, directions):
        """Test an HTTP error yields None."""
        directions.status = 401
        directions.response = {"message": "Not Authorized - Invalid Token"}
        assert await mapbox.get_route(ORIGIN, DESTINATION) is None

    async def test_malformed_route(self, mapbox, directions):
        """Test a route missing its distance yields None."""
        directions.response = {"code": "Ok", "routes": [{"duration": 10}]}
        assert await mapbox.get_route(ORIGIN, DESTINATION) is None

    @pytest.mark.parametrize(
        "route",
        [
            {"distance": 100, "duration": 60, "geometry": "not-a-mapping"},
            {
                "distance": 100,
                "duration": 60,
                "legs": [{"steps": [{"maneuver": "turn left"}]}],
            },
            "not-a-route",
        ],
    )
    async def test_wrongly_typed_route_fields(self, mapbox, directions, route):
        """Test route fields of the wrong shape yield None instead of raising."""
        directions.response = {"code": "Ok", "routes": [route]}
        assert await mapbox.get_route(ORIGIN, DESTINATION) is None

    async def test_unknown_profile(self, mapbox, directions):
        """Test an unsupported profile is refused without a request."""
        assert await mapbox.get_route(ORIGIN, DESTINATION, mode="flying") is None
        assert directions.requests == []

    async def test_missing_token(self):
        """Test no token means no route."""
        provider = MapboxRouteProvider(access_token=None)
        assert await provider.get_route(ORIGIN, DESTINATION) is None

    async def test_unreachable_service(self):
        """Test a connection failure yields None."""
        provider = MapboxRouteProvider(
            access_token="t", base_url="http://127.0.0.1:9/directions", timeout_seconds=1
        )
        assert await provider.get_route(ORIGIN, DESTINATION) is None


class TestStraightLineRouteProvider:
    """Test the offline route provider."""

    async def test_direct_leg(self):
        """Test the route is the great-circle leg at walking speed."""
        route = await StraightLineRouteProvider().get_route(ORIGIN, DESTINATION)

        distance = distance_between(ORIGIN, DESTINATION)
        assert route.distance_meters == pytest.approx(distance)
        assert route.duration_seconds == pytest.approx(distance / WALKING_SPEED_MPS)
        assert route.polyline == (ORIGIN.as_tuple(), DESTINATION.as_tuple())
        assert route.steps[0].instruction == "Head northeast"

    async def test_same_point(self):
        """Test a zero-length leg."""
        route = await StraightLineRouteProvider().get_route(ORIGIN, ORIGIN)
        assert route.distance_meters == 0.0
        assert route.duration_seconds == 0.0

    def test_speed_must_be_positive(self):
        """Test a zero speed is rejected."""
        with pytest.raises(ValueError):
            StraightLineRouteProvider(speed_mps=0)


class TestDefaultRouteProvider:
    """Test provider selection from settings."""

    def test_without_token(self):
        """Test the offline provider is used without a Mapbox token."""
        assert isinstance(default_route_provider(), StraightLineRouteProvider)

    def test_with_token(self, monkeypatch):
        """Test Mapbox is used when a token is configured."""
        monkeypatch.setenv("MAPBOX_ACCESS_TOKEN", "pk.test")
        get_settings.cache_clear()

        provider = default_route_provider()

        assert isinstance(provider, MapboxRouteProvider)
        assert provider.access_token == "pk.test"
