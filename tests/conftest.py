"""Shared fixtures for all tests."""

import asyncio

import pytest
import structlog

from wayfarer.config import get_settings
from wayfarer.core.controller import QuestPhase, QuestProgressionController
from wayfarer.core.errors import BackendError
from wayfarer.core.geo import Location
from wayfarer.core.monitor import LocationMonitor
from wayfarer.services.backend import QuestBackend
from wayfarer.services.device import StaticLocationProvider
from wayfarer.services.models import (
    AckResponse,
    AvailableQuestsResponse,
    CompleteQuestResponse,
    CompleteStepResponse,
    Quest,
    Route,
    StartQuestResponse,
    SubmitMediaResponse,
)
from wayfarer.services.routing import RouteProvider

# Times Square and three waypoints a few hundred metres apart
START = Location(40.7580, -73.9855)
WAYPOINTS = (
    Location(40.7614, -73.9776),
    Location(40.7587, -73.9787),
    Location(40.7527, -73.9772),
)

ENV_VARS = (
    "MAPBOX_ACCESS_TOKEN",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "WAYFARER_NAKAMA_HOST",
    "WAYFARER_NAKAMA_PORT",
    "WAYFARER_NAKAMA_USE_SSL",
    "WAYFARER_ARRIVAL_THRESHOLD_METERS",
    "WAYFARER_RPC_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Keep the developer's environment and .env file out of every test."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_location_monitor():
    """Forget the process-wide active monitor between tests."""
    yield
    LocationMonitor._active = None


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo any configure_logging() call made by a test."""
    yield
    structlog.reset_defaults()


class FakeBackend(QuestBackend):
    """
    In-memory quest backend.

    Records every call, can fail any RPC by name and can hold any RPC on an
    asyncio.Event until the test releases it.
    """

    def __init__(self) -> None:
        self.quests: dict[str, Quest] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.failures: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.step_responses: list[CompleteStepResponse] = []
        self.xp_reward: int | None = 25

    def called(self, name: str) -> list[tuple]:
        return [args for rpc, args in self.calls if rpc == name]

    async def _enter(self, name: str, *args) -> None:
        self.calls.append((name, args))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        if name in self.failures:
            raise self.failures[name]

    async def get_available_quests(self, location, max_distance_km):
        await self._enter("get_available_quests", location, max_distance_km)
        quests = list(self.quests.values())
        return AvailableQuestsResponse(success=True, quests=quests, count=len(quests))

    async def start_quest(self, quest_id):
        await self._enter("start_quest", quest_id)
        return StartQuestResponse.model_validate(
            {"success": True, "user_quest": {"status": "active"}}
        )

    async def get_quest_detail(self, quest_id):
        await self._enter("get_quest_detail", quest_id)
        if quest_id not in self.quests:
            raise BackendError("Quest not found", rpc="get_quest_detail")
        return self.quests[quest_id]

    async def complete_step(self, quest_id, step_id, location):
        await self._enter("complete_step", quest_id, step_id, location)
        if self.step_responses:
            return self.step_responses.pop(0)
        return CompleteStepResponse(success=True)

    async def complete_quest(self, quest_id):
        await self._enter("complete_quest", quest_id)
        return CompleteQuestResponse(success=True, xp_reward=self.xp_reward)

    async def update_user_location(self, location):
        await self._enter("update_user_location", location)
        return AckResponse(success=True)

    async def submit_step_media(self, quest_id, step_id, media_type, media_url, text):
        await self._enter("submit_step_media", quest_id, step_id, media_type, media_url, text)
        return SubmitMediaResponse(success=True, media_id="media-1")


class FakeRouteProvider(RouteProvider):
    """
    Route provider returning canned routes.

    ``routes[i]`` answers the i-th call (the last one repeats); ``gates[i]``
    holds the i-th call until set.
    """

    def __init__(self, routes: list[Route | None] | None = None) -> None:
        self.routes = routes or [make_route(800.0)]
        self.gates: dict[int, asyncio.Event] = {}
        self.error: Exception | None = None
        self.calls: list[tuple[Location, Location, str]] = []

    async def get_route(self, origin, destination, mode="walking"):
        index = len(self.calls)
        self.calls.append((origin, destination, mode))
        gate = self.gates.get(index)
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error
        return self.routes[min(index, len(self.routes) - 1)]


def make_route(distance_meters: float) -> Route:
    return Route(
        distance_meters=distance_meters,
        duration_seconds=distance_meters / 1.4,
        polyline=(START.as_tuple(), WAYPOINTS[0].as_tuple()),
    )


def build_quest(quest_id: str = "quest-1", steps: int = 3, **overrides) -> Quest:
    """Build a quest whose steps sit on WAYPOINTS."""
    data = {
        "id": quest_id,
        "title": "Midtown Walk",
        "description": "Three stops around Times Square",
        "reward_xp": 25,
        "steps": [
            {
                "id": f"{quest_id}-s{n}",
                "step_number": n,
                "title": f"Stop {n}",
                "location": {
                    "latitude": WAYPOINTS[(n - 1) % len(WAYPOINTS)].latitude,
                    "longitude": WAYPOINTS[(n - 1) % len(WAYPOINTS)].longitude,
                },
            }
            for n in range(1, steps + 1)
        ],
    }
    data.update(overrides)
    return Quest.model_validate(data)


@pytest.fixture
def quest():
    """A three-step quest, already registered with the fake backend."""
    return build_quest()


@pytest.fixture
def backend(quest):
    """Fake backend that knows the sample quest."""
    fake = FakeBackend()
    fake.quests[quest.id] = quest
    return fake


@pytest.fixture
def route_provider():
    """Fake route provider."""
    return FakeRouteProvider()


@pytest.fixture
def device():
    """Device parked at the start position."""
    return StaticLocationProvider(START)


@pytest.fixture
async def make_controller(backend, route_provider, device):
    """Factory for controllers with test-friendly timings; closes them afterwards."""
    controllers = []

    def _make(**kwargs) -> QuestProgressionController:
        kwargs.setdefault("poll_interval_seconds", 0.01)
        kwargs.setdefault("fix_timeout_seconds", 1.0)
        kwargs.setdefault("rpc_timeout_seconds", 1.0)
        controller = QuestProgressionController(backend, route_provider, device, **kwargs)
        controllers.append(controller)
        return controller

    yield _make

    for controller in controllers:
        await controller.close()


@pytest.fixture
def controller(make_controller):
    """Controller with default test settings."""
    return make_controller()


@pytest.fixture
def wait_for_phase():
    """Wait (briefly) until a controller reaches a phase."""

    async def _wait(controller, phase: QuestPhase, timeout: float = 1.0) -> None:
        async def _poll() -> None:
            while controller.phase is not phase:
                await asyncio.sleep(0.005)

        await asyncio.wait_for(_poll(), timeout=timeout)

    return _wait


@pytest.fixture
def arrive(device, wait_for_phase):
    """Walk the device onto the controller's current step and wait for ARRIVED."""

    async def _arrive(controller) -> None:
        if controller.phase is QuestPhase.ACTIVE:
            await controller.navigate()
        device.set_location(controller.current_step.location)
        await wait_for_phase(controller, QuestPhase.ARRIVED)

    return _arrive
