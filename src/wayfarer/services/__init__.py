"""Collaborator adapters: quest backend, routing, device location and submission."""

from wayfarer.services.backend import NakamaBackend, QuestBackend
from wayfarer.services.device import LocationProvider, SimulatedWalker, StaticLocationProvider
from wayfarer.services.models import Quest, QuestStep, Route, RouteInstruction
from wayfarer.services.routing import (
    MapboxRouteProvider,
    RouteProvider,
    StraightLineRouteProvider,
    default_route_provider,
)
from wayfarer.services.submission import StepSubmitter, Submission

__all__ = [
    # Backend
    "QuestBackend",
    "NakamaBackend",
    # Models
    "Quest",
    "QuestStep",
    "Route",
    "RouteInstruction",
    # Routing
    "RouteProvider",
    "MapboxRouteProvider",
    "StraightLineRouteProvider",
    "default_route_provider",
    # Device
    "LocationProvider",
    "StaticLocationProvider",
    "SimulatedWalker",
    # Submission
    "StepSubmitter",
    "Submission",
]
