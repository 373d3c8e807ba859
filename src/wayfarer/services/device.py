"""Device location providers.

The real device GPS lives outside this package; anything that can answer
``get_current_location()`` can drive the quest controller.
"""

from abc import ABC, abstractmethod

import structlog

from wayfarer.core.errors import LocationUnavailableError
from wayfarer.core.geo import Location, calculate_bearing, destination_point, distance_between

logger = structlog.get_logger(__name__)


class LocationProvider(ABC):
    """Abstract source of device location fixes."""

    @abstractmethod
    async def get_current_location(self) -> Location:
        """
        Get the device's current location.

        Raises:
            LocationUnavailableError: If no fix can be produced
        """
        pass


class StaticLocationProvider(LocationProvider):
    """Provider that reports whatever location it was last given."""

    def __init__(self, location: Location | None = None) -> None:
        self.location = location
        self.fix_count = 0

    def set_location(self, location: Location | None) -> None:
        """Move the device. None simulates losing the GPS fix."""
        self.location = location

    async def get_current_location(self) -> Location:
        """Return the configured location."""
        if self.location is None:
            raise LocationUnavailableError("No location fix available")
        self.fix_count += 1
        return self.location


class SimulatedWalker(LocationProvider):
    """
    Provider that walks toward a target a fixed distance per fix.

    Used by the demo CLI to play a quest without a phone.
    """

    def __init__(self, start: Location, step_meters: float = 25.0) -> None:
        """
        Initialize the walker.

        Args:
            start: Starting position
            step_meters: Distance covered between two consecutive fixes
        """
        if step_meters <= 0:
            raise ValueError("step_meters must be positive")
        self.position = start
        self.step_meters = step_meters
        self.target: Location | None = None

    def walk_toward(self, target: Location | None) -> None:
        """Set (or clear) the point the walker heads for."""
        self.target = target
        logger.debug("simulated_walker_target_set", target=target.as_tuple() if target else None)

    async def get_current_location(self) -> Location:
        """Advance one step toward the target and report the new position."""
        if self.target is not None:
            remaining = distance_between(self.position, self.target)
            if remaining <= self.step_meters:
                self.position = self.target
            else:
                bearing = calculate_bearing(
                    self.position.latitude,
                    self.position.longitude,
                    self.target.latitude,
                    self.target.longitude,
                )
                self.position = destination_point(self.position, bearing, self.step_meters)
        return self.position
