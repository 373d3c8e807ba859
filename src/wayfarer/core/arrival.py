"""Geofenced arrival detection."""

from wayfarer.core.geo import Location, distance_between

DEFAULT_ARRIVAL_THRESHOLD_M = 50.0


class ArrivalDetector:
    """
    Decides whether a live location is inside a waypoint's geofence.

    The boundary is inclusive: standing exactly ``threshold_meters`` away
    counts as arrived.
    """

    def __init__(self, threshold_meters: float = DEFAULT_ARRIVAL_THRESHOLD_M) -> None:
        if threshold_meters < 0:
            raise ValueError("threshold_meters must not be negative")
        self.threshold_meters = threshold_meters

    def distance_to(self, location: Location, target: Location) -> float:
        """Distance in metres from ``location`` to ``target``."""
        return distance_between(location, target)

    def check(self, location: Location, target: Location) -> bool:
        """Check if ``location`` is within the arrival threshold of ``target``."""
        return self.distance_to(location, target) <= self.threshold_meters
