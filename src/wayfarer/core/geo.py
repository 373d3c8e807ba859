"""Geographic helpers for Wayfarer.

Pure functions only: distance and bearing on a spherical Earth, coordinate
validation, and the short human-readable strings shown on the navigation card.
Nothing here logs or raises for well-formed input.
"""

import math
from dataclasses import dataclass
from datetime import datetime

EARTH_RADIUS_M = 6_371_000.0

COMPASS_POINTS = (
    "north",
    "northeast",
    "east",
    "southeast",
    "south",
    "southwest",
    "west",
    "northwest",
)


@dataclass(frozen=True)
class Location:
    """A latitude/longitude pair in decimal degrees."""

    latitude: float
    longitude: float

    def as_tuple(self) -> tuple[float, float]:
        """Return (latitude, longitude)."""
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class LocationResult:
    """
    Outcome of validating a pair of raw coordinates.

    Exactly one of ``location`` / ``error`` is set, discriminated by ``ok``.
    """

    ok: bool
    location: Location | None = None
    error: str | None = None

    @classmethod
    def success(cls, latitude: float, longitude: float) -> "LocationResult":
        return cls(ok=True, location=Location(latitude, longitude))

    @classmethod
    def failure(cls, error: str) -> "LocationResult":
        return cls(ok=False, error=error)


def _to_float(value: float | int | str) -> float:
    if isinstance(value, bool):
        raise TypeError("booleans are not coordinates")
    return float(value)


def validate_location(latitude: float | int | str, longitude: float | int | str) -> LocationResult:
    """
    Validate raw coordinates.

    Numeric strings are accepted (backend payloads sometimes carry them).
    NaN, non-numeric and out-of-range values are rejected, never clamped.

    Args:
        latitude: Latitude, expected in [-90, 90]
        longitude: Longitude, expected in [-180, 180]

    Returns:
        LocationResult with the parsed Location or an error message
    """
    try:
        lat = _to_float(latitude)
        lng = _to_float(longitude)
    except (TypeError, ValueError):
        return LocationResult.failure("Invalid location coordinates")

    if math.isnan(lat) or math.isnan(lng):
        return LocationResult.failure("Invalid location coordinates")

    if lat < -90 or lat > 90 or lng < -180 or lng > 180:
        return LocationResult.failure("Location coordinates out of valid range")

    return LocationResult.success(lat, lng)


def validate_fix(fix: object) -> LocationResult:
    """Validate a device fix: anything with ``latitude`` and ``longitude``."""
    latitude = getattr(fix, "latitude", None)
    longitude = getattr(fix, "longitude", None)
    if latitude is None or longitude is None:
        return LocationResult.failure("Device returned no location")
    return validate_location(latitude, longitude)


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance between two points in metres (Haversine).

    Identical points yield exactly 0.0.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_between(origin: Location, destination: Location) -> float:
    """Distance in metres between two Location objects."""
    return calculate_distance(
        origin.latitude, origin.longitude, destination.latitude, destination.longitude
    )


def calculate_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Forward azimuth from point 1 to point 2 in degrees [0, 360)."""
    rlat1, rlon1 = math.radians(lat1), math.radians(lon1)
    rlat2, rlon2 = math.radians(lat2), math.radians(lon2)
    d_lon = rlon2 - rlon1
    y = math.sin(d_lon) * math.cos(rlat2)
    x = math.cos(rlat1) * math.sin(rlat2) - math.sin(rlat1) * math.cos(rlat2) * math.cos(d_lon)
    return (math.degrees(math.atan2(y, x)) + 360) % 360


def destination_point(origin: Location, bearing: float, distance_meters: float) -> Location:
    """Point reached by travelling ``distance_meters`` from ``origin`` on ``bearing``."""
    angular = distance_meters / EARTH_RADIUS_M
    theta = math.radians(bearing)
    phi1 = math.radians(origin.latitude)
    lambda1 = math.radians(origin.longitude)

    phi2 = math.asin(
        math.sin(phi1) * math.cos(angular) + math.cos(phi1) * math.sin(angular) * math.cos(theta)
    )
    lambda2 = lambda1 + math.atan2(
        math.sin(theta) * math.sin(angular) * math.cos(phi1),
        math.cos(angular) - math.sin(phi1) * math.sin(phi2),
    )
    longitude = (math.degrees(lambda2) + 540) % 360 - 180
    return Location(math.degrees(phi2), longitude)


def compass_direction(bearing: float) -> str:
    """Map a bearing in degrees to one of eight compass points."""
    index = int(((bearing % 360) + 22.5) // 45) % 8
    return COMPASS_POINTS[index]


def has_arrived(user: Location, destination: Location, threshold_meters: float = 50) -> bool:
    """True when ``user`` is within ``threshold_meters`` of ``destination`` (inclusive)."""
    return distance_between(user, destination) <= threshold_meters


def format_distance(meters: float) -> str:
    """
    Format a distance for the navigation card.

    Below 1000 the rounded value is shown with the "ft" display unit the
    mobile client has always used; from 1000 up it is kilometres to one decimal.
    """
    if meters < 1000:
        return f"{math.floor(meters + 0.5)} ft"
    return f"{meters / 1000:.1f} km"


def format_duration(seconds: float) -> str:
    """Format a walking duration: "12 min walk" or "1h 5m walk"."""
    minutes = math.floor(seconds / 60 + 0.5)
    if minutes < 60:
        return f"{minutes} min walk"
    hours = minutes // 60
    mins = minutes % 60
    return f"{hours}h {mins}m walk"


def format_time_until(start: datetime, now: datetime) -> str:
    """
    Describe how long until a scheduled quest starts.

    Args:
        start: Scheduled start time
        now: Current time (same awareness as ``start``)

    Returns:
        "2 days", "1 hour", "15 mins" or "Starting now"
    """
    diff_seconds = (start - now).total_seconds()
    diff_hours = math.floor(diff_seconds / 3600)
    diff_days = math.floor(diff_hours / 24)

    if diff_days > 0:
        return f"{diff_days} day{'s' if diff_days > 1 else ''}"
    if diff_hours > 0:
        return f"{diff_hours} hour{'s' if diff_hours > 1 else ''}"
    diff_mins = math.floor(diff_seconds / 60)
    if diff_mins > 0:
        return f"{diff_mins} min{'s' if diff_mins > 1 else ''}"
    return "Starting now"
