"""Pure quest logic: geometry, ranks, step sequencing, arrival and polling.

The progression controller lives in ``wayfarer.core.controller`` and is not
re-exported here because it depends on the service adapters.
"""

from wayfarer.core.arrival import ArrivalDetector
from wayfarer.core.geo import (
    Location,
    LocationResult,
    calculate_bearing,
    calculate_distance,
    format_distance,
    format_duration,
    has_arrived,
    validate_fix,
    validate_location,
)
from wayfarer.core.monitor import LocationMonitor
from wayfarer.core.rank import (
    RANK_THRESHOLDS,
    RankProfile,
    RankThreshold,
    calculate_new_xp,
    calculate_quiz_score,
    calculate_quiz_xp,
    calculate_rank,
    check_level_up,
    get_rank_name,
    is_quiz_passed,
)
from wayfarer.core.steps import validate_step_sequence

__all__ = [
    # Geo
    "Location",
    "LocationResult",
    "calculate_bearing",
    "calculate_distance",
    "format_distance",
    "format_duration",
    "has_arrived",
    "validate_fix",
    "validate_location",
    # Rank
    "RANK_THRESHOLDS",
    "RankProfile",
    "RankThreshold",
    "calculate_new_xp",
    "calculate_quiz_score",
    "calculate_quiz_xp",
    "calculate_rank",
    "check_level_up",
    "get_rank_name",
    "is_quiz_passed",
    # Steps
    "validate_step_sequence",
    # Arrival
    "ArrivalDetector",
    "LocationMonitor",
]
