"""Plan-vs-actual adherence analysis."""

from .models import (
    Position,
    FlightRecord,
    Waypoint,
    FlightPlan,
    WaypointDeviation,
    AdherenceSummary,
    AdherenceReport,
)
from .engine import compute_adherence, haversine_nm, parse_flight_plan, parse_flight_records

__all__ = [
    'Position',
    'FlightRecord',
    'Waypoint',
    'FlightPlan',
    'WaypointDeviation',
    'AdherenceSummary',
    'AdherenceReport',
    'compute_adherence',
    'haversine_nm',
    'parse_flight_plan',
    'parse_flight_records',
]
