"""Adherence/correlation engine

Compares a filed flight plan with the observed track of the same flight.
Pure and deterministic: no configuration lookups, clocks or randomness, so
identical inputs always serialise to identical report bytes.

For each planned waypoint, only records within ``match_window`` seconds of
the waypoint's planned time are considered:

- lateral and vertical deviation come from the record closest in time to the
  planned time (ties go to the earliest record)
- timing deviation is the actual arrival estimate minus the planned time,
  where the arrival estimate is the timestamp of the in-window record
  nearest the waypoint in space (positive = late)
- with no record inside the window the waypoint is Unmatched, never zero
"""

import math
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..utils.config import (
    AdherenceConfig,
    EARTH_RADIUS_NM,
    VERDICT_ON_PLAN,
    VERDICT_MINOR,
    VERDICT_MAJOR,
    VERDICT_INSUFFICIENT,
)
from .models import (
    AdherenceReport,
    AdherenceSummary,
    FlightPlan,
    FlightRecord,
    Position,
    Waypoint,
    WaypointDeviation,
)

# Stable precision for serialised measures
PRECISION = 3


def haversine_nm(a: Position, b: Position) -> float:
    """Great-circle distance in nautical miles."""
    lat1, lon1, lat2, lon2 = map(math.radians, (a.lat, a.lon, b.lat, b.lon))
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_NM * math.asin(min(1.0, math.sqrt(h)))


def _seconds(delta: timedelta) -> float:
    return delta.total_seconds()


def _format_timing(seconds: float) -> str:
    direction = "late" if seconds > 0 else "early"
    if seconds == 0:
        return "on time"
    minutes, secs = divmod(int(round(abs(seconds))), 60)
    return f"{minutes}m{secs:02d}s {direction}"


def _deviation(waypoint: Waypoint, track: Sequence[FlightRecord], window: float) -> WaypointDeviation:
    in_window = [r for r in track if abs(_seconds(r.timestamp - waypoint.eta)) <= window]
    if not in_window:
        return WaypointDeviation(waypoint=waypoint.name, planned_time=waypoint.eta, matched=False)

    # min() keeps the first minimum; track is time-sorted so ties go to the earliest
    closest = min(in_window, key=lambda r: abs(_seconds(r.timestamp - waypoint.eta)))
    passing = min(in_window, key=lambda r: haversine_nm(r.position, waypoint.position))

    vertical = None
    if closest.position.altitude_ft is not None and waypoint.planned_altitude_ft is not None:
        vertical = round(abs(closest.position.altitude_ft - waypoint.planned_altitude_ft), PRECISION)

    return WaypointDeviation(
        waypoint=waypoint.name,
        planned_time=waypoint.eta,
        matched=True,
        lateral_nm=round(haversine_nm(closest.position, waypoint.position), PRECISION),
        vertical_ft=vertical,
        timing_seconds=round(_seconds(passing.timestamp - waypoint.eta), PRECISION),
        matched_record_time=closest.timestamp,
    )


def _verdict(config: AdherenceConfig, max_lateral: Optional[float], max_vertical: Optional[float],
             final_timing: Optional[float]) -> str:
    timing = abs(final_timing) if final_timing is not None else None

    def exceeds(value, limit):
        return value is not None and value > limit

    if (exceeds(max_lateral, config.lateral_major_nm) or exceeds(max_vertical, config.vertical_major_ft)
            or exceeds(timing, config.timing_major_seconds)):
        return VERDICT_MAJOR
    if (exceeds(max_lateral, config.lateral_minor_nm) or exceeds(max_vertical, config.vertical_minor_ft)
            or exceeds(timing, config.timing_minor_seconds)):
        return VERDICT_MINOR
    return VERDICT_ON_PLAN


def _summarise(identifier: str, deviations: List[WaypointDeviation],
               config: AdherenceConfig) -> AdherenceSummary:
    matched = [d for d in deviations if d.matched]
    unmatched = [d.waypoint for d in deviations if not d.matched]

    if not matched:
        text = f"{identifier}: no observed positions within the match window of any of {len(deviations)} waypoints"
        return AdherenceSummary(
            matched_count=0,
            unmatched_count=len(unmatched),
            verdict=VERDICT_INSUFFICIENT,
            text=text,
        )

    laterals = [d.lateral_nm for d in matched]
    verticals = [d.vertical_ft for d in matched if d.vertical_ft is not None]
    max_lateral = max(laterals)
    max_vertical = max(verticals) if verticals else None
    final_timing = matched[-1].timing_seconds
    verdict = _verdict(config, max_lateral, max_vertical, final_timing)

    parts = [
        f"{identifier}: {verdict}",
        f"{len(matched)}/{len(deviations)} waypoints matched",
        f"max lateral {max_lateral:.1f} NM",
    ]
    if max_vertical is not None:
        parts.append(f"max vertical {max_vertical:.0f} ft")
    parts.append(f"final timing {_format_timing(final_timing)}")
    if unmatched:
        parts.append(f"Unmatched: {', '.join(unmatched)}")

    return AdherenceSummary(
        matched_count=len(matched),
        unmatched_count=len(unmatched),
        max_lateral_nm=max_lateral,
        mean_lateral_nm=round(sum(laterals) / len(laterals), PRECISION),
        max_vertical_ft=max_vertical,
        mean_vertical_ft=round(sum(verticals) / len(verticals), PRECISION) if verticals else None,
        final_timing_seconds=final_timing,
        verdict=verdict,
        text="; ".join(parts),
    )


def compute_adherence(plan: FlightPlan, records: Iterable[FlightRecord],
                      match_window: Union[float, timedelta, None] = None,
                      config: Optional[AdherenceConfig] = None) -> AdherenceReport:
    """Correlate a flight plan with observed records of the same flight.

    Records for other identifiers are ignored and input order does not
    matter. ``match_window`` (seconds or timedelta) overrides the window in
    ``config``.
    """
    config = config or AdherenceConfig()
    if match_window is None:
        window = float(config.match_window_seconds)
    elif isinstance(match_window, timedelta):
        window = match_window.total_seconds()
    else:
        window = float(match_window)

    track = sorted(
        (r for r in records if r.identifier == plan.identifier),
        key=lambda r: r.timestamp
    )
    deviations = [_deviation(waypoint, track, window) for waypoint in plan.waypoints]

    return AdherenceReport(
        identifier=plan.identifier,
        waypoints=tuple(deviations),
        summary=_summarise(plan.identifier, deviations, config),
    )


def _unwrap(document: Any, keys: Sequence[str]) -> Any:
    if isinstance(document, dict):
        for key in keys:
            if key in document:
                return document[key]
    return document


def parse_flight_plan(document: Any, identifier: Optional[str] = None) -> FlightPlan:
    """Build a FlightPlan from an agent payload.

    Accepts ``{"flight_plan": {...}}``, ``{"identifier", "waypoints": [...]}``
    or a bare waypoint list (``identifier`` required).

    Raises:
        ValueError: the payload does not describe a flight plan
    """
    document = _unwrap(document, ("flight_plan", "plan"))
    if isinstance(document, list):
        document = {"waypoints": document}
    if not isinstance(document, dict):
        raise ValueError(f"flight plan must be an object or list, got {type(document).__name__}")

    data: Dict[str, Any] = dict(document)
    if not any(key in data for key in ("identifier", "flight", "callsign")):
        if identifier is None:
            raise ValueError("flight plan has no identifier")
        data["identifier"] = identifier
    return FlightPlan.model_validate(data)


def parse_flight_records(document: Any, identifier: Optional[str] = None) -> List[FlightRecord]:
    """Build FlightRecords from an agent payload.

    Accepts ``{"records": [...]}`` (also ``positions``/``track``) or a bare
    list. Records without an identifier inherit ``identifier`` or the
    document's own ``flight``/``identifier``.

    Raises:
        ValueError: the payload does not describe a track
    """
    default_identifier = identifier
    if isinstance(document, dict):
        default_identifier = default_identifier or document.get("identifier") or document.get("flight")
    items = _unwrap(document, ("records", "positions", "track"))
    if not isinstance(items, list):
        raise ValueError(f"flight records must be a list, got {type(items).__name__}")

    records = []
    for item in items:
        if not isinstance(item, dict):
            raise ValueError(f"flight record must be an object, got {type(item).__name__}")
        data = dict(item)
        if not any(key in data for key in ("identifier", "flight", "callsign")):
            if default_identifier is None:
                raise ValueError("flight record has no identifier")
            data["identifier"] = default_identifier
        records.append(FlightRecord.model_validate(data))
    return records
