"""Flight data and adherence report models

Agent payloads vary in field naming (``lat``/``latitude``, nested or flat
positions), so the input models accept the common spellings. All timestamps
are normalised to timezone-aware UTC; naive values are taken to be UTC.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

_POSITION_KEYS = ("lat", "latitude", "lon", "lng", "longitude", "altitude_ft", "altitude", "alt")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _lift_position(data: Any) -> Any:
    """Accept flat lat/lon/altitude fields in place of a nested position."""
    if isinstance(data, dict) and "position" not in data:
        position = {key: data[key] for key in _POSITION_KEYS if key in data}
        if position:
            data = {key: value for key, value in data.items() if key not in _POSITION_KEYS}
            data["position"] = position
    return data


class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(validation_alias=AliasChoices("lat", "latitude"), ge=-90, le=90)
    lon: float = Field(validation_alias=AliasChoices("lon", "lng", "longitude"), ge=-180, le=180)
    altitude_ft: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("altitude_ft", "altitude", "alt")
    )


class FlightRecord(BaseModel):
    """One observed position/status snapshot (FDPS en route or SMES surface)"""
    model_config = ConfigDict(frozen=True)

    identifier: str = Field(validation_alias=AliasChoices("identifier", "flight", "callsign"))
    position: Position
    timestamp: datetime = Field(validation_alias=AliasChoices("timestamp", "time"))
    ground_speed_kt: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("ground_speed_kt", "ground_speed", "speed")
    )
    heading_deg: Optional[float] = Field(default=None, validation_alias=AliasChoices("heading_deg", "heading"))
    taxiway: Optional[str] = None
    runway: Optional[str] = None
    status: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _flat_position(cls, data: Any) -> Any:
        return _lift_position(data)

    @field_validator("timestamp")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("identifier")
    @classmethod
    def _normalise_identifier(cls, value: str) -> str:
        return value.strip().upper()


class Waypoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(validation_alias=AliasChoices("name", "fix", "id"))
    position: Position
    planned_altitude_ft: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("planned_altitude_ft", "planned_altitude")
    )
    eta: datetime = Field(validation_alias=AliasChoices("eta", "estimated_time", "time"))

    @model_validator(mode="before")
    @classmethod
    def _flat_position(cls, data: Any) -> Any:
        return _lift_position(data)

    @field_validator("eta")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        return _as_utc(value)


class FlightPlan(BaseModel):
    """Filed route: ordered waypoints with planned altitude and time"""
    model_config = ConfigDict(frozen=True)

    identifier: str = Field(validation_alias=AliasChoices("identifier", "flight", "callsign"))
    waypoints: Tuple[Waypoint, ...]

    @field_validator("identifier")
    @classmethod
    def _normalise_identifier(cls, value: str) -> str:
        return value.strip().upper()

    @property
    def destination_eta(self) -> Optional[datetime]:
        return self.waypoints[-1].eta if self.waypoints else None


class WaypointDeviation(BaseModel):
    """Deviation at one waypoint; all measures are None when unmatched"""
    model_config = ConfigDict(frozen=True)

    waypoint: str
    planned_time: datetime
    matched: bool
    lateral_nm: Optional[float] = None
    vertical_ft: Optional[float] = None
    timing_seconds: Optional[float] = None  # positive = late
    matched_record_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data["status"] = "matched" if self.matched else "Unmatched"
        return data


class AdherenceSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    matched_count: int
    unmatched_count: int
    max_lateral_nm: Optional[float] = None
    mean_lateral_nm: Optional[float] = None
    max_vertical_ft: Optional[float] = None
    mean_vertical_ft: Optional[float] = None
    final_timing_seconds: Optional[float] = None
    verdict: str
    text: str


class AdherenceReport(BaseModel):
    """Plan-vs-actual comparison for one flight"""
    model_config = ConfigDict(frozen=True)

    identifier: str
    waypoints: Tuple[WaypointDeviation, ...]
    summary: AdherenceSummary

    @property
    def unmatched(self) -> Tuple[str, ...]:
        return tuple(w.waypoint for w in self.waypoints if not w.matched)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "waypoints": [w.to_dict() for w in self.waypoints],
            "summary": self.summary.model_dump(mode="json"),
        }

    def to_json(self) -> str:
        """Canonical serialisation; identical reports give identical bytes."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
