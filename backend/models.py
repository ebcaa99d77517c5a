"""Pydantic models for the route catalog engine and its HTTP surface."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from config import (
    DEFAULT_POI_PRIORITY,
    DISTANCE_BANDS_MILES,
    FAST_PACE_MPH,
    FORBIDDEN_PATH_PROXIMITY_M,
    METERS_PER_MILE,
    SLOW_PACE_MPH,
    THRESHOLD_MAX_MINUTES,
    THRESHOLD_MIN_MINUTES,
    THRESHOLD_STEP_MINUTES,
    GeneratorConfig,
)
from geometry import Coordinate, path_length_m
from path_quality import travels_along


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------


class TimeThreshold(BaseModel):
    """A target session duration mapped to a valid round-trip distance range."""

    model_config = ConfigDict(frozen=True)

    minutes: int

    @property
    def min_distance_miles(self) -> float:
        """Distance covered at the slow pace; shorter routes end too early."""
        return SLOW_PACE_MPH * self.minutes / 60.0

    @property
    def max_distance_miles(self) -> float:
        """Distance covered at the fast pace; longer routes overrun."""
        return FAST_PACE_MPH * self.minutes / 60.0

    @property
    def target_distance_miles(self) -> float:
        return (self.min_distance_miles + self.max_distance_miles) / 2.0

    @property
    def search_radius_miles(self) -> float:
        """Out-and-back, so turnaround points sit about half the target away."""
        return self.target_distance_miles / 2.0

    @property
    def search_radius_meters(self) -> float:
        return self.search_radius_miles * METERS_PER_MILE

    def is_valid_distance(self, miles: float) -> bool:
        """Inclusive at both bounds."""
        return self.min_distance_miles <= miles <= self.max_distance_miles


def all_thresholds() -> list[TimeThreshold]:
    """All session thresholds in ascending minute order."""
    return [
        TimeThreshold(minutes=m)
        for m in range(
            THRESHOLD_MIN_MINUTES, THRESHOLD_MAX_MINUTES + 1, THRESHOLD_STEP_MINUTES
        )
    ]


def valid_session_times(distance_miles: float) -> list[int]:
    """Minutes of every threshold whose valid range contains the distance."""
    return [
        t.minutes for t in all_thresholds() if t.is_valid_distance(distance_miles)
    ]


def threshold_for_distance(distance_miles: float) -> TimeThreshold | None:
    """The shortest threshold whose valid range contains the distance."""
    for threshold in all_thresholds():
        if threshold.is_valid_distance(distance_miles):
            return threshold
    return None


def infer_distance_band(distance_miles: float) -> float:
    """Nearest rung of the catalog distance ladder; first rung wins ties."""
    return min(DISTANCE_BANDS_MILES, key=lambda band: abs(band - distance_miles))


# ---------------------------------------------------------------------------
# Points and paths
# ---------------------------------------------------------------------------


class DirectionPreference(str, Enum):
    """Cardinal sector the turnaround point must lie in, if any."""

    NONE = "none"
    NORTH = "north"
    EAST = "east"
    SOUTH = "south"
    WEST = "west"


class PointOfInterest(BaseModel):
    """A resolved, named, geo-located candidate turnaround point."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    name: str
    lat: float
    lng: float
    category: str = "unknown"
    priority: int = Field(default=DEFAULT_POI_PRIORITY, ge=1)
    """1 = landmark; larger numbers are less notable."""

    @property
    def coordinate(self) -> Coordinate:
        return (self.lat, self.lng)

    @classmethod
    def starting_point(cls, name: str, lat: float, lng: float) -> "PointOfInterest":
        """Builds the synthetic start POI used as every route's origin."""
        return cls(
            name=name,
            lat=lat,
            lng=lng,
            category="landmark",
            priority=DEFAULT_POI_PRIORITY,
        )


class PathAlternative(BaseModel):
    """One path proposed by the routing collaborator."""

    coordinates: list[Coordinate]
    distance_meters: float


class ForbiddenZone(BaseModel):
    """Axis-aligned bounding box around a known non-walkable structure."""

    model_config = ConfigDict(frozen=True)

    name: str
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    def contains(self, coordinate: Coordinate) -> bool:
        lat, lng = coordinate
        return (
            self.min_lat <= lat <= self.max_lat
            and self.min_lng <= lng <= self.max_lng
        )


class ForbiddenPath(BaseModel):
    """A user-drawn polyline that generated routes must not travel along."""

    id: str = Field(default_factory=_new_id)
    name: str = ""
    coordinates: list[Coordinate]
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def contains_segment(
        self,
        route_coordinates: list[Coordinate],
        threshold_m: float = FORBIDDEN_PATH_PROXIMITY_M,
    ) -> bool:
        """True when the route travels along this path rather than crossing it."""
        return travels_along(route_coordinates, self.coordinates, threshold_m)

    @property
    def length_meters(self) -> float:
        return path_length_m(self.coordinates)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


class Route(BaseModel):
    """An out-and-back route from the starting point to a turnaround POI."""

    id: str = Field(default_factory=_new_id)
    name: str
    continent: str = ""
    starting_point: PointOfInterest
    turnaround_point: PointOfInterest
    total_distance_miles: float
    """Sum of both legs' lengths as reported by the routing collaborator."""

    distance_band_miles: float
    outbound_path: list[Coordinate]
    return_path: list[Coordinate]
    valid_session_times: list[int] = Field(default_factory=list)
    """Derived from total distance; recomputed whenever a route is built."""

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "turnaround_point" not in data and "midpoint" in data:
            data["turnaround_point"] = data.pop("midpoint")
        if data.get("distance_band_miles") is None and "total_distance_miles" in data:
            data["distance_band_miles"] = infer_distance_band(
                float(data["total_distance_miles"])
            )
        return data

    @field_validator("outbound_path", "return_path")
    @classmethod
    def _path_not_empty(cls, value: list[Coordinate]) -> list[Coordinate]:
        if not value:
            raise ValueError("route paths must not be empty")
        return value

    @model_validator(mode="after")
    def _derive_session_times(self) -> "Route":
        self.valid_session_times = valid_session_times(self.total_distance_miles)
        return self

    def with_recomputed_session_times(self) -> "Route":
        return self.model_copy(
            update={
                "valid_session_times": valid_session_times(self.total_distance_miles)
            }
        )

    @property
    def all_paths(self) -> list[list[Coordinate]]:
        return [self.outbound_path, self.return_path]


# ---------------------------------------------------------------------------
# Synthesizer outcomes
# ---------------------------------------------------------------------------


class SynthesisSuccess(BaseModel):
    kind: Literal["success"] = "success"
    route: Route
    overlap: float = 0.0


class RoutingUnavailable(BaseModel):
    """Transient: the router returned nothing for a leg or failed outright."""

    kind: Literal["routing_unavailable"] = "routing_unavailable"
    reason: str = ""


class ForbiddenPathUsed(BaseModel):
    """Every pairing was rejected and at least one hit forbidden geometry."""

    kind: Literal["forbidden_path_used"] = "forbidden_path_used"
    reason: str = ""


class NoAcceptablePath(BaseModel):
    """Every pairing failed the highway heuristic."""

    kind: Literal["no_acceptable_path"] = "no_acceptable_path"
    reason: str = ""


SynthesisOutcome = SynthesisSuccess | RoutingUnavailable | ForbiddenPathUsed | NoAcceptablePath


# ---------------------------------------------------------------------------
# Generation results
# ---------------------------------------------------------------------------


class GenerationResult(BaseModel):
    """The outcome of one full generation run."""

    routes: list[Route]
    skipped_thresholds: list[int] = Field(default_factory=list)
    """Thresholds that had zero routes when their search finished."""

    coverage_by_threshold: dict[int, int] = Field(default_factory=dict)
    aborted: bool = False
    abort_reason: str | None = None


# ---------------------------------------------------------------------------
# HTTP request / response models
# ---------------------------------------------------------------------------


class StartingPointIn(BaseModel):
    """Where every generated route starts and ends."""

    name: str
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class GenerateRequest(BaseModel):
    """Request body for the /generate endpoint."""

    starting_point: StartingPointIn
    direction: DirectionPreference = DirectionPreference.NONE
    continent: str = ""
    config: GeneratorConfig = Field(default_factory=GeneratorConfig)


class RegenerateRequest(BaseModel):
    """Request body for the /regenerate endpoint.

    The route's own starting point is used when ``starting_point`` is omitted.
    """

    starting_point: StartingPointIn | None = None
    mode: Literal["path", "turnaround"] = "turnaround"
    direction: DirectionPreference = DirectionPreference.NONE
    config: GeneratorConfig = Field(default_factory=GeneratorConfig)


class ForbiddenPathIn(BaseModel):
    """A forbidden path drawn by the user."""

    name: str = ""
    coordinates: list[Coordinate] = Field(min_length=2)


class RouteSummary(BaseModel):
    """Compact catalog entry with encoded polylines for map rendering."""

    id: str
    name: str
    turnaround_point: PointOfInterest
    total_distance_miles: float
    distance_band_miles: float
    valid_session_times: list[int]
    encoded_outbound_polyline: str
    """Google-encoded polyline (precision 5)."""

    encoded_return_polyline: str
