"""Geometric quality checks applied to every candidate path.

Three independent checks, each switchable per run:
  - Highway-likeness: long, almost perfectly straight corridors.
  - Forbidden zones: static bounding boxes around tunnels and
    limited-access bridges.
  - Forbidden paths: user-drawn polylines the route must not travel along.
    Briefly crossing one (an underpass, an overpass) is allowed.
"""

import logging
from collections.abc import Sequence
from enum import Enum
from itertools import accumulate
from typing import TYPE_CHECKING, NamedTuple

from config import (
    FORBIDDEN_PATH_MIN_DISTANCE_M,
    FORBIDDEN_PATH_MIN_POINTS,
    FORBIDDEN_PATH_PROXIMITY_M,
    HIGHWAY_MIN_PATH_LENGTH_M,
    HIGHWAY_STRAIGHT_RUN_MIN_M,
    HIGHWAY_STRAIGHT_RUN_RATIO,
    HIGHWAY_STRAIGHTNESS_RATIO,
    HIGHWAY_WINDOW_MAX_POINTS,
    HIGHWAY_WINDOW_MIN_POINTS,
    HIGHWAY_WINDOW_STEP,
)
from geometry import Coordinate, distance_m, point_to_segment_m

if TYPE_CHECKING:
    from models import ForbiddenPath, ForbiddenZone

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Highway-likeness
# ---------------------------------------------------------------------------


def _cumulative_lengths(coordinates: Sequence[Coordinate]) -> list[float]:
    segments = (
        distance_m(coordinates[i - 1], coordinates[i])
        for i in range(1, len(coordinates))
    )
    return [0.0, *accumulate(segments)]


def longest_straight_run_m(
    coordinates: Sequence[Coordinate],
    min_ratio: float = HIGHWAY_STRAIGHT_RUN_RATIO,
) -> float:
    """Path length of the longest window whose straightness exceeds ``min_ratio``.

    Windows span HIGHWAY_WINDOW_MIN_POINTS..HIGHWAY_WINDOW_MAX_POINTS points
    in steps of HIGHWAY_WINDOW_STEP and slide across the whole path.
    """
    n = len(coordinates)
    if n < HIGHWAY_WINDOW_MIN_POINTS:
        return 0.0

    cumulative = _cumulative_lengths(coordinates)
    longest = 0.0
    for size in range(
        HIGHWAY_WINDOW_MIN_POINTS, HIGHWAY_WINDOW_MAX_POINTS + 1, HIGHWAY_WINDOW_STEP
    ):
        if size > n:
            break
        for start in range(0, n - size + 1):
            end = start + size - 1
            window_length = cumulative[end] - cumulative[start]
            if window_length <= longest or window_length <= 0:
                continue
            ratio = distance_m(coordinates[start], coordinates[end]) / window_length
            if ratio > min_ratio:
                longest = window_length
    return longest


def is_highway_like(coordinates: Sequence[Coordinate]) -> bool:
    """Flags a path that is basically one uninterrupted high-speed corridor.

    Deliberately lenient: city grids have long straight streets, so a path is
    only flagged when it is both long and almost perfectly straight end to
    end, or contains a 5 km run that is straighter still.
    """
    if len(coordinates) < 2:
        return False

    length = _cumulative_lengths(coordinates)[-1]
    if length <= 0:
        return False

    ratio = distance_m(coordinates[0], coordinates[-1]) / length
    if ratio > HIGHWAY_STRAIGHTNESS_RATIO and length > HIGHWAY_MIN_PATH_LENGTH_M:
        logger.debug("Highway-like path: straightness %.3f over %.0fm", ratio, length)
        return True

    run = longest_straight_run_m(coordinates)
    if run >= HIGHWAY_STRAIGHT_RUN_MIN_M:
        logger.debug("Highway-like path: straight run of %.0fm", run)
        return True
    return False


# ---------------------------------------------------------------------------
# Forbidden zones and paths
# ---------------------------------------------------------------------------


def first_forbidden_zone(
    coordinates: Sequence[Coordinate], zones: Sequence["ForbiddenZone"]
) -> "ForbiddenZone | None":
    """Returns the first zone containing any coordinate, or None.

    Zones are few and static; a linear point-in-box scan is enough.
    """
    for coord in coordinates:
        for zone in zones:
            if zone.contains(coord):
                return zone
    return None


def _near_polyline(
    point: Coordinate, polyline: Sequence[Coordinate], threshold_m: float
) -> bool:
    # Segment distance already covers the polyline's own vertices.
    return any(
        point_to_segment_m(point, polyline[i], polyline[i + 1]) <= threshold_m
        for i in range(len(polyline) - 1)
    )


def travels_along(
    route_coordinates: Sequence[Coordinate],
    forbidden_coordinates: Sequence[Coordinate],
    threshold_m: float = FORBIDDEN_PATH_PROXIMITY_M,
) -> bool:
    """True if the route follows the forbidden polyline instead of crossing it.

    Walks the route keeping a run of consecutive points within
    ``threshold_m`` of the polyline and the distance covered inside that run.
    The route is rejected once a run holds FORBIDDEN_PATH_MIN_POINTS points
    and FORBIDDEN_PATH_MIN_DISTANCE_M metres; leaving proximity resets both.
    """
    if len(forbidden_coordinates) < 2 or len(route_coordinates) < FORBIDDEN_PATH_MIN_POINTS:
        return False

    run_points = 0
    run_distance = 0.0
    previous: Coordinate | None = None

    for coord in route_coordinates:
        if not _near_polyline(coord, forbidden_coordinates, threshold_m):
            run_points = 0
            run_distance = 0.0
            previous = None
            continue

        if previous is not None:
            run_distance += distance_m(previous, coord)
        run_points += 1
        previous = coord

        if (
            run_points >= FORBIDDEN_PATH_MIN_POINTS
            and run_distance >= FORBIDDEN_PATH_MIN_DISTANCE_M
        ):
            return True

    return False


# ---------------------------------------------------------------------------
# Combined checker
# ---------------------------------------------------------------------------


class RejectionKind(str, Enum):
    HIGHWAY = "highway"
    FORBIDDEN_ZONE = "forbidden_zone"
    FORBIDDEN_PATH = "forbidden_path"

    @property
    def is_forbidden(self) -> bool:
        return self is not RejectionKind.HIGHWAY


class PathRejection(NamedTuple):
    kind: RejectionKind
    detail: str


class PathQualityChecker:
    """Applies the enabled checks to an outbound/return pairing.

    Holds a snapshot of the forbidden zones and paths taken when the run
    starts; edits made afterwards apply to the next run.
    """

    def __init__(
        self,
        *,
        forbidden_zones: Sequence["ForbiddenZone"] = (),
        forbidden_paths: Sequence["ForbiddenPath"] = (),
        check_highways: bool = True,
        check_forbidden_zones: bool = True,
        check_forbidden_paths: bool = True,
        forbidden_path_proximity_m: float = FORBIDDEN_PATH_PROXIMITY_M,
    ):
        self.forbidden_zones = list(forbidden_zones)
        self.forbidden_paths = list(forbidden_paths)
        self.check_highways = check_highways
        self.check_forbidden_zones = check_forbidden_zones
        self.check_forbidden_paths = check_forbidden_paths
        self.forbidden_path_proximity_m = forbidden_path_proximity_m

    def check_pair(
        self,
        outbound: Sequence[Coordinate],
        return_path: Sequence[Coordinate],
    ) -> PathRejection | None:
        """Returns the first reason to reject the pairing, or None if it passes."""
        if self.check_highways:
            for label, path in (("outbound", outbound), ("return", return_path)):
                if is_highway_like(path):
                    return PathRejection(
                        RejectionKind.HIGHWAY, f"{label} path is highway-like"
                    )

        combined = [*outbound, *return_path]

        if self.check_forbidden_zones and self.forbidden_zones:
            zone = first_forbidden_zone(combined, self.forbidden_zones)
            if zone is not None:
                return PathRejection(
                    RejectionKind.FORBIDDEN_ZONE, f"passes through {zone.name}"
                )

        if self.check_forbidden_paths:
            # Outbound ends where the return starts, so the concatenation is
            # one continuous walk.
            for forbidden in self.forbidden_paths:
                if forbidden.contains_segment(combined, self.forbidden_path_proximity_m):
                    label = forbidden.name or forbidden.id
                    return PathRejection(
                        RejectionKind.FORBIDDEN_PATH,
                        f"travels along forbidden path {label}",
                    )

        return None
