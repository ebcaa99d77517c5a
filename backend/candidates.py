"""Candidate filtering: raw POI search results to an ordered turnaround list.

Stages, in order:
  1. Drop names already used (this run or by retained routes) and repeated
     names within the search results.
  2. Drop manually blacklisted names.
  3. Drop names blacklisted for the current threshold only.
  4. Drop POIs whose straight-line distance from the start cannot produce
     a route in the threshold's range.
  5. Drop POIs outside the requested direction sector, if any.

Survivors are grouped by priority tier (lowest first) and shuffled within
each tier, so landmarks are tried first but runs do not repeat themselves.
"""

import logging
import random
from collections.abc import Collection, Iterable
from itertools import groupby

from config import (
    DIRECTION_SECTOR_DEG,
    METERS_PER_MILE,
    MIN_TURNAROUND_DISTANCE_M,
    STRAIGHT_LINE_MAX_DIVISOR,
    STRAIGHT_LINE_MIN_DIVISOR,
)
from geometry import Coordinate, bearing, distance_m
from models import DirectionPreference, PointOfInterest, TimeThreshold

logger = logging.getLogger(__name__)

_SECTOR_CENTRES: dict[DirectionPreference, float] = {
    DirectionPreference.NORTH: 0.0,
    DirectionPreference.EAST: 90.0,
    DirectionPreference.SOUTH: 180.0,
    DirectionPreference.WEST: 270.0,
}


def matches_direction(bearing_deg: float, preference: DirectionPreference) -> bool:
    """True if the bearing lies in the 90° sector centred on ``preference``.

    Sector edges are inclusive, so 45° counts as both north and east.
    """
    if preference is DirectionPreference.NONE:
        return True
    centre = _SECTOR_CENTRES[preference]
    offset = abs((bearing_deg - centre + 180.0) % 360.0 - 180.0)
    return offset <= DIRECTION_SECTOR_DEG / 2


def straight_line_bounds_m(threshold: TimeThreshold) -> tuple[float, float]:
    """Straight-line distance window (metres) worth spending a routing call on."""
    low = max(
        MIN_TURNAROUND_DISTANCE_M,
        threshold.min_distance_miles / STRAIGHT_LINE_MIN_DIVISOR * METERS_PER_MILE,
    )
    high = threshold.max_distance_miles / STRAIGHT_LINE_MAX_DIVISOR * METERS_PER_MILE
    return low, high


def prioritize(
    pois: Iterable[PointOfInterest], rng: random.Random | None = None
) -> list[PointOfInterest]:
    """Orders POIs by ascending priority tier, shuffled within each tier."""
    rng = rng or random.Random()
    ordered: list[PointOfInterest] = []
    by_tier = sorted(pois, key=lambda poi: poi.priority)
    for _, tier in groupby(by_tier, key=lambda poi: poi.priority):
        members = list(tier)
        rng.shuffle(members)
        ordered.extend(members)
    return ordered


def filter_candidates(
    pois: Iterable[PointOfInterest],
    *,
    threshold: TimeThreshold,
    start: Coordinate,
    direction: DirectionPreference = DirectionPreference.NONE,
    used_names: Collection[str] = (),
    blacklisted_names: Collection[str] = (),
    threshold_blacklisted_names: Collection[str] = (),
    rng: random.Random | None = None,
) -> list[PointOfInterest]:
    """Returns the priority-ordered candidates for ``threshold``.

    Args:
        pois: Raw search results around the start.
        threshold: The threshold being filled.
        start: Starting point coordinate.
        direction: Optional cardinal sector preference.
        used_names: Turnaround names already taken by retained routes or
            earlier acceptances in this run.
        blacklisted_names: Names the user excluded for the whole city.
        threshold_blacklisted_names: Names proven unusable for this
            threshold only.
        rng: Source of the within-tier shuffle; a fresh one if omitted.
    """
    raw = list(pois)

    seen: set[str] = set()
    unused: list[PointOfInterest] = []
    for poi in raw:
        if poi.name in used_names or poi.name in seen:
            continue
        seen.add(poi.name)
        unused.append(poi)
    logger.info(
        "After removing already-used: %d remaining (%d dropped)",
        len(unused), len(raw) - len(unused),
    )

    allowed = [poi for poi in unused if poi.name not in blacklisted_names]
    if len(allowed) != len(unused):
        logger.info(
            "After removing manually blacklisted: %d remaining (%d blacklisted)",
            len(allowed), len(unused) - len(allowed),
        )

    fresh = [poi for poi in allowed if poi.name not in threshold_blacklisted_names]
    if len(fresh) != len(allowed):
        logger.info(
            "After removing threshold-blacklisted (%d min): %d remaining "
            "(%d previously failed)",
            threshold.minutes, len(fresh), len(allowed) - len(fresh),
        )

    low_m, high_m = straight_line_bounds_m(threshold)
    in_range = [
        poi for poi in fresh if low_m <= distance_m(start, poi.coordinate) <= high_m
    ]
    logger.info(
        "After distance filtering: %d POIs in straight-line range "
        "%.2f-%.2f mi (%d filtered out)",
        len(in_range), low_m / METERS_PER_MILE, high_m / METERS_PER_MILE,
        len(fresh) - len(in_range),
    )

    if direction is DirectionPreference.NONE:
        directed = in_range
    else:
        directed = [
            poi
            for poi in in_range
            if matches_direction(
                bearing(start[0], start[1], poi.lat, poi.lng), direction
            )
        ]
        logger.info(
            "After direction filtering (%s): %d POIs (%d filtered out)",
            direction.value, len(directed), len(in_range) - len(directed),
        )

    return prioritize(directed, rng)
