"""Symmetric proximity-based overlap between two polylines.

Every point of one path is compared against every point of the other, so
the cost is O(|A| * |B|). Walking polylines hold tens to a few hundred
points, which keeps this well under a millisecond per pairing; paths with
thousands of points would need a spatial index (grid bucketing or an
R-tree) before this is called in the scheduler's inner loop.
"""

from collections.abc import Sequence

from config import OVERLAP_PROXIMITY_M
from geometry import Coordinate, distance_m


def _matched_fraction(
    source: Sequence[Coordinate],
    target: Sequence[Coordinate],
    proximity_m: float,
) -> float:
    matched = 0
    for point in source:
        for other in target:
            if distance_m(point, other) <= proximity_m:
                matched += 1
                break
    return matched / len(source)


def overlap_fraction(
    path_a: Sequence[Coordinate],
    path_b: Sequence[Coordinate],
    proximity_m: float = OVERLAP_PROXIMITY_M,
) -> float:
    """Returns the mean of A's and B's matched-point fractions, in [0, 1].

    A point is matched when any point of the other path lies within
    ``proximity_m``. An empty path overlaps nothing.
    """
    if not path_a or not path_b:
        return 0.0
    return (
        _matched_fraction(path_a, path_b, proximity_m)
        + _matched_fraction(path_b, path_a, proximity_m)
    ) / 2.0


def max_overlap_against(
    path: Sequence[Coordinate],
    others: Sequence[Sequence[Coordinate]],
    proximity_m: float = OVERLAP_PROXIMITY_M,
) -> float:
    """Highest overlap between ``path`` and any path in ``others``."""
    return max(
        (overlap_fraction(path, other, proximity_m) for other in others),
        default=0.0,
    )
