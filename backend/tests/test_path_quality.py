"""Tests for path_quality.py: highway heuristic and forbidden geometry."""

import pytest

from models import ForbiddenPath, ForbiddenZone
from path_quality import (
    PathQualityChecker,
    RejectionKind,
    first_forbidden_zone,
    is_highway_like,
    longest_straight_run_m,
    travels_along,
)

_DEG_PER_M = 1 / 111_194.93


def _straight_north(length_m: float, spacing_m: float, origin=(0.0, 0.0)):
    count = int(length_m / spacing_m) + 1
    return [(origin[0] + i * spacing_m * _DEG_PER_M, origin[1]) for i in range(count)]


def _zig_zag(length_m: float = 3000.0, spacing_m: float = 50.0, amplitude_m: float = 100.0):
    """Advances north while swinging 200 m east-west at every point."""
    count = int(length_m / spacing_m) + 1
    return [
        (i * spacing_m * _DEG_PER_M, (amplitude_m if i % 2 else -amplitude_m) * _DEG_PER_M)
        for i in range(count)
    ]


# ---------------------------------------------------------------------------
# Highway-likeness
# ---------------------------------------------------------------------------


def test_straight_three_km_path_is_highway_like():
    assert is_highway_like(_straight_north(3000, 50))


def test_zig_zag_over_same_span_is_not_highway_like():
    assert not is_highway_like(_zig_zag())


def test_short_straight_street_is_not_highway_like():
    # Straight but under 2 km: an ordinary city block run.
    assert not is_highway_like(_straight_north(1500, 50))


def test_long_straight_run_inside_winding_path_is_highway_like():
    out = _straight_north(7375, 125)
    back = [(lat, 300 * _DEG_PER_M) for lat, _ in reversed(out)]
    path = out + back
    # The whole path doubles back, so only the sub-run rule can fire.
    assert longest_straight_run_m(path) >= 5000
    assert is_highway_like(path)


def test_longest_straight_run_caps_at_window_size():
    # 50-point windows spaced 50 m apart span 49 * 50 m.
    assert longest_straight_run_m(_straight_north(3000, 50)) == pytest.approx(2450, rel=1e-3)


def test_longest_straight_run_needs_ten_points():
    assert longest_straight_run_m(_straight_north(400, 50)) == 0.0


def test_degenerate_paths_are_not_highway_like():
    assert not is_highway_like([])
    assert not is_highway_like([(0.0, 0.0)])
    assert not is_highway_like([(0.0, 0.0), (0.0, 0.0)])


# ---------------------------------------------------------------------------
# Forbidden zones
# ---------------------------------------------------------------------------

_ZONE = ForbiddenZone(name="Test Tunnel", min_lat=0.0, max_lat=0.01, min_lng=0.0, max_lng=0.01)


def test_first_forbidden_zone_finds_contained_point():
    assert first_forbidden_zone([(-1.0, -1.0), (0.005, 0.005)], [_ZONE]) == _ZONE


def test_zone_edges_are_inclusive():
    assert first_forbidden_zone([(0.01, 0.0)], [_ZONE]) == _ZONE


def test_no_zone_outside_boxes():
    assert first_forbidden_zone([(0.02, 0.02)], [_ZONE]) is None
    assert first_forbidden_zone([(0.005, 0.005)], []) is None


# ---------------------------------------------------------------------------
# Forbidden paths: travelling along versus crossing
# ---------------------------------------------------------------------------

# Runs east along the equator for about 1.1 km.
_FORBIDDEN = [(0.0, 0.0), (0.0, 0.01)]
_NEAR = 0.0001  # ~11 m off the forbidden line
_FAR = 0.01  # over a kilometre away


def test_two_points_near_forbidden_path_is_not_travelling_along():
    route = [(_FAR, 0.002), (_NEAR, 0.002), (_NEAR, 0.0025), (_FAR, 0.003)]
    assert not travels_along(route, _FORBIDDEN)


def test_four_points_spanning_eighty_metres_is_travelling_along():
    route = [(_FAR, 0.0019)] + [(_NEAR, 0.002 + i * 0.00024) for i in range(4)]
    assert travels_along(route, _FORBIDDEN)


def test_three_close_points_under_fifty_metres_is_not_travelling_along():
    # Three in-zone points only 22 m apart in total.
    route = [(_FAR, 0.002)] + [(_NEAR, 0.002 + i * 0.0001) for i in range(3)]
    assert not travels_along(route, _FORBIDDEN)


def test_crossing_forbidden_path_is_allowed():
    route = [(-0.001, 0.005), (-_NEAR, 0.005), (_NEAR, 0.005), (0.001, 0.005)]
    assert not travels_along(route, _FORBIDDEN)


def test_leaving_proximity_resets_the_run():
    route = [
        (_NEAR, 0.002),
        (_NEAR, 0.00224),
        (_FAR, 0.0025),
        (_NEAR, 0.0026),
        (_NEAR, 0.00284),
    ]
    assert not travels_along(route, _FORBIDDEN)


def test_degenerate_forbidden_path_never_matches():
    route = [(_NEAR, 0.002 + i * 0.0003) for i in range(5)]
    assert not travels_along(route, [(0.0, 0.0)])


def test_forbidden_path_contains_segment_delegates():
    path = ForbiddenPath(name="Expressway", coordinates=_FORBIDDEN)
    route = [(_NEAR, 0.002 + i * 0.00024) for i in range(4)]
    assert path.contains_segment(route)
    assert not path.contains_segment(route, threshold_m=5.0)


# ---------------------------------------------------------------------------
# PathQualityChecker
# ---------------------------------------------------------------------------

_SHORT_OUT = [(0.0, 0.0), (0.003, 0.001), (0.006, 0.0)]
_SHORT_BACK = [(0.006, 0.0), (0.003, -0.001), (0.0, 0.0)]


def test_checker_passes_ordinary_pair():
    assert PathQualityChecker().check_pair(_SHORT_OUT, _SHORT_BACK) is None


def test_checker_rejects_highway_leg():
    highway = _straight_north(3000, 50)
    rejection = PathQualityChecker().check_pair(highway, list(reversed(highway)))
    assert rejection is not None
    assert rejection.kind is RejectionKind.HIGHWAY
    assert not rejection.kind.is_forbidden


def test_checker_rejects_forbidden_zone():
    zone = ForbiddenZone(name="Bridge", min_lat=0.0025, max_lat=0.0035, min_lng=0.0005, max_lng=0.0015)
    rejection = PathQualityChecker(forbidden_zones=[zone]).check_pair(_SHORT_OUT, _SHORT_BACK)
    assert rejection.kind is RejectionKind.FORBIDDEN_ZONE
    assert "Bridge" in rejection.detail
    assert rejection.kind.is_forbidden


def test_checker_rejects_forbidden_path():
    forbidden = ForbiddenPath(name="Ramp", coordinates=[(0.0, 0.0), (0.0, 0.01)])
    outbound = [(_NEAR, 0.002 + i * 0.00024) for i in range(4)]
    rejection = PathQualityChecker(forbidden_paths=[forbidden]).check_pair(
        outbound, list(reversed(outbound))
    )
    assert rejection.kind is RejectionKind.FORBIDDEN_PATH


def test_checker_catches_forbidden_run_across_the_turnaround():
    forbidden = ForbiddenPath(name="Ramp", coordinates=[(0.0, 0.0), (0.0, 0.01)])
    outbound = [(_FAR, 0.002), (_NEAR, 0.002), (_NEAR, 0.00224)]
    return_path = [(_NEAR, 0.00248), (_FAR, 0.003)]
    # Two in-zone points on each leg; only the joined walk has three.
    checker = PathQualityChecker(forbidden_paths=[forbidden])
    assert checker.check_pair(outbound, return_path) is not None


def test_disabled_checks_are_skipped():
    highway = _straight_north(3000, 50)
    zone = ForbiddenZone(name="Everywhere", min_lat=-1, max_lat=1, min_lng=-1, max_lng=1)
    checker = PathQualityChecker(
        forbidden_zones=[zone],
        check_highways=False,
        check_forbidden_zones=False,
    )
    assert checker.check_pair(highway, list(reversed(highway))) is None
