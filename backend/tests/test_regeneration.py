"""Tests for regeneration.py."""

import math
import random

import pytest

from config import GeneratorConfig
from models import (
    DirectionPreference,
    PathAlternative,
    PointOfInterest,
    Route,
    SynthesisSuccess,
    infer_distance_band,
)
from poi_service import StaticPOISource
from regeneration import RouteRegenerator

_DEG_PER_M = 1 / 111_194.93

_START = PointOfInterest.starting_point("Home", 51.5, -0.12)
_TURN = PointOfInterest(name="Park", lat=51.51, lng=-0.12, category="park", priority=2)

_DIRECT = [(51.5, -0.12), (51.505, -0.12), (51.51, -0.12)]
# Five-point detours a few hundred metres east and west of the direct line.
_EAST = [(51.5, -0.12), (51.5025, -0.115), (51.505, -0.115), (51.5075, -0.115), (51.51, -0.12)]
_WEST = [(51.51, -0.12), (51.5075, -0.125), (51.505, -0.125), (51.5025, -0.125), (51.5, -0.12)]


def _route(turnaround, miles, outbound, return_path, name=None):
    return Route(
        name=name or turnaround.name,
        continent="Europe",
        starting_point=_START,
        turnaround_point=turnaround,
        total_distance_miles=miles,
        distance_band_miles=infer_distance_band(miles),
        outbound_path=outbound,
        return_path=return_path,
    )


_RETAINED = _route(_TURN, 1.4, _DIRECT, list(reversed(_DIRECT)))


class _FakeRouter:
    def __init__(self, outbound, inbound):
        self.outbound = outbound
        self.inbound = inbound

    async def route(self, origin, destination):
        return self.outbound if origin == _START.coordinate else self.inbound


def _alt(coordinates, meters=1200.0):
    return PathAlternative(coordinates=coordinates, distance_meters=meters)


def _poi_at(name, bearing_deg, distance_m=3000.0):
    north = distance_m * math.cos(math.radians(bearing_deg))
    east = distance_m * math.sin(math.radians(bearing_deg))
    return PointOfInterest(
        name=name,
        lat=_START.lat + north * _DEG_PER_M,
        lng=_START.lng + east * _DEG_PER_M / math.cos(math.radians(_START.lat)),
    )


class _FakeSynthesizer:
    def __init__(self, miles_for):
        self.miles_for = miles_for
        self.calls = []

    async def synthesize(self, start, turnaround, target_distance_miles=None):
        self.calls.append(turnaround.name)
        miles = self.miles_for(turnaround)
        return SynthesisSuccess(
            route=_route(turnaround, miles, [start.coordinate, turnaround.coordinate],
                         [turnaround.coordinate, start.coordinate])
        )


def _regenerator(router=None, pois=(), config=None):
    return RouteRegenerator(
        router or _FakeRouter([], []),
        StaticPOISource(pois),
        config=config,
        rng=random.Random(5),
    )


# ---------------------------------------------------------------------------
# Same turnaround, different path
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_path_mode_skips_pairings_too_similar_to_retained_routes():
    router = _FakeRouter(
        [_alt(_DIRECT), _alt(_EAST)],
        [_alt(list(reversed(_DIRECT))), _alt(_WEST)],
    )
    new_route = await _regenerator(router).regenerate_path(_RETAINED, [_RETAINED])

    assert new_route is not None
    assert new_route.outbound_path == _EAST
    assert new_route.return_path == _WEST
    assert new_route.id != _RETAINED.id
    assert new_route.turnaround_point == _TURN
    assert new_route.continent == "Europe"


@pytest.mark.asyncio
async def test_path_mode_accepts_first_survivor_not_best():
    router = _FakeRouter([_alt(_EAST)], [_alt(_WEST), _alt(list(reversed(_EAST)))])
    new_route = await _regenerator(router).regenerate_path(_RETAINED, [_RETAINED])
    assert new_route.return_path == _WEST


@pytest.mark.asyncio
async def test_path_mode_returns_none_when_everything_is_similar():
    router = _FakeRouter([_alt(_DIRECT)], [_alt(list(reversed(_DIRECT)))])
    assert await _regenerator(router).regenerate_path(_RETAINED, [_RETAINED]) is None


@pytest.mark.asyncio
async def test_path_mode_respects_overlap_limit_config():
    router = _FakeRouter([_alt(_DIRECT)], [_alt(list(reversed(_DIRECT)))])
    config = GeneratorConfig(regeneration_overlap_limit=1.0)
    new_route = await _regenerator(router, config=config).regenerate_path(
        _RETAINED, [_RETAINED]
    )
    assert new_route is not None


@pytest.mark.asyncio
async def test_path_mode_rejects_highway_like_paths():
    highway = [(51.5 + i * 50 * _DEG_PER_M, -0.12) for i in range(61)]
    router = _FakeRouter([_alt(highway, 3000.0)], [_alt(_WEST)])
    assert await _regenerator(router).regenerate_path(_RETAINED, [_RETAINED]) is None


@pytest.mark.asyncio
async def test_path_mode_routing_failure_returns_none():
    router = _FakeRouter([], [_alt(_WEST)])
    assert await _regenerator(router).regenerate_path(_RETAINED, [_RETAINED]) is None


# ---------------------------------------------------------------------------
# Different turnaround point
# ---------------------------------------------------------------------------

# 5 mi sits in the 25-minute threshold (3.33-5.42 mi).
_OLD_TURN = _poi_at("Old Turnaround", 0)
_OLD = _route(_OLD_TURN, 5.0, [_START.coordinate, _OLD_TURN.coordinate],
              [_OLD_TURN.coordinate, _START.coordinate])


@pytest.mark.asyncio
async def test_turnaround_mode_returns_first_candidate_in_range():
    pois = [_OLD_TURN] + [_poi_at(f"New {i}", 60 * i + 30) for i in range(4)]
    regenerator = _regenerator(pois=pois)
    distances = iter([8.0, 5.2, 4.0, 4.0])
    regenerator.synthesizer = _FakeSynthesizer(lambda poi: next(distances))

    new_route = await regenerator.regenerate_turnaround(_OLD, [_OLD])

    assert new_route is not None
    assert new_route.total_distance_miles == 5.2
    assert new_route.name == regenerator.synthesizer.calls[1]
    assert "Old Turnaround" not in regenerator.synthesizer.calls


@pytest.mark.asyncio
async def test_turnaround_mode_limits_attempts():
    pois = [_poi_at(f"New {i}", 20 * i) for i in range(15)]
    regenerator = _regenerator(
        pois=pois, config=GeneratorConfig(regeneration_candidate_limit=3)
    )
    regenerator.synthesizer = _FakeSynthesizer(lambda poi: 12.0)

    assert await regenerator.regenerate_turnaround(_OLD, [_OLD]) is None
    assert len(regenerator.synthesizer.calls) == 3


@pytest.mark.asyncio
async def test_turnaround_mode_excludes_nearby_used_and_blacklisted_points():
    pois = [
        _poi_at("Next Door", 90, 300),
        _poi_at("Taken", 90),
        _poi_at("Banned", 180),
        _poi_at("Out Of Range Before", 225),
        _poi_at("Fresh", 270),
    ]
    taken = _route(pois[1], 5.0, [_START.coordinate, pois[1].coordinate],
                   [pois[1].coordinate, _START.coordinate])
    regenerator = _regenerator(pois=pois)
    regenerator.synthesizer = _FakeSynthesizer(lambda poi: 12.0)

    await regenerator.regenerate_turnaround(
        _OLD,
        [_OLD, taken],
        blacklisted_names={"Banned"},
        threshold_blacklisted_names={"Out Of Range Before"},
    )
    assert regenerator.synthesizer.calls == ["Fresh"]


@pytest.mark.asyncio
async def test_turnaround_mode_honours_direction():
    pois = [_poi_at("North", 0), _poi_at("South", 180)]
    regenerator = _regenerator(pois=pois)
    regenerator.synthesizer = _FakeSynthesizer(lambda poi: 5.0)

    new_route = await regenerator.regenerate_turnaround(
        _OLD.model_copy(update={"turnaround_point": _poi_at("Elsewhere", 90)}),
        [],
        direction=DirectionPreference.SOUTH,
    )
    assert new_route.name == "South"


@pytest.mark.asyncio
async def test_turnaround_mode_without_matching_threshold():
    short = _route(_TURN, 0.2, _DIRECT, list(reversed(_DIRECT)))
    regenerator = _regenerator(pois=[_poi_at("New", 0)])
    regenerator.synthesizer = _FakeSynthesizer(lambda poi: 5.0)
    assert await regenerator.regenerate_turnaround(short, [short]) is None
    assert regenerator.synthesizer.calls == []
