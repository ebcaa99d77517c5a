"""Tests for persistence.py. File-based tests write under pytest's tmp_path."""

import json

import pytest

from models import ForbiddenPath, PointOfInterest, Route
from persistence import (
    InMemoryRouteStore,
    JsonRouteStore,
    PersistenceWriter,
    _DocumentStore,
    city_slug,
)

_CITY = "New York"
_START = PointOfInterest.starting_point("Columbus Circle", 40.7681, -73.9819)
_PARK = PointOfInterest(name="Prospect Park", lat=40.6602, lng=-73.9690, category="park", priority=2)


def _route(miles: float = 5.0) -> Route:
    return Route(
        name=_PARK.name,
        starting_point=_START,
        turnaround_point=_PARK,
        total_distance_miles=miles,
        distance_band_miles=4.0,
        outbound_path=[_START.coordinate, _PARK.coordinate],
        return_path=[_PARK.coordinate, _START.coordinate],
    )


@pytest.fixture(params=["json", "memory"])
def store(request, tmp_path):
    if request.param == "json":
        return JsonRouteStore(tmp_path)
    return InMemoryRouteStore()


def test_city_slug():
    assert city_slug("New York") == "new_york"


def test_document_store_requires_every_backend_hook():
    class _ReadOnly(_DocumentStore):
        def _read(self, city, kind):
            return None

    with pytest.raises(TypeError):
        _ReadOnly()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def test_save_and_load_routes(store):
    routes = [_route(5.0), _route(3.0)]
    store.save_routes(routes, _CITY)
    loaded = store.load_routes(_CITY)
    assert loaded == routes
    assert store.has_saved_routes(_CITY)


def test_load_missing_routes_returns_none(store):
    assert store.load_routes(_CITY) is None
    assert not store.has_saved_routes(_CITY)


def test_delete_routes(store):
    store.save_routes([_route()], _CITY)
    store.delete_routes(_CITY)
    assert store.load_routes(_CITY) is None


def test_cities_with_saved_routes(store):
    store.save_routes([_route()], _CITY)
    store.save_routes([_route()], "Boston")
    store.add_to_threshold_blacklist("Somewhere", 30, "Chicago")
    assert store.cities_with_saved_routes() == ["boston", "new_york"]


def test_json_store_uses_city_file_names(tmp_path):
    store = JsonRouteStore(tmp_path)
    store.save_routes([_route()], _CITY)
    store.add_to_blacklist(_PARK, _CITY)
    store.add_to_threshold_blacklist("Bryant Park", 30, _CITY)
    store.add_forbidden_path(ForbiddenPath(coordinates=[(0, 0), (0, 1)]), _CITY)
    names = sorted(p.name for p in tmp_path.iterdir())
    assert names == [
        "new_york_blacklist.json",
        "new_york_forbidden_paths.json",
        "new_york_routes.json",
        "new_york_threshold_blacklist.json",
    ]


def test_json_store_leaves_no_temp_files(tmp_path):
    store = JsonRouteStore(tmp_path)
    for _ in range(3):
        store.save_routes([_route()], _CITY)
    assert not list(tmp_path.glob("*.tmp"))


def test_corrupt_routes_file_is_removed(tmp_path):
    path = tmp_path / "new_york_routes.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonRouteStore(tmp_path)
    assert store.load_routes(_CITY) is None
    assert not path.exists()


def test_invalid_route_records_are_removed(tmp_path):
    path = tmp_path / "new_york_routes.json"
    path.write_text(json.dumps([{"name": "Broken"}]), encoding="utf-8")
    store = JsonRouteStore(tmp_path)
    assert store.load_routes(_CITY) is None
    assert not path.exists()


def test_loaded_routes_get_fresh_session_times(tmp_path):
    data = _route(3.0).model_dump(mode="json")
    data["valid_session_times"] = [120]
    (tmp_path / "new_york_routes.json").write_text(json.dumps([data]), encoding="utf-8")
    loaded = JsonRouteStore(tmp_path).load_routes(_CITY)
    assert loaded[0].valid_session_times == [15, 20]


# ---------------------------------------------------------------------------
# Blacklists
# ---------------------------------------------------------------------------


def test_manual_blacklist(store):
    assert store.add_to_blacklist(_PARK, _CITY)
    assert not store.add_to_blacklist(_PARK, _CITY)
    assert store.blacklisted_names(_CITY) == {"Prospect Park"}
    entry = store.load_blacklist(_CITY)[0]
    assert (entry.lat, entry.lng) == (_PARK.lat, _PARK.lng)

    store.remove_from_blacklist("Prospect Park", _CITY)
    assert store.blacklisted_names(_CITY) == set()


def test_threshold_blacklist_is_keyed_by_minutes(store):
    store.add_to_threshold_blacklist("Bryant Park", 30, _CITY)
    store.add_to_threshold_blacklist("Bryant Park", 30, _CITY)
    store.add_to_threshold_blacklist("Madison Square", 45, _CITY)

    assert store.threshold_blacklisted_names(30, _CITY) == {"Bryant Park"}
    assert store.threshold_blacklisted_names(45, _CITY) == {"Madison Square"}
    assert store.threshold_blacklisted_names(60, _CITY) == set()
    assert store.threshold_blacklist_count(_CITY) == 2


def test_blacklists_are_per_city(store):
    store.add_to_blacklist(_PARK, _CITY)
    store.add_to_threshold_blacklist("Bryant Park", 30, _CITY)
    assert store.blacklisted_names("Boston") == set()
    assert store.threshold_blacklisted_names(30, "Boston") == set()


def test_total_count_and_clear_all(store):
    store.add_to_blacklist(_PARK, _CITY)
    store.add_to_threshold_blacklist("Bryant Park", 30, _CITY)
    store.add_to_threshold_blacklist("Bryant Park", 45, _CITY)
    assert store.total_blacklist_count(_CITY) == 3

    store.clear_all_blacklists(_CITY)
    assert store.total_blacklist_count(_CITY) == 0


# ---------------------------------------------------------------------------
# Forbidden paths
# ---------------------------------------------------------------------------


def test_forbidden_path_crud(store):
    path = ForbiddenPath(name="BQE", coordinates=[(40.70, -73.99), (40.71, -73.98)])
    store.add_forbidden_path(path, _CITY)
    assert [p.id for p in store.load_forbidden_paths(_CITY)] == [path.id]

    renamed = path.model_copy(update={"name": "Brooklyn-Queens Expressway"})
    store.add_forbidden_path(renamed, _CITY)
    loaded = store.load_forbidden_paths(_CITY)
    assert len(loaded) == 1
    assert loaded[0].name == "Brooklyn-Queens Expressway"
    assert loaded[0].created_at == path.created_at

    assert store.remove_forbidden_path(path.id, _CITY)
    assert not store.remove_forbidden_path(path.id, _CITY)
    assert store.load_forbidden_paths(_CITY) == []


def test_clear_forbidden_paths(store):
    store.add_forbidden_path(ForbiddenPath(coordinates=[(0, 0), (0, 1)]), _CITY)
    store.clear_forbidden_paths(_CITY)
    assert store.load_forbidden_paths(_CITY) == []


# ---------------------------------------------------------------------------
# PersistenceWriter
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_writer_saves_snapshots_in_order(tmp_path):
    store = JsonRouteStore(tmp_path)
    writer = PersistenceWriter(store, _CITY)
    routes = []
    for miles in (3.0, 4.0, 5.0):
        routes.append(_route(miles))
        writer.submit(routes)
    await writer.flush()

    loaded = store.load_routes(_CITY)
    assert [r.total_distance_miles for r in loaded] == [3.0, 4.0, 5.0]
