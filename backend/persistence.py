"""Per-city storage for routes, blacklists and forbidden paths.

Each city owns four JSON documents named after the lower-cased city name
with spaces replaced by underscores:

  <city>_routes.json               retained routes
  <city>_blacklist.json            manual blacklist (name, lat, lng)
  <city>_threshold_blacklist.json  {minutes: [poi names]}
  <city>_forbidden_paths.json      user-drawn forbidden paths

``JsonRouteStore`` writes them atomically to disk; ``InMemoryRouteStore``
keeps them in a dict for tests and ephemeral runs.
"""

import abc
import asyncio
import json
import logging
import os
import tempfile
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from models import ForbiddenPath, PointOfInterest, Route

logger = logging.getLogger(__name__)

_ROUTES = "routes"
_BLACKLIST = "blacklist"
_THRESHOLD_BLACKLIST = "threshold_blacklist"
_FORBIDDEN_PATHS = "forbidden_paths"


def city_slug(city: str) -> str:
    return city.replace(" ", "_").lower()


class BlacklistedPOI(BaseModel):
    """A manually excluded turnaround point; identified by name."""

    name: str
    lat: float
    lng: float


class RouteStore(Protocol):
    def load_routes(self, city: str) -> list[Route] | None: ...

    def save_routes(self, routes: list[Route], city: str) -> None: ...

    def blacklisted_names(self, city: str) -> set[str]: ...

    def threshold_blacklisted_names(self, minutes: int, city: str) -> set[str]: ...

    def add_to_threshold_blacklist(self, poi_name: str, minutes: int, city: str) -> None: ...


class _DocumentStore(abc.ABC):
    """Route store logic over a key -> JSON document backend."""

    @abc.abstractmethod
    def _read(self, city: str, kind: str) -> Any | None: ...

    @abc.abstractmethod
    def _write(self, city: str, kind: str, data: Any) -> None: ...

    @abc.abstractmethod
    def _delete(self, city: str, kind: str) -> None: ...

    @abc.abstractmethod
    def _cities(self, kind: str) -> list[str]: ...

    # -- Routes --------------------------------------------------------------

    def save_routes(self, routes: list[Route], city: str) -> None:
        self._write(city, _ROUTES, [route.model_dump(mode="json") for route in routes])
        logger.info("Saved %d routes for %s", len(routes), city)

    def load_routes(self, city: str) -> list[Route] | None:
        """Returns the saved routes, or None if there are none or they are corrupt.

        Session times are recomputed on load rather than trusted.
        """
        data = self._read(city, _ROUTES)
        if data is None:
            logger.info("No saved routes found for %s", city)
            return None
        try:
            routes = [Route.model_validate(item) for item in data]
        except (ValidationError, TypeError) as exc:
            logger.error("Failed to decode routes for %s: %s; removing corrupted data", city, exc)
            self._delete(city, _ROUTES)
            return None
        logger.info("Loaded %d routes for %s", len(routes), city)
        return [route.with_recomputed_session_times() for route in routes]

    def has_saved_routes(self, city: str) -> bool:
        return self._read(city, _ROUTES) is not None

    def delete_routes(self, city: str) -> None:
        self._delete(city, _ROUTES)
        logger.info("Deleted routes for %s", city)

    def cities_with_saved_routes(self) -> list[str]:
        return self._cities(_ROUTES)

    # -- Manual blacklist ----------------------------------------------------

    def load_blacklist(self, city: str) -> list[BlacklistedPOI]:
        data = self._read(city, _BLACKLIST) or []
        try:
            return [BlacklistedPOI.model_validate(item) for item in data]
        except (ValidationError, TypeError) as exc:
            logger.error("Failed to load blacklist for %s: %s", city, exc)
            return []

    def add_to_blacklist(self, poi: PointOfInterest, city: str) -> bool:
        """Returns False if a POI with the same name is already blacklisted."""
        blacklist = self.load_blacklist(city)
        if any(entry.name == poi.name for entry in blacklist):
            logger.info("Already blacklisted: %s for %s", poi.name, city)
            return False
        blacklist.append(BlacklistedPOI(name=poi.name, lat=poi.lat, lng=poi.lng))
        self._write(city, _BLACKLIST, [entry.model_dump() for entry in blacklist])
        logger.info("Blacklisted: %s for %s", poi.name, city)
        return True

    def remove_from_blacklist(self, poi_name: str, city: str) -> None:
        blacklist = [e for e in self.load_blacklist(city) if e.name != poi_name]
        self._write(city, _BLACKLIST, [entry.model_dump() for entry in blacklist])

    def blacklisted_names(self, city: str) -> set[str]:
        return {entry.name for entry in self.load_blacklist(city)}

    def clear_blacklist(self, city: str) -> None:
        self._delete(city, _BLACKLIST)

    # -- Per-threshold blacklist ---------------------------------------------

    def load_threshold_blacklist(self, city: str) -> dict[int, set[str]]:
        data = self._read(city, _THRESHOLD_BLACKLIST) or {}
        try:
            return {int(minutes): set(names) for minutes, names in data.items()}
        except (AttributeError, TypeError, ValueError) as exc:
            logger.error("Failed to load threshold blacklist for %s: %s", city, exc)
            return {}

    def add_to_threshold_blacklist(self, poi_name: str, minutes: int, city: str) -> None:
        blacklist = self.load_threshold_blacklist(city)
        names = blacklist.setdefault(minutes, set())
        if poi_name in names:
            return
        names.add(poi_name)
        self._write(
            city,
            _THRESHOLD_BLACKLIST,
            {str(m): sorted(n) for m, n in sorted(blacklist.items())},
        )
        logger.info("Threshold blacklisted: %s for %d min in %s", poi_name, minutes, city)

    def threshold_blacklisted_names(self, minutes: int, city: str) -> set[str]:
        return self.load_threshold_blacklist(city).get(minutes, set())

    def threshold_blacklist_count(self, city: str) -> int:
        return sum(len(names) for names in self.load_threshold_blacklist(city).values())

    def clear_threshold_blacklist(self, city: str) -> None:
        self._delete(city, _THRESHOLD_BLACKLIST)

    def clear_all_blacklists(self, city: str) -> None:
        self.clear_blacklist(city)
        self.clear_threshold_blacklist(city)
        logger.info("Cleared all blacklists for %s", city)

    def total_blacklist_count(self, city: str) -> int:
        return len(self.load_blacklist(city)) + self.threshold_blacklist_count(city)

    # -- Forbidden paths -----------------------------------------------------

    def load_forbidden_paths(self, city: str) -> list[ForbiddenPath]:
        data = self._read(city, _FORBIDDEN_PATHS) or []
        try:
            return [ForbiddenPath.model_validate(item) for item in data]
        except (ValidationError, TypeError) as exc:
            logger.error("Failed to load forbidden paths for %s: %s", city, exc)
            return []

    def _save_forbidden_paths(self, paths: list[ForbiddenPath], city: str) -> None:
        self._write(city, _FORBIDDEN_PATHS, [p.model_dump(mode="json") for p in paths])

    def add_forbidden_path(self, path: ForbiddenPath, city: str) -> None:
        """Adds ``path``, replacing any stored path with the same id."""
        paths = [p for p in self.load_forbidden_paths(city) if p.id != path.id]
        paths.append(path)
        self._save_forbidden_paths(paths, city)

    def remove_forbidden_path(self, path_id: str, city: str) -> bool:
        paths = self.load_forbidden_paths(city)
        remaining = [p for p in paths if p.id != path_id]
        self._save_forbidden_paths(remaining, city)
        return len(remaining) != len(paths)

    def clear_forbidden_paths(self, city: str) -> None:
        self._delete(city, _FORBIDDEN_PATHS)


class JsonRouteStore(_DocumentStore):
    """Stores each document as a pretty-printed JSON file under ``root``."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, city: str, kind: str) -> Path:
        return self.root / f"{city_slug(city)}_{kind}.json"

    def _read(self, city: str, kind: str) -> Any | None:
        path = self._path(city, kind)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Failed to read %s: %s", path, exc)
            if kind == _ROUTES and isinstance(exc, json.JSONDecodeError):
                path.unlink(missing_ok=True)
            return None

    def _write(self, city: str, kind: str, data: Any) -> None:
        # Write to a sibling temp file, then rename over the target so a
        # crash mid-write leaves the previous save intact.
        path = self._path(city, kind)
        fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=path.stem, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _delete(self, city: str, kind: str) -> None:
        self._path(city, kind).unlink(missing_ok=True)

    def _cities(self, kind: str) -> list[str]:
        suffix = f"_{kind}.json"
        return sorted(
            path.name[: -len(suffix)]
            for path in self.root.glob(f"*{suffix}")
            if not path.name.endswith(f"_threshold{suffix}")
        )


class InMemoryRouteStore(_DocumentStore):
    """Keeps documents in a dict, round-tripped through JSON like the file store."""

    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], str] = {}

    def _read(self, city: str, kind: str) -> Any | None:
        raw = self._documents.get((city_slug(city), kind))
        return None if raw is None else json.loads(raw)

    def _write(self, city: str, kind: str, data: Any) -> None:
        self._documents[(city_slug(city), kind)] = json.dumps(data)

    def _delete(self, city: str, kind: str) -> None:
        self._documents.pop((city_slug(city), kind), None)

    def _cities(self, kind: str) -> list[str]:
        return sorted(slug for slug, k in self._documents if k == kind)


class PersistenceWriter:
    """Hands route saves to a single background thread.

    The scheduler never waits on disk. One worker keeps saves in submission
    order, and every save is a full snapshot, so the newest file always
    reflects the latest accepted route.
    """

    def __init__(self, store: _DocumentStore, city: str):
        self.store = store
        self.city = city
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="route-save")
        self._pending: list[Future] = []

    def submit(self, routes: list[Route]) -> None:
        snapshot = list(routes)
        self._pending.append(self._executor.submit(self.store.save_routes, snapshot, self.city))

    async def flush(self) -> None:
        """Waits for queued saves and surfaces the first write error."""
        pending, self._pending = self._pending, []
        try:
            for future in pending:
                await asyncio.wrap_future(future)
        finally:
            self._executor.shutdown(wait=False)
