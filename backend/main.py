"""Route catalog backend service.

Exposes endpoints for generating a city's out-and-back route catalog,
regenerating or blacklisting individual routes, and managing the
forbidden paths that generated routes must avoid.
"""

import asyncio
import logging
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException

from config import ROUTES_DATA_DIR
from errors import FatalCollaboratorError, TransientCollaboratorError
from events import CallbackObserver
from forbidden_zones import DEFAULT_FORBIDDEN_ZONES
from geometry import encode_polyline
from models import (
    ForbiddenPath,
    ForbiddenPathIn,
    GenerateRequest,
    GenerationResult,
    PointOfInterest,
    RegenerateRequest,
    Route,
    RouteSummary,
    StartingPointIn,
    threshold_for_distance,
)
from persistence import JsonRouteStore, PersistenceWriter
from poi_service import GooglePlacesPOISource, POISource
from regeneration import RouteRegenerator
from route_generation import RouteGenerator
from route_synthesis import RouteSynthesizer
from routing_service import RouteSource, build_router

logging.basicConfig(level=logging.INFO)

app = FastAPI(
    title="Route Catalog Backend",
    description="Out-and-back running route generation and selection.",
    version="0.4.0",
)


# ---------------------------------------------------------------------------
# Collaborators (overridable in tests via app.dependency_overrides)
# ---------------------------------------------------------------------------


@lru_cache
def get_store() -> JsonRouteStore:
    return JsonRouteStore(ROUTES_DATA_DIR)


@lru_cache
def get_router() -> RouteSource:
    return build_router()


@lru_cache
def get_poi_source() -> POISource:
    return GooglePlacesPOISource()


def _start_poi(start: StartingPointIn) -> PointOfInterest:
    return PointOfInterest.starting_point(start.name, start.lat, start.lng)


def _summary(route: Route) -> RouteSummary:
    return RouteSummary(
        id=route.id,
        name=route.name,
        turnaround_point=route.turnaround_point,
        total_distance_miles=route.total_distance_miles,
        distance_band_miles=route.distance_band_miles,
        valid_session_times=route.valid_session_times,
        encoded_outbound_polyline=encode_polyline(route.outbound_path),
        encoded_return_polyline=encode_polyline(route.return_path),
    )


async def _load_routes_or_404(store: JsonRouteStore, city: str) -> list[Route]:
    routes = await asyncio.to_thread(store.load_routes, city)
    if not routes:
        raise HTTPException(status_code=404, detail=f"No saved routes for {city}.")
    return routes


def _find_route(routes: list[Route], route_id: str) -> int:
    for index, route in enumerate(routes):
        if route.id == route_id:
            return index
    raise HTTPException(status_code=404, detail=f"Route {route_id} not found.")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint used by Cloud Run to verify the service is live."""
    return {"status": "ok"}


@app.post("/cities/{city}/generate", response_model=GenerationResult)
async def generate_routes(
    city: str,
    request: GenerateRequest,
    store: JsonRouteStore = Depends(get_store),
    router: RouteSource = Depends(get_router),
    poi_source: POISource = Depends(get_poi_source),
) -> GenerationResult:
    """Fills every session threshold for ``city`` with routes.

    Starts from the city's saved routes, skips blacklisted POIs and avoids
    the city's forbidden paths. Each accepted route is saved as soon as it
    is kept.

    Raises:
        HTTPException 400: If the starting point has no name.
        HTTPException 502: If a collaborator reported an authorization or
            quota failure. Routes kept before the failure are saved.
    """
    if not request.starting_point.name.strip():
        raise HTTPException(
            status_code=400,
            detail="starting_point.name must not be empty.",
        )

    forbidden_paths = await asyncio.to_thread(store.load_forbidden_paths, city)
    existing_routes = await asyncio.to_thread(store.load_routes, city)
    writer = PersistenceWriter(store, city)
    synthesizer = RouteSynthesizer.from_config(
        router,
        request.config,
        forbidden_zones=DEFAULT_FORBIDDEN_ZONES,
        forbidden_paths=forbidden_paths,
        continent=request.continent,
    )
    generator = RouteGenerator(
        poi_source,
        synthesizer,
        store=store,
        config=request.config,
        observer=CallbackObserver(
            on_progress=lambda message: logging.info("[%s] %s", city, message),
            on_persist=writer.submit,
        ),
    )
    try:
        result = await generator.generate_routes(
            _start_poi(request.starting_point),
            city=city,
            existing_routes=existing_routes or [],
            direction=request.direction,
        )
    finally:
        await writer.flush()

    if result.aborted:
        raise HTTPException(
            status_code=502,
            detail=f"Generation stopped after {len(result.routes)} routes: {result.abort_reason}",
        )
    return result


@app.get("/cities/{city}/routes", response_model=list[RouteSummary])
async def list_routes(
    city: str, store: JsonRouteStore = Depends(get_store)
) -> list[RouteSummary]:
    routes = await asyncio.to_thread(store.load_routes, city)
    return [_summary(route) for route in routes or []]


@app.delete("/cities/{city}/routes")
async def delete_routes(
    city: str, store: JsonRouteStore = Depends(get_store)
) -> dict[str, str]:
    await asyncio.to_thread(store.delete_routes, city)
    return {"status": "deleted"}


@app.post("/cities/{city}/routes/{route_id}/regenerate", response_model=RouteSummary)
async def regenerate_route(
    city: str,
    route_id: str,
    request: RegenerateRequest,
    store: JsonRouteStore = Depends(get_store),
    router: RouteSource = Depends(get_router),
    poi_source: POISource = Depends(get_poi_source),
) -> RouteSummary:
    """Replaces one route with a different path or a different turnaround point.

    Raises:
        HTTPException 404: If the city or route does not exist.
        HTTPException 422: If no acceptable alternative was found.
        HTTPException 502: If the routing or POI service failed.
    """
    routes = await _load_routes_or_404(store, city)
    index = _find_route(routes, route_id)
    old = routes[index]
    start = _start_poi(request.starting_point) if request.starting_point else None

    regenerator = RouteRegenerator(
        router,
        poi_source,
        config=request.config,
        forbidden_zones=DEFAULT_FORBIDDEN_ZONES,
        forbidden_paths=await asyncio.to_thread(store.load_forbidden_paths, city),
        continent=old.continent,
    )
    try:
        if request.mode == "path":
            new_route = await regenerator.regenerate_path(old, routes, start=start)
        else:
            threshold = threshold_for_distance(old.total_distance_miles)
            threshold_blacklisted: set[str] = set()
            if threshold is not None:
                threshold_blacklisted = await asyncio.to_thread(
                    store.threshold_blacklisted_names, threshold.minutes, city
                )
            new_route = await regenerator.regenerate_turnaround(
                old,
                routes,
                start=start,
                direction=request.direction,
                blacklisted_names=await asyncio.to_thread(store.blacklisted_names, city),
                threshold_blacklisted_names=threshold_blacklisted,
            )
    except (FatalCollaboratorError, TransientCollaboratorError) as exc:
        logging.exception("regenerate_route failed")
        raise HTTPException(
            status_code=502,
            detail="Failed to regenerate the route. Please try again.",
        ) from exc

    if new_route is None:
        raise HTTPException(
            status_code=422,
            detail=f"No acceptable alternative found for {old.name}.",
        )
    routes[index] = new_route
    await asyncio.to_thread(store.save_routes, routes, city)
    return _summary(new_route)


@app.post("/cities/{city}/routes/{route_id}/blacklist")
async def blacklist_route(
    city: str,
    route_id: str,
    store: JsonRouteStore = Depends(get_store),
) -> dict[str, str | int]:
    """Removes a route and blacklists its turnaround point for future runs."""
    routes = await _load_routes_or_404(store, city)
    route = routes.pop(_find_route(routes, route_id))
    await asyncio.to_thread(store.add_to_blacklist, route.turnaround_point, city)
    await asyncio.to_thread(store.save_routes, routes, city)
    return {"blacklisted": route.turnaround_point.name, "remaining": len(routes)}


@app.delete("/cities/{city}/blacklist")
async def clear_blacklist(
    city: str, store: JsonRouteStore = Depends(get_store)
) -> dict[str, str]:
    await asyncio.to_thread(store.clear_all_blacklists, city)
    return {"status": "cleared"}


@app.get("/cities/{city}/blacklist")
async def blacklist_count(
    city: str, store: JsonRouteStore = Depends(get_store)
) -> dict[str, int]:
    return {"count": await asyncio.to_thread(store.total_blacklist_count, city)}


# ---------------------------------------------------------------------------
# Forbidden paths
# ---------------------------------------------------------------------------


@app.get("/cities/{city}/forbidden-paths", response_model=list[ForbiddenPath])
async def list_forbidden_paths(
    city: str, store: JsonRouteStore = Depends(get_store)
) -> list[ForbiddenPath]:
    return await asyncio.to_thread(store.load_forbidden_paths, city)


@app.post("/cities/{city}/forbidden-paths", response_model=ForbiddenPath)
async def add_forbidden_path(
    city: str,
    request: ForbiddenPathIn,
    store: JsonRouteStore = Depends(get_store),
) -> ForbiddenPath:
    path = ForbiddenPath(name=request.name, coordinates=request.coordinates)
    await asyncio.to_thread(store.add_forbidden_path, path, city)
    return path


@app.put("/cities/{city}/forbidden-paths/{path_id}", response_model=ForbiddenPath)
async def update_forbidden_path(
    city: str,
    path_id: str,
    request: ForbiddenPathIn,
    store: JsonRouteStore = Depends(get_store),
) -> ForbiddenPath:
    paths = await asyncio.to_thread(store.load_forbidden_paths, city)
    existing = {p.id: p for p in paths}
    if path_id not in existing:
        raise HTTPException(status_code=404, detail=f"Forbidden path {path_id} not found.")
    path = existing[path_id].model_copy(
        update={"name": request.name, "coordinates": request.coordinates}
    )
    await asyncio.to_thread(store.add_forbidden_path, path, city)
    return path


@app.delete("/cities/{city}/forbidden-paths/{path_id}")
async def remove_forbidden_path(
    city: str,
    path_id: str,
    store: JsonRouteStore = Depends(get_store),
) -> dict[str, str]:
    if not await asyncio.to_thread(store.remove_forbidden_path, path_id, city):
        raise HTTPException(status_code=404, detail=f"Forbidden path {path_id} not found.")
    return {"status": "deleted"}


@app.delete("/cities/{city}/forbidden-paths")
async def clear_forbidden_paths(
    city: str, store: JsonRouteStore = Depends(get_store)
) -> dict[str, str]:
    await asyncio.to_thread(store.clear_forbidden_paths, city)
    return {"status": "cleared"}
