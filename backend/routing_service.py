"""Routing collaborators: given two coordinates, return path alternatives.

Three backends share the ``RouteSource`` interface:
  - ValhallaRouter: public Valhalla endpoints over httpx, with per-endpoint
    retries, rate-limit waits and fallback to further routers.
  - OSRMRouter: the OSRM demo server's foot profile.
  - GoogleDirectionsRouter: Google Directions (walking) via googlemaps.

Transient failures raise ``TransientCollaboratorError``; authorization and
quota failures raise ``FatalCollaboratorError``.
"""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

import googlemaps
import googlemaps.exceptions
import httpx

from config import (
    GOOGLE_MAPS_API_KEY,
    OSRM_URL,
    ROUTING_ALTERNATES,
    ROUTING_BACKEND,
    ROUTING_ENDPOINT_SWITCH_DELAY_S,
    ROUTING_MAX_ATTEMPTS,
    ROUTING_MAX_RATE_LIMIT_WAIT_S,
    ROUTING_RETRY_DELAY_S,
    ROUTING_TIMEOUT_S,
    VALHALLA_COSTING,
    VALHALLA_URLS,
)
from errors import (
    FatalCollaboratorError,
    NoRouteFoundError,
    TransientCollaboratorError,
)
from geometry import Coordinate, decode_polyline
from models import PathAlternative

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# HTTP statuses that mean the credentials or billing account are unusable.
_FATAL_HTTP_STATUSES = frozenset({401, 402, 403})
# Google API statuses with the same meaning.
_FATAL_GOOGLE_STATUSES = frozenset(
    {"REQUEST_DENIED", "OVER_DAILY_LIMIT", "OVER_QUERY_LIMIT"}
)


class RouteSource(Protocol):
    async def route(
        self, origin: Coordinate, destination: Coordinate
    ) -> list[PathAlternative]: ...


class RateLimitedError(TransientCollaboratorError):
    """HTTP 429; ``retry_after`` holds the server's reset hint in seconds."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


def _retry_after_seconds(response: httpx.Response) -> float | None:
    """Reads Retry-After / X-RateLimit-Reset as a wait in seconds."""
    for header in ("Retry-After", "X-RateLimit-Reset"):
        raw = response.headers.get(header)
        if raw is None:
            continue
        try:
            value = float(raw)
        except ValueError:
            continue
        # Large values are epoch timestamps rather than durations.
        if value > 1_000_000:
            value -= time.time()
        return max(0.0, min(value, ROUTING_MAX_RATE_LIMIT_WAIT_S))
    return None


def _check_http_status(response: httpx.Response, service: str) -> None:
    """Maps HTTP failure statuses onto the engine's error taxonomy."""
    status = response.status_code
    if 200 <= status < 300:
        return
    if status == 429:
        raise RateLimitedError(
            f"{service} rate limited", retry_after=_retry_after_seconds(response)
        )
    if status in _FATAL_HTTP_STATUSES:
        raise FatalCollaboratorError(
            f"{service} rejected credentials (HTTP {status}): {response.text[:200]}"
        )
    raise TransientCollaboratorError(
        f"{service} unavailable (HTTP {status}): {response.text[:200]}"
    )


def _parse_json(response: httpx.Response, service: str) -> dict[str, Any]:
    """Parses a JSON body, treating HTML error pages as transient failures."""
    text = response.text.strip()
    if text.startswith("<"):
        raise TransientCollaboratorError(
            f"{service} returned HTML instead of JSON"
        )
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, ValueError) as exc:
        raise TransientCollaboratorError(
            f"{service} returned invalid JSON: {exc}"
        ) from exc
    if not isinstance(data, dict):
        raise TransientCollaboratorError(f"{service} returned unexpected payload")
    return data


class _HttpRouter:
    """Owns an httpx client, created lazily unless one is injected."""

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=ROUTING_TIMEOUT_S)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


# ---------------------------------------------------------------------------
# OSRM
# ---------------------------------------------------------------------------


class OSRMRouter(_HttpRouter):
    """OSRM foot routing. ``alternatives=False`` is the degraded single path."""

    def __init__(
        self,
        base_url: str = OSRM_URL,
        *,
        alternatives: bool = True,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(client)
        self.base_url = base_url.rstrip("/")
        self.alternatives = alternatives

    async def route(
        self, origin: Coordinate, destination: Coordinate
    ) -> list[PathAlternative]:
        coords = f"{origin[1]},{origin[0]};{destination[1]},{destination[0]}"
        params = {
            "alternatives": "true" if self.alternatives else "false",
            "geometries": "geojson",
            "overview": "full",
        }
        try:
            response = await self.client.get(f"{self.base_url}/{coords}", params=params)
        except httpx.HTTPError as exc:
            raise TransientCollaboratorError(f"OSRM request failed: {exc}") from exc

        if response.status_code == 400:
            data = _parse_json(response, "OSRM")
            raise NoRouteFoundError(data.get("message") or data.get("code") or "no route")
        _check_http_status(response, "OSRM")
        data = _parse_json(response, "OSRM")
        if data.get("code") not in (None, "Ok"):
            raise NoRouteFoundError(f"OSRM: {data.get('code')}")

        paths = []
        try:
            for route in data.get("routes", []):
                # GeoJSON order is [lng, lat].
                coordinates = [
                    (float(lat), float(lng))
                    for lng, lat in route["geometry"]["coordinates"]
                ]
                if coordinates:
                    paths.append(
                        PathAlternative(
                            coordinates=coordinates,
                            distance_meters=float(route["distance"]),
                        )
                    )
        except (KeyError, TypeError, ValueError) as exc:
            raise TransientCollaboratorError(f"OSRM returned a malformed route: {exc!r}") from exc
        if not self.alternatives:
            paths = paths[:1]
        return paths


# ---------------------------------------------------------------------------
# Valhalla
# ---------------------------------------------------------------------------


class ValhallaRouter(_HttpRouter):
    """Valhalla routing across several endpoints with retry and fallback.

    Each endpoint gets ROUTING_MAX_ATTEMPTS tries. Rate limiting waits for
    the server's reset hint; server errors and garbled bodies back off
    linearly. "No route" answers are not retried. Once every endpoint is
    exhausted the ``fallbacks`` are tried in order.
    """

    def __init__(
        self,
        endpoints: Sequence[str] = VALHALLA_URLS,
        *,
        costing: str = VALHALLA_COSTING,
        alternates: int = ROUTING_ALTERNATES,
        fallbacks: Sequence[RouteSource] = (),
        max_attempts: int = ROUTING_MAX_ATTEMPTS,
        retry_delay_s: float = ROUTING_RETRY_DELAY_S,
        client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        super().__init__(client)
        if not endpoints:
            raise ValueError("At least one Valhalla endpoint is required.")
        self.endpoints = list(endpoints)
        self.costing = costing
        self.alternates = alternates
        self.fallbacks = list(fallbacks)
        self.max_attempts = max_attempts
        self.retry_delay_s = retry_delay_s
        self._sleep = sleep

    def _request_body(self, origin: Coordinate, destination: Coordinate) -> dict[str, Any]:
        body: dict[str, Any] = {
            "locations": [
                {"lat": origin[0], "lon": origin[1]},
                {"lat": destination[0], "lon": destination[1]},
            ],
            "costing": self.costing,
            "alternates": self.alternates,
            "directions_options": {"units": "kilometers"},
        }
        if self.costing == "bicycle":
            body["costing_options"] = {
                "bicycle": {
                    "bicycle_type": "Road",
                    "use_roads": 0.9,
                    "use_hills": 0.3,
                    "maneuver_penalty": 30,
                }
            }
        return body

    @staticmethod
    def _trip_to_path(trip: dict[str, Any]) -> PathAlternative | None:
        legs = trip.get("legs") or []
        if not legs:
            return None
        try:
            coordinates = decode_polyline(legs[0]["shape"], precision=6)
            if not coordinates:
                return None
            length_km = float(trip["summary"]["length"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TransientCollaboratorError(f"Valhalla returned a malformed trip: {exc!r}") from exc
        return PathAlternative(coordinates=coordinates, distance_meters=length_km * 1000)

    async def _fetch(
        self, endpoint: str, origin: Coordinate, destination: Coordinate
    ) -> list[PathAlternative]:
        try:
            response = await self.client.post(
                endpoint, json=self._request_body(origin, destination)
            )
        except httpx.HTTPError as exc:
            raise TransientCollaboratorError(f"Valhalla request failed: {exc}") from exc

        if response.status_code == 400:
            # Valhalla reports unroutable locations as 400 with an error_code.
            data = _parse_json(response, "Valhalla")
            raise NoRouteFoundError(
                f"Valhalla error {data.get('error_code')}: {data.get('error', '')}"
            )
        _check_http_status(response, "Valhalla")
        data = _parse_json(response, "Valhalla")
        if data.get("error_code") is not None:
            raise NoRouteFoundError(
                f"Valhalla error {data['error_code']}: "
                f"{data.get('error') or data.get('status_message', '')}"
            )

        paths = []
        trips = [data.get("trip")] + [alt.get("trip") for alt in data.get("alternates") or []]
        for trip in trips:
            if trip:
                path = self._trip_to_path(trip)
                if path is not None:
                    paths.append(path)
        if not paths:
            raise NoRouteFoundError("Valhalla returned no trip")
        return paths

    async def route(
        self, origin: Coordinate, destination: Coordinate
    ) -> list[PathAlternative]:
        last_error: TransientCollaboratorError | None = None

        for index, endpoint in enumerate(self.endpoints):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    return await self._fetch(endpoint, origin, destination)
                except NoRouteFoundError:
                    raise
                except RateLimitedError as exc:
                    last_error = exc
                    wait = exc.retry_after
                    if wait is None:
                        wait = self.retry_delay_s * attempt
                    logger.warning(
                        "Valhalla rate limited at %s; waiting %.1fs", endpoint, wait
                    )
                    if attempt < self.max_attempts:
                        await self._sleep(wait)
                except TransientCollaboratorError as exc:
                    last_error = exc
                    logger.warning(
                        "Valhalla attempt %d/%d at %s failed: %s",
                        attempt, self.max_attempts, endpoint, exc,
                    )
                    if attempt < self.max_attempts:
                        await self._sleep(self.retry_delay_s * attempt)
            if index < len(self.endpoints) - 1:
                logger.info("Switching Valhalla endpoint after %s", endpoint)
                await self._sleep(ROUTING_ENDPOINT_SWITCH_DELAY_S)

        for fallback in self.fallbacks:
            try:
                paths = await fallback.route(origin, destination)
            except TransientCollaboratorError as exc:
                logger.warning("Fallback router %s failed: %s", type(fallback).__name__, exc)
                continue
            if paths:
                logger.info("Fallback router %s answered", type(fallback).__name__)
                return paths

        raise last_error or NoRouteFoundError("No route found")

    async def aclose(self) -> None:
        await super().aclose()
        for fallback in self.fallbacks:
            closer = getattr(fallback, "aclose", None)
            if closer is not None:
                await closer()


# ---------------------------------------------------------------------------
# Google Directions
# ---------------------------------------------------------------------------


def google_error(exc: Exception, service: str) -> Exception:
    """Maps a googlemaps exception onto the engine's error taxonomy."""
    if isinstance(exc, googlemaps.exceptions.ApiError):
        if exc.status in _FATAL_GOOGLE_STATUSES:
            return FatalCollaboratorError(f"{service}: {exc.status} {exc.message or ''}".strip())
        if exc.status in ("ZERO_RESULTS", "NOT_FOUND"):
            return NoRouteFoundError(f"{service}: {exc.status}")
    return TransientCollaboratorError(f"{service} failed: {exc}")


def _route_coordinates(route: dict[str, Any]) -> list[Coordinate]:
    """Decodes a Directions route at step resolution.

    The overview polyline is simplified and cuts corners, which would skew
    overlap and straightness; step polylines follow the actual streets.
    Falls back to the overview polyline if steps carry no geometry.
    """
    points: list[Coordinate] = []
    for leg in route.get("legs", []):
        for step in leg.get("steps", []):
            encoded = step.get("polyline", {}).get("points", "")
            if not encoded:
                continue
            step_points = decode_polyline(encoded)
            # Consecutive steps share their boundary point.
            if points and step_points and step_points[0] == points[-1]:
                step_points = step_points[1:]
            points.extend(step_points)
    if points:
        return points
    return decode_polyline(route.get("overview_polyline", {}).get("points", ""))


class GoogleDirectionsRouter:
    """Walking directions with alternatives from the Google Directions API."""

    def __init__(self, maps_client: googlemaps.Client | None = None, *, mode: str = "walking"):
        self._maps = maps_client or googlemaps.Client(key=GOOGLE_MAPS_API_KEY)
        self.mode = mode

    async def route(
        self, origin: Coordinate, destination: Coordinate
    ) -> list[PathAlternative]:
        try:
            # googlemaps is synchronous; keep the event loop free so the
            # outbound and return requests overlap.
            result = await asyncio.to_thread(
                self._maps.directions,
                origin=f"{origin[0]},{origin[1]}",
                destination=f"{destination[0]},{destination[1]}",
                mode=self.mode,
                alternatives=True,
            )
        except (googlemaps.exceptions.ApiError,
                googlemaps.exceptions.TransportError,
                googlemaps.exceptions.HTTPError,
                googlemaps.exceptions.Timeout) as exc:
            error = google_error(exc, "Directions API")
            if isinstance(error, NoRouteFoundError):
                return []
            raise error from exc

        paths = []
        try:
            for route in result or []:
                coordinates = _route_coordinates(route)
                if not coordinates:
                    continue
                distance = sum(leg["distance"]["value"] for leg in route.get("legs", []))
                paths.append(
                    PathAlternative(coordinates=coordinates, distance_meters=float(distance))
                )
        except (KeyError, TypeError, ValueError) as exc:
            raise TransientCollaboratorError(
                f"Directions API returned a malformed route: {exc!r}"
            ) from exc
        return paths


def build_router(backend: str = ROUTING_BACKEND) -> RouteSource:
    """Creates the configured routing collaborator.

    Valhalla escalates to OSRM with alternatives, then to a single OSRM path.
    """
    if backend == "google":
        return GoogleDirectionsRouter()
    if backend == "osrm":
        return OSRMRouter()
    if backend != "valhalla":
        raise ValueError(f"Unknown routing backend: {backend!r}")
    return ValhallaRouter(
        fallbacks=[OSRMRouter(), OSRMRouter(alternatives=False)],
    )
