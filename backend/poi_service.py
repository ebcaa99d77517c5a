"""POI collaborators: resolve named turnaround candidates around a point.

``GooglePlacesPOISource`` runs one keyword search per term so results span
parks, landmarks and venues, then deduplicates by name. Each POI's priority
tier comes from the term that found it.
"""

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

import googlemaps
import googlemaps.exceptions

from config import DEFAULT_POI_PRIORITY, GOOGLE_MAPS_API_KEY, POI_SEARCH_DELAY_S
from errors import FatalCollaboratorError, TransientCollaboratorError
from geometry import Coordinate, distance_m
from models import PointOfInterest
from routing_service import google_error

logger = logging.getLogger(__name__)

# Search terms in the order they are queried.
SEARCH_TERMS: tuple[str, ...] = (
    "park", "museum", "stadium", "landmark", "monument", "plaza", "square",
    "garden", "theater", "university", "library", "beach", "temple",
    "cathedral", "church", "castle", "palace", "restaurant",
)

# Priority tier per category: 1 = recognisable landmark.
CATEGORY_PRIORITY: dict[str, int] = {
    "landmark": 1,
    "monument": 1,
    "stadium": 1,
    "castle": 1,
    "palace": 1,
    "museum": 2,
    "park": 2,
    "cathedral": 2,
    "beach": 2,
    "university": 2,
    "garden": 3,
    "plaza": 3,
    "square": 3,
    "theater": 3,
    "temple": 3,
    "library": 3,
    "church": 3,
    "restaurant": 4,
}


def priority_for_category(category: str) -> int:
    return CATEGORY_PRIORITY.get(category, DEFAULT_POI_PRIORITY)


class POISource(Protocol):
    async def search(
        self, center: Coordinate, radius_meters: float
    ) -> list[PointOfInterest]: ...


class StaticPOISource:
    """Serves a fixed POI list, trimmed to the search circle."""

    def __init__(self, pois: Sequence[PointOfInterest]):
        self.pois = list(pois)

    async def search(
        self, center: Coordinate, radius_meters: float
    ) -> list[PointOfInterest]:
        return [
            poi for poi in self.pois
            if distance_m(center, poi.coordinate) <= radius_meters
        ]


class GooglePlacesPOISource:
    """Keyword Nearby Search across SEARCH_TERMS."""

    def __init__(
        self,
        maps_client: googlemaps.Client | None = None,
        *,
        terms: Sequence[str] = SEARCH_TERMS,
        delay_s: float = POI_SEARCH_DELAY_S,
    ):
        self._maps = maps_client or googlemaps.Client(key=GOOGLE_MAPS_API_KEY)
        self.terms = list(terms)
        self.delay_s = delay_s

    async def _search_term(
        self, term: str, center: Coordinate, radius_meters: float
    ) -> list[PointOfInterest]:
        try:
            response = await asyncio.to_thread(
                self._maps.places_nearby,
                location=center,
                radius=int(radius_meters),
                keyword=term,
            )
        except (googlemaps.exceptions.ApiError,
                googlemaps.exceptions.TransportError,
                googlemaps.exceptions.HTTPError,
                googlemaps.exceptions.Timeout) as exc:
            raise google_error(exc, "Places API") from exc

        pois = []
        try:
            for place in response.get("results", []):
                name = place.get("name")
                location = place.get("geometry", {}).get("location")
                if not name or not location:
                    continue
                pois.append(
                    PointOfInterest(
                        name=name,
                        lat=float(location["lat"]),
                        lng=float(location["lng"]),
                        category=term,
                        priority=priority_for_category(term),
                    )
                )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise TransientCollaboratorError(
                f"Places API returned a malformed result for '{term}': {exc!r}"
            ) from exc
        return pois

    async def search(
        self, center: Coordinate, radius_meters: float
    ) -> list[PointOfInterest]:
        """Returns POIs deduplicated by name in discovery order.

        A failing term is logged and skipped. Fatal errors propagate; if every
        term fails the last transient error is raised.
        """
        logger.info(
            "Fetching POIs near %.4f, %.4f with radius %.0fm",
            center[0], center[1], radius_meters,
        )
        all_pois: list[PointOfInterest] = []
        seen: set[str] = set()
        failures = 0
        last_error: TransientCollaboratorError | None = None

        for term in self.terms:
            try:
                pois = await self._search_term(term, center, radius_meters)
            except FatalCollaboratorError:
                raise
            except TransientCollaboratorError as exc:
                failures += 1
                last_error = exc
                logger.warning("'%s' search failed: %s", term, exc)
            else:
                logger.info("'%s' returned %d results", term, len(pois))
                for poi in pois:
                    if poi.name not in seen:
                        seen.add(poi.name)
                        all_pois.append(poi)
            if self.delay_s:
                await asyncio.sleep(self.delay_s)

        if self.terms and failures == len(self.terms) and last_error is not None:
            raise last_error

        logger.info("Total unique POIs found: %d", len(all_pois))
        return all_pois
