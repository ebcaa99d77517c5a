"""Replaces one retained route with an alternative.

Two modes:
  path        Same turnaround point, a path different enough from every
              retained route. The first acceptable pairing wins.
  turnaround  A different turnaround point for the threshold the old route
              served. The first candidate landing in range wins.
"""

import logging
import random
from collections.abc import Collection, Sequence

from candidates import filter_candidates
from config import GeneratorConfig
from geometry import Coordinate
from models import (
    DirectionPreference,
    ForbiddenPath,
    ForbiddenZone,
    PointOfInterest,
    Route,
    RoutingUnavailable,
    SynthesisSuccess,
    threshold_for_distance,
)
from overlap import max_overlap_against
from poi_service import POISource
from route_synthesis import RouteSynthesizer, build_route, fetch_legs
from routing_service import RouteSource

logger = logging.getLogger(__name__)


class RouteRegenerator:
    def __init__(
        self,
        router: RouteSource,
        poi_source: POISource,
        *,
        config: GeneratorConfig | None = None,
        forbidden_zones: Sequence[ForbiddenZone] = (),
        forbidden_paths: Sequence[ForbiddenPath] = (),
        continent: str = "",
        rng: random.Random | None = None,
    ):
        self.router = router
        self.poi_source = poi_source
        self.config = config or GeneratorConfig()
        self.synthesizer = RouteSynthesizer.from_config(
            router,
            self.config,
            forbidden_zones=forbidden_zones,
            forbidden_paths=forbidden_paths,
            continent=continent,
        )
        self.rng = rng or random.Random()

    async def regenerate_path(
        self,
        route: Route,
        retained_routes: Sequence[Route],
        *,
        start: PointOfInterest | None = None,
    ) -> Route | None:
        """New path to the same turnaround point, or None if none is different enough.

        Every leg of every retained route, including ``route`` itself, counts
        as a path to stay away from.
        """
        start = start or route.starting_point
        existing_paths: list[list[Coordinate]] = [
            path for retained in retained_routes for path in retained.all_paths
        ]
        logger.info(
            "Regenerating path to %s against %d retained paths",
            route.turnaround_point.name, len(existing_paths),
        )

        legs = await fetch_legs(self.router, start, route.turnaround_point)
        if isinstance(legs, RoutingUnavailable):
            return None
        outbound_options, return_options = legs

        limit = self.config.regeneration_overlap_limit
        proximity = self.config.overlap_proximity_m
        for outbound in outbound_options:
            if max_overlap_against(outbound.coordinates, existing_paths, proximity) > limit:
                continue
            for return_leg in return_options:
                if max_overlap_against(return_leg.coordinates, existing_paths, proximity) > limit:
                    continue
                rejection = self.synthesizer.checker.check_pair(
                    outbound.coordinates, return_leg.coordinates
                )
                if rejection is not None:
                    logger.info("Skipping pairing for %s: %s", route.name, rejection.detail)
                    continue
                new_route = build_route(
                    start,
                    route.turnaround_point,
                    outbound,
                    return_leg,
                    continent=route.continent,
                )
                logger.info(
                    "Regenerated path for %s: %.2f mi", new_route.name,
                    new_route.total_distance_miles,
                )
                return new_route

        logger.info("No sufficiently different path found for %s", route.name)
        return None

    async def regenerate_turnaround(
        self,
        route: Route,
        retained_routes: Sequence[Route],
        *,
        start: PointOfInterest | None = None,
        direction: DirectionPreference = DirectionPreference.NONE,
        blacklisted_names: Collection[str] = (),
        threshold_blacklisted_names: Collection[str] = (),
    ) -> Route | None:
        """Route to a different turnaround point in the old route's threshold.

        ``threshold_blacklisted_names`` are the POIs already found out of range
        or forbidden for that threshold.

        Returns None when the old distance fits no threshold or none of the
        tried candidates lands in range.
        """
        start = start or route.starting_point
        threshold = threshold_for_distance(route.total_distance_miles)
        if threshold is None:
            logger.warning(
                "%.2f mi fits no threshold; cannot pick a new turnaround for %s",
                route.total_distance_miles, route.name,
            )
            return None

        pois = await self.poi_source.search(start.coordinate, threshold.search_radius_meters)
        old = route.turnaround_point
        used_names = {r.turnaround_point.name for r in retained_routes} | {old.name}
        candidates = [
            poi
            for poi in filter_candidates(
                pois,
                threshold=threshold,
                start=start.coordinate,
                direction=direction,
                used_names=used_names,
                blacklisted_names=blacklisted_names,
                threshold_blacklisted_names=threshold_blacklisted_names,
                rng=self.rng,
            )
            if poi.id != old.id
        ]
        self.rng.shuffle(candidates)
        candidates = candidates[: self.config.regeneration_candidate_limit]
        logger.info(
            "Trying %d new turnaround points for %d min (replacing %s)",
            len(candidates), threshold.minutes, old.name,
        )

        for candidate in candidates:
            outcome = await self.synthesizer.synthesize(
                start, candidate, threshold.target_distance_miles
            )
            if not isinstance(outcome, SynthesisSuccess):
                continue
            if threshold.is_valid_distance(outcome.route.total_distance_miles):
                new_route = outcome.route.model_copy(update={"continent": route.continent})
                logger.info(
                    "Replaced %s with %s: %.2f mi",
                    old.name, new_route.name, new_route.total_distance_miles,
                )
                return new_route

        logger.info("No replacement turnaround found for %s", route.name)
        return None
