"""Builds one out-and-back Route from a start point and a turnaround POI.

Both legs are requested from the routing collaborator concurrently. Every
outbound/return pairing is checked for path quality, and the surviving
pairing with the least overlap wins, so the return leg differs from the
outbound one as much as the road network allows.
"""

import asyncio
import logging
from collections.abc import Sequence

from config import METERS_PER_MILE, OVERLAP_PROXIMITY_M, GeneratorConfig
from errors import TransientCollaboratorError
from models import (
    ForbiddenPath,
    ForbiddenPathUsed,
    ForbiddenZone,
    NoAcceptablePath,
    PathAlternative,
    PointOfInterest,
    Route,
    RoutingUnavailable,
    SynthesisOutcome,
    SynthesisSuccess,
    infer_distance_band,
)
from overlap import overlap_fraction
from path_quality import PathQualityChecker
from routing_service import RouteSource

logger = logging.getLogger(__name__)


def build_route(
    start: PointOfInterest,
    turnaround: PointOfInterest,
    outbound: PathAlternative,
    return_leg: PathAlternative,
    *,
    continent: str = "",
) -> Route:
    """Assembles a Route; distance is the sum of both legs' reported lengths."""
    total_miles = (outbound.distance_meters + return_leg.distance_meters) / METERS_PER_MILE
    return Route(
        name=turnaround.name,
        continent=continent,
        starting_point=start,
        turnaround_point=turnaround,
        total_distance_miles=total_miles,
        distance_band_miles=infer_distance_band(total_miles),
        outbound_path=list(outbound.coordinates),
        return_path=list(return_leg.coordinates),
    )


async def fetch_legs(
    router: RouteSource,
    start: PointOfInterest,
    turnaround: PointOfInterest,
) -> tuple[list[PathAlternative], list[PathAlternative]] | RoutingUnavailable:
    """Requests outbound and return alternatives concurrently.

    A transient collaborator failure becomes ``RoutingUnavailable`` so the
    caller moves to the next candidate. Anything else propagates.
    """
    results = await asyncio.gather(
        router.route(start.coordinate, turnaround.coordinate),
        router.route(turnaround.coordinate, start.coordinate),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException) and not isinstance(
            result, TransientCollaboratorError
        ):
            raise result
    for result in results:
        if isinstance(result, TransientCollaboratorError):
            logger.warning("Routing failed for %s: %s", turnaround.name, result)
            return RoutingUnavailable(reason=str(result) or type(result).__name__)

    outbound_options, return_options = results
    logger.info(
        "Router returned %d outbound options, %d return options",
        len(outbound_options), len(return_options),
    )
    if not outbound_options or not return_options:
        return RoutingUnavailable(reason="no route options returned")
    return list(outbound_options), list(return_options)


class RouteSynthesizer:
    """Turns a turnaround candidate into a Route or a typed failure.

    Stateless apart from its collaborators; construct once per run and share.
    """

    def __init__(
        self,
        router: RouteSource,
        checker: PathQualityChecker,
        *,
        overlap_proximity_m: float = OVERLAP_PROXIMITY_M,
        continent: str = "",
    ):
        self.router = router
        self.checker = checker
        self.overlap_proximity_m = overlap_proximity_m
        self.continent = continent

    @classmethod
    def from_config(
        cls,
        router: RouteSource,
        config: GeneratorConfig,
        *,
        forbidden_zones: Sequence[ForbiddenZone] = (),
        forbidden_paths: Sequence[ForbiddenPath] = (),
        continent: str = "",
    ) -> "RouteSynthesizer":
        checker = PathQualityChecker(
            forbidden_zones=forbidden_zones,
            forbidden_paths=forbidden_paths,
            check_highways=config.check_highways,
            check_forbidden_zones=config.check_forbidden_zones,
            check_forbidden_paths=config.check_forbidden_paths,
            forbidden_path_proximity_m=config.forbidden_path_proximity_m,
        )
        return cls(
            router,
            checker,
            overlap_proximity_m=config.overlap_proximity_m,
            continent=continent,
        )

    async def synthesize(
        self,
        start: PointOfInterest,
        turnaround: PointOfInterest,
        target_distance_miles: float | None = None,
    ) -> SynthesisOutcome:
        """Attempts a route to ``turnaround``.

        ``target_distance_miles`` only feeds the diagnostics. The caller
        decides whether the distance suits a threshold.
        """
        legs = await fetch_legs(self.router, start, turnaround)
        if isinstance(legs, RoutingUnavailable):
            return legs
        outbound_options, return_options = legs

        best: tuple[PathAlternative, PathAlternative] | None = None
        best_overlap = 0.0
        rejections = []
        for outbound in outbound_options:
            for return_leg in return_options:
                rejection = self.checker.check_pair(
                    outbound.coordinates, return_leg.coordinates
                )
                if rejection is not None:
                    rejections.append(rejection)
                    continue
                overlap = overlap_fraction(
                    outbound.coordinates,
                    return_leg.coordinates,
                    self.overlap_proximity_m,
                )
                if best is None or overlap < best_overlap:
                    best = (outbound, return_leg)
                    best_overlap = overlap

        if best is None:
            forbidden = [r for r in rejections if r.kind.is_forbidden]
            if forbidden:
                logger.info(
                    "REJECTED %s: %s", turnaround.name, forbidden[0].detail
                )
                return ForbiddenPathUsed(reason=forbidden[0].detail)
            detail = rejections[0].detail if rejections else "no pairing survived"
            logger.info("REJECTED %s: %s", turnaround.name, detail)
            return NoAcceptablePath(reason=detail)

        route = build_route(start, turnaround, *best, continent=self.continent)
        logger.info(
            "Best pair for %s: outbound=%.2f mi, return=%.2f mi, total=%.2f mi "
            "(target %s), overlap=%.0f%%",
            turnaround.name,
            best[0].distance_meters / METERS_PER_MILE,
            best[1].distance_meters / METERS_PER_MILE,
            route.total_distance_miles,
            f"{target_distance_miles:.2f} mi" if target_distance_miles else "n/a",
            best_overlap * 100,
        )
        return SynthesisSuccess(route=route, overlap=best_overlap)
