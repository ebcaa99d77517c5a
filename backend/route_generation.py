"""Coverage-driven route generation across every session threshold.

For each threshold, in ascending minute order:
  1.  Skip it if the retained routes already meet the quota.
  2.  Search POIs at the threshold's radius and filter them into a
      priority-ordered candidate list.
  3.  Try candidates one at a time until the quota is met, the list runs
      out, or too many in a row land outside the distance range.

Accepted routes are announced and persisted as soon as they are kept, so an
interrupted run loses nothing. A fatal collaborator error stops the whole
run after persisting what was kept.
"""

import asyncio
import logging
import random
from collections.abc import Sequence

from pydantic import BaseModel

from candidates import filter_candidates
from config import GeneratorConfig
from errors import FatalCollaboratorError, GenerationAborted, TransientCollaboratorError
from events import CancellationToken, GenerationObserver, NullObserver
from models import (
    DirectionPreference,
    ForbiddenPathUsed,
    GenerationResult,
    PointOfInterest,
    Route,
    RoutingUnavailable,
    SynthesisSuccess,
    TimeThreshold,
    all_thresholds,
)
from persistence import InMemoryRouteStore, RouteStore
from poi_service import POISource
from route_synthesis import RouteSynthesizer

logger = logging.getLogger(__name__)


class ThresholdStats(BaseModel):
    """Per-threshold tallies logged when the threshold finishes."""

    minutes: int
    attempted: int = 0
    success: int = 0
    out_of_range: int = 0
    routing_unavailable: int = 0
    forbidden: int = 0
    no_acceptable_path: int = 0
    circuit_broken: bool = False
    search_failed: bool = False


def count_for(routes: Sequence[Route], threshold: TimeThreshold) -> int:
    return sum(1 for r in routes if threshold.is_valid_distance(r.total_distance_miles))


def coverage_by_threshold(
    routes: Sequence[Route], thresholds: Sequence[TimeThreshold]
) -> dict[int, int]:
    return {t.minutes: count_for(routes, t) for t in thresholds}


def coverage_summary(
    coverage: dict[int, int],
    skipped: Sequence[int],
    quota: int,
) -> str:
    """Human-readable coverage report, one line per category."""
    full = [m for m, n in coverage.items() if n >= quota]
    partial = [m for m, n in coverage.items() if 0 < n < quota]
    lines = [
        f"Fully covered: {len(full)}/{len(coverage)} thresholds",
        f"Partially covered: {len(partial)}"
        + (f" ({', '.join(f'{m} min: {coverage[m]}' for m in partial)})" if partial else ""),
    ]
    if skipped:
        lines.append(f"Skipped: {', '.join(f'{m} min' for m in skipped)}")
    else:
        lines.append("Skipped: none")
    return "\n".join(lines)


class RouteGenerator:
    """Fills every threshold with routes, greedily and incrementally.

    Collaborators are injected; the generator holds no state between runs
    apart from its random source.
    """

    def __init__(
        self,
        poi_source: POISource,
        synthesizer: RouteSynthesizer,
        *,
        store: RouteStore | None = None,
        config: GeneratorConfig | None = None,
        observer: GenerationObserver | None = None,
        cancellation: CancellationToken | None = None,
        rng: random.Random | None = None,
        thresholds: Sequence[TimeThreshold] | None = None,
    ):
        self.poi_source = poi_source
        self.synthesizer = synthesizer
        self.store = store if store is not None else InMemoryRouteStore()
        self.config = config or GeneratorConfig()
        self.observer = observer or NullObserver()
        self.cancellation = cancellation or CancellationToken()
        self.rng = rng or random.Random()
        self.thresholds = sorted(thresholds or all_thresholds(), key=lambda t: t.minutes)

    async def generate_routes(
        self,
        start: PointOfInterest,
        *,
        city: str,
        existing_routes: Sequence[Route] = (),
        direction: DirectionPreference = DirectionPreference.NONE,
        raise_on_abort: bool = False,
    ) -> GenerationResult:
        """Runs the coverage loop and returns every retained route.

        Args:
            start: Origin and end of every route.
            city: Key for the blacklists read and written during the run.
            existing_routes: Routes kept from earlier runs; they count toward
                each threshold's quota and their turnaround names stay taken.
            direction: Optional sector the turnaround points must lie in.
            raise_on_abort: Raise ``GenerationAborted`` on a fatal collaborator
                error instead of returning an aborted result.

        Raises:
            GenerationCancelled: If the cancellation token was set.
            GenerationAborted: On a fatal error when ``raise_on_abort`` is set.
        """
        routes: list[Route] = [r.with_recomputed_session_times() for r in existing_routes]
        used_names = {r.turnaround_point.name for r in routes}
        blacklisted = await asyncio.to_thread(self.store.blacklisted_names, city)
        skipped: list[int] = []

        logger.info(
            "Route generation started for %s from %s: %d existing routes, "
            "%d blacklisted POIs, direction=%s",
            city, start.name, len(routes), len(blacklisted), direction.value,
        )
        self.observer.on_progress(f"Starting generation with {len(routes)} existing routes")

        try:
            for threshold in self.thresholds:
                stats = await self._fill_threshold(
                    threshold, start, city, direction, routes, used_names, blacklisted
                )
                final_count = count_for(routes, threshold)
                if final_count == 0:
                    skipped.append(threshold.minutes)
                self._log_threshold(stats, final_count)
        except FatalCollaboratorError as exc:
            logger.error("Generation aborted after %d routes: %s", len(routes), exc)
            self.observer.on_persist(list(routes))
            self.observer.on_progress(f"Generation stopped: {exc}")
            result = self._result(routes, skipped, aborted=True, abort_reason=str(exc))
            if raise_on_abort:
                raise GenerationAborted(str(exc), routes=result.routes) from exc
            return result

        result = self._result(routes, skipped)
        self.observer.on_progress(
            f"Generated {len(result.routes)} routes; {len(skipped)} thresholds skipped"
        )
        return result

    def _result(
        self,
        routes: list[Route],
        skipped: list[int],
        *,
        aborted: bool = False,
        abort_reason: str | None = None,
    ) -> GenerationResult:
        final = [r.with_recomputed_session_times() for r in routes]
        coverage = coverage_by_threshold(final, self.thresholds)
        logger.info(
            "Coverage summary:\n%s",
            coverage_summary(coverage, skipped, self.config.routes_per_threshold),
        )
        return GenerationResult(
            routes=final,
            skipped_thresholds=skipped,
            coverage_by_threshold=coverage,
            aborted=aborted,
            abort_reason=abort_reason,
        )

    async def _fill_threshold(
        self,
        threshold: TimeThreshold,
        start: PointOfInterest,
        city: str,
        direction: DirectionPreference,
        routes: list[Route],
        used_names: set[str],
        blacklisted: set[str],
    ) -> ThresholdStats:
        stats = ThresholdStats(minutes=threshold.minutes)
        quota = self.config.routes_per_threshold

        self.cancellation.raise_if_cancelled()
        current = count_for(routes, threshold)
        if current >= quota:
            logger.info("%d min: already satisfied with %d routes", threshold.minutes, current)
            return stats

        logger.info(
            "%d min: searching %.2f-%.2f mi routes, radius %.2f mi (%d/%d so far)",
            threshold.minutes,
            threshold.min_distance_miles,
            threshold.max_distance_miles,
            threshold.search_radius_miles,
            current,
            quota,
        )
        self.observer.on_progress(
            f"Searching {threshold.minutes}-minute routes ({current}/{quota})"
        )

        try:
            pois = await self.poi_source.search(
                start.coordinate, threshold.search_radius_meters
            )
        except TransientCollaboratorError as exc:
            logger.warning("%d min: POI search failed: %s", threshold.minutes, exc)
            stats.search_failed = True
            return stats

        threshold_blacklisted = await asyncio.to_thread(
            self.store.threshold_blacklisted_names, threshold.minutes, city
        )
        candidates = filter_candidates(
            pois,
            threshold=threshold,
            start=start.coordinate,
            direction=direction,
            used_names=used_names,
            blacklisted_names=blacklisted,
            threshold_blacklisted_names=threshold_blacklisted,
            rng=self.rng,
        )
        logger.info("%d min: %d candidates to try", threshold.minutes, len(candidates))

        consecutive_out_of_range = 0
        for candidate in candidates:
            self.cancellation.raise_if_cancelled()
            if count_for(routes, threshold) >= quota:
                break
            if candidate.name in used_names:
                continue

            stats.attempted += 1
            outcome = await self.synthesizer.synthesize(
                start, candidate, threshold.target_distance_miles
            )

            if isinstance(outcome, SynthesisSuccess):
                route = outcome.route
                if threshold.is_valid_distance(route.total_distance_miles):
                    routes.append(route)
                    used_names.add(candidate.name)
                    consecutive_out_of_range = 0
                    stats.success += 1
                    logger.info(
                        "ACCEPTED %s: %.2f mi for %d min",
                        route.name, route.total_distance_miles, threshold.minutes,
                    )
                    self.observer.on_route_generated(route)
                    self.observer.on_persist(list(routes))
                    self.observer.on_progress(
                        f"{threshold.minutes} min: {count_for(routes, threshold)}/{quota} "
                        f"({route.name}, {route.total_distance_miles:.2f} mi)"
                    )
                    continue

                consecutive_out_of_range += 1
                stats.out_of_range += 1
                logger.info(
                    "OUT OF RANGE %s: %.2f mi for %d min (%d in a row)",
                    candidate.name, route.total_distance_miles,
                    threshold.minutes, consecutive_out_of_range,
                )
                await asyncio.to_thread(
                    self.store.add_to_threshold_blacklist, candidate.name, threshold.minutes, city
                )
                if consecutive_out_of_range >= self.config.max_consecutive_out_of_range:
                    stats.circuit_broken = True
                    logger.warning(
                        "%d min: %d consecutive out-of-range results, moving on",
                        threshold.minutes, consecutive_out_of_range,
                    )
                    break
            elif isinstance(outcome, ForbiddenPathUsed):
                stats.forbidden += 1
                await asyncio.to_thread(
                    self.store.add_to_threshold_blacklist, candidate.name, threshold.minutes, city
                )
            elif isinstance(outcome, RoutingUnavailable):
                stats.routing_unavailable += 1
                logger.warning("Routing unavailable for %s: %s", candidate.name, outcome.reason)
            else:
                stats.no_acceptable_path += 1

        return stats

    def _log_threshold(self, stats: ThresholdStats, final_count: int) -> None:
        logger.info(
            "%d min summary: %d routes; attempted=%d success=%d out_of_range=%d "
            "routing_unavailable=%d forbidden=%d no_acceptable_path=%d%s%s",
            stats.minutes,
            final_count,
            stats.attempted,
            stats.success,
            stats.out_of_range,
            stats.routing_unavailable,
            stats.forbidden,
            stats.no_acceptable_path,
            " (circuit broken)" if stats.circuit_broken else "",
            " (POI search failed)" if stats.search_failed else "",
        )
