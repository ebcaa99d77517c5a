"""Route-generation rules and deployment settings.

All tuneable constants live here, one rule per block. Secrets and
deployment paths are read from the environment so the same code runs
locally and on Cloud Run.
"""

import os

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Pace bounds and thresholds
# ---------------------------------------------------------------------------

# Session pace bounds in miles per hour. A session of m minutes is valid for
# any route between SLOW_PACE_MPH * m/60 and FAST_PACE_MPH * m/60 miles.
SLOW_PACE_MPH: float = 8.0
FAST_PACE_MPH: float = 13.0
# Session durations in minutes, processed in ascending order.
THRESHOLD_MIN_MINUTES: int = 5
THRESHOLD_MAX_MINUTES: int = 120
THRESHOLD_STEP_MINUTES: int = 5
# Coarse distance ladder (miles) used to group routes in the catalog UI.
DISTANCE_BANDS_MILES: tuple[float, ...] = (1.0, 2.0, 4.0, 7.5, 9.5, 13.0, 16.0)
METERS_PER_MILE: float = 1609.34

# -- Scheduler ------------------------------------------------------------
# Routes wanted per threshold before the threshold counts as satisfied.
ROUTES_PER_THRESHOLD: int = 10
# Abort a threshold after this many out-of-range results in a row.
MAX_CONSECUTIVE_OUT_OF_RANGE: int = 20

# -- Candidate pre-filter -------------------------------------------------
# Turnaround points closer than this to the start are never useful.
MIN_TURNAROUND_DISTANCE_M: float = 500.0
# Straight-line window relative to the threshold's distance range. Walking
# paths run 1.3-1.6x the straight-line distance.
STRAIGHT_LINE_MIN_DIVISOR: float = 4.0
STRAIGHT_LINE_MAX_DIVISOR: float = 1.5
# Width of the bearing sector kept for a direction preference (degrees).
DIRECTION_SECTOR_DEG: float = 90.0

# -- Overlap --------------------------------------------------------------
# Points within this distance of the other path count as overlapping.
OVERLAP_PROXIMITY_M: float = 20.0
# Regeneration rejects a pairing overlapping any retained path above this.
REGENERATION_OVERLAP_LIMIT: float = 0.7
# Candidates attempted when regenerating with a different turnaround point.
REGENERATION_CANDIDATE_LIMIT: int = 10

# -- Highway detection ----------------------------------------------------
# Whole path: endpoint distance / path length above this on a long path.
HIGHWAY_STRAIGHTNESS_RATIO: float = 0.98
HIGHWAY_MIN_PATH_LENGTH_M: float = 2000.0
# Sub-run: a window at least this long with straightness above the ratio.
HIGHWAY_STRAIGHT_RUN_RATIO: float = 0.99
HIGHWAY_STRAIGHT_RUN_MIN_M: float = 5000.0
HIGHWAY_WINDOW_MIN_POINTS: int = 10
HIGHWAY_WINDOW_MAX_POINTS: int = 50
HIGHWAY_WINDOW_STEP: int = 5

# -- Forbidden paths ------------------------------------------------------
# Route points within this distance of a forbidden polyline are "on" it.
FORBIDDEN_PATH_PROXIMITY_M: float = 25.0
# Travelling along (not crossing) needs both of these in one run.
FORBIDDEN_PATH_MIN_POINTS: int = 3
FORBIDDEN_PATH_MIN_DISTANCE_M: float = 50.0

# -- POIs -----------------------------------------------------------------
# Priority tier given to starting points and uncategorised POIs.
DEFAULT_POI_PRIORITY: int = 3

# -- Routing collaborators ------------------------------------------------
ROUTING_MAX_ATTEMPTS: int = 3
ROUTING_RETRY_DELAY_S: float = 1.0
ROUTING_ENDPOINT_SWITCH_DELAY_S: float = 0.5
ROUTING_TIMEOUT_S: float = 15.0
ROUTING_ALTERNATES: int = 3
# Longest wait honoured from a rate-limit reset header.
ROUTING_MAX_RATE_LIMIT_WAIT_S: float = 60.0
# Valhalla costing model; "bicycle" with a road bias avoids stairs and
# cut-throughs that make poor running routes.
VALHALLA_COSTING: str = "bicycle"
POI_SEARCH_DELAY_S: float = 0.1

# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

GOOGLE_MAPS_API_KEY: str = os.environ.get("GOOGLE_MAPS_API_KEY", "")
ROUTES_DATA_DIR: str = os.environ.get("ROUTES_DATA_DIR", "./data")
ROUTING_BACKEND: str = os.environ.get("ROUTING_BACKEND", "valhalla")
VALHALLA_URLS: list[str] = [
    url.strip()
    for url in os.environ.get(
        "VALHALLA_URLS",
        "https://valhalla1.openstreetmap.de/route,"
        "https://valhalla2.openstreetmap.de/route",
    ).split(",")
    if url.strip()
]
OSRM_URL: str = os.environ.get(
    "OSRM_URL", "https://router.project-osrm.org/route/v1/foot"
)


class GeneratorConfig(BaseModel):
    """Per-run overrides for the generation and regeneration rules."""

    routes_per_threshold: int = Field(default=ROUTES_PER_THRESHOLD, ge=1)
    max_consecutive_out_of_range: int = Field(
        default=MAX_CONSECUTIVE_OUT_OF_RANGE, ge=1
    )
    regeneration_overlap_limit: float = Field(
        default=REGENERATION_OVERLAP_LIMIT, ge=0.0, le=1.0
    )
    regeneration_candidate_limit: int = Field(
        default=REGENERATION_CANDIDATE_LIMIT, ge=1
    )
    overlap_proximity_m: float = Field(default=OVERLAP_PROXIMITY_M, gt=0)
    forbidden_path_proximity_m: float = Field(
        default=FORBIDDEN_PATH_PROXIMITY_M, gt=0
    )
    check_highways: bool = True
    check_forbidden_zones: bool = True
    check_forbidden_paths: bool = True
