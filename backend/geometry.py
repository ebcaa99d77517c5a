"""Polyline and great-circle helpers shared by the route engine.

Coordinates are ``(lat, lng)`` tuples in decimal degrees; distances are
metres unless a name says otherwise.
"""

import math
from collections.abc import Sequence

Coordinate = tuple[float, float]

EARTH_RADIUS_M: float = 6_371_000.0


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Returns the great-circle distance in metres between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = lat2_r - lat1_r
    dlng = math.radians(lng2 - lng1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_m(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance between two ``(lat, lng)`` tuples."""
    return haversine_m(a[0], a[1], b[0], b[1])


def bearing(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Returns the initial bearing in degrees [0, 360) from point 1 to point 2."""
    lat1, lat2 = math.radians(lat1), math.radians(lat2)
    dlng = math.radians(lng2 - lng1)
    x = math.sin(dlng) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlng)
    return (math.degrees(math.atan2(x, y)) + 360) % 360


def path_length_m(coordinates: Sequence[Coordinate]) -> float:
    """Sums the haversine length of consecutive segments."""
    return sum(
        distance_m(coordinates[i - 1], coordinates[i])
        for i in range(1, len(coordinates))
    )


def straightness_ratio(coordinates: Sequence[Coordinate]) -> float:
    """Endpoint distance divided by path length; 0.0 for degenerate paths."""
    if len(coordinates) < 2:
        return 0.0
    length = path_length_m(coordinates)
    if length <= 0:
        return 0.0
    return distance_m(coordinates[0], coordinates[-1]) / length


def point_to_segment_m(
    point: Coordinate, seg_start: Coordinate, seg_end: Coordinate
) -> float:
    """Distance in metres from ``point`` to the segment ``seg_start``-``seg_end``.

    The projection is done in degree space and clamped to the segment, then
    measured with haversine. Good enough at city scale, where segments are
    short and the distortion of the planar projection is negligible.
    """
    ax, ay = seg_start
    bx, by = seg_end
    abx, aby = bx - ax, by - ay
    ab_squared = abx * abx + aby * aby
    if ab_squared == 0:
        return distance_m(point, seg_start)

    t = ((point[0] - ax) * abx + (point[1] - ay) * aby) / ab_squared
    t = max(0.0, min(1.0, t))
    return distance_m(point, (ax + t * abx, ay + t * aby))


def decode_polyline(encoded: str, precision: int = 5) -> list[Coordinate]:
    """Decodes an encoded polyline string to a list of (lat, lng) points.

    Google uses precision 5; Valhalla shapes use precision 6.
    See: https://developers.google.com/maps/documentation/utilities/polylinealgorithm
    """
    factor = 10**precision
    result: list[Coordinate] = []
    index = 0
    lat = 0
    lng = 0

    while index < len(encoded):
        deltas = []
        for _ in range(2):
            shift = 0
            value = 0
            while True:
                if index >= len(encoded):
                    raise ValueError("Truncated polyline string.")
                b = ord(encoded[index]) - 63
                index += 1
                value |= (b & 0x1F) << shift
                shift += 5
                if b < 0x20:
                    break
            deltas.append(~(value >> 1) if (value & 1) else (value >> 1))
        lat += deltas[0]
        lng += deltas[1]
        result.append((lat / factor, lng / factor))

    return result


def encode_polyline(coordinates: Sequence[Coordinate], precision: int = 5) -> str:
    """Encodes a list of (lat, lng) tuples into an encoded polyline."""
    factor = 10**precision
    encoded: list[str] = []
    prev_lat = 0
    prev_lng = 0

    for lat, lng in coordinates:
        lat_e = round(lat * factor)
        lng_e = round(lng * factor)

        for delta in (lat_e - prev_lat, lng_e - prev_lng):
            value = ~(delta << 1) if delta < 0 else (delta << 1)
            while value >= 0x20:
                encoded.append(chr((0x20 | (value & 0x1F)) + 63))
                value >>= 5
            encoded.append(chr(value + 63))

        prev_lat = lat_e
        prev_lng = lng_e

    return "".join(encoded)
