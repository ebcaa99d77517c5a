"""Known non-walkable structures the routing backends may route through.

Static reference data: New York City tunnels, bridges without pedestrian
access and tunnelled highway sections.
"""

from models import ForbiddenZone

NYC_FORBIDDEN_ZONES: tuple[ForbiddenZone, ...] = (
    # Tunnels (all prohibit pedestrians)
    ForbiddenZone(name="Lincoln Tunnel", min_lat=40.7580, max_lat=40.7680, min_lng=-74.0300, max_lng=-73.9980),
    ForbiddenZone(name="Lincoln Tunnel Helix", min_lat=40.7650, max_lat=40.7780, min_lng=-74.0350, max_lng=-74.0150),
    ForbiddenZone(name="Holland Tunnel", min_lat=40.7240, max_lat=40.7340, min_lng=-74.0450, max_lng=-74.0050),
    ForbiddenZone(name="Queens-Midtown Tunnel", min_lat=40.7400, max_lat=40.7520, min_lng=-73.9750, max_lng=-73.9500),
    ForbiddenZone(name="Hugh Carey Tunnel", min_lat=40.6850, max_lat=40.7050, min_lng=-74.0200, max_lng=-73.9950),
    # Bridges without pedestrian access
    ForbiddenZone(name="Verrazano-Narrows Bridge", min_lat=40.5950, max_lat=40.6150, min_lng=-74.0550, max_lng=-74.0300),
    ForbiddenZone(name="Throgs Neck Bridge", min_lat=40.7950, max_lat=40.8150, min_lng=-73.8000, max_lng=-73.7750),
    ForbiddenZone(name="Bronx-Whitestone Bridge", min_lat=40.7950, max_lat=40.8150, min_lng=-73.8350, max_lng=-73.8100),
    ForbiddenZone(name="Goethals Bridge", min_lat=40.6300, max_lat=40.6500, min_lng=-74.2050, max_lng=-74.1800),
    ForbiddenZone(name="Bayonne Bridge", min_lat=40.6350, max_lat=40.6600, min_lng=-74.1500, max_lng=-74.1250),
    ForbiddenZone(name="Outerbridge Crossing", min_lat=40.5200, max_lat=40.5350, min_lng=-74.2550, max_lng=-74.2350),
    # Limited-access highway tunnels
    ForbiddenZone(name="FDR Drive Tunnel (East 42nd)", min_lat=40.7480, max_lat=40.7550, min_lng=-73.9720, max_lng=-73.9670),
    ForbiddenZone(name="West Side Highway Tunnel", min_lat=40.7550, max_lat=40.7650, min_lng=-74.0100, max_lng=-74.0000),
)

DEFAULT_FORBIDDEN_ZONES: tuple[ForbiddenZone, ...] = NYC_FORBIDDEN_ZONES
