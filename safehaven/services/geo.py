"""
geo.py — Great-circle distance and small geometry helpers.

Used by:
  - routes/places.py            sort / filter safe places by proximity
  - services/overpass_client.py bounding boxes + distance labels
  - services/timed_session.py   the "moved more than 500 m" flag

Haversine on a spherical Earth (R = 6 371 km) is accurate to a few metres
over the tens of kilometres these features deal with.
"""

from __future__ import annotations

import math
from typing import Callable, Iterable, Optional, TypeVar

EARTH_RADIUS_METERS = 6_371_000.0

# An SOS / share owner who ends up farther than this from where the session
# started has "moved significantly".
SIGNIFICANT_MOVE_METERS = 500.0

# 1 degree of latitude is ~111 km everywhere.
_KM_PER_DEGREE_LAT = 111.0

T = TypeVar("T")


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in metres between two WGS84 points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_METERS * c


def bounding_box(lat: float, lng: float, radius_km: float) -> tuple[float, float, float, float]:
    """
    Return (south, west, north, east) around a point.

    Longitude degrees shrink with cos(latitude); near the poles the box is
    clamped rather than blowing up.
    """
    lat_offset = radius_km / _KM_PER_DEGREE_LAT
    cos_lat = max(math.cos(math.radians(lat)), 1e-6)
    lng_offset = radius_km / (_KM_PER_DEGREE_LAT * cos_lat)
    return (lat - lat_offset, lng - lng_offset, lat + lat_offset, lng + lng_offset)


def format_distance(meters: float) -> str:
    """'350m' under a kilometre, '1.2km' above."""
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"


def sort_by_distance(
    items: Iterable[T],
    origin: tuple[float, float],
    coords_of: Callable[[T], Optional[tuple[float, float]]],
    max_meters: Optional[float] = None,
) -> list[tuple[T, Optional[float]]]:
    """
    Pair each item with its distance from *origin* and sort nearest first.

    Items without coordinates keep their relative order at the end and are
    never dropped by *max_meters*.
    """
    located: list[tuple[T, float]] = []
    unlocated: list[tuple[T, Optional[float]]] = []
    for item in items:
        coords = coords_of(item)
        if coords is None:
            unlocated.append((item, None))
            continue
        d = distance_meters(origin[0], origin[1], coords[0], coords[1])
        if max_meters is None or d <= max_meters:
            located.append((item, d))

    located.sort(key=lambda pair: pair[1])
    return [*located, *unlocated]
