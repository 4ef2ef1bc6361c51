"""
OverpassClient — Police stations and hospitals from OpenStreetMap.

Queries the public Overpass API (no key needed) with a bounding box
around the caller. Public Overpass instances are frequently overloaded,
so requests rotate through settings.overpass_servers:

    attempt 1 → server 1, attempt 2 → server 2, ... (0.5 s pause between)

Graceful degradation: if every attempt fails, or the client is disabled
(OVERPASS_ENABLED=false, e.g. in tests), lookups return an empty list
with a logged warning. The places page keeps working from the seeded
system places.
"""

import asyncio
import logging
from typing import Any, Optional

import httpx

from safehaven.core.config import settings
from safehaven.models.place import Coordinates, NearbyPlace
from safehaven.services.geo import bounding_box, distance_meters, format_distance

logger = logging.getLogger(__name__)

RETRY_PAUSE_SECONDS = 0.5

_POLICE_SELECTORS = [
    ("node", "police"), ("way", "police"), ("relation", "police"),
]
_HEALTH_SELECTORS = [
    ("node", "hospital"), ("way", "hospital"), ("relation", "hospital"),
    ("node", "clinic"), ("way", "clinic"), ("node", "doctors"),
]
_HEALTH_AMENITIES = {"hospital", "clinic", "doctors"}


def build_query(selectors: list[tuple[str, str]], bbox: tuple[float, float, float, float]) -> str:
    """Overpass QL for every (element type, amenity) pair inside *bbox*."""
    south, west, north, east = bbox
    lines = "\n".join(
        f'  {element}["amenity"="{amenity}"]({south},{west},{north},{east});'
        for element, amenity in selectors
    )
    return f"[out:json][timeout:15];\n(\n{lines}\n);\nout center;"


def _coords(element: dict) -> Optional[tuple[float, float]]:
    # Nodes carry lat/lon; ways and relations only a computed "center".
    lat = element.get("lat")
    lon = element.get("lon")
    if lat is None or lon is None:
        center = element.get("center") or {}
        lat, lon = center.get("lat"), center.get("lon")
    if lat is None or lon is None:
        return None
    return float(lat), float(lon)


def parse_elements(
    elements: list[dict[str, Any]],
    category: str,
    origin: tuple[float, float],
    max_meters: Optional[float] = None,
) -> list[NearbyPlace]:
    """
    Turn Overpass elements into NearbyPlace results, nearest first.

    The query asks for a bounding box, whose corners lie further out than
    the radius; *max_meters* drops what falls outside the circle.
    """
    places: list[NearbyPlace] = []
    for element in elements:
        tags = element.get("tags") or {}
        amenity = tags.get("amenity")
        if category == "police" and amenity != "police":
            continue
        if category == "hospital" and amenity not in _HEALTH_AMENITIES and not tags.get("healthcare"):
            continue
        coords = _coords(element)
        if coords is None:
            continue

        lat, lon = coords
        d = distance_meters(origin[0], origin[1], lat, lon)
        if max_meters is not None and d > max_meters:
            continue
        if category == "police":
            default_name = "Police Station"
            phone = tags.get("phone") or tags.get("contact:phone")
        else:
            default_name = "Medical Clinic" if amenity == "clinic" else "Hospital"
            phone = tags.get("phone") or tags.get("contact:phone") or tags.get("emergency")

        places.append(NearbyPlace(
            id=f"osm-{category}-{element.get('id')}",
            name=tags.get("name") or default_name,
            category=category,
            address=tags.get("addr:full") or tags.get("addr:street") or f"{lat:.4f}, {lon:.4f}",
            coordinates=Coordinates(lat=lat, lng=lon),
            phone=phone,
            distance_meters=d,
            distance=format_distance(d),
        ))

    places.sort(key=lambda p: p.distance_meters)
    return places


class OverpassClient:
    """Thin async wrapper around the Overpass interpreter endpoint."""

    def __init__(self) -> None:
        self.servers = settings.overpass_servers
        self.timeout = settings.overpass_timeout_seconds
        self.max_attempts = settings.overpass_max_attempts
        self.enabled = settings.overpass_enabled and bool(self.servers)

        if not self.enabled:
            logger.warning("Overpass lookups disabled; nearby police/hospital search returns nothing.")

    async def _fetch(self, query: str) -> Optional[dict[str, Any]]:
        """POST *query*, rotating servers. Returns None if every attempt failed."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            for attempt in range(self.max_attempts):
                server = self.servers[attempt % len(self.servers)]
                try:
                    response = await client.post(
                        server,
                        data={"data": query},
                        headers={"Content-Type": "application/x-www-form-urlencoded"},
                    )
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as exc:
                    logger.warning("Overpass %s returned HTTP %d", server, exc.response.status_code)
                except Exception as exc:
                    logger.warning("Overpass %s failed: %s", server, exc)
                if attempt < self.max_attempts - 1:
                    await asyncio.sleep(RETRY_PAUSE_SECONDS)

        logger.error("All Overpass servers failed after %d attempt(s)", self.max_attempts)
        return None

    async def _nearby(self, selectors, category: str, lat: float, lng: float, radius_km: float) -> list[NearbyPlace]:
        if not self.enabled:
            return []
        query = build_query(selectors, bounding_box(lat, lng, radius_km))
        data = await self._fetch(query)
        if data is None:
            return []
        places = parse_elements(data.get("elements", []), category, (lat, lng), max_meters=radius_km * 1000)
        logger.info("Overpass: %d %s result(s) within %.1f km", len(places), category, radius_km)
        return places

    async def police_stations(self, lat: float, lng: float, radius_km: float = 10.0) -> list[NearbyPlace]:
        return await self._nearby(_POLICE_SELECTORS, "police", lat, lng, radius_km)

    async def hospitals(self, lat: float, lng: float, radius_km: float = 10.0) -> list[NearbyPlace]:
        return await self._nearby(_HEALTH_SELECTORS, "hospital", lat, lng, radius_km)


# Module-level singleton
overpass_client = OverpassClient()
