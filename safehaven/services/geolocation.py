"""
geolocation.py — Device location failures reported by the client.

The browser's geolocation API fails in three distinct ways and the user
has to do something different for each (grant permission, move somewhere
with signal, wait and retry). Clients send the failure as a code:

    permission_denied | unavailable | timeout

Features then choose between a fallback origin (place browsing) and a
hard failure (starting a location share).
"""

import logging
from typing import Optional

from safehaven.core.config import settings
from safehaven.core.errors import LocationError, LocationErrorKind, ValidationError

logger = logging.getLogger(__name__)


def location_error_from_code(code: str) -> LocationError:
    try:
        kind = LocationErrorKind(code)
    except ValueError as exc:
        raise ValidationError(f"Unknown location error: {code}") from exc
    return LocationError(kind)


def origin_or_fallback(
    lat: Optional[float],
    lng: Optional[float],
    error_code: Optional[str] = None,
) -> tuple[Optional[tuple[float, float]], Optional[LocationError]]:
    """
    Resolve the origin used to sort places.

    - lat/lng given           → that point, no error
    - error_code given        → configured fallback point + the LocationError
    - neither                 → (None, None): no distance sorting
    """
    if lat is not None and lng is not None:
        return (lat, lng), None
    if error_code:
        error = location_error_from_code(error_code)
        logger.info("Location unavailable (%s); using fallback origin", error.kind.value)
        return (settings.fallback_latitude, settings.fallback_longitude), error
    return None, None
