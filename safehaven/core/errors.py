"""
errors.py — Domain error taxonomy.

Services raise these; main.py registers one exception handler per class
so routes never have to translate them by hand:

  ValidationError    → 422  caller supplied invalid input
  InvalidStateError  → 409  session is not in the state the operation needs
  NotFoundError      → 404  document missing or not owned by the caller
  LocationError      → 422  device geolocation failed (kind preserved)
  PersistenceError   → 503  MongoDB read/write failed or DB unavailable

Messages are user-facing ("Add a trusted contact first"), so keep them
short and actionable.
"""

from enum import Enum


class SafeHavenError(Exception):
    """Base class for every domain error raised by the services layer."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(SafeHavenError):
    status_code = 422


class InvalidStateError(SafeHavenError):
    status_code = 409


class NotFoundError(SafeHavenError):
    status_code = 404


class PersistenceError(SafeHavenError):
    status_code = 503


class LocationErrorKind(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


# The user action differs per kind, so each gets its own wording.
LOCATION_ERROR_MESSAGES = {
    LocationErrorKind.PERMISSION_DENIED: "Location permission denied. Please enable location access.",
    LocationErrorKind.UNAVAILABLE: "Location information unavailable",
    LocationErrorKind.TIMEOUT: "Location request timed out",
}


class LocationError(SafeHavenError):
    status_code = 422

    def __init__(self, kind: LocationErrorKind, message: str | None = None) -> None:
        super().__init__(message or LOCATION_ERROR_MESSAGES[kind])
        self.kind = kind
