"""
session.py — Timed session schemas shared by safety checks, SOS alerts and
location shares.

One document shape covers all three features. The few fields only one
feature needs live in `payload`:

  safety_check    notes
  sos             mode ("silent" | "loud"), battery_level, notes, location_error
  location_share  share_type, destination, check_in_required, battery_level

MongoDB document shape (collection `sessions`):

  {
    "_id": ObjectId,
    "owner_id": "665f...",
    "kind": "safety_check",
    "state": "active",
    "recipients": [{"id": "...", "name": "Mum", "phone_number": "+91..."}],
    "started_at": ISODate, "deadline": ISODate | null,
    "initial_location": {...} | null, "last_location": {...} | null,
    "moved_significantly": false,
    ...
  }
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionState(str, Enum):
    ACTIVE = "active"
    RESOLVED_SAFE = "resolved_safe"
    CANCELLED = "cancelled"
    ESCALATED = "escalated"


# Plain string values: sessions carry their state as a str (use_enum_values).
TERMINAL_STATES = frozenset(
    s.value for s in (SessionState.RESOLVED_SAFE, SessionState.CANCELLED, SessionState.ESCALATED)
)


class SessionKind(str, Enum):
    SAFETY_CHECK = "safety_check"
    SOS = "sos"
    LOCATION_SHARE = "location_share"


class Recipient(BaseModel):
    """A trusted contact snapshot, frozen into the session at creation."""
    id: str
    name: str
    phone_number: str


class GeoFix(BaseModel):
    """One device location reading."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy_meters: float = Field(default=0.0, ge=0)
    captured_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))


class Destination(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class TimedSession(BaseModel):
    """
    An entity with a start time, an optional deadline and a terminal action.

    Enum fields are stored as their plain string values so the model can be
    written to MongoDB as-is.
    """

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str
    owner_id: str
    owner_name: str = "User"
    kind: SessionKind
    recipients: list[Recipient]
    started_at: datetime
    deadline: Optional[datetime] = None
    duration_minutes: Optional[float] = None
    state: SessionState = SessionState.ACTIVE
    resolved_at: Optional[datetime] = None
    initial_location: Optional[GeoFix] = None
    last_location: Optional[GeoFix] = None
    moved_significantly: bool = False
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


# ── Notification events ───────────────────────────────────────────────────────

class NotificationEvent(BaseModel):
    """
    "Notify recipients now". The client opens sms_url to pre-fill the
    message; the API never sends SMS itself.
    """
    kind: Literal["created", "resolved", "escalated", "moved"]
    session_id: str
    session_kind: SessionKind
    recipients: list[Recipient]
    message: str
    sms_url: str


class SessionResponse(BaseModel):
    """Body returned by every session-changing endpoint."""
    session: TimedSession
    notification: Optional[NotificationEvent] = None


class ActiveSessionsResponse(BaseModel):
    sessions: list[TimedSession]
    escalated_ids: list[str] = Field(default_factory=list)  # escalated by this read


# ── Requests ──────────────────────────────────────────────────────────────────

class ExtendRequest(BaseModel):
    additional_minutes: float  # must be > 0; checked by extend_deadline()


class LocationUpdateRequest(BaseModel):
    location: GeoFix
    battery_level: Optional[int] = Field(default=None, ge=0, le=100)


class CreateSafetyCheckRequest(BaseModel):
    duration_minutes: int = Field(..., ge=1, le=1440)
    contact_ids: Optional[list[str]] = None  # None = all contacts
    notes: Optional[str] = Field(default=None, max_length=300)
    location: Optional[GeoFix] = None


class CreateSOSRequest(BaseModel):
    mode: Literal["silent", "loud"] = "loud"
    contact_ids: Optional[list[str]] = None
    location: Optional[GeoFix] = None
    location_error: Optional[Literal["permission_denied", "unavailable", "timeout"]] = None
    battery_level: Optional[int] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = Field(default=None, max_length=300)


class CreateLocationShareRequest(BaseModel):
    share_type: Literal["timed", "until_arrival", "indefinite"] = "timed"
    duration_minutes: Optional[int] = Field(default=None, ge=1, le=1440)
    contact_ids: Optional[list[str]] = None
    destination: Optional[Destination] = None
    check_in_required: bool = False
    location: Optional[GeoFix] = None
    location_error: Optional[Literal["permission_denied", "unavailable", "timeout"]] = None
    battery_level: Optional[int] = Field(default=None, ge=0, le=100)


# ── History ───────────────────────────────────────────────────────────────────

class CheckInHistoryItem(BaseModel):
    id: str
    started_at: datetime
    deadline: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    status: Literal["completed", "missed", "alerted", "cancelled"]
    duration_minutes: float
    contact_names: list[str]


class ShareHistoryItem(BaseModel):
    id: str
    started_at: datetime
    ended_at: datetime
    duration_minutes: int  # actually elapsed, not planned
    share_type: str
    completed_successfully: bool
    checked_in: bool
    contact_names: list[str]
