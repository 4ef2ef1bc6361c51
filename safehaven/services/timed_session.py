"""
timed_session.py — State machine for safety checks, SOS alerts and location shares.

Every feature that has "something running until the user says they're
safe, or until a deadline passes" goes through these functions:

    active ──resolve()──▶ resolved_safe
       │ ───cancel()───▶ cancelled       (false alarm / stopped sharing)
       └───escalate()──▶ escalated       (deadline missed or "alert now")

Terminal states are absorbing: any transition attempted on a terminal
session raises InvalidStateError and leaves the session untouched. An
escalation cannot be walked back; the all-clear after an escalation goes
through a fresh notification, not a state change.

All functions are pure. They take a TimedSession and return a new one
(model_copy), so a failed call never leaves a half-updated session behind.
Persistence lives in services/session_store.py.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from bson import ObjectId

from safehaven.core.errors import InvalidStateError, ValidationError
from safehaven.models.session import (
    GeoFix,
    Recipient,
    SessionKind,
    SessionState,
    TimedSession,
)
from safehaven.services.geo import SIGNIFICANT_MOVE_METERS, distance_meters

_KIND_LABELS = {
    SessionKind.SAFETY_CHECK.value: "safety check",
    SessionKind.SOS.value: "SOS alert",
    SessionKind.LOCATION_SHARE.value: "location share",
}

_STATE_LABELS = {
    SessionState.RESOLVED_SAFE.value: "resolved",
    SessionState.CANCELLED.value: "cancelled",
    SessionState.ESCALATED.value: "escalated",
}


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def kind_label(session: TimedSession) -> str:
    return _KIND_LABELS.get(session.kind, "session")


def _require_active(session: TimedSession, action: str) -> None:
    if not session.is_active:
        raise InvalidStateError(
            f"Cannot {action}: this {kind_label(session)} is already {_STATE_LABELS[session.state]}"
        )


# ── Creation ──────────────────────────────────────────────────────────────────

def create(
    owner_id: str,
    recipients: list[Recipient],
    kind: SessionKind,
    *,
    owner_name: str = "User",
    deadline: Optional[datetime] = None,
    initial_location: Optional[GeoFix] = None,
    payload: Optional[dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> TimedSession:
    """
    Start a new active session.

    Raises ValidationError when there is nobody to notify, or when the
    deadline is not in the future.
    """
    if not recipients:
        raise ValidationError("Add a trusted contact first")

    now = now or _utcnow()
    duration_minutes = None
    if deadline is not None:
        if deadline <= now:
            raise ValidationError("Deadline must be in the future")
        duration_minutes = (deadline - now).total_seconds() / 60

    return TimedSession(
        id=str(ObjectId()),
        owner_id=owner_id,
        owner_name=owner_name,
        kind=kind,
        recipients=list(recipients),
        started_at=now,
        deadline=deadline,
        duration_minutes=duration_minutes,
        state=SessionState.ACTIVE,
        initial_location=initial_location,
        last_location=initial_location,
        payload=dict(payload or {}),
    )


# ── Terminal transitions ──────────────────────────────────────────────────────

def _finish(
    session: TimedSession,
    state: SessionState,
    action: str,
    now: Optional[datetime],
    **extra: Any,
) -> TimedSession:
    _require_active(session, action)
    return session.model_copy(update={"state": state.value, "resolved_at": now or _utcnow(), **extra})


def resolve(session: TimedSession, now: Optional[datetime] = None) -> TimedSession:
    """The owner is safe (checked in / arrived / SOS resolved)."""
    return _finish(session, SessionState.RESOLVED_SAFE, "mark as safe", now)


def cancel(session: TimedSession, now: Optional[datetime] = None) -> TimedSession:
    """False alarm, or sharing stopped without a check-in."""
    return _finish(session, SessionState.CANCELLED, "cancel", now)


ESCALATION_MANUAL = "manual"
ESCALATION_DEADLINE_MISSED = "deadline_missed"


def escalate(
    session: TimedSession,
    now: Optional[datetime] = None,
    reason: str = ESCALATION_MANUAL,
) -> TimedSession:
    """Deadline missed, or the owner pressed "send alert now"."""
    payload = {**session.payload, "escalation_reason": reason}
    return _finish(session, SessionState.ESCALATED, "send an alert", now, payload=payload)


# ── Mutations while active ────────────────────────────────────────────────────

def extend_deadline(session: TimedSession, additional: timedelta) -> TimedSession:
    """
    Push the deadline forward by exactly *additional*.

    Order of checks: state first (InvalidStateError), then the amount
    (ValidationError), then whether there is a deadline to extend at all.
    """
    _require_active(session, "extend")
    if additional <= timedelta(0):
        raise ValidationError("Extension must be a positive amount of time")
    if session.deadline is None:
        raise InvalidStateError(f"This {kind_label(session)} has no deadline to extend")

    return session.model_copy(update={
        "deadline": session.deadline + additional,
        "duration_minutes": (session.duration_minutes or 0.0) + additional.total_seconds() / 60,
    })


def update_location(session: TimedSession, location: GeoFix) -> TimedSession:
    """
    Record the latest fix and re-evaluate moved_significantly.

    The flag only ever goes false → true. Without an initial location
    there is no reference point, so it stays false.
    """
    _require_active(session, "update the location")

    moved = session.moved_significantly
    start = session.initial_location
    if not moved and start is not None:
        moved = distance_meters(
            start.latitude, start.longitude, location.latitude, location.longitude
        ) > SIGNIFICANT_MOVE_METERS

    return session.model_copy(update={"last_location": location, "moved_significantly": moved})


def movement_flipped(before: TimedSession, after: TimedSession) -> bool:
    """True exactly once: on the update that first crossed the 500 m line."""
    return not before.moved_significantly and after.moved_significantly
