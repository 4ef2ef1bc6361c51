"""
location_shares.py — Live location sharing with trusted contacts.

Routes:
  POST /api/v1/location-shares                  — start sharing
  GET  /api/v1/location-shares/active           — active shares
  POST /api/v1/location-shares/{id}/location    — live location update
  POST /api/v1/location-shares/{id}/check-in    — arrived safely (ends the share)
  POST /api/v1/location-shares/{id}/stop        — stop sharing without checking in
  POST /api/v1/location-shares/{id}/extend      — more time on a timed share
  GET  /api/v1/location-shares/history?days=7   — finished shares, newest first

share_type:
  timed          deadline = now + duration_minutes (required)
  until_arrival  no deadline; ends with check-in at the destination
  indefinite     no deadline; ends with stop / check-in

Sharing needs a position, so unlike SOS a reported location failure is a
hard error (422 with the failure kind).
"""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query, status

from safehaven.core.database import get_db, require_db
from safehaven.core.errors import LocationError, LocationErrorKind, ValidationError
from safehaven.models.session import (
    ActiveSessionsResponse,
    CreateLocationShareRequest,
    ExtendRequest,
    LocationUpdateRequest,
    SessionKind,
    SessionResponse,
    SessionState,
    ShareHistoryItem,
    TimedSession,
)
from safehaven.routes.auth import CurrentUser
from safehaven.services import timed_session
from safehaven.services.contacts import resolve_recipients
from safehaven.services.geolocation import location_error_from_code
from safehaven.services.session_service import SessionService

router = APIRouter(prefix="/api/v1/location-shares", tags=["location-shares"])

KIND = SessionKind.LOCATION_SHARE


def _history_item(session: TimedSession) -> ShareHistoryItem:
    ended_at = session.resolved_at or session.started_at
    checked_in = session.state == SessionState.RESOLVED_SAFE.value
    return ShareHistoryItem(
        id=session.id,
        started_at=session.started_at,
        ended_at=ended_at,
        duration_minutes=int((ended_at - session.started_at).total_seconds() // 60),
        share_type=session.payload.get("share_type", "timed"),
        completed_successfully=checked_in or session.state == SessionState.CANCELLED.value,
        checked_in=checked_in,
        contact_names=[r.name for r in session.recipients],
    )


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def start_location_share(payload: CreateLocationShareRequest, current_user: CurrentUser, db=Depends(get_db)):
    db = require_db(db)

    if payload.location is None:
        if payload.location_error:
            raise location_error_from_code(payload.location_error)
        raise LocationError(LocationErrorKind.UNAVAILABLE)
    if payload.share_type == "timed" and payload.duration_minutes is None:
        raise ValidationError("Choose how long to share your location for")
    if payload.share_type == "until_arrival" and payload.destination is None:
        raise ValidationError("Choose a destination to share until arrival")

    recipients = await resolve_recipients(db, current_user.id, payload.contact_ids)

    now = datetime.now(tz=timezone.utc)
    deadline = None
    if payload.share_type == "timed":
        deadline = now + timedelta(minutes=payload.duration_minutes)

    battery = current_user.preferences.shared_battery(payload.battery_level)
    session = timed_session.create(
        current_user.id,
        recipients,
        KIND,
        owner_name=current_user.name_for_messages,
        deadline=deadline,
        initial_location=payload.location,
        payload={
            "share_type": payload.share_type,
            "destination": payload.destination.model_dump() if payload.destination else None,
            "check_in_required": payload.check_in_required,
            "battery_level": battery,
        },
        now=now,
    )
    return await SessionService(db).start(session)


@router.get("/active", response_model=ActiveSessionsResponse)
async def active_location_shares(current_user: CurrentUser, db=Depends(get_db)):
    return await SessionService(require_db(db)).active(current_user.id, KIND)


@router.post("/{session_id}/location", response_model=SessionResponse)
async def update_share_location(
    session_id: str,
    payload: LocationUpdateRequest,
    current_user: CurrentUser,
    db=Depends(get_db),
):
    battery = current_user.preferences.shared_battery(payload.battery_level)
    return await SessionService(require_db(db)).update_location(
        current_user.id, session_id, KIND, payload.location, battery
    )


@router.post("/{session_id}/check-in", response_model=SessionResponse)
async def check_in_share(session_id: str, current_user: CurrentUser, db=Depends(get_db)):
    return await SessionService(require_db(db)).resolve(current_user.id, session_id, KIND)


@router.post("/{session_id}/stop", response_model=SessionResponse)
async def stop_share(session_id: str, current_user: CurrentUser, db=Depends(get_db)):
    return await SessionService(require_db(db)).cancel(current_user.id, session_id, KIND)


@router.post("/{session_id}/extend", response_model=SessionResponse)
async def extend_share(
    session_id: str,
    payload: ExtendRequest,
    current_user: CurrentUser,
    db=Depends(get_db),
):
    return await SessionService(require_db(db)).extend(
        current_user.id, session_id, KIND, payload.additional_minutes
    )


@router.get("/history", response_model=list[ShareHistoryItem])
async def share_history(
    current_user: CurrentUser,
    days: int = Query(default=7, ge=1, le=365),
    db=Depends(get_db),
):
    sessions = await SessionService(require_db(db)).history(current_user.id, KIND, days)
    return [_history_item(s) for s in sessions]
