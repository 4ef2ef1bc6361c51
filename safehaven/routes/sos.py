"""
sos.py — Emergency SOS alerts.

Routes:
  POST /api/v1/sos                   — trigger an alert (10/minute)
  GET  /api/v1/sos/active            — active alerts
  POST /api/v1/sos/{id}/location     — live location update
  POST /api/v1/sos/{id}/resolve      — all clear
  POST /api/v1/sos/{id}/cancel       — false alarm, nobody notified
  POST /api/v1/sos/{id}/escalate     — re-alert contacts
  GET  /api/v1/sos/history?days=30   — finished alerts, newest first

An SOS has no deadline: it stays active until the owner resolves or
cancels it. A failed location fix never blocks the alert; the failure
kind is stored on the session and stated in the message instead.

Alarm sound, vibration and the countdown before triggering happen on the
device.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request, status

from safehaven.core.database import get_db, require_db
from safehaven.core.rate_limit import limiter
from safehaven.models.session import (
    ActiveSessionsResponse,
    CreateSOSRequest,
    LocationUpdateRequest,
    SessionKind,
    SessionResponse,
    TimedSession,
)
from safehaven.routes.auth import CurrentUser
from safehaven.services import timed_session
from safehaven.services.contacts import resolve_recipients
from safehaven.services.session_service import SessionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sos", tags=["sos"])

KIND = SessionKind.SOS


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def trigger_sos(request: Request, payload: CreateSOSRequest, current_user: CurrentUser, db=Depends(get_db)):
    """Start an SOS alert and return the message to send to every contact."""
    db = require_db(db)
    contact_ids = payload.contact_ids
    if contact_ids is None and current_user.preferences.selected_contact_ids:
        contact_ids = current_user.preferences.selected_contact_ids
    recipients = await resolve_recipients(db, current_user.id, contact_ids)

    battery = current_user.preferences.shared_battery(payload.battery_level)
    if payload.location is None:
        logger.warning(
            "SOS for %s without a location fix (%s)",
            current_user.id, payload.location_error or "not provided",
        )

    session = timed_session.create(
        current_user.id,
        recipients,
        KIND,
        owner_name=current_user.name_for_messages,
        initial_location=payload.location,
        payload={
            "mode": payload.mode,
            "battery_level": battery,
            "notes": payload.notes,
            "location_error": None if payload.location else payload.location_error,
        },
    )
    return await SessionService(db).start(session)


@router.get("/active", response_model=ActiveSessionsResponse)
async def active_sos(current_user: CurrentUser, db=Depends(get_db)):
    return await SessionService(require_db(db)).active(current_user.id, KIND)


@router.post("/{session_id}/location", response_model=SessionResponse)
async def update_sos_location(
    session_id: str,
    payload: LocationUpdateRequest,
    current_user: CurrentUser,
    db=Depends(get_db),
):
    """
    Record a new fix. The response carries a "moved" notification the first
    time the owner ends up more than 500 m from where the alert started.
    """
    battery = current_user.preferences.shared_battery(payload.battery_level)
    return await SessionService(require_db(db)).update_location(
        current_user.id, session_id, KIND, payload.location, battery
    )


@router.post("/{session_id}/resolve", response_model=SessionResponse)
async def resolve_sos(session_id: str, current_user: CurrentUser, db=Depends(get_db)):
    return await SessionService(require_db(db)).resolve(current_user.id, session_id, KIND)


@router.post("/{session_id}/cancel", response_model=SessionResponse)
async def cancel_sos(session_id: str, current_user: CurrentUser, db=Depends(get_db)):
    return await SessionService(require_db(db)).cancel(current_user.id, session_id, KIND)


@router.post("/{session_id}/escalate", response_model=SessionResponse)
async def escalate_sos(session_id: str, current_user: CurrentUser, db=Depends(get_db)):
    return await SessionService(require_db(db)).escalate(current_user.id, session_id, KIND)


@router.get("/history", response_model=list[TimedSession])
async def sos_history(
    current_user: CurrentUser,
    days: int = Query(default=30, ge=1, le=365),
    db=Depends(get_db),
):
    return await SessionService(require_db(db)).history(current_user.id, KIND, days)
