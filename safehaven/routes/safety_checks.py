"""
safety_checks.py — "Check on me if I don't check in by …" timers.

Routes:
  POST /api/v1/safety-checks                 — start a check (deadline = now + duration)
  GET  /api/v1/safety-checks/active          — active checks (expired ones escalate first)
  POST /api/v1/safety-checks/{id}/check-in   — I'm safe
  POST /api/v1/safety-checks/{id}/extend     — push the deadline forward
  POST /api/v1/safety-checks/{id}/cancel     — stop without notifying anyone
  POST /api/v1/safety-checks/{id}/alert      — notify contacts now
  GET  /api/v1/safety-checks/history?days=30 — finished checks, newest first

A missed deadline is escalated by the expiry scanner; the client learns
about it from the sessions stream or the next /active read.
"""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query, status

from safehaven.core.database import get_db, require_db
from safehaven.models.session import (
    ActiveSessionsResponse,
    CheckInHistoryItem,
    CreateSafetyCheckRequest,
    ExtendRequest,
    SessionKind,
    SessionResponse,
    SessionState,
    TimedSession,
)
from safehaven.routes.auth import CurrentUser
from safehaven.services import timed_session
from safehaven.services.contacts import resolve_recipients
from safehaven.services.session_service import SessionService

router = APIRouter(prefix="/api/v1/safety-checks", tags=["safety-checks"])

KIND = SessionKind.SAFETY_CHECK


def _history_status(session: TimedSession) -> str:
    if session.state == SessionState.RESOLVED_SAFE.value:
        return "completed"
    if session.state == SessionState.CANCELLED.value:
        return "cancelled"
    if session.payload.get("escalation_reason") == timed_session.ESCALATION_DEADLINE_MISSED:
        return "missed"
    return "alerted"


def _history_item(session: TimedSession) -> CheckInHistoryItem:
    return CheckInHistoryItem(
        id=session.id,
        started_at=session.started_at,
        deadline=session.deadline,
        checked_in_at=session.resolved_at if session.state == SessionState.RESOLVED_SAFE.value else None,
        status=_history_status(session),
        duration_minutes=session.duration_minutes or 0.0,
        contact_names=[r.name for r in session.recipients],
    )


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def start_safety_check(payload: CreateSafetyCheckRequest, current_user: CurrentUser, db=Depends(get_db)):
    db = require_db(db)
    recipients = await resolve_recipients(db, current_user.id, payload.contact_ids)

    now = datetime.now(tz=timezone.utc)
    session = timed_session.create(
        current_user.id,
        recipients,
        KIND,
        owner_name=current_user.name_for_messages,
        deadline=now + timedelta(minutes=payload.duration_minutes),
        initial_location=payload.location,
        payload={"notes": payload.notes},
        now=now,
    )
    return await SessionService(db).start(session)


@router.get("/active", response_model=ActiveSessionsResponse)
async def active_safety_checks(current_user: CurrentUser, db=Depends(get_db)):
    return await SessionService(require_db(db)).active(current_user.id, KIND)


@router.post("/{session_id}/check-in", response_model=SessionResponse)
async def check_in(session_id: str, current_user: CurrentUser, db=Depends(get_db)):
    return await SessionService(require_db(db)).resolve(current_user.id, session_id, KIND)


@router.post("/{session_id}/extend", response_model=SessionResponse)
async def extend_safety_check(
    session_id: str,
    payload: ExtendRequest,
    current_user: CurrentUser,
    db=Depends(get_db),
):
    return await SessionService(require_db(db)).extend(
        current_user.id, session_id, KIND, payload.additional_minutes
    )


@router.post("/{session_id}/cancel", response_model=SessionResponse)
async def cancel_safety_check(session_id: str, current_user: CurrentUser, db=Depends(get_db)):
    return await SessionService(require_db(db)).cancel(current_user.id, session_id, KIND)


@router.post("/{session_id}/alert", response_model=SessionResponse)
async def send_alert_now(session_id: str, current_user: CurrentUser, db=Depends(get_db)):
    return await SessionService(require_db(db)).escalate(current_user.id, session_id, KIND)


@router.get("/history", response_model=list[CheckInHistoryItem])
async def safety_check_history(
    current_user: CurrentUser,
    days: int = Query(default=30, ge=1, le=365),
    db=Depends(get_db),
):
    sessions = await SessionService(require_db(db)).history(current_user.id, KIND, days)
    return [_history_item(s) for s in sessions]
