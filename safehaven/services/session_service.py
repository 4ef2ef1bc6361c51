"""
session_service.py — Feature-agnostic orchestration of timed sessions.

Safety checks, SOS alerts and location shares differ only in how a session
is created (deadline, payload) and in the wording of their messages. Every
other step is the same and lives here:

  load (owner-scoped, kind-checked)
    → pure transition (timed_session.py)
    → persist (SessionStore; each write is conditional on the session being active)
    → publish on the change feed
    → notification event, when the transition warrants one

The routes stay thin: they build the session, call one method, return the
SessionResponse.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from safehaven.core.errors import InvalidStateError, NotFoundError
from safehaven.models.session import (
    ActiveSessionsResponse,
    GeoFix,
    NotificationEvent,
    SessionKind,
    SessionResponse,
    TimedSession,
)
from safehaven.services import timed_session
from safehaven.services.change_feed import ChangeFeed, change_feed
from safehaven.services.expiry_scanner import ExpiryScanner, ScanScheduler, scan_scheduler
from safehaven.services.notifications import EventKind, Notifier, build_event, notifier
from safehaven.services.session_store import SessionStore

logger = logging.getLogger(__name__)

EXTEND_ATTEMPTS = 3


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SessionService:
    def __init__(
        self,
        db,
        *,
        notify: Optional[Notifier] = None,
        feed: Optional[ChangeFeed] = None,
        scheduler: Optional[ScanScheduler] = None,
    ) -> None:
        self.db = db
        self.store = SessionStore(db)
        self.notifier = notify or notifier
        self.feed = feed or change_feed
        self.scheduler = scheduler or scan_scheduler
        self.scanner = ExpiryScanner(self.store, self.notifier)

    # ── Internals ─────────────────────────────────────────────────────────────

    def _publish(self, action: str, session: TimedSession) -> None:
        self.feed.publish(session.owner_id, {
            "type": "session", "action": action,
            "session": session.model_dump(mode="json"),
        })

    def _event(self, kind: Optional[EventKind], session: TimedSession) -> Optional[NotificationEvent]:
        if kind is None:
            return None
        event = build_event(kind, session)
        self.notifier.notify(session.owner_id, event)
        return event

    async def get(self, owner_id: str, session_id: str, kind: SessionKind) -> TimedSession:
        session = await self.store.get(owner_id, session_id)
        if session.kind != kind.value:
            raise NotFoundError("Session not found")
        return session

    async def _transition(self, action, event: Optional[EventKind], owner_id, session_id, kind) -> SessionResponse:
        before = await self.get(owner_id, session_id, kind)
        after = action(before)
        if not await self.store.finish(after):
            raise InvalidStateError(f"This {timed_session.kind_label(after)} has already ended")
        logger.info("%s %s → %s", after.kind, after.id, after.state)
        self._publish(after.state, after)
        return SessionResponse(session=after, notification=self._event(event, after))

    # ── Operations ────────────────────────────────────────────────────────────

    async def start(self, session: TimedSession) -> SessionResponse:
        await self.store.insert(session)
        self._publish("created", session)
        if session.deadline is not None:
            self.scheduler.ensure_running(session.owner_id, self.db)
        return SessionResponse(session=session, notification=self._event("created", session))

    async def active(self, owner_id: str, kind: SessionKind, now: Optional[datetime] = None) -> ActiveSessionsResponse:
        """List active sessions of *kind*, escalating any that expired first."""
        escalated = await self.scanner.scan_owner(owner_id, now)
        sessions = await self.store.list_active(owner_id, kind)
        if any(s.deadline is not None for s in sessions):
            self.scheduler.ensure_running(owner_id, self.db)
        return ActiveSessionsResponse(sessions=sessions, escalated_ids=escalated)

    async def resolve(self, owner_id: str, session_id: str, kind: SessionKind) -> SessionResponse:
        return await self._transition(timed_session.resolve, "resolved", owner_id, session_id, kind)

    async def cancel(self, owner_id: str, session_id: str, kind: SessionKind) -> SessionResponse:
        return await self._transition(timed_session.cancel, None, owner_id, session_id, kind)

    async def escalate(self, owner_id: str, session_id: str, kind: SessionKind) -> SessionResponse:
        return await self._transition(timed_session.escalate, "escalated", owner_id, session_id, kind)

    async def extend(self, owner_id: str, session_id: str, kind: SessionKind, minutes: float) -> SessionResponse:
        """
        Push the deadline back by *minutes* from its stored value.

        Two extensions racing each other both count: the write only lands
        if the deadline is unchanged since it was read, otherwise we re-read
        and add to the newer value.
        """
        for _ in range(EXTEND_ATTEMPTS):
            before = await self.get(owner_id, session_id, kind)
            after = timed_session.extend_deadline(before, timedelta(minutes=minutes))
            if await self.store.move_deadline(before, after):
                break
        else:
            raise InvalidStateError("The deadline changed while extending; try again")

        logger.info("Extended %s %s by %.1f min (deadline %s)", after.kind, after.id, minutes, after.deadline)
        self._publish("extended", after)
        return SessionResponse(session=after)

    async def update_location(
        self,
        owner_id: str,
        session_id: str,
        kind: SessionKind,
        fix: GeoFix,
        battery_level: Optional[int] = None,
    ) -> SessionResponse:
        before = await self.get(owner_id, session_id, kind)
        candidate = timed_session.update_location(before, fix)

        # Trail first: if it fails nothing about the session has changed yet
        await self.store.append_update(candidate, fix, battery_level)
        if not await self.store.record_location(candidate, fix, battery_level):
            raise InvalidStateError(f"This {timed_session.kind_label(candidate)} has already ended")

        flipped = False
        if timed_session.movement_flipped(before, candidate):
            flipped = await self.store.mark_moved(candidate)

        # Re-read so fields written concurrently (a new deadline) are reported
        after = await self.store.get(owner_id, session_id)
        self._publish("location", after)

        event = None
        if flipped:
            logger.warning("%s %s: owner moved more than 500 m", after.kind, after.id)
            event = self._event("moved", after)
        return SessionResponse(session=after, notification=event)

    async def history(self, owner_id: str, kind: SessionKind, days: int) -> list[TimedSession]:
        return await self.store.list_history(owner_id, kind, _utcnow() - timedelta(days=days))
