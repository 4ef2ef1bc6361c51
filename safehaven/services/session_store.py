"""
session_store.py — MongoDB persistence for TimedSession documents.

The state machine (timed_session.py) never touches the database; routes
and the expiry scanner go through SessionStore, which owns:

  - the document <-> model mapping (`_id` ObjectId <-> `id` str)
  - owner scoping (every read filters on owner_id)
  - conditional writes that only match while the session is active:

        update_one({"_id": oid, "state": "active", ...}, {"$set": {...}})

    matched_count == 0 means another caller got there first, so
    escalating the same session twice from two triggers is a no-op.

Driver failures surface as PersistenceError (HTTP 503).
"""

import logging
from datetime import datetime
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo.errors import PyMongoError

from safehaven.core.errors import NotFoundError, PersistenceError
from safehaven.models.session import GeoFix, SessionKind, SessionState, TimedSession
from safehaven.services.timed_session import kind_label

logger = logging.getLogger(__name__)

SESSIONS = "sessions"
SESSION_UPDATES = "session_updates"


def _oid(session_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(session_id)
    except (InvalidId, TypeError):
        return None


def to_document(session: TimedSession) -> dict:
    doc = session.model_dump(exclude={"id"})
    doc["_id"] = ObjectId(session.id)
    return doc


def from_document(doc: dict) -> TimedSession:
    data = {k: v for k, v in doc.items() if k != "_id"}
    return TimedSession(id=str(doc["_id"]), **data)


class SessionStore:
    """Owner-scoped reads and writes of the `sessions` collection."""

    def __init__(self, db) -> None:
        self.db = db

    @property
    def _sessions(self):
        return self.db[SESSIONS]

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get(self, owner_id: str, session_id: str) -> TimedSession:
        oid = _oid(session_id)
        if oid is None:
            raise NotFoundError("Session not found")
        try:
            doc = await self._sessions.find_one({"_id": oid, "owner_id": owner_id})
        except PyMongoError as exc:
            raise PersistenceError(f"Could not load session: {exc}") from exc
        if not doc:
            raise NotFoundError("Session not found")
        return from_document(doc)

    async def list_active(self, owner_id: str, kind: Optional[SessionKind] = None) -> list[TimedSession]:
        query = {"owner_id": owner_id, "state": SessionState.ACTIVE.value}
        if kind is not None:
            query["kind"] = kind.value
        return await self._find(query)

    async def list_history(self, owner_id: str, kind: SessionKind, since: datetime) -> list[TimedSession]:
        """Finished sessions of one kind started at or after *since*, newest first."""
        query = {
            "owner_id": owner_id,
            "kind": kind.value,
            "state": {"$ne": SessionState.ACTIVE.value},
            "started_at": {"$gte": since},
        }
        sessions = await self._find(query)
        sessions.sort(key=lambda s: s.started_at, reverse=True)
        return sessions

    async def owners_with_active_deadlines(self) -> set[str]:
        """Owners that have at least one active session with a deadline."""
        query = {"state": SessionState.ACTIVE.value, "deadline": {"$ne": None}}
        return {s.owner_id for s in await self._find(query)}

    async def _find(self, query: dict) -> list[TimedSession]:
        try:
            return [from_document(doc) async for doc in self._sessions.find(query)]
        except PyMongoError as exc:
            raise PersistenceError(f"Could not load sessions: {exc}") from exc

    # ── Writes ────────────────────────────────────────────────────────────────
    #
    # Every write below touches only the fields its operation owns, and only
    # while the stored session is still active. Concurrent requests on the
    # same session therefore never overwrite each other's fields.

    async def insert(self, session: TimedSession) -> TimedSession:
        try:
            await self._sessions.insert_one(to_document(session))
        except PyMongoError as exc:
            raise PersistenceError(f"Could not save {kind_label(session)}: {exc}") from exc
        logger.info("Created %s %s for %s", session.kind, session.id, session.owner_id)
        return session

    async def _update_active(self, session: TimedSession, update: dict, **match) -> bool:
        query = {
            "_id": ObjectId(session.id),
            "owner_id": session.owner_id,
            "state": SessionState.ACTIVE.value,
            **match,
        }
        try:
            result = await self._sessions.update_one(query, update)
        except PyMongoError as exc:
            raise PersistenceError(f"Could not update {kind_label(session)}: {exc}") from exc
        return result.matched_count == 1

    async def finish(self, after: TimedSession) -> bool:
        """
        Write a terminal transition only if the stored session is still active.

        Returns False when another writer already moved the session out of
        the active state; nothing is written in that case.
        """
        fields = {"state": after.state, "resolved_at": after.resolved_at}
        if "escalation_reason" in after.payload:
            fields["payload.escalation_reason"] = after.payload["escalation_reason"]
        return await self._update_active(after, {"$set": fields})

    async def move_deadline(self, before: TimedSession, after: TimedSession) -> bool:
        """
        Store after.deadline, provided the stored deadline is still the one
        *before* was read with. False means it changed (or the session ended)
        in the meantime.
        """
        return await self._update_active(
            after,
            {"$set": {"deadline": after.deadline, "duration_minutes": after.duration_minutes}},
            deadline=before.deadline,
        )

    async def record_location(
        self, session: TimedSession, fix: GeoFix, battery_level: Optional[int] = None
    ) -> bool:
        """Set last_location (and battery level). False if the session has ended."""
        fields = {"last_location": fix.model_dump()}
        if battery_level is not None:
            fields["payload.battery_level"] = battery_level
        return await self._update_active(session, {"$set": fields})

    async def mark_moved(self, session: TimedSession) -> bool:
        """
        Flip moved_significantly false → true.

        True only for the single caller whose write performed the flip.
        """
        return await self._update_active(
            session, {"$set": {"moved_significantly": True}}, moved_significantly=False
        )

    async def append_update(
        self, session: TimedSession, fix: GeoFix, battery_level: Optional[int] = None
    ) -> None:
        """Record one point of the location trail."""
        try:
            await self.db[SESSION_UPDATES].insert_one({
                "session_id": session.id,
                "owner_id": session.owner_id,
                "kind": session.kind,
                "location": fix.model_dump(),
                "battery_level": battery_level,
                "moved_significantly": session.moved_significantly,
                "timestamp": fix.captured_at,
            })
        except PyMongoError as exc:
            raise PersistenceError(f"Could not record location update: {exc}") from exc
