"""
expiry_scanner.py — Escalate sessions whose deadline has passed.

Two triggers call ExpiryScanner.scan():

  1. On read: every "list my active sessions" endpoint scans the owner's
     sessions once before answering.
  2. On a timer: ScanScheduler runs one asyncio task per owner with
     active deadlined sessions, scanning every
     settings.expiry_scan_interval_seconds. A task ends by itself once
     its owner has nothing left to watch.

Both can hit the same session at the same moment (or two API workers
can). Escalation therefore goes through SessionStore.finish,
which only writes while the stored state is still "active": the loser of
the race sees matched_count == 0 and reports nothing.

ScanScheduler is an async context manager entered by the app lifespan.
Leaving it cancels every task, so no periodic work outlives the app.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from safehaven.core.config import settings
from safehaven.models.session import TimedSession
from safehaven.services import timed_session
from safehaven.services.change_feed import change_feed
from safehaven.services.notifications import Notifier, build_event, notifier
from safehaven.services.session_store import SessionStore

logger = logging.getLogger(__name__)


def find_expired(sessions: Iterable[TimedSession], now: datetime) -> list[TimedSession]:
    """Active sessions whose deadline is at or before *now*."""
    return [
        s for s in sessions
        if s.is_active and s.deadline is not None and s.deadline <= now
    ]


class ExpiryScanner:
    def __init__(self, store: SessionStore, notify: Optional[Notifier] = None) -> None:
        self.store = store
        self.notifier = notify or notifier

    async def scan(self, sessions: Iterable[TimedSession], now: Optional[datetime] = None) -> list[str]:
        """
        Escalate every expired session exactly once.

        Returns the ids this call transitioned. A session that fails to
        persist is logged and skipped; the rest of the batch still runs.
        """
        now = now or datetime.now(tz=timezone.utc)
        escalated: list[str] = []

        for session in find_expired(sessions, now):
            after = timed_session.escalate(session, now, reason=timed_session.ESCALATION_DEADLINE_MISSED)
            try:
                written = await self.store.finish(after)
            except Exception as exc:
                logger.error("Escalation of %s %s failed: %s", session.kind, session.id, exc)
                continue
            if not written:
                logger.debug("Session %s already closed by another caller", session.id)
                continue

            logger.warning(
                "Deadline missed, escalated %s %s (owner %s)",
                session.kind, session.id, session.owner_id,
            )
            escalated.append(session.id)
            change_feed.publish(session.owner_id, {
                "type": "session", "action": "escalated",
                "session": after.model_dump(mode="json"),
            })
            self.notifier.notify(session.owner_id, build_event("escalated", after))

        return escalated

    async def scan_owner(self, owner_id: str, now: Optional[datetime] = None) -> list[str]:
        return await self.scan(await self.store.list_active(owner_id), now)


class ScanScheduler:
    """
    Per-owner periodic scanning.

        async with scan_scheduler.running(db):
            ...  # app serves requests
        # every scan task is cancelled here

    ensure_running() is a no-op outside that block, so request handlers
    can call it unconditionally (including under test clients that never
    run the lifespan).
    """

    def __init__(self, interval_seconds: Optional[float] = None) -> None:
        self.interval_seconds = interval_seconds or settings.expiry_scan_interval_seconds
        self._tasks: dict[str, asyncio.Task] = {}
        # Owners that got a new deadline while their task was mid-scan
        self._rescan: set[str] = set()
        self._db = None
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started

    @property
    def active_owners(self) -> set[str]:
        return {owner for owner, task in self._tasks.items() if not task.done()}

    def running(self, db) -> "ScanScheduler":
        self._db = db
        return self

    async def __aenter__(self) -> "ScanScheduler":
        self._started = True
        if self._db is not None:
            try:
                owners = await SessionStore(self._db).owners_with_active_deadlines()
            except Exception as exc:
                logger.warning("Could not resume expiry scanning: %s", exc)
                owners = set()
            for owner_id in owners:
                self.ensure_running(owner_id, self._db)
            logger.info("Expiry scanner started (%d owner(s) resumed)", len(owners))
        return self

    async def __aexit__(self, *exc_info) -> None:
        self._started = False
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._rescan.clear()
        logger.info("Expiry scanner stopped (%d task(s) cancelled)", len(tasks))

    def ensure_running(self, owner_id: str, db) -> None:
        """Start the periodic scan for *owner_id* unless one is already running."""
        if not self._started or db is None:
            return
        task = self._tasks.get(owner_id)
        if task is not None and not task.done():
            # Its last query may predate this deadline; keep it alive one more round
            self._rescan.add(owner_id)
            return
        self._tasks[owner_id] = asyncio.create_task(
            self._run(owner_id, db), name=f"expiry-scan-{owner_id}"
        )

    async def _run(self, owner_id: str, db) -> None:
        scanner = ExpiryScanner(SessionStore(db))
        try:
            while True:
                await asyncio.sleep(self.interval_seconds)
                self._rescan.discard(owner_id)
                try:
                    sessions = await scanner.store.list_active(owner_id)
                    await scanner.scan(sessions)
                    remaining = await scanner.store.list_active(owner_id)
                except Exception as exc:
                    logger.error("Expiry scan for %s failed: %s", owner_id, exc)
                    continue
                if owner_id in self._rescan:
                    continue
                if not any(s.deadline is not None for s in remaining):
                    logger.debug("No deadlined sessions left for %s; scan task ending", owner_id)
                    return
        finally:
            if self._tasks.get(owner_id) is asyncio.current_task():
                del self._tasks[owner_id]


# Module-level singleton
scan_scheduler = ScanScheduler()
