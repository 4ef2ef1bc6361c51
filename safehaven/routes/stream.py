"""
stream.py — Push channel for session changes.

  WS /api/v1/sessions/stream?token=<JWT>

Browsers cannot set an Authorization header on a WebSocket handshake, so
the token travels as a query parameter. After accepting, the server sends
a snapshot of the caller's active sessions, then forwards every change-
feed message for that user:

  {"type": "snapshot",     "sessions": [...]}
  {"type": "session",      "action": "created" | "escalated" | ..., "session": {...}}
  {"type": "notification", "event": {...}}

An escalation by the expiry scanner therefore reaches an open client
immediately instead of on its next poll.
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from safehaven.core.database import get_db
from safehaven.routes.auth import user_from_token
from safehaven.services.change_feed import change_feed
from safehaven.services.session_store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/sessions", tags=["sessions"])


@router.websocket("/stream")
async def session_stream(websocket: WebSocket, token: str = "", db=Depends(get_db)):
    if db is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Database unavailable")
        return
    user = await user_from_token(token, db)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid or expired token")
        return

    await websocket.accept()
    async with change_feed.subscribe(user.id) as queue:
        sessions = await SessionStore(db).list_active(user.id)
        await websocket.send_json({
            "type": "snapshot",
            "sessions": [s.model_dump(mode="json") for s in sessions],
        })
        logger.info("Session stream opened for %s (%d active)", user.id, len(sessions))

        receiver = asyncio.create_task(_drain_client(websocket))
        try:
            while not receiver.done():
                getter = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait({getter, receiver}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    await websocket.send_json(getter.result())
                else:
                    getter.cancel()
        except WebSocketDisconnect:
            logger.debug("Client for %s disconnected mid-send", user.id)
        finally:
            receiver.cancel()
            logger.info("Session stream closed for %s", user.id)


async def _drain_client(websocket: WebSocket) -> None:
    """Read (and ignore) client frames until the socket closes."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
