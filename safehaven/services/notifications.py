"""
notifications.py — What to tell trusted contacts, and when.

The API decides *that* recipients must be told something (session
created, resolved, escalated, owner moved >500 m) and renders the text.
Delivery stays on the user's device: every NotificationEvent carries an
`sms:` deep link which the web client opens to pre-fill the SMS app.

Events are published on the change feed so an open client picks up
escalations that happened server-side (missed deadlines) without polling.

Message templates per session kind:

  kind            created   resolved   escalated   moved
  safety_check      ✓          ✓           ✓          ✓
  sos               ✓          ✓           ✓          ✓
  location_share    ✓          ✓           ✓          ✓
"""

import logging
import re
from typing import Literal, Optional
from urllib.parse import quote

from safehaven.models.session import (
    GeoFix,
    NotificationEvent,
    Recipient,
    SessionKind,
    TimedSession,
)
from safehaven.services.change_feed import ChangeFeed, change_feed

logger = logging.getLogger(__name__)

EventKind = Literal["created", "resolved", "escalated", "moved"]


# ── Formatting helpers ────────────────────────────────────────────────────────

def maps_link(latitude: float, longitude: float) -> str:
    return f"https://www.google.com/maps?q={latitude},{longitude}"


def sms_url(recipients: list[Recipient], message: str) -> str:
    phones = ",".join(re.sub(r"[\s\-()]", "", r.phone_number) for r in recipients)
    return f"sms:{phones}?body={quote(message, safe='')}"


def duration_text(minutes: Optional[float]) -> str:
    """'45 minutes', '1 hour', '3 hours'."""
    if not minutes:
        return "an open-ended period"
    minutes = int(round(minutes))
    if minutes < 60:
        return f"{minutes} minutes"
    hours = minutes // 60
    return f"{hours} hour{'s' if hours >= 2 else ''}"


def _location_block(fix: Optional[GeoFix], label: str) -> str:
    if fix is None:
        return ""
    return f"\n\n📍 {label}:\n{maps_link(fix.latitude, fix.longitude)}"


def _notes_block(session: TimedSession) -> str:
    notes = session.payload.get("notes")
    return f"\n\nNote: {notes}" if notes else ""


# ── Templates ─────────────────────────────────────────────────────────────────

def _safety_check_message(kind: EventKind, s: TimedSession) -> str:
    name = s.owner_name
    if kind == "created":
        return (
            f"Safety Check Started by {name}\n\n"
            f"I've started a safety check for {duration_text(s.duration_minutes)}. "
            "I'll check in when I'm safe. If you don't hear from me, please check on me."
            + _notes_block(s)
        )
    if kind == "resolved":
        return f"✅ Safety Check - I'm Safe!\n\n{name} has checked in and confirmed they are safe. No need to worry!"
    if kind == "moved":
        return (
            f"Safety Check update: {name} has moved more than 500 m from where the check started."
            + _location_block(s.last_location, "Latest location")
        )
    return (
        f"🚨 SAFETY CHECK ALERT 🚨\n\n{name} has NOT checked in as expected!\n\n"
        "Please try to contact them immediately."
        + _location_block(s.last_location, "Last known location")
    )


def _sos_message(kind: EventKind, s: TimedSession) -> str:
    name = s.owner_name
    if kind == "created":
        if s.last_location is not None:
            where = _location_block(s.last_location, "Location")
        else:
            reason = s.payload.get("location_error") or "unavailable"
            where = f"\n\n📍 Location: unavailable ({reason.replace('_', ' ')})"
        battery = s.payload.get("battery_level")
        battery_text = f"{battery}%" if battery is not None else "Unknown"
        return (
            f"🚨 EMERGENCY SOS ALERT 🚨\n\n{name} has triggered an EMERGENCY alert!"
            + where
            + f"\n\n🔋 Battery: {battery_text}\n\n"
            "This is URGENT. Please check on them immediately!"
            + _notes_block(s)
            + "\n\nReply or call back NOW."
        )
    if kind == "moved":
        return (
            f"🚨 SOS LOCATION UPDATE\n\n{name} has moved to a new location!"
            + _location_block(s.last_location, "New Location")
            + "\n\nPlease continue monitoring."
        )
    if kind == "resolved":
        return (
            f"✅ SOS RESOLVED - ALL CLEAR\n\n{name} has marked themselves as SAFE.\n\n"
            "The emergency is over. No further action needed."
        )
    return (
        f"🚨 SOS ESCALATED 🚨\n\n{name} still needs help. Call them now and, "
        "if you cannot reach them, contact emergency services."
        + _location_block(s.last_location, "Last known location")
    )


def _location_share_message(kind: EventKind, s: TimedSession) -> str:
    name = s.owner_name
    destination = s.payload.get("destination") or {}
    if kind == "created":
        if s.deadline is not None:
            timing = f"for {duration_text(s.duration_minutes)} (until {s.deadline:%H:%M} UTC)"
        elif s.payload.get("share_type") == "until_arrival" and destination:
            timing = f"until I arrive at {destination.get('name')}"
        else:
            timing = "indefinitely"
        return (
            f"🚨 SAFETY ALERT from {name}\n\nI'm sharing my live location with you {timing}."
            + _location_block(s.last_location, "Current Location")
            + "\n\nPlease keep track of my location. Reply if you receive this message."
        )
    if kind == "resolved":
        where = f" at {destination.get('name')}" if destination else ""
        return f"✅ {name} has arrived safely{where}. Location sharing has ended."
    if kind == "moved":
        return (
            f"{name} has moved more than 500 m since they started sharing their location."
            + _location_block(s.last_location, "Latest location")
        )
    return (
        f"🚨 {name}'s location share ended without a check-in.\n\nPlease check on them."
        + _location_block(s.last_location, "Last known location")
    )


_TEMPLATES = {
    SessionKind.SAFETY_CHECK.value: _safety_check_message,
    SessionKind.SOS.value: _sos_message,
    SessionKind.LOCATION_SHARE.value: _location_share_message,
}


def build_event(kind: EventKind, session: TimedSession) -> NotificationEvent:
    message = _TEMPLATES[session.kind](kind, session)
    return NotificationEvent(
        kind=kind,
        session_id=session.id,
        session_kind=session.kind,
        recipients=session.recipients,
        message=message,
        sms_url=sms_url(session.recipients, message),
    )


# ── Dispatch ──────────────────────────────────────────────────────────────────

class Notifier:
    """Hands notification events to whoever is listening for the owner."""

    def __init__(self, feed: ChangeFeed) -> None:
        self.feed = feed

    def notify(self, owner_id: str, event: NotificationEvent) -> None:
        delivered = self.feed.publish(
            owner_id, {"type": "notification", "event": event.model_dump(mode="json")}
        )
        logger.info(
            "Notification %s for %s %s → %d recipient(s), %d live client(s)",
            event.kind, event.session_kind.value, event.session_id,
            len(event.recipients), delivered,
        )


# Module-level singleton
notifier = Notifier(change_feed)
