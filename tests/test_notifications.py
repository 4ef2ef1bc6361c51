"""
test_notifications.py — Message rendering, SMS deep links and dispatch.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import unquote

import pytest

from safehaven.models.session import GeoFix, Recipient, SessionKind
from safehaven.services import timed_session
from safehaven.services.change_feed import ChangeFeed
from safehaven.services.notifications import (
    Notifier,
    build_event,
    duration_text,
    maps_link,
    sms_url,
)

NOW = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)
MUM = Recipient(id="c1", name="Mum", phone_number="+91 98765-43210")
DAD = Recipient(id="c2", name="Dad", phone_number="(987) 654-3211")
HERE = GeoFix(latitude=28.6139, longitude=77.209)


def _session(kind, deadline_in=None, **kwargs):
    deadline = NOW + deadline_in if deadline_in else None
    return timed_session.create(
        "user-1", [MUM, DAD], kind, owner_name="Asha", deadline=deadline, now=NOW, **kwargs
    )


class TestHelpers:
    def test_maps_link(self):
        assert maps_link(28.6139, 77.209) == "https://www.google.com/maps?q=28.6139,77.209"

    def test_sms_url_strips_formatting_and_encodes(self):
        url = sms_url([MUM, DAD], "Help me & hurry?")
        assert url.startswith("sms:+919876543210,9876543211?body=")
        body = url.split("?body=", 1)[1]
        assert " " not in body and "&" not in body
        assert unquote(body) == "Help me & hurry?"

    @pytest.mark.parametrize(
        "minutes, text",
        [(15, "15 minutes"), (59, "59 minutes"), (60, "1 hour"), (150, "2 hours"), (None, "an open-ended period")],
    )
    def test_duration_text(self, minutes, text):
        assert duration_text(minutes) == text


class TestSafetyCheckMessages:
    def test_created(self):
        s = _session(SessionKind.SAFETY_CHECK, timedelta(minutes=45), payload={"notes": "Walking home"})
        event = build_event("created", s)
        assert event.kind == "created"
        assert event.session_kind == SessionKind.SAFETY_CHECK
        assert "Safety Check Started by Asha" in event.message
        assert "45 minutes" in event.message
        assert "Walking home" in event.message
        assert [r.name for r in event.recipients] == ["Mum", "Dad"]

    def test_resolved(self):
        s = timed_session.resolve(_session(SessionKind.SAFETY_CHECK, timedelta(minutes=30)))
        assert "I'm Safe" in build_event("resolved", s).message

    def test_escalated_includes_last_location(self):
        s = _session(SessionKind.SAFETY_CHECK, timedelta(minutes=30), initial_location=HERE)
        message = build_event("escalated", timed_session.escalate(s)).message
        assert "has NOT checked in" in message
        assert maps_link(HERE.latitude, HERE.longitude) in message


class TestSOSMessages:
    def test_created_with_location_and_battery(self):
        s = _session(SessionKind.SOS, initial_location=HERE, payload={"battery_level": 42})
        message = build_event("created", s).message
        assert "EMERGENCY SOS ALERT" in message
        assert maps_link(HERE.latitude, HERE.longitude) in message
        assert "42%" in message

    def test_created_without_location_states_reason(self):
        s = _session(SessionKind.SOS, payload={"location_error": "permission_denied"})
        message = build_event("created", s).message
        assert "unavailable (permission denied)" in message
        assert "Battery: Unknown" in message

    def test_moved(self):
        s = _session(SessionKind.SOS, initial_location=HERE)
        assert "SOS LOCATION UPDATE" in build_event("moved", s).message

    def test_resolved(self):
        s = timed_session.resolve(_session(SessionKind.SOS))
        assert "ALL CLEAR" in build_event("resolved", s).message


class TestLocationShareMessages:
    def test_timed_share(self):
        s = _session(SessionKind.LOCATION_SHARE, timedelta(minutes=60), initial_location=HERE,
                     payload={"share_type": "timed"})
        message = build_event("created", s).message
        assert "for 1 hour (until 19:00 UTC)" in message

    def test_indefinite_share(self):
        s = _session(SessionKind.LOCATION_SHARE, initial_location=HERE, payload={"share_type": "indefinite"})
        assert "indefinitely" in build_event("created", s).message

    def test_until_arrival(self):
        s = _session(
            SessionKind.LOCATION_SHARE,
            initial_location=HERE,
            payload={"share_type": "until_arrival", "destination": {"name": "Home", "latitude": 1, "longitude": 2}},
        )
        assert "until I arrive at Home" in build_event("created", s).message
        assert "arrived safely at Home" in build_event("resolved", timed_session.resolve(s)).message

    def test_escalated(self):
        s = timed_session.escalate(_session(SessionKind.LOCATION_SHARE, timedelta(minutes=30)))
        assert "ended without a check-in" in build_event("escalated", s).message


class TestNotifier:
    async def test_publishes_to_owner_subscribers(self):
        feed = ChangeFeed()
        notifier = Notifier(feed)
        event = build_event("created", _session(SessionKind.SOS, initial_location=HERE))

        async with feed.subscribe("user-1") as queue:
            notifier.notify("user-1", event)
            message = queue.get_nowait()

        assert message["type"] == "notification"
        assert message["event"]["session_id"] == event.session_id
        assert message["event"]["sms_url"].startswith("sms:")

    async def test_other_owners_not_notified(self):
        feed = ChangeFeed()
        async with feed.subscribe("someone-else") as queue:
            Notifier(feed).notify("user-1", build_event("created", _session(SessionKind.SOS)))
            assert queue.empty()
