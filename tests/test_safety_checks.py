"""
test_safety_checks.py — Check-in timers end to end through the API.
"""

from datetime import datetime, timedelta, timezone

from conftest import add_contact, register

BASE = "/api/v1/safety-checks"


async def _start(api_client, headers, minutes=30, **extra):
    r = await api_client.post(BASE, json={"duration_minutes": minutes, **extra}, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def _parse(value):
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _expire(fake_db, session_id):
    """Move a stored session's deadline into the past."""
    fake_db["sessions"]._docs[session_id]["deadline"] = datetime.now(tz=timezone.utc) - timedelta(minutes=1)


class TestStart:
    async def test_start_returns_session_and_notification(self, api_client, user):
        data = await _start(api_client, user["headers"], minutes=45, notes="Walking home")
        session = data["session"]
        assert session["state"] == "active"
        assert session["kind"] == "safety_check"
        assert abs(session["duration_minutes"] - 45) < 0.01
        assert [r["name"] for r in session["recipients"]] == ["Mum"]

        note = data["notification"]
        assert note["kind"] == "created"
        assert note["sms_url"].startswith("sms:9876543210?body=")
        assert "Walking home" in note["message"]

    async def test_without_contacts_422(self, api_client):
        account = await register(api_client)
        r = await api_client.post(BASE, json={"duration_minutes": 30}, headers=account["headers"])
        assert r.status_code == 422
        assert r.json()["detail"] == "Add a trusted contact first"

    async def test_selected_contacts_only(self, api_client, user):
        dad = await add_contact(api_client, user["headers"], name="Dad", phone="9876543211")
        data = await _start(api_client, user["headers"], contact_ids=[dad["id"]])
        assert [r["name"] for r in data["session"]["recipients"]] == ["Dad"]

    async def test_zero_duration_422(self, api_client, user):
        r = await api_client.post(BASE, json={"duration_minutes": 0}, headers=user["headers"])
        assert r.status_code == 422

    async def test_persisted(self, api_client, user, fake_db):
        data = await _start(api_client, user["headers"])
        assert fake_db["sessions"].count() == 1
        r = await api_client.get(f"{BASE}/active", headers=user["headers"])
        assert [s["id"] for s in r.json()["sessions"]] == [data["session"]["id"]]


class TestTransitions:
    async def test_check_in(self, api_client, user):
        session = (await _start(api_client, user["headers"]))["session"]
        r = await api_client.post(f"{BASE}/{session['id']}/check-in", headers=user["headers"])
        assert r.status_code == 200
        assert r.json()["session"]["state"] == "resolved_safe"
        assert r.json()["notification"]["kind"] == "resolved"

        active = await api_client.get(f"{BASE}/active", headers=user["headers"])
        assert active.json()["sessions"] == []

    async def test_check_in_twice_409(self, api_client, user):
        session = (await _start(api_client, user["headers"]))["session"]
        await api_client.post(f"{BASE}/{session['id']}/check-in", headers=user["headers"])
        r = await api_client.post(f"{BASE}/{session['id']}/check-in", headers=user["headers"])
        assert r.status_code == 409
        assert "already resolved" in r.json()["detail"]

    async def test_cancel_sends_no_notification(self, api_client, user):
        session = (await _start(api_client, user["headers"]))["session"]
        r = await api_client.post(f"{BASE}/{session['id']}/cancel", headers=user["headers"])
        assert r.json()["session"]["state"] == "cancelled"
        assert r.json()["notification"] is None

    async def test_alert_now(self, api_client, user):
        session = (await _start(api_client, user["headers"]))["session"]
        r = await api_client.post(f"{BASE}/{session['id']}/alert", headers=user["headers"])
        data = r.json()
        assert data["session"]["state"] == "escalated"
        assert data["session"]["payload"]["escalation_reason"] == "manual"
        assert "has NOT checked in" in data["notification"]["message"]

    async def test_escalated_cannot_be_checked_in(self, api_client, user):
        session = (await _start(api_client, user["headers"]))["session"]
        await api_client.post(f"{BASE}/{session['id']}/alert", headers=user["headers"])
        r = await api_client.post(f"{BASE}/{session['id']}/check-in", headers=user["headers"])
        assert r.status_code == 409

    async def test_unknown_session_404(self, api_client, user):
        r = await api_client.post(f"{BASE}/665f1c2e9b1e8a0012345678/check-in", headers=user["headers"])
        assert r.status_code == 404

    async def test_other_users_session_404(self, api_client, user):
        session = (await _start(api_client, user["headers"]))["session"]
        other = await register(api_client, email="ravi@example.com", display_name="Ravi")
        r = await api_client.post(f"{BASE}/{session['id']}/check-in", headers=other["headers"])
        assert r.status_code == 404


class TestExtend:
    async def test_extend_moves_deadline(self, api_client, user):
        session = (await _start(api_client, user["headers"], minutes=30))["session"]
        r = await api_client.post(
            f"{BASE}/{session['id']}/extend", json={"additional_minutes": 15}, headers=user["headers"]
        )
        assert r.status_code == 200
        extended = r.json()["session"]
        before = _parse(session["deadline"])
        after = _parse(extended["deadline"])
        assert after - before == timedelta(minutes=15)
        assert abs(extended["duration_minutes"] - 45) < 0.01

    async def test_non_positive_extension_422(self, api_client, user):
        session = (await _start(api_client, user["headers"]))["session"]
        r = await api_client.post(
            f"{BASE}/{session['id']}/extend", json={"additional_minutes": 0}, headers=user["headers"]
        )
        assert r.status_code == 422

    async def test_extend_after_check_in_409(self, api_client, user):
        session = (await _start(api_client, user["headers"]))["session"]
        await api_client.post(f"{BASE}/{session['id']}/check-in", headers=user["headers"])
        r = await api_client.post(
            f"{BASE}/{session['id']}/extend", json={"additional_minutes": 10}, headers=user["headers"]
        )
        assert r.status_code == 409


class TestExpiry:
    async def test_active_read_escalates_expired(self, api_client, user, fake_db):
        expired = (await _start(api_client, user["headers"]))["session"]
        running = (await _start(api_client, user["headers"]))["session"]
        _expire(fake_db, expired["id"])

        r = await api_client.get(f"{BASE}/active", headers=user["headers"])
        data = r.json()
        assert data["escalated_ids"] == [expired["id"]]
        assert [s["id"] for s in data["sessions"]] == [running["id"]]

        stored = fake_db["sessions"]._docs[expired["id"]]
        assert stored["state"] == "escalated"
        assert stored["payload"]["escalation_reason"] == "deadline_missed"

    async def test_second_read_does_not_escalate_again(self, api_client, user, fake_db):
        expired = (await _start(api_client, user["headers"]))["session"]
        _expire(fake_db, expired["id"])
        await api_client.get(f"{BASE}/active", headers=user["headers"])
        r = await api_client.get(f"{BASE}/active", headers=user["headers"])
        assert r.json()["escalated_ids"] == []

    async def test_check_in_after_expiry_409(self, api_client, user, fake_db):
        expired = (await _start(api_client, user["headers"]))["session"]
        _expire(fake_db, expired["id"])
        await api_client.get(f"{BASE}/active", headers=user["headers"])
        r = await api_client.post(f"{BASE}/{expired['id']}/check-in", headers=user["headers"])
        assert r.status_code == 409


class TestHistory:
    async def test_statuses(self, api_client, user, fake_db):
        headers = user["headers"]
        ids = {}
        for name in ("completed", "cancelled", "alerted", "missed", "running"):
            ids[name] = (await _start(api_client, headers))["session"]["id"]

        await api_client.post(f"{BASE}/{ids['completed']}/check-in", headers=headers)
        await api_client.post(f"{BASE}/{ids['cancelled']}/cancel", headers=headers)
        await api_client.post(f"{BASE}/{ids['alerted']}/alert", headers=headers)
        _expire(fake_db, ids["missed"])
        await api_client.get(f"{BASE}/active", headers=headers)

        r = await api_client.get(f"{BASE}/history", headers=headers)
        assert r.status_code == 200
        statuses = {item["id"]: item["status"] for item in r.json()}
        assert statuses == {
            ids["completed"]: "completed",
            ids["cancelled"]: "cancelled",
            ids["alerted"]: "alerted",
            ids["missed"]: "missed",
        }

        completed = next(i for i in r.json() if i["id"] == ids["completed"])
        assert completed["checked_in_at"] is not None
        assert completed["contact_names"] == ["Mum"]

    async def test_window_excludes_older(self, api_client, user, fake_db):
        session = (await _start(api_client, user["headers"]))["session"]
        await api_client.post(f"{BASE}/{session['id']}/cancel", headers=user["headers"])
        fake_db["sessions"]._docs[session["id"]]["started_at"] = datetime.now(tz=timezone.utc) - timedelta(days=40)

        r = await api_client.get(f"{BASE}/history", headers=user["headers"])
        assert r.json() == []
        r = await api_client.get(f"{BASE}/history?days=60", headers=user["headers"])
        assert len(r.json()) == 1
