"""
test_auth.py — Auth and preference routes against the in-memory FakeDB.
"""

from unittest.mock import AsyncMock, patch

from pymongo.errors import PyMongoError

from conftest import register

VALID_USER = {"email": "test@example.com", "password": "securepass123"}


async def _register(api_client, payload=None):
    return await api_client.post("/auth/register", json=payload or VALID_USER)


# ── Register ──────────────────────────────────────────────────────────────────

class TestRegister:
    async def test_register_success_201(self, api_client):
        r = await _register(api_client)
        assert r.status_code == 201

    async def test_register_returns_token_and_user(self, api_client):
        data = (await _register(api_client)).json()
        assert "access_token" in data
        assert data["token_type"] == "bearer"
        assert data["user"]["email"] == VALID_USER["email"]

    async def test_register_does_not_return_password(self, api_client):
        data = (await _register(api_client)).json()
        assert "password" not in data["user"]
        assert "hashed_password" not in data["user"]

    async def test_register_duplicate_email_409(self, api_client):
        await _register(api_client)
        r = await _register(api_client)
        assert r.status_code == 409
        assert "already exists" in r.json()["detail"].lower()

    async def test_register_with_display_name_and_phone(self, api_client):
        payload = {**VALID_USER, "display_name": "Asha", "phone_number": "9876543210"}
        user = (await _register(api_client, payload)).json()["user"]
        assert user["display_name"] == "Asha"
        assert user["phone_number"] == "9876543210"

    async def test_register_bad_phone_422(self, api_client):
        r = await _register(api_client, {**VALID_USER, "phone_number": "12345"})
        assert r.status_code == 422

    async def test_email_is_case_insensitive(self, api_client):
        await _register(api_client)
        r = await _register(api_client, {**VALID_USER, "email": "Test@Example.com"})
        assert r.status_code == 409
        login = await api_client.post("/auth/login", json={**VALID_USER, "email": "TEST@example.com"})
        assert login.status_code == 200

    async def test_register_short_password_422(self, api_client):
        r = await _register(api_client, {"email": "a@b.com", "password": "short"})
        assert r.status_code == 422

    async def test_register_invalid_email_422(self, api_client):
        r = await _register(api_client, {"email": "not-an-email", "password": "securepass123"})
        assert r.status_code == 422


# ── Login ─────────────────────────────────────────────────────────────────────

class TestLogin:
    async def test_login_success(self, api_client):
        await _register(api_client)
        r = await api_client.post("/auth/login", json=VALID_USER)
        assert r.status_code == 200
        assert "access_token" in r.json()

    async def test_login_wrong_password_401(self, api_client):
        await _register(api_client)
        r = await api_client.post(
            "/auth/login",
            json={"email": VALID_USER["email"], "password": "wrongpassword"},
        )
        assert r.status_code == 401

    async def test_login_unknown_email_401(self, api_client):
        r = await api_client.post("/auth/login", json={"email": "nobody@example.com", "password": "any"})
        assert r.status_code == 401


# ── /auth/me ──────────────────────────────────────────────────────────────────

class TestMe:
    async def test_me_requires_auth_401(self, api_client):
        r = await api_client.get("/auth/me")
        assert r.status_code == 401

    async def test_me_returns_user_with_valid_token(self, api_client):
        account = await register(api_client)
        r = await api_client.get("/auth/me", headers=account["headers"])
        assert r.status_code == 200
        assert r.json()["email"] == "asha@example.com"

    async def test_me_invalid_token_401(self, api_client):
        r = await api_client.get("/auth/me", headers={"Authorization": "Bearer garbage.token.here"})
        assert r.status_code == 401


# ── Preferences ───────────────────────────────────────────────────────────────

class TestPreferences:
    async def test_get_preferences_default(self, api_client):
        account = await register(api_client)
        r = await api_client.get("/users/preferences", headers=account["headers"])
        assert r.status_code == 200
        data = r.json()
        assert data["sos_mode"] == "loud"
        assert data["countdown_seconds"] == 5
        assert data["selected_contact_ids"] == []

    async def test_put_preferences_replaces(self, api_client):
        account = await register(api_client)
        new_prefs = {
            "sos_mode": "silent",
            "countdown_seconds": 0,
            "default_check_minutes": 60,
            "share_battery_level": False,
            "selected_contact_ids": [],
        }
        r = await api_client.put("/users/preferences", json=new_prefs, headers=account["headers"])
        assert r.status_code == 200
        assert r.json()["sos_mode"] == "silent"

        again = await api_client.get("/users/preferences", headers=account["headers"])
        assert again.json()["default_check_minutes"] == 60

    async def test_patch_preferences_partial(self, api_client):
        account = await register(api_client)
        r = await api_client.patch("/users/preferences", json={"sos_mode": "smart"}, headers=account["headers"])
        assert r.status_code == 200
        assert r.json()["sos_mode"] == "smart"
        assert r.json()["countdown_seconds"] == 5

    async def test_countdown_out_of_range_422(self, api_client):
        account = await register(api_client)
        r = await api_client.patch("/users/preferences", json={"countdown_seconds": 11}, headers=account["headers"])
        assert r.status_code == 422

    async def test_preferences_requires_auth(self, api_client):
        r = await api_client.get("/users/preferences")
        assert r.status_code == 401


# ── Database failures ─────────────────────────────────────────────────────────

class TestDatabaseFailures:
    async def test_login_driver_error_503(self, api_client, fake_db):
        with patch.object(fake_db["users"], "find_one", AsyncMock(side_effect=PyMongoError("down"))):
            r = await api_client.post("/auth/login", json=VALID_USER)
        assert r.status_code == 503
        assert r.json()["detail"] == "Database unavailable"
