"""
test_stream.py — WebSocket session stream handshake and snapshot.

Uses Starlette's synchronous TestClient (not entered as a context manager,
so the lifespan and its scan scheduler never start). Live forwarding is
covered by test_change_feed.py.
"""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from safehaven.core.database import get_db
from safehaven.main import app

STREAM = "/api/v1/sessions/stream"


@pytest.fixture()
def ws_client(fake_db):
    app.dependency_overrides[get_db] = lambda: fake_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _signed_up(ws_client) -> str:
    r = ws_client.post("/auth/register", json={"email": "asha@example.com", "password": "securepass123"})
    token = r.json()["access_token"]
    headers = {"Authorization": f"Bearer {token}"}
    ws_client.post("/api/v1/contacts", json={"name": "Mum", "phone_number": "9876543210"}, headers=headers)
    return token


def test_rejects_invalid_token(ws_client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with ws_client.websocket_connect(f"{STREAM}?token=garbage"):
            pass
    assert exc.value.code == 1008


def test_rejects_missing_db():
    with pytest.raises(WebSocketDisconnect) as exc:
        with TestClient(app).websocket_connect(f"{STREAM}?token=anything"):
            pass
    assert exc.value.code == 1011


def test_snapshot_of_active_sessions(ws_client):
    token = _signed_up(ws_client)
    headers = {"Authorization": f"Bearer {token}"}
    started = ws_client.post("/api/v1/sos", json={}, headers=headers).json()["session"]
    ws_client.post("/api/v1/safety-checks", json={"duration_minutes": 20}, headers=headers)

    with ws_client.websocket_connect(f"{STREAM}?token={token}") as ws:
        message = ws.receive_json()

    assert message["type"] == "snapshot"
    assert {s["kind"] for s in message["sessions"]} == {"sos", "safety_check"}
    assert started["id"] in {s["id"] for s in message["sessions"]}
