"""
pytest configuration and shared fixtures for the SafeHaven API tests.

Key concern: tests must not require a live MongoDB or network access.
We achieve this by:
  1. Patching connect_to_mongo / close_mongo_connection to no-ops so
     FastAPI's lifespan doesn't try to reach a real database.
  2. Setting db_client.client = None (disconnected) so health check
     correctly reports "disconnected", a valid test-mode state.
  3. Setting OVERPASS_ENABLED=false so nearby-place lookups never leave
     the process (tests that need results patch the client).
  4. Overriding get_db with an in-memory FakeDB for route tests.

httpx's ASGITransport does not run the app lifespan, so the expiry scan
scheduler stays stopped and no background tasks are created.
"""

import copy
import os
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from bson import ObjectId
from httpx import ASGITransport, AsyncClient

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("OVERPASS_ENABLED", "false")


# ── In-memory MongoDB emulator ─────────────────────────────────────────────────

def _matches_value(actual, condition) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$ne" and actual == operand:
                return False
            if op == "$in" and actual not in operand:
                return False
            if op == "$gte" and (actual is None or actual < operand):
                return False
            if op == "$lte" and (actual is None or actual > operand):
                return False
        return True
    return actual == condition


class FakeCursor:
    """Async-iterable result of FakeCollection.find()."""

    def __init__(self, docs: list[dict]):
        self._docs = docs

    def sort(self, key: str, direction: int = 1):
        self._docs.sort(key=lambda d: d.get(key), reverse=direction < 0)
        return self

    def limit(self, n: int):
        self._docs = self._docs[:n]
        return self

    def __aiter__(self):
        self._iter = iter(self._docs)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    """Minimal async-compatible replica of a Motor collection."""

    def __init__(self):
        self._docs: dict[str, dict] = {}

    @staticmethod
    def _matches(doc: dict, query: dict) -> bool:
        return all(_matches_value(doc.get(key), value) for key, value in query.items())

    def find(self, query: dict | None = None) -> FakeCursor:
        query = query or {}
        return FakeCursor([copy.deepcopy(d) for d in self._docs.values() if self._matches(d, query)])

    async def find_one(self, query: dict):
        for doc in self._docs.values():
            if self._matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def insert_one(self, doc: dict):
        oid = doc.get("_id") or ObjectId()
        self._docs[str(oid)] = copy.deepcopy({**doc, "_id": oid})
        return SimpleNamespace(inserted_id=oid)

    @staticmethod
    def _set(doc: dict, path: str, value) -> None:
        # "payload.battery_level" updates one key inside a sub-document
        *parents, leaf = path.split(".")
        for key in parents:
            doc = doc.setdefault(key, {})
        doc[leaf] = copy.deepcopy(value)

    @classmethod
    def _apply(cls, doc: dict, update: dict, inserting: bool = False) -> None:
        for path, value in update.get("$set", {}).items():
            cls._set(doc, path, value)
        for key, amount in update.get("$inc", {}).items():
            doc[key] = doc.get(key, 0) + amount
        if inserting:
            doc.update(copy.deepcopy(update.get("$setOnInsert", {})))

    async def update_one(self, query: dict, update: dict, upsert: bool = False):
        for doc in self._docs.values():
            if self._matches(doc, query):
                self._apply(doc, update)
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if upsert:
            new_doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            self._apply(new_doc, update, inserting=True)
            result = await self.insert_one(new_doc)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=result.inserted_id)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def update_many(self, query: dict, update: dict):
        count = 0
        for doc in self._docs.values():
            if self._matches(doc, query):
                self._apply(doc, update)
                count += 1
        return SimpleNamespace(matched_count=count, modified_count=count)

    async def delete_one(self, query: dict):
        for key, doc in list(self._docs.items()):
            if self._matches(doc, query):
                del self._docs[key]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def count(self) -> int:
        return len(self._docs)


class FakeDB:
    """Fake MongoDB database — lazily creates collections."""

    def __init__(self):
        self._cols: dict[str, FakeCollection] = {}

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self._cols:
            self._cols[name] = FakeCollection()
        return self._cols[name]


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
async def mock_db():
    """
    Patch the MongoDB lifecycle for every test.

    - connect_to_mongo → no-op AsyncMock (startup doesn't attempt real connection)
    - close_mongo_connection → no-op AsyncMock
    - db_client.client / db_client.db → None
    """
    with (
        patch("safehaven.core.database.connect_to_mongo", new_callable=AsyncMock),
        patch("safehaven.core.database.close_mongo_connection", new_callable=AsyncMock),
    ):
        import safehaven.core.database as db_module

        original_client = db_module.db_client.client
        original_db = db_module.db_client.db

        db_module.db_client.client = None
        db_module.db_client.db = None

        yield

        db_module.db_client.client = original_client
        db_module.db_client.db = original_db


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Rate-limit counters are in-memory and global; start every test clean."""
    from safehaven.core.rate_limit import limiter

    limiter.reset()
    yield


@pytest.fixture()
async def client(mock_db):  # noqa: ARG001 (mock_db must run first)
    """HTTPX client against the app with no database (degraded mode)."""
    from safehaven.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def fake_db():
    """Fresh in-memory DB for each test."""
    return FakeDB()


@pytest.fixture()
async def api_client(fake_db):
    """
    HTTPX client with the get_db FastAPI dependency overridden to use
    the in-memory FakeDB instead of a real MongoDB connection.
    """
    from safehaven.core.database import get_db
    from safehaven.main import app

    app.dependency_overrides[get_db] = lambda: fake_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Helpers ───────────────────────────────────────────────────────────────────

async def register(api_client, email: str = "asha@example.com", display_name: str = "Asha") -> dict:
    """Register a user; returns {"token", "user", "headers"}."""
    r = await api_client.post(
        "/auth/register",
        json={"email": email, "password": "securepass123", "display_name": display_name},
    )
    assert r.status_code == 201, r.text
    data = r.json()
    return {
        "token": data["access_token"],
        "user": data["user"],
        "headers": {"Authorization": f"Bearer {data['access_token']}"},
    }


async def add_contact(api_client, headers: dict, name: str = "Mum", phone: str = "9876543210", **extra) -> dict:
    r = await api_client.post(
        "/api/v1/contacts",
        json={"name": name, "phone_number": phone, **extra},
        headers=headers,
    )
    assert r.status_code == 201, r.text
    return r.json()


@pytest.fixture()
async def user(api_client) -> dict:
    """A registered user with one trusted contact."""
    account = await register(api_client)
    account["contact"] = await add_contact(api_client, account["headers"])
    return account


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)
