import os

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

# In-memory DB and no demo data for tests
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["DATABASE_URL"] = ""
os.environ["STORE_BACKEND"] = "sql"
os.environ["SEED_DEMO_PATIENTS"] = "false"
os.environ["SUBMISSION_STATUS_MODE"] = "binary"
os.environ["NOTIFICATIONS_ENABLED"] = "true"

from checkin import config
from checkin.database import close_db, init_db
from checkin.main import app
from checkin.memory_store import InMemoryRecordStore
from checkin.repositories import SQLRecordStore, get_store


@pytest_asyncio.fixture
async def db():
    """Provide a fresh in-memory database for each test."""
    import checkin.database as db_mod
    import checkin.repositories as repo_mod

    # Close any existing connection
    if db_mod._db is not None:
        try:
            await db_mod._db.close()
        except Exception:
            pass
    db_mod._db = None
    repo_mod._store = None

    # Override module-level config directly (avoids fragile importlib.reload)
    db_mod.DATABASE_PATH = ":memory:"
    db_mod.DATABASE_URL = ""
    db_mod.SEED_DEMO_PATIENTS = False
    repo_mod.STORE_BACKEND = "sql"

    await init_db()
    database = await db_mod.get_db()
    yield database
    repo_mod._store = None
    await close_db()


@pytest_asyncio.fixture
async def store(db):
    """The SQL record store over the per-test database."""
    return await get_store()


@pytest.fixture
def memory_store():
    return InMemoryRecordStore()


@pytest_asyncio.fixture(params=["sql", "memory"])
async def any_store(request, db):
    """Run a test against both record store implementations."""
    if request.param == "memory":
        return InMemoryRecordStore()
    return SQLRecordStore(db)


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(config, "SUBMISSION_STATUS_MODE", "binary")
    monkeypatch.setattr(config, "DEBUG", False)


@pytest.fixture
def client(db):
    """Provide a synchronous TestClient for HTTP endpoint tests."""
    return TestClient(app)


@pytest_asyncio.fixture
async def async_client(db):
    """Provide an async httpx client for async HTTP tests."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def memory_client():
    """HTTP client wired to a fresh in-memory store instead of SQLite."""
    mem = InMemoryRecordStore()
    app.dependency_overrides[get_store] = lambda: mem
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            ac.store = mem
            yield ac
    finally:
        app.dependency_overrides.pop(get_store, None)


JOHN_DOE = {
    "first_name": "John",
    "last_name": "Doe",
    "date_of_birth": "1990-01-15",
    "address": "123 Main St",
    "phone": "555-123-4567",
    "email": "JOHN@EXAMPLE.COM",
}


@pytest.fixture
def john_doe():
    return dict(JOHN_DOE)


@pytest_asyncio.fixture
async def patient_id(async_client, john_doe):
    resp = await async_client.post("/api/patients", json=john_doe)
    assert resp.status_code == 201
    return resp.json()["data"]["id"]
