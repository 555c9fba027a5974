import os
import tempfile

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Use in-memory SQLite for tests by default, can be overridden via TEST_DATABASE_URL
TEST_DB_URL = os.getenv("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")

# Ensure the app uses SQLite during imports (fileshare.main creates tables in non-prod).
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("DATABASE_URL", TEST_DB_URL)
os.environ.setdefault("BLOB_STORAGE_PATH", tempfile.mkdtemp(prefix="fileshare-test-"))

from fileshare.main import create_app
from fileshare.core.rate_limit import reset_memory_counters
from fileshare.db.base import Base
from fileshare.db.session import get_db_session
from fileshare.services.blob_store import LocalBlobStore, get_blob_store


@pytest.fixture(scope="function")
def engine():
    # Important: in-memory SQLite needs StaticPool to keep the same DB across connections.
    kwargs = {"connect_args": {"check_same_thread": False}}
    if TEST_DB_URL.endswith(":memory:"):
        kwargs["poolclass"] = StaticPool
    eng = create_engine(TEST_DB_URL, **kwargs)
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(bind=eng)


@pytest.fixture(scope="function")
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "blobs", max_bytes=50 * 1024 * 1024)


@pytest.fixture(autouse=True)
def _clear_rate_limits():
    reset_memory_counters()
    yield
    reset_memory_counters()


@pytest.fixture(scope="function")
def client(db_session, blob_store):
    app = create_app()

    # Override the DB session dependency to use the test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    return TestClient(app)


def register_and_login(client, email: str = "owner@example.com", password: str = "password123", name: str = "Owner"):
    r = client.post("/auth/register", json={"email": email, "password": password, "name": name})
    assert r.status_code == 200
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def auth_headers(client):
    return register_and_login(client)


@pytest.fixture
def login(client):
    """Register and log in an additional user; returns their auth headers."""

    def _login(email: str, password: str = "password123", name: str = "User"):
        return register_and_login(client, email, password, name)

    return _login
