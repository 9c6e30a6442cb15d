import pytest
from fastapi.testclient import TestClient

from taskboard.config import Settings
from taskboard.db import User, build_engine, build_session_factory, init_db
from taskboard.main import create_app
from taskboard.storage import Storage


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    session = build_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage(session) -> Storage:
    return Storage(session)


@pytest.fixture
def owner(storage) -> User:
    with storage.transaction():
        user = storage.add(User(email="owner@example.com", name="Owner"))
    return user


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, DATABASE_URL="sqlite://", JWT_SECRET="test-secret", LOG_LEVEL="WARNING")


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as client:
        yield client


@pytest.fixture
def auth_headers(client, settings):
    resp = client.post(
        "/api/auth/login",
        json={"email": settings.ADMIN_EMAIL, "password": settings.ADMIN_PASSWORD},
    )
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['data']['token']}"}
