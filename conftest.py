"""
Pytest configuration and shared fixtures.

app.main builds its module-level app from the environment at import time,
so a DATABASE_URL must exist before anything imports it. Each test then
builds its own app against a fresh SQLite file under tmp_path.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./guestbook-test.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

from app.config import Settings, get_settings
from app.storage import create_db_engine, create_session_factory, init_db

# Clear settings cache before any app imports to ensure test env vars are used
get_settings.cache_clear()


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "DATABASE_URL": f"sqlite:///{tmp_path / 'guestbook.db'}",
        "LOG_LEVEL": "WARNING",
        "ENVIRONMENT": "production",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def engine(settings):
    """Engine with the schema provisioned, disposed after the test."""
    engine = create_db_engine(settings)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    """Session for exercising the storage functions directly."""
    session = create_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(settings):
    """Test client for a fresh app; the lifespan provisions the schema."""
    from app.main import create_app

    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def dev_client(tmp_path):
    """Test client running in development mode (error details echoed)."""
    from app.main import create_app

    with TestClient(create_app(make_settings(tmp_path, ENVIRONMENT="development"))) as test_client:
        yield test_client
