"""Fixtures compartidas: app sobre SQLite en memoria y un cliente de IA falso."""

# pylint: disable=redefined-outer-name

import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import build_engine, build_session_factory, init_db
from main import create_app
from models import User
from tests.helpers import FakeAIClient, register


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        secret_key="test-secret",
        ai_daily_limit=2,
        default_primary_limit=3,
    )


@pytest.fixture
def fake_ai() -> FakeAIClient:
    return FakeAIClient()


@pytest.fixture
def app(settings, fake_ai):
    return create_app(settings, ai_client=fake_ai)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers(client) -> dict:
    return register(client)


# ─── Sesión directa (tests de servicios sin HTTP) ───


@pytest.fixture
def db():
    engine = build_engine("sqlite://")
    init_db(engine)
    session = build_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def user(db) -> User:
    row = User(
        email="luis@example.com",
        password_hash="x",
        name="Luis",
        timezone="UTC",
        primary_task_limit=3,
        total_points=0,
        level=1,
    )
    db.add(row)
    db.commit()
    return row
