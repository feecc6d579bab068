"""
Shared fixtures: a fresh in-memory database per test, service-level
sessions, and an HTTP client wired to the same database.
"""
import os
from typing import Optional

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("BCRYPT_SALT_ROUNDS", "4")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from app.db import build_engine, get_db, init_db
from app.models import Category
from app.task_service import create_task
from app.user_service import ensure_admin, register_user
from main import create_app


@pytest.fixture()
def engine():
    test_engine = build_engine("sqlite://")
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def client(session_factory):
    """
    TestClient without the lifespan, so startup never touches the
    configured database.
    """
    app = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture()
def make_user(db):
    counter = {"n": 0}

    def factory(name: Optional[str] = None, password: str = "secret123"):
        counter["n"] += 1
        name = name or f"user{counter['n']}"
        return register_user(db, {
            "name": name,
            "email": f"{name}@example.com",
            "password": password,
            "confirm_password": password,
        })

    return factory


@pytest.fixture()
def user(make_user):
    return make_user("alice")


@pytest.fixture()
def admin(db):
    return ensure_admin(db, "admin@example.com", "admin123", name="Admin")


@pytest.fixture()
def make_task(db):
    def factory(user_id: int, title: str = "Task", category=Category.NATURE, points=None, **extra):
        payload = {
            "title": title,
            "description": f"{title} description",
            "category": category,
            "points": points,
        }
        payload.update(extra)
        return create_task(db, user_id, payload)

    return factory


@pytest.fixture()
def login(client):
    """Log in through the API and return bearer headers."""
    def do_login(email: str, password: str) -> dict:
        response = client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return {"Authorization": f"Bearer {response.json()['data']['accessToken']}"}

    return do_login


@pytest.fixture()
def auth_headers(login, user):
    return login(user.email, "secret123")


@pytest.fixture()
def admin_headers(login, admin):
    return login(admin.email, "admin123")
