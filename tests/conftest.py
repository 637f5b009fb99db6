"""Shared fixtures: in-memory database, local storage and an authenticated test client."""

import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("RATE_LIMIT", "10000/minute")
os.environ.setdefault("FEATURE_FLAGS", '{"calendar_for_business": true}')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from bookinghub.auth.provider import AuthProvider
from bookinghub.auth.security import create_access_token
from bookinghub.db import Base, get_db
from bookinghub.main import app
from bookinghub.models.models import Profile
from bookinghub.routes.files import get_storage
from bookinghub.services import provisioning  # noqa: F401
from bookinghub.storage.local_provider import LocalStorageProvider


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage(tmp_path):
    return LocalStorageProvider(str(tmp_path / "storage"))


@pytest.fixture
def make_user(db):
    """Factory creating a confirmed user with the given role; returns the Profile."""

    def _make(email: str, role: str = "talent", first_name: str = "", last_name: str = "", password: str = "password123") -> Profile:
        user = AuthProvider(db).sign_up(email, password, metadata={
            "first_name": first_name,
            "last_name": last_name,
            "role": role,
            "created_by_admin": True,
        })
        return db.query(Profile).filter(Profile.user_id == user.id).one()

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin@example.com", "admin", "Ada", "Admin")


@pytest.fixture
def staff(make_user):
    return make_user("staff@example.com", "staff", "Sam", "Staff")


@pytest.fixture
def auth_headers():
    """Bearer headers for a profile."""

    def _headers(profile: Profile) -> dict:
        return {"Authorization": f"Bearer {create_access_token(str(profile.user_id), role=profile.role)}"}

    return _headers


@pytest.fixture
def client(db, storage):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_storage] = lambda: storage
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
