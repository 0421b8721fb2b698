import sys
from pathlib import Path
from types import SimpleNamespace

# Ensure project root is on sys.path so `flavourly` imports without installing
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))  # noqa: E402

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from flavourly import app as app_module
from flavourly import crud, models
from flavourly.auth import Principal
from flavourly.db import Base
from flavourly.errors import ExternalCleanupError

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"
# Use StaticPool so the same in-memory database is shared across connections
engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


class FakeMediaStore:
    def __init__(self):
        self.deleted = []
        self.fail_urls = set()

    def delete(self, item):
        if item.url in self.fail_urls:
            raise ExternalCleanupError(item.url, "CDN unavailable")
        self.deleted.append(item)


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def media_store():
    return FakeMediaStore()


@pytest.fixture
def client(media_store):
    app_module.app.dependency_overrides[app_module.get_db] = override_get_db
    app_module.app.dependency_overrides[app_module.get_media_store] = lambda: media_store
    yield TestClient(app_module.app)
    app_module.app.dependency_overrides.clear()


def make_user(db, username, role=models.Role.RECIPE_DEVELOPER):
    user = models.User(
        username=username,
        email=f"{username}@example.com",
        password_hash="!",
        full_name=username.replace("_", " ").title(),
        role=role,
    )
    db.add(user)
    db.commit()
    token = crud.create_session(db, user.id)
    return SimpleNamespace(
        id=user.id,
        username=username,
        principal=Principal(user_id=user.id, role=role),
        headers={"Cookie": f"session_token={token}"},
    )


@pytest.fixture
def developer(db):
    return make_user(db, "chef_sarah")


@pytest.fixture
def other_developer(db):
    return make_user(db, "marcus_kitchen")


@pytest.fixture
def nutritionist(db):
    return make_user(db, "dr_nutrition", models.Role.NUTRITIONIST)


def recipe_payload(**overrides):
    payload = {
        "title": "Scrambled Eggs",
        "description": "Soft and creamy",
        "cookingTimeMinutes": 10,
        "servings": 2,
        "ingredients": [
            {"name": "Egg", "quantity": "2", "unit": "piece"},
            {"name": "Butter", "quantity": "1", "unit": "tbsp", "notes": "unsalted"},
        ],
        "steps": ["Crack eggs", "Whisk", "Cook gently"],
    }
    payload.update(overrides)
    return payload
