import os
from datetime import datetime

# Configure the app for tests before anything from bizdash is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["OPENAI_API_KEY"] = ""
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from bizdash.auth import DemoIdentity, StoredIdentity, hash_password, issue_token  # noqa: E402
from bizdash.config import settings  # noqa: E402
from bizdash.database import Base, get_db  # noqa: E402
from bizdash.main import app  # noqa: E402
from bizdash.models import DataEntry, User  # noqa: E402

# In-memory SQLite database shared across connections via StaticPool.
TEST_DATABASE_URL = "sqlite://"

DEFAULT_PASSWORD = "Secret123"


engine_test = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine_test,
)


@pytest.fixture()
def db_session():
    """Provide a fresh test database session for each test.

    The schema is dropped and recreated for every test function,
    ensuring complete isolation between tests.
    """
    Base.metadata.drop_all(bind=engine_test)
    Base.metadata.create_all(bind=engine_test)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(db_session):
    """TestClient whose requests are served from the in-memory database."""

    def override_get_db():
        try:
            yield db_session
        finally:
            # Session cleanup is handled by the db_session fixture.
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture()
def user_factory(db_session):
    """Create users directly in the test database, bypassing the API."""

    def _create_user(
        email: str = "owner@example.com",
        name: str = "Owner Example",
        password: str = DEFAULT_PASSWORD,
        role: str = "user",
        is_active: bool = True,
    ) -> User:
        user = User(
            email=email,
            name=name,
            password_hash=hash_password(password),
            role=role,
            is_active=is_active,
            preferences={},
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture()
def auth_headers():
    """Bearer header for a stored user."""

    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {issue_token(StoredIdentity(user=user))}"}

    return _headers


@pytest.fixture()
def demo_headers():
    token = issue_token(DemoIdentity(email=settings.demo_email))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def entry_factory(db_session):
    """Insert data entries for a user without going through the API."""

    def _create_entry(user: User, **overrides) -> DataEntry:
        values = {
            "date": datetime(2024, 1, 15),
            "sales": 1000.0,
            "profit": 400.0,
            "category": "electronics",
            "description": None,
            "tags": [],
            "source": "manual",
        }
        values.update(overrides)
        entry = DataEntry(user_id=user.id, **values)
        db_session.add(entry)
        db_session.commit()
        db_session.refresh(entry)
        return entry

    return _create_entry
