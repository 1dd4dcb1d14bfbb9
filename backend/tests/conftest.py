"""Pytest configuration and fixtures."""

import os

# Settings are read at import time, so the test environment must be in place
# before any app module is imported
os.environ["DEBUG"] = "true"
os.environ["SECRET_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["OTEL_ENABLED"] = "false"

from collections.abc import AsyncGenerator, Generator
from datetime import UTC, date, datetime, timedelta
from typing import Any

import pytest
from app.core.database import get_db
from app.core.security import hash_password
from app.main import app
from app.models import Base, User
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tests.helpers.types import UserFactory

pytest_plugins = ["tests.fixtures.otel"]

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """
    Fresh in-memory SQLite database per test.

    StaticPool keeps the single connection alive so every session sees the
    same in-memory database. Tables come from the model metadata; the Alembic
    revision is exercised separately in test_migrations.py.

    Yields:
        Async engine bound to an empty schema
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """
    Database session for one test.

    Configured like the application's session factory so commits, rollbacks
    and IntegrityErrors behave the same way they do in production.

    Yields:
        Async SQLAlchemy session
    """
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
async def async_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient]:
    """
    Async HTTP client whose requests share the test's database session.

    Args:
        db_session: Database session fixture

    Yields:
        Async HTTP client configured for testing
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def client() -> Generator[TestClient]:
    """
    FastAPI synchronous test client.

    Runs the application lifespan, which skips database validation in DEBUG.

    Yields:
        Synchronous test client with app context
    """
    with TestClient(app) as test_client:
        yield test_client


# ==================== Test data ====================


@pytest.fixture
def make_user(db_session: AsyncSession) -> UserFactory:
    """
    Factory persisting users directly through the ORM.

    Each call gets a distinct email and CPF unless given explicitly, and a
    ``created_at`` one minute after the previous call so listing order is
    deterministic.

    Returns:
        Async callable accepting User column overrides
    """
    counter = 0
    base_time = datetime(2024, 1, 1, tzinfo=UTC)

    async def _make_user(**overrides: Any) -> User:  # noqa: ANN401
        nonlocal counter
        counter += 1
        fields: dict[str, Any] = {
            "name": f"User {counter:02d}",
            "email": f"user{counter:02d}@example.com",
            "password": hash_password("secret1"),
            "cpf": f"{counter:011d}",
            "phone": "11999999999",
            "birth_date": date(1990, 1, 1),
            "created_at": base_time + timedelta(minutes=counter),
            "updated_at": base_time + timedelta(minutes=counter),
        }
        fields.update(overrides)
        user = User(**fields)
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _make_user
