"""Shared test fixtures.

Tests run against an in-memory SQLite database (aiosqlite) with tables
created from the model metadata. The app's ``get_db`` dependency is
overridden so route handlers share the test session.
"""

import os
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-jwt")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("CERTIFICATE_CONFLICT_BACKOFF_SECONDS", "0")

import secad.models  # noqa: E402,F401
from secad.core.dependencies import get_db  # noqa: E402
from secad.db.base import Base  # noqa: E402
from secad.main import app  # noqa: E402
from secad.models.entity import Entity  # noqa: E402
from secad.models.user import User  # noqa: E402
from secad.services.certificate_numbering import certificate_number_allocator  # noqa: E402
from tests.helpers import seed_entity, seed_user_with_access  # noqa: E402


@pytest.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine) -> AsyncGenerator[AsyncSession, None]:
    """Async DB session with transaction rollback after each test."""
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client whose route handlers use the test session."""

    async def _test_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db

    app.dependency_overrides[get_db] = _test_get_db
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture(autouse=True)
def reset_certificate_cache():
    """The allocator singleton's cache must not leak between tests."""
    certificate_number_allocator.clear_cache()
    yield
    certificate_number_allocator.clear_cache()


@pytest.fixture
async def seed_entity_with_owner(db: AsyncSession) -> tuple[Entity, User]:
    entity = await seed_entity(db)
    user = await seed_user_with_access(db, entity, role="owner")
    return entity, user
