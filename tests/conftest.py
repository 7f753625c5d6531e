"""
Pytest fixtures for testing.

Provides:
- In-memory store, snapshot repository and service
- A store that fails on chosen features (atomicity tests)
- Async SQLite database session for the database backend
- Test client for the FastAPI dependencies
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import Depends, FastAPI, HTTPException
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

import featurestate.core.features.models  # noqa: F401
from featurestate.core.features import (
    ContextIdentity,
    FeatureContext,
    FeatureDefinitions,
    Features,
    FeatureService,
    MemoryFeatureStore,
    MemorySnapshotRepository,
    MissingPrerequisites,
    StorageFailure,
    forbid_features,
    get_feature_definitions,
    get_feature_store,
    require_features,
)
from featurestate.core.features.dependencies import get_snapshot_repository
from featurestate.models.base import Base


# Test database URL (SQLite in-memory for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ============ Engine Fixtures ============


@pytest.fixture
def store() -> MemoryFeatureStore:
    return MemoryFeatureStore()


@pytest.fixture
def snapshot_repository() -> MemorySnapshotRepository:
    return MemorySnapshotRepository()


@pytest.fixture
def service(store: MemoryFeatureStore, snapshot_repository: MemorySnapshotRepository) -> FeatureService:
    return FeatureService(store, snapshot_repository)


@pytest.fixture
def definitions() -> FeatureDefinitions:
    return FeatureDefinitions()


@pytest.fixture
def user() -> ContextIdentity:
    return ContextIdentity("user", 42)


@pytest.fixture
def other_user() -> ContextIdentity:
    return ContextIdentity("user", 43)


# ============ Failure Injection ============


class FailingStore(MemoryFeatureStore):
    """Memory store whose writes to chosen features raise StorageFailure."""

    def __init__(self, fail_on=(), fail_forget: bool = False):
        super().__init__()
        self.fail_on = set(fail_on)
        self.fail_forget = fail_forget

    async def set(self, feature, kind, id, value):
        if feature in self.fail_on:
            raise StorageFailure("set", feature, ConnectionError("connection reset"))
        await super().set(feature, kind, id, value)

    async def forget(self, feature, kind, id):
        if self.fail_forget:
            raise StorageFailure("forget", feature)
        await super().forget(feature, kind, id)


@pytest.fixture
def failing_service():
    """Factory: failing_service("c") -> service whose store fails writing 'c'."""
    def factory(*fail_on: str, fail_forget: bool = False, **kwargs) -> FeatureService:
        return FeatureService(FailingStore(fail_on, fail_forget=fail_forget), **kwargs)
    return factory


# ============ Database Fixtures ============


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create database session with automatic rollback.

    Each test gets a fresh transaction that's rolled back after.
    """
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


# ============ HTTP Fixtures ============


def build_app() -> FastAPI:
    """Small app exercising the feature dependencies."""
    app = FastAPI()

    @app.get("/beta", dependencies=[Depends(require_features("beta"))])
    async def beta():
        return {"page": "beta"}

    @app.get("/reports", dependencies=[Depends(require_features("reports", "exports", status_code=403))])
    async def reports():
        return {"page": "reports"}

    @app.get("/legacy", dependencies=[Depends(forbid_features("new_ui"))])
    async def legacy():
        return {"page": "legacy"}

    @app.get("/features")
    async def features(features: Features, ctx: FeatureContext):
        return await features.values(["beta", "theme"], ctx)

    @app.post("/features/{feature}")
    async def activate(feature: str, features: Features, ctx: FeatureContext):
        try:
            await features.activate(feature, ctx)
        except MissingPrerequisites as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        return {"activated": feature}

    return app


@pytest_asyncio.fixture(scope="function")
async def client(
    store: MemoryFeatureStore,
    snapshot_repository: MemorySnapshotRepository,
    definitions: FeatureDefinitions,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Test client with the feature store and definitions overridden by fixtures.
    """
    app = build_app()
    app.dependency_overrides[get_feature_store] = lambda: store
    app.dependency_overrides[get_snapshot_repository] = lambda: snapshot_repository
    app.dependency_overrides[get_feature_definitions] = lambda: definitions

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()
