"""
FastAPI dependencies for feature state.

Usage:
    from featurestate.core.features import Features, require_features

    @router.get("/checkout", dependencies=[Depends(require_features("checkout"))])
    async def checkout(features: Features, ctx: FeatureContext):
        if await features.is_active("one_click", ctx):
            return one_click_checkout()
        return classic_checkout()

The default context comes from the ``X-Feature-Context`` header
("user:42"). Apps with their own auth override ``get_feature_context``
through ``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from featurestate.core.config import settings
from featurestate.models.database import get_db

from .backends.database import DatabaseFeatureStore, DatabaseSnapshotRepository
from .backends.memory import MemoryFeatureStore, MemorySnapshotRepository
from .context import ContextIdentity
from .definitions import FeatureDefinitions
from .errors import UnsupportedContextType
from .interfaces import FeatureStore, SnapshotRepository
from .service import FeatureService


# ============================================================
# STORE FACTORY
# ============================================================

# In-memory singletons (for development)
_memory_store: MemoryFeatureStore | None = None
_memory_snapshots: MemorySnapshotRepository | None = None


def get_memory_store() -> MemoryFeatureStore:
    """Get or create memory store singleton."""
    global _memory_store
    if _memory_store is None:
        _memory_store = MemoryFeatureStore()
    return _memory_store


def get_memory_snapshots() -> MemorySnapshotRepository:
    """Get or create memory snapshot repository singleton."""
    global _memory_snapshots
    if _memory_snapshots is None:
        _memory_snapshots = MemorySnapshotRepository()
    return _memory_snapshots


async def get_feature_store(
    db: AsyncSession = Depends(get_db),
) -> FeatureStore:
    """
    Get feature store based on configuration.

    Uses FEATURE_BACKEND setting:
    - "database": SQL tables (default, production)
    - "memory": In-memory (development/testing)
    """
    if settings.features.backend == "memory":
        return get_memory_store()
    return DatabaseFeatureStore(db)


async def get_snapshot_repository(
    db: AsyncSession = Depends(get_db),
) -> SnapshotRepository:
    if settings.features.backend == "memory":
        return get_memory_snapshots()
    return DatabaseSnapshotRepository(db)


# ============================================================
# FEATURE SERVICE DEPENDENCY
# ============================================================

# Definitions are process-wide; services are built per request
_definitions: FeatureDefinitions | None = None


def get_feature_definitions() -> FeatureDefinitions:
    """
    Get or create the definition registry singleton.

    Define rollouts, variants, prerequisites and groups here at startup:
        get_feature_definitions().define_rollout(RolloutSpec("new_search", 25))
    """
    global _definitions
    if _definitions is None:
        _definitions = FeatureDefinitions()
    return _definitions


async def get_feature_service(
    store: FeatureStore = Depends(get_feature_store),
    snapshots: SnapshotRepository = Depends(get_snapshot_repository),
    definitions: FeatureDefinitions = Depends(get_feature_definitions),
) -> FeatureService:
    """Get feature service instance."""
    return FeatureService.from_settings(store, snapshots, settings.features, definitions=definitions)


# Type alias for cleaner injection
Features = Annotated[FeatureService, Depends(get_feature_service)]


# ============================================================
# CONTEXT
# ============================================================

async def get_feature_context(
    x_feature_context: Annotated[str | None, Header()] = None,
) -> ContextIdentity:
    """
    Read the resolution context from the X-Feature-Context header.

    Raises 400 if the header is missing or not "kind:id".
    """
    if not x_feature_context:
        raise HTTPException(status_code=400, detail="Missing X-Feature-Context header")

    try:
        return ContextIdentity.parse(x_feature_context)
    except UnsupportedContextType as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


FeatureContext = Annotated[ContextIdentity, Depends(get_feature_context)]


# ============================================================
# GUARDS
# ============================================================

def require_features(
    *names: str,
    status_code: int = 404,
    detail: str | None = None,
):
    """
    Dependency factory: every named feature must be active.

    Disabled features answer 404 by default (the endpoint "doesn't exist"
    for this context); pass status_code=403 to make the denial explicit.

    Usage:
        @router.get("/beta", dependencies=[Depends(require_features("beta"))])
    """
    async def dependency(features: Features, ctx: FeatureContext) -> None:
        if not await features.all_active(names, ctx):
            raise HTTPException(
                status_code=status_code,
                detail=detail or "Not found",
            )

    return dependency


def forbid_features(
    *names: str,
    status_code: int = 403,
    detail: str | None = None,
):
    """Dependency factory: none of the named features may be active."""
    async def dependency(features: Features, ctx: FeatureContext) -> None:
        if await features.any_active(names, ctx):
            raise HTTPException(
                status_code=status_code,
                detail=detail or "Not available while a conflicting feature is active",
            )

    return dependency
