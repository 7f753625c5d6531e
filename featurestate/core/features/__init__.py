"""
Feature State Engine.

Decides whether a feature is active for a context, and mutates that state:
- Explicit activation with any JSON value
- Sticky percentage rollouts
- Weighted variant splits
- Scoped targeting with wildcards
- Prerequisites and cascades
- Transactions with automatic rollback
- Snapshots with retention
- Feature groups and time-window schedules

Usage Levels:

Level 1 - Simple check:
    from featurestate.core.features import ContextIdentity, FeatureService, MemoryFeatureStore

    service = FeatureService(MemoryFeatureStore())
    user = ContextIdentity("user", 42)

    await service.activate("new_dashboard", user)
    if await service.is_active("new_dashboard", user):
        ...

Level 2 - Rollouts and variants:
    service.define_rollout(RolloutSpec("new_search", percentage=25))
    service.define_variant("checkout_button", {"green": 50, "blue": 50})

    colour = await service.variant("checkout_button", user)

Level 3 - Scopes:
    await service.activate_in_scope(
        "reporting",
        FeatureScope("user", {"company_id": 10, "org_id": None}),
    )
    await service.is_active_in_scope("reporting", user, {"company_id": 10, "org_id": 3})

Level 4 - Dependencies and transactions:
    service.define_dependency(require("auth", "payment").before("checkout"))

    tx = service.transaction().activate(["auth", "payment", "checkout"])
    await tx.commit(user)

Level 5 - Groups and schedules:
    service.define_group("premium", ["analytics", "priority_support"])
    await service.activate_group("premium", user)

    await service.schedules.save("holiday_theme", user, start_at=start, end_at=end)
    await service.schedules.apply_all(user)

Level 6 - FastAPI:
    get_feature_definitions().define_rollout(RolloutSpec("beta", 10))

    @router.get("/beta", dependencies=[Depends(require_features("beta"))])
    async def beta(features: Features, ctx: FeatureContext):
        return await features.values(["beta", "theme"], ctx)
"""

from .errors import (
    FeatureError,
    InvalidSpecification,
    InvalidVariantWeights,
    UnsupportedContextType,
    MissingPrerequisites,
    StorageFailure,
    NotFound,
    SnapshotNotFound,
    GroupNotFound,
    ScheduleNotFound,
)

from .context import (
    ContextIdentity,
    ContextRegistry,
    FeatureContextable,
    resolve_context,
)

from .interfaces import (
    FeatureScope,
    ScopedRecord,
    VariantSpec,
    RolloutSpec,
    DependencySpec,
    Snapshot,
    FeatureStore,
    SnapshotRepository,
)

from .assignment import AssignmentEngine, BUCKET_SPACE
from .definitions import FeatureDefinitions
from .scope import ScopeMatcher
from .prerequisites import CascadeSpec, DependencyResolver, cascade, require
from .transaction import MutationTransaction, Operation, TransactionState
from .snapshots import SnapshotManager
from .schedules import SCHEDULES_FEATURE, Schedule, ScheduleManager
from .service import FeatureService

from .dependencies import (
    Features,
    FeatureContext,
    get_feature_definitions,
    get_feature_service,
    get_feature_store,
    get_feature_context,
    require_features,
    forbid_features,
)

from .backends import (
    DatabaseFeatureStore,
    DatabaseSnapshotRepository,
    MemoryFeatureStore,
    MemorySnapshotRepository,
)

__all__ = [
    # Errors
    "FeatureError",
    "InvalidSpecification",
    "InvalidVariantWeights",
    "UnsupportedContextType",
    "MissingPrerequisites",
    "StorageFailure",
    "NotFound",
    "SnapshotNotFound",
    "GroupNotFound",
    "ScheduleNotFound",
    # Context
    "ContextIdentity",
    "ContextRegistry",
    "FeatureContextable",
    "resolve_context",
    # Interfaces
    "FeatureScope",
    "ScopedRecord",
    "VariantSpec",
    "RolloutSpec",
    "DependencySpec",
    "Snapshot",
    "FeatureStore",
    "SnapshotRepository",
    # Engine
    "AssignmentEngine",
    "BUCKET_SPACE",
    "FeatureDefinitions",
    "ScopeMatcher",
    "CascadeSpec",
    "DependencyResolver",
    "cascade",
    "require",
    "MutationTransaction",
    "Operation",
    "TransactionState",
    "SnapshotManager",
    "SCHEDULES_FEATURE",
    "Schedule",
    "ScheduleManager",
    # Service
    "FeatureService",
    # Dependencies
    "Features",
    "FeatureContext",
    "get_feature_definitions",
    "get_feature_service",
    "get_feature_store",
    "get_feature_context",
    "require_features",
    "forbid_features",
    # Backends
    "DatabaseFeatureStore",
    "DatabaseSnapshotRepository",
    "MemoryFeatureStore",
    "MemorySnapshotRepository",
]
