"""
Feature Service - Main read/write entry point.

Ties the engine components to one FeatureStore:
- Read path: stored values, rollouts, variants, scoped values
- Write path: activation/deactivation with dependency gating and hooks
- Transactions, cascades and snapshots built on the write path
- Groups and time-window schedules
"""

from typing import Any, Iterable, Mapping

import structlog

from featurestate.core.config import FeatureSettings
from featurestate.core.hooks import FEATURE_ACTIVATED, FEATURE_DEACTIVATED, HookManager

from .assignment import AssignmentEngine
from .context import ContextIdentity, ContextRegistry, resolve_context
from .definitions import FeatureDefinitions
from .errors import InvalidSpecification
from .interfaces import (
    DependencySpec,
    FeatureScope,
    FeatureStore,
    RolloutSpec,
    SnapshotRepository,
    VariantSpec,
)
from .prerequisites import CascadeBuilder, CascadeSpec, DependencyResolver
from .schedules import ScheduleManager
from .scope import ScopeMatcher
from .snapshots import SnapshotManager
from .transaction import MutationTransaction

logger = structlog.get_logger()


def _as_list(features: str | Iterable[str]) -> list[str]:
    if isinstance(features, str):
        return [features]
    return list(features)


class FeatureService:
    """
    Feature state service.

    Read order for ``value()`` (first hit wins):
    1. Value stored for the context
    2. Defined rollout for the feature
    3. ``default_enabled``

    Variant, rollout, dependency and group definitions live in a
    ``FeatureDefinitions`` registry. Pass a shared one so that every
    service built for a request sees the same definitions.
    """

    def __init__(
        self,
        store: FeatureStore,
        snapshot_repository: SnapshotRepository | None = None,
        *,
        registry: ContextRegistry | None = None,
        definitions: FeatureDefinitions | None = None,
        hooks: HookManager | None = None,
        assignment: AssignmentEngine | None = None,
        default_enabled: bool = False,
        display_feature_in_exception: bool = False,
        snapshots_enabled: bool = True,
        snapshot_retention_days: int = 365,
        snapshot_chunk_size: int = 100,
        auto_snapshot: bool = False,
    ):
        self.store = store
        self.registry = registry or ContextRegistry()
        self.definitions = definitions or FeatureDefinitions()
        self.hooks = hooks or HookManager()
        self.assignment = assignment or AssignmentEngine()
        self.scopes = ScopeMatcher(store)
        self.resolver = DependencyResolver(
            self.is_active,
            display_names=display_feature_in_exception,
        )
        self.default_enabled = default_enabled

        self.schedules = ScheduleManager(self)

        self.snapshots: SnapshotManager | None = None
        if snapshot_repository is not None:
            self.snapshots = SnapshotManager(
                self,
                snapshot_repository,
                retention_days=snapshot_retention_days,
                chunk_size=snapshot_chunk_size,
                enabled=snapshots_enabled,
            )
            if auto_snapshot and snapshots_enabled:
                self.hooks.register(FEATURE_ACTIVATED, self.snapshots.auto_capture, source="snapshots")
                self.hooks.register(FEATURE_DEACTIVATED, self.snapshots.auto_capture, source="snapshots")

    @classmethod
    def from_settings(
        cls,
        store: FeatureStore,
        snapshot_repository: SnapshotRepository | None,
        settings: FeatureSettings,
        **kwargs: Any,
    ) -> "FeatureService":
        """Build a service configured from FEATURE_* settings."""
        return cls(
            store,
            snapshot_repository,
            default_enabled=settings.default_enabled,
            display_feature_in_exception=settings.display_feature_in_exception,
            snapshots_enabled=settings.snapshots_enabled,
            snapshot_retention_days=settings.snapshot_retention_days,
            snapshot_chunk_size=settings.snapshot_prune_chunk_size,
            auto_snapshot=settings.snapshots_auto_capture,
            **kwargs,
        )

    def resolve(self, context: Any) -> ContextIdentity:
        """Normalize any supported context into a ContextIdentity."""
        return resolve_context(context, self.registry)

    # ============================================================
    # READ PATH
    # ============================================================

    async def value(self, feature: str, context: Any) -> Any:
        """Current value of a feature for a context. Never raises for unknown features."""
        ctx = self.resolve(context)
        stored = await self.store.get(feature, ctx.kind, ctx.id)
        if stored is not None:
            return stored

        rollout = self.definitions.rollouts.get(feature)
        if rollout is not None:
            return self.assignment.rollout(rollout, ctx)

        return self.default_enabled

    async def is_active(self, feature: str, context: Any) -> bool:
        return bool(await self.value(feature, context))

    async def is_inactive(self, feature: str, context: Any) -> bool:
        return not await self.is_active(feature, context)

    async def all_active(self, features: Iterable[str], context: Any) -> bool:
        ctx = self.resolve(context)
        for feature in features:
            if not await self.is_active(feature, ctx):
                return False
        return True

    async def any_active(self, features: Iterable[str], context: Any) -> bool:
        ctx = self.resolve(context)
        for feature in features:
            if await self.is_active(feature, ctx):
                return True
        return False

    async def values(self, features: Iterable[str], context: Any) -> dict[str, Any]:
        ctx = self.resolve(context)
        return {feature: await self.value(feature, ctx) for feature in features}

    async def stored(self, context: Any) -> dict[str, Any]:
        """Raw stored values for a context, internal features included."""
        ctx = self.resolve(context)
        return await self.store.stored(ctx.kind, ctx.id)

    # ============================================================
    # WRITE PATH
    # ============================================================

    async def write(self, feature: str, context: Any, value: Any, *, gated: bool = True) -> None:
        """
        Store a value and fire the matching mutation hook.

        Truthy writes to a feature with registered prerequisites are gated
        unless ``gated`` is False (used by rollback and restore, which put
        back a previously consistent state).
        """
        ctx = self.resolve(context)

        if gated and value:
            prerequisites = self.definitions.prerequisites_of(feature)
            if prerequisites:
                await self.resolver.check(feature, prerequisites, ctx)

        await self.store.set(feature, ctx.kind, ctx.id, value)
        logger.debug("feature.written", feature=feature, kind=ctx.kind, id=ctx.id, active=bool(value))

        event = FEATURE_ACTIVATED if value else FEATURE_DEACTIVATED
        if self.hooks.has_hooks(event):
            await self.hooks.trigger(event, feature=feature, context=ctx, value=value)

    async def activate(self, features: str | Iterable[str], context: Any, value: Any = True) -> None:
        """Activate one or more features (optionally with a value)."""
        ctx = self.resolve(context)
        for feature in _as_list(features):
            await self.write(feature, ctx, value)

    async def deactivate(self, features: str | Iterable[str], context: Any) -> None:
        ctx = self.resolve(context)
        for feature in _as_list(features):
            await self.write(feature, ctx, False)

    async def forget(self, feature: str, context: Any) -> None:
        """Remove the stored value so the feature falls back to its default."""
        ctx = self.resolve(context)
        await self.store.forget(feature, ctx.kind, ctx.id)

    # ============================================================
    # VARIANTS
    # ============================================================

    def define_variant(self, feature: str, weights: Mapping[str, int]) -> VariantSpec:
        """
        Define a weighted variant split.

        Raises:
            InvalidVariantWeights: weights empty, negative or not summing to 100
        """
        return self.definitions.define_variant(feature, weights)

    def variant_spec(self, feature: str) -> VariantSpec | None:
        return self.definitions.variants.get(feature)

    async def variant(self, feature: str, context: Any) -> str | None:
        """
        Variant for a context, or None if the feature has no variant split.

        A stored (forced) variant wins over the computed one. Computed
        variants are not written back, so they follow weight changes.
        """
        spec = self.definitions.variants.get(feature)
        if spec is None:
            return None

        ctx = self.resolve(context)
        forced = await self.store.get(feature, ctx.kind, ctx.id)
        if isinstance(forced, str) and forced in spec.weights:
            return forced

        return self.assignment.variant(spec, ctx)

    async def use_variant(self, feature: str, variant: str, context: Any) -> None:
        """Force a variant for a context."""
        spec = self.definitions.variants.get(feature)
        if spec is None:
            raise InvalidSpecification(f"No variants defined for '{feature}'")
        if variant not in spec.weights:
            raise InvalidSpecification(f"Unknown variant '{variant}' for '{feature}'")
        await self.write(feature, context, variant)

    # ============================================================
    # ROLLOUTS
    # ============================================================

    def define_rollout(self, spec: RolloutSpec) -> RolloutSpec:
        """Use ``spec`` for reads of this feature when nothing is stored."""
        return self.definitions.define_rollout(spec)

    def rollout_spec(self, feature: str) -> RolloutSpec | None:
        return self.definitions.rollouts.get(feature)

    def in_rollout(self, spec: RolloutSpec, context: Any) -> bool:
        return self.assignment.rollout(spec, self.resolve(context))

    async def apply_rollout(self, spec: RolloutSpec, context: Any) -> bool:
        """
        Write the rollout decision to the store.

        Included contexts are activated; excluded contexts that are
        currently active are deactivated. Returns the decision.
        """
        ctx = self.resolve(context)
        included = self.assignment.rollout(spec, ctx)
        stored = await self.store.get(spec.feature, ctx.kind, ctx.id)

        if included and not stored:
            await self.write(spec.feature, ctx, True)
        elif not included and stored:
            await self.write(spec.feature, ctx, False)

        return included

    # ============================================================
    # SCOPES
    # ============================================================

    async def activate_in_scope(self, feature: str, scope: FeatureScope, value: Any = True) -> None:
        await self.store.set_scoped(feature, scope, value)
        logger.debug("feature.scoped_written", feature=feature, scope=scope.cache_key())

    async def deactivate_in_scope(self, feature: str, scope: FeatureScope) -> None:
        await self.store.set_scoped(feature, scope, False)

    async def forget_scope(self, feature: str, scope: FeatureScope) -> bool:
        return await self.store.forget_scoped(feature, scope)

    async def value_in_scope(
        self,
        feature: str,
        context: Any,
        scope: Mapping[str, Any],
        kind: str | None = None,
    ) -> Any | None:
        """
        Scope-aware read.

        A value stored directly for the context wins; otherwise the most
        specific matching scoped record. ``kind`` defaults to the context's.
        """
        ctx = self.resolve(context)
        direct = await self.store.get(feature, ctx.kind, ctx.id)
        if direct is not None:
            return direct
        return await self.scopes.resolve(feature, scope, kind or ctx.kind)

    async def is_active_in_scope(
        self,
        feature: str,
        context: Any,
        scope: Mapping[str, Any],
        kind: str | None = None,
    ) -> bool:
        return bool(await self.value_in_scope(feature, context, scope, kind))

    # ============================================================
    # DEPENDENCIES & CASCADES
    # ============================================================

    def define_dependency(self, spec: DependencySpec) -> DependencySpec:
        """Gate every future activation of ``spec.dependent``."""
        return self.definitions.define_dependency(spec)

    def prerequisites_of(self, feature: str) -> tuple[str, ...]:
        return self.definitions.prerequisites_of(feature)

    async def can_activate(self, feature: str, context: Any) -> bool:
        return await self.resolver.can_activate(
            feature, self.prerequisites_of(feature), self.resolve(context)
        )

    async def activate_with_prerequisites(
        self,
        dependent: str,
        prerequisites: Iterable[str],
        context: Any,
        value: Any = True,
    ) -> None:
        """
        Activate ``dependent`` only if all ``prerequisites`` are active.

        Raises:
            MissingPrerequisites: Lists every inactive prerequisite
        """
        ctx = self.resolve(context)
        await self.resolver.check(dependent, prerequisites, ctx)
        await self.write(dependent, ctx, value)

    async def apply_cascade(self, spec: CascadeSpec | CascadeBuilder, context: Any) -> MutationTransaction:
        """Run a cascade as one transaction, so a failure leaves nothing half-applied."""
        tx = self.transaction()
        for operation, feature in spec.steps():
            tx = tx.activate(feature) if operation == "activate" else tx.deactivate(feature)
        return await tx.commit(context)

    # ============================================================
    # GROUPS
    # ============================================================

    def define_group(self, name: str, features: Iterable[str]) -> tuple[str, ...]:
        return self.definitions.define_group(name, features)

    def group(self, name: str) -> tuple[str, ...]:
        """Members of a group. Raises GroupNotFound for undefined groups."""
        return self.definitions.group(name)

    async def activate_group(self, name: str, context: Any, value: Any = True) -> MutationTransaction:
        """
        Activate every member of a group as one transaction.

        Members are written in group order, each gated by its prerequisites;
        on failure the members already written are reverted.

        Raises:
            GroupNotFound: No group with this name
        """
        features = self.definitions.group(name)
        return await self.transaction().activate(features, value).commit(context)

    async def deactivate_group(self, name: str, context: Any) -> MutationTransaction:
        features = self.definitions.group(name)
        return await self.transaction().deactivate(features).commit(context)

    async def is_group_active(self, name: str, context: Any) -> bool:
        """True when every member is active. An empty group counts as active."""
        return await self.all_active(self.definitions.group(name), context)

    # ============================================================
    # TRANSACTIONS
    # ============================================================

    def transaction(self) -> MutationTransaction:
        """Start an empty transaction bound to this service."""
        return MutationTransaction(self)
