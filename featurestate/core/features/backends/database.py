"""
Database backend for feature state and snapshots.

Uses SQLAlchemy async sessions (PostgreSQL in production, SQLite in tests).
Changes are flushed, not committed: the session owner decides when to
commit, as with the get_db dependency.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import Executable, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from featurestate.utils.timezone import ensure_utc

from ..errors import StorageFailure
from ..interfaces import FeatureScope, FeatureStore, ScopedRecord, Snapshot, SnapshotRepository
from ..models import FeatureSnapshotModel, FeatureValueModel, ScopedFeatureValueModel


class _SessionMixin:
    db: AsyncSession

    async def _execute(self, operation: str, stmt: Executable, feature: str | None = None):
        """Execute a statement, translating driver errors into StorageFailure."""
        try:
            return await self.db.execute(stmt)
        except SQLAlchemyError as e:
            raise StorageFailure(operation, feature, e) from e

    async def _flush(self, operation: str, feature: str | None = None) -> None:
        try:
            await self.db.flush()
        except SQLAlchemyError as e:
            raise StorageFailure(operation, feature, e) from e


class DatabaseFeatureStore(_SessionMixin, FeatureStore):
    """
    SQL-backed feature value storage.

    One row per (feature, kind, id) in feature_values; scoped values live
    in feature_scoped_values.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ============================================================
    # PER-CONTEXT VALUES
    # ============================================================

    def _value_query(self, feature: str, kind: str, id: str):
        return select(FeatureValueModel).where(
            FeatureValueModel.feature == feature,
            FeatureValueModel.context_kind == kind,
            FeatureValueModel.context_id == id,
        )

    async def get(self, feature: str, kind: str, id: str) -> Any | None:
        result = await self._execute("get", self._value_query(feature, kind, id), feature)
        model = result.scalar_one_or_none()

        if not model:
            return None

        return model.value

    async def set(self, feature: str, kind: str, id: str, value: Any) -> None:
        """Store a value (upsert)."""
        result = await self._execute("set", self._value_query(feature, kind, id), feature)
        model = result.scalar_one_or_none()

        if model:
            model.value = value
        else:
            model = FeatureValueModel(
                feature=feature,
                context_kind=kind,
                context_id=id,
                value=value,
            )
            self.db.add(model)

        await self._flush("set", feature)

    async def forget(self, feature: str, kind: str, id: str) -> None:
        query = delete(FeatureValueModel).where(
            FeatureValueModel.feature == feature,
            FeatureValueModel.context_kind == kind,
            FeatureValueModel.context_id == id,
        )
        await self._execute("forget", query, feature)
        await self._flush("forget", feature)

    async def stored(self, kind: str, id: str) -> dict[str, Any]:
        query = (
            select(FeatureValueModel)
            .where(
                FeatureValueModel.context_kind == kind,
                FeatureValueModel.context_id == id,
            )
            .order_by(FeatureValueModel.feature)
        )
        result = await self._execute("stored", query)
        return {m.feature: m.value for m in result.scalars().all()}

    # ============================================================
    # SCOPED VALUES
    # ============================================================

    async def scoped(self, feature: str) -> list[ScopedRecord]:
        query = (
            select(ScopedFeatureValueModel)
            .where(ScopedFeatureValueModel.feature == feature)
            .order_by(ScopedFeatureValueModel.id)
        )
        result = await self._execute("scoped", query, feature)

        return [
            ScopedRecord(
                feature=m.feature,
                scope=FeatureScope(m.scope_kind, m.constraints or {}),
                value=m.value,
                sequence=m.id,
            )
            for m in result.scalars().all()
        ]

    async def set_scoped(self, feature: str, scope: FeatureScope, value: Any) -> None:
        """Replace the record for this exact scope (new row, so it becomes the latest write)."""
        await self.forget_scoped(feature, scope)

        self.db.add(
            ScopedFeatureValueModel(
                feature=feature,
                scope_kind=scope.kind,
                scope_key=scope.cache_key(),
                constraints=dict(scope.constraints),
                value=value,
            )
        )
        await self._flush("set_scoped", feature)

    async def forget_scoped(self, feature: str, scope: FeatureScope) -> bool:
        query = delete(ScopedFeatureValueModel).where(
            ScopedFeatureValueModel.feature == feature,
            ScopedFeatureValueModel.scope_key == scope.cache_key(),
        )
        result = await self._execute("forget_scoped", query, feature)
        await self._flush("forget_scoped", feature)

        return result.rowcount > 0


class DatabaseSnapshotRepository(_SessionMixin, SnapshotRepository):
    """SQL-backed snapshot storage."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _find(self, snapshot_id: str, kind: str, id: str) -> FeatureSnapshotModel | None:
        query = select(FeatureSnapshotModel).where(
            FeatureSnapshotModel.id == snapshot_id,
            FeatureSnapshotModel.context_kind == kind,
            FeatureSnapshotModel.context_id == id,
        )
        result = await self._execute("snapshot_get", query)
        return result.scalar_one_or_none()

    async def add(self, snapshot: Snapshot) -> Snapshot:
        self.db.add(
            FeatureSnapshotModel(
                id=snapshot.id,
                label=snapshot.label,
                context_kind=snapshot.kind,
                context_id=snapshot.context_id,
                features=dict(snapshot.features),
                meta=dict(snapshot.metadata),
                created_at=snapshot.created_at,
                restored_at=snapshot.restored_at,
            )
        )
        await self._flush("snapshot_add")
        return snapshot

    async def get(self, snapshot_id: str, kind: str, id: str) -> Snapshot | None:
        model = await self._find(snapshot_id, kind, id)
        if not model:
            return None
        return self._model_to_snapshot(model)

    async def list(self, kind: str, id: str) -> list[Snapshot]:
        query = (
            select(FeatureSnapshotModel)
            .where(
                FeatureSnapshotModel.context_kind == kind,
                FeatureSnapshotModel.context_id == id,
            )
            .order_by(FeatureSnapshotModel.created_at)
        )
        result = await self._execute("snapshot_list", query)
        return [self._model_to_snapshot(m) for m in result.scalars().all()]

    async def update(self, snapshot: Snapshot) -> Snapshot:
        model = await self._find(snapshot.id, snapshot.kind, snapshot.context_id)
        if not model:
            return await self.add(snapshot)

        model.label = snapshot.label
        model.features = dict(snapshot.features)
        model.meta = dict(snapshot.metadata)
        model.restored_at = snapshot.restored_at

        await self._flush("snapshot_update")
        return snapshot

    async def delete(self, snapshot_id: str, kind: str, id: str) -> bool:
        query = delete(FeatureSnapshotModel).where(
            FeatureSnapshotModel.id == snapshot_id,
            FeatureSnapshotModel.context_kind == kind,
            FeatureSnapshotModel.context_id == id,
        )
        result = await self._execute("snapshot_delete", query)
        await self._flush("snapshot_delete")

        return result.rowcount > 0

    async def clear(self, kind: str, id: str) -> int:
        query = delete(FeatureSnapshotModel).where(
            FeatureSnapshotModel.context_kind == kind,
            FeatureSnapshotModel.context_id == id,
        )
        result = await self._execute("snapshot_clear", query)
        await self._flush("snapshot_clear")

        return result.rowcount

    async def prune(self, cutoff: datetime, chunk_size: int = 100) -> int:
        """Delete expired snapshots one chunk of ids at a time."""
        deleted = 0

        while True:
            query = (
                select(FeatureSnapshotModel.id)
                .where(FeatureSnapshotModel.created_at < cutoff)
                .order_by(FeatureSnapshotModel.id)
                .limit(chunk_size)
            )
            result = await self._execute("snapshot_prune", query)
            ids = list(result.scalars().all())

            if not ids:
                break

            await self._execute(
                "snapshot_prune",
                delete(FeatureSnapshotModel).where(FeatureSnapshotModel.id.in_(ids)),
            )
            await self._flush("snapshot_prune")
            deleted += len(ids)

            if len(ids) < chunk_size:
                break

        return deleted

    # ============================================================
    # HELPERS
    # ============================================================

    def _model_to_snapshot(self, model: FeatureSnapshotModel) -> Snapshot:
        """Convert SQLAlchemy model to dataclass."""
        return Snapshot(
            id=model.id,
            label=model.label,
            created_at=ensure_utc(model.created_at),
            kind=model.context_kind,
            context_id=model.context_id,
            features=dict(model.features or {}),
            metadata=dict(model.meta or {}),
            restored_at=ensure_utc(model.restored_at) if model.restored_at else None,
        )
