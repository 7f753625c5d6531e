"""
Snapshot capture, restore and retention.

Usage:
    snapshot = await service.snapshots.capture(user, label="before-migration")
    ...
    await service.snapshots.restore(snapshot.id, user)
    await service.snapshots.restore_partial(snapshot.id, user, ["theme"])

    # Maintenance (see featurestate.worker.tasks)
    await service.snapshots.prune(retention_days=90)
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Iterable
from uuid import uuid4

import structlog

from featurestate.utils.timezone import ensure_utc, utc_now

from .errors import SnapshotNotFound
from .interfaces import Snapshot, SnapshotRepository, is_internal

if TYPE_CHECKING:
    from .service import FeatureService

logger = structlog.get_logger()


def generate_snapshot_id() -> str:
    return f"snapshot_{uuid4().hex}"


class SnapshotManager:
    """
    Point-in-time copies of a context's feature values.

    Snapshots are scoped per context: an id captured for one context is
    invisible to every other context. Internal features (``__`` prefix)
    are never captured.
    """

    def __init__(
        self,
        service: FeatureService,
        repository: SnapshotRepository,
        retention_days: int = 365,
        chunk_size: int = 100,
        enabled: bool = True,
    ):
        self._service = service
        self.repository = repository
        self.retention_days = retention_days
        self.chunk_size = chunk_size
        self.enabled = enabled

    async def capture(
        self,
        context: Any,
        label: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Snapshot:
        """Copy the context's current feature values into a new snapshot."""
        ctx = self._service.resolve(context)
        stored = await self._service.store.stored(ctx.kind, ctx.id)
        now = utc_now()

        snapshot = Snapshot(
            id=generate_snapshot_id(),
            label=label or f"snapshot-{now.strftime('%Y%m%dT%H%M%S%fZ')}",
            created_at=now,
            kind=ctx.kind,
            context_id=ctx.id,
            features={k: v for k, v in stored.items() if not is_internal(k)},
            metadata=dict(metadata or {}),
        )
        snapshot = await self.repository.add(snapshot)

        logger.info(
            "snapshot.captured",
            snapshot_id=snapshot.id,
            label=snapshot.label,
            kind=ctx.kind,
            id=ctx.id,
            feature_count=len(snapshot.features),
        )
        return snapshot

    async def _require(self, snapshot_id: str, ctx) -> Snapshot:
        snapshot = await self.repository.get(snapshot_id, ctx.kind, ctx.id)
        if snapshot is None:
            raise SnapshotNotFound(snapshot_id)
        return snapshot

    async def _write_back(self, snapshot: Snapshot, features: Iterable[str], ctx) -> list[str]:
        restored = []
        for feature in features:
            await self._service.write(feature, ctx, snapshot.features[feature], gated=False)
            restored.append(feature)

        snapshot.restored_at = utc_now()
        await self.repository.update(snapshot)
        return restored

    async def restore(self, snapshot_id: str, context: Any) -> list[str]:
        """
        Write every captured value back to the store.

        Features not in the snapshot are left alone.

        Raises:
            SnapshotNotFound: No such snapshot for this context
        """
        ctx = self._service.resolve(context)
        snapshot = await self._require(snapshot_id, ctx)
        restored = await self._write_back(snapshot, list(snapshot.features), ctx)

        logger.info("snapshot.restored", snapshot_id=snapshot_id, features=restored)
        return restored

    async def restore_partial(
        self,
        snapshot_id: str,
        context: Any,
        features: Iterable[str],
    ) -> list[str]:
        """Restore only the named features (those missing from the snapshot are skipped)."""
        ctx = self._service.resolve(context)
        snapshot = await self._require(snapshot_id, ctx)
        wanted = [f for f in dict.fromkeys(features) if f in snapshot.features]
        restored = await self._write_back(snapshot, wanted, ctx)

        logger.info("snapshot.partially_restored", snapshot_id=snapshot_id, features=restored)
        return restored

    async def get(self, snapshot_id: str, context: Any) -> Snapshot | None:
        ctx = self._service.resolve(context)
        return await self.repository.get(snapshot_id, ctx.kind, ctx.id)

    async def list(self, context: Any) -> list[Snapshot]:
        ctx = self._service.resolve(context)
        return await self.repository.list(ctx.kind, ctx.id)

    async def delete(self, snapshot_id: str, context: Any) -> bool:
        ctx = self._service.resolve(context)
        deleted = await self.repository.delete(snapshot_id, ctx.kind, ctx.id)
        if deleted:
            logger.info("snapshot.deleted", snapshot_id=snapshot_id)
        return deleted

    async def clear_all(self, context: Any) -> int:
        ctx = self._service.resolve(context)
        return await self.repository.clear(ctx.kind, ctx.id)

    async def prune(self, retention_days: int | None = None, now: datetime | None = None) -> int:
        """
        Delete snapshots older than the retention window.

        A window of 0 (or less) means pruning is disabled, not "delete
        everything". Returns the number of snapshots deleted.
        """
        days = self.retention_days if retention_days is None else retention_days
        if not self.enabled or days <= 0:
            logger.info("snapshot.prune_skipped", retention_days=days, enabled=self.enabled)
            return 0

        cutoff = ensure_utc(now or utc_now()) - timedelta(days=days)
        deleted = await self.repository.prune(cutoff, chunk_size=self.chunk_size)

        logger.info("snapshot.pruned", retention_days=days, deleted=deleted)
        return deleted

    async def auto_capture(self, feature: str, context: Any, value: Any = None) -> Snapshot | None:
        """
        Mutation hook handler: capture after each activation/deactivation.

        Register with ``HookManager`` for ``feature.activated`` and
        ``feature.deactivated``.
        """
        if not self.enabled or is_internal(feature):
            return None

        action = "activated" if value else "deactivated"
        return await self.capture(
            context,
            label=f"auto-{action}-{feature}",
            metadata={"auto_created": True, "event_type": action, "feature": feature},
        )
