"""
In-memory backend for feature state and snapshots.

For development and testing. Data is lost on restart.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from itertools import count
from typing import Any
import copy

from ..interfaces import FeatureScope, FeatureStore, ScopedRecord, Snapshot, SnapshotRepository
from featurestate.utils.timezone import ensure_utc


class MemoryFeatureStore(FeatureStore):
    """
    In-memory feature value storage.

    Useful for:
    - Development without database
    - Unit testing
    - Quick prototyping
    """

    def __init__(self):
        self._values: dict[tuple[str, str], dict[str, Any]] = defaultdict(dict)
        self._scoped: dict[str, dict[FeatureScope, ScopedRecord]] = defaultdict(dict)
        self._sequence = count(1)

    # ============================================================
    # PER-CONTEXT VALUES
    # ============================================================

    async def get(self, feature: str, kind: str, id: str) -> Any | None:
        return self._values.get((kind, id), {}).get(feature)

    async def set(self, feature: str, kind: str, id: str, value: Any) -> None:
        self._values[(kind, id)][feature] = value

    async def forget(self, feature: str, kind: str, id: str) -> None:
        values = self._values.get((kind, id))
        if values is not None:
            values.pop(feature, None)

    async def stored(self, kind: str, id: str) -> dict[str, Any]:
        return dict(self._values.get((kind, id), {}))

    # ============================================================
    # SCOPED VALUES
    # ============================================================

    async def scoped(self, feature: str) -> list[ScopedRecord]:
        return list(self._scoped.get(feature, {}).values())

    async def set_scoped(self, feature: str, scope: FeatureScope, value: Any) -> None:
        self._scoped[feature][scope] = ScopedRecord(
            feature=feature,
            scope=scope,
            value=value,
            sequence=next(self._sequence),
        )

    async def forget_scoped(self, feature: str, scope: FeatureScope) -> bool:
        records = self._scoped.get(feature, {})
        if scope in records:
            del records[scope]
            return True
        return False


class MemorySnapshotRepository(SnapshotRepository):
    """In-memory snapshot storage keyed by context."""

    def __init__(self):
        self._snapshots: dict[tuple[str, str], dict[str, Snapshot]] = defaultdict(dict)

    async def add(self, snapshot: Snapshot) -> Snapshot:
        self._snapshots[(snapshot.kind, snapshot.context_id)][snapshot.id] = copy.deepcopy(snapshot)
        return snapshot

    async def get(self, snapshot_id: str, kind: str, id: str) -> Snapshot | None:
        snapshot = self._snapshots.get((kind, id), {}).get(snapshot_id)
        return copy.deepcopy(snapshot) if snapshot else None

    async def list(self, kind: str, id: str) -> list[Snapshot]:
        snapshots = self._snapshots.get((kind, id), {}).values()
        return [copy.deepcopy(s) for s in sorted(snapshots, key=lambda s: s.created_at)]

    async def update(self, snapshot: Snapshot) -> Snapshot:
        return await self.add(snapshot)

    async def delete(self, snapshot_id: str, kind: str, id: str) -> bool:
        snapshots = self._snapshots.get((kind, id))
        if snapshots and snapshot_id in snapshots:
            del snapshots[snapshot_id]
            return True
        return False

    async def clear(self, kind: str, id: str) -> int:
        snapshots = self._snapshots.pop((kind, id), {})
        return len(snapshots)

    def _expired(self, cutoff: datetime, limit: int) -> list[tuple[tuple[str, str], str]]:
        expired = []
        for key, snapshots in self._snapshots.items():
            for snapshot in snapshots.values():
                if ensure_utc(snapshot.created_at) < cutoff:
                    expired.append((key, snapshot.id))
                    if len(expired) == limit:
                        return expired
        return expired

    async def prune(self, cutoff: datetime, chunk_size: int = 100) -> int:
        """Delete expired snapshots, collecting at most ``chunk_size`` ids per pass."""
        cutoff = ensure_utc(cutoff)
        deleted = 0

        while True:
            expired = self._expired(cutoff, chunk_size)
            for key, snapshot_id in expired:
                del self._snapshots[key][snapshot_id]
            deleted += len(expired)

            if len(expired) < chunk_size:
                break

        return deleted
