"""
Tests for snapshot capture, restore and retention.
"""

from datetime import datetime, timedelta

import pytest

from featurestate.core.features import (
    ContextIdentity,
    FeatureService,
    MemoryFeatureStore,
    MemorySnapshotRepository,
    Snapshot,
    SnapshotNotFound,
)
from featurestate.core.features.snapshots import generate_snapshot_id
from featurestate.utils.timezone import UTC


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def old_snapshot(ctx: ContextIdentity, age_days: int) -> Snapshot:
    return Snapshot(
        id=generate_snapshot_id(),
        label=f"age-{age_days}",
        created_at=NOW - timedelta(days=age_days),
        kind=ctx.kind,
        context_id=ctx.id,
        features={"beta": True},
    )


class RecordingRepository(MemorySnapshotRepository):
    def __init__(self):
        super().__init__()
        self.prune_calls = []
        self.passes = []

    def _expired(self, cutoff, limit):
        expired = super()._expired(cutoff, limit)
        self.passes.append(len(expired))
        return expired

    async def prune(self, cutoff, chunk_size=100):
        self.prune_calls.append((cutoff, chunk_size))
        return await super().prune(cutoff, chunk_size)


@pytest.mark.asyncio
async def test_snapshot_round_trip(service: FeatureService, user: ContextIdentity):
    """Restoring a snapshot brings back the exact captured values."""
    await service.activate("premium", user)
    await service.activate("theme", user, "dark")

    snapshot = await service.snapshots.capture(user, label="before-change")

    await service.deactivate("premium", user)
    await service.activate("theme", user, "light")

    restored = await service.snapshots.restore(snapshot.id, user)

    assert restored == ["premium", "theme"]
    assert await service.stored(user) == {"premium": True, "theme": "dark"}


@pytest.mark.asyncio
async def test_capture_excludes_internal_features(service: FeatureService, user: ContextIdentity):
    await service.activate("beta", user)
    await service.activate("__schedule", user, {"at": "2024-06-01"})

    snapshot = await service.snapshots.capture(user)

    assert snapshot.features == {"beta": True}
    assert snapshot.label.startswith("snapshot-")
    assert snapshot.created_at.tzinfo is not None


@pytest.mark.asyncio
async def test_restore_leaves_other_features_alone(service: FeatureService, user: ContextIdentity):
    await service.activate("beta", user)
    snapshot = await service.snapshots.capture(user)

    await service.activate("added_later", user)
    await service.snapshots.restore(snapshot.id, user)

    assert await service.is_active("added_later", user)


@pytest.mark.asyncio
async def test_restore_partial(service: FeatureService, user: ContextIdentity):
    await service.activate("premium", user)
    await service.activate("theme", user, "dark")
    snapshot = await service.snapshots.capture(user)

    await service.deactivate("premium", user)
    await service.activate("theme", user, "light")

    restored = await service.snapshots.restore_partial(snapshot.id, user, ["theme", "not_captured"])

    assert restored == ["theme"]
    assert await service.value("theme", user) == "dark"
    assert await service.value("premium", user) is False


@pytest.mark.asyncio
async def test_restore_stamps_restored_at(service: FeatureService, user: ContextIdentity):
    snapshot = await service.snapshots.capture(user)
    assert snapshot.restored_at is None

    await service.snapshots.restore(snapshot.id, user)

    reloaded = await service.snapshots.get(snapshot.id, user)
    assert reloaded.restored_at is not None


@pytest.mark.asyncio
async def test_unknown_snapshot(service: FeatureService, user: ContextIdentity):
    """Restores raise; read-time lookups return empty results."""
    with pytest.raises(SnapshotNotFound):
        await service.snapshots.restore("snapshot_missing", user)

    with pytest.raises(SnapshotNotFound):
        await service.snapshots.restore_partial("snapshot_missing", user, ["beta"])

    assert await service.snapshots.get("snapshot_missing", user) is None
    assert await service.snapshots.delete("snapshot_missing", user) is False


@pytest.mark.asyncio
async def test_snapshots_are_per_context(
    service: FeatureService,
    user: ContextIdentity,
    other_user: ContextIdentity,
):
    snapshot = await service.snapshots.capture(user)

    assert await service.snapshots.get(snapshot.id, other_user) is None
    assert await service.snapshots.list(other_user) == []
    with pytest.raises(SnapshotNotFound):
        await service.snapshots.restore(snapshot.id, other_user)


@pytest.mark.asyncio
async def test_list_delete_and_clear(service: FeatureService, user: ContextIdentity):
    first = await service.snapshots.capture(user, label="first")
    second = await service.snapshots.capture(user, label="second", metadata={"reason": "deploy"})

    listed = await service.snapshots.list(user)
    assert [s.id for s in listed] == [first.id, second.id]
    assert listed[1].metadata == {"reason": "deploy"}

    assert await service.snapshots.delete(first.id, user) is True
    assert [s.id for s in await service.snapshots.list(user)] == [second.id]

    assert await service.snapshots.clear_all(user) == 1
    assert await service.snapshots.list(user) == []


@pytest.mark.asyncio
async def test_prune_removes_expired_snapshots(user: ContextIdentity, other_user: ContextIdentity):
    repository = RecordingRepository()
    service = FeatureService(MemoryFeatureStore(), repository, snapshot_chunk_size=2)

    for _ in range(5):
        await repository.add(old_snapshot(user, age_days=400))
    await repository.add(old_snapshot(other_user, age_days=400))
    fresh = await repository.add(old_snapshot(user, age_days=10))

    deleted = await service.snapshots.prune(retention_days=365, now=NOW)

    assert deleted == 6
    assert [s.id for s in await repository.list(user.kind, user.id)] == [fresh.id]
    assert repository.prune_calls == [(NOW - timedelta(days=365), 2)]
    assert repository.passes == [2, 2, 2, 0]


@pytest.mark.asyncio
async def test_prune_uses_configured_retention(user: ContextIdentity):
    repository = MemorySnapshotRepository()
    service = FeatureService(MemoryFeatureStore(), repository, snapshot_retention_days=30)

    await repository.add(old_snapshot(user, age_days=31))
    await repository.add(old_snapshot(user, age_days=29))

    assert await service.snapshots.prune(now=NOW) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("retention_days", [0, -1])
async def test_zero_retention_disables_pruning(user: ContextIdentity, retention_days: int):
    repository = MemorySnapshotRepository()
    service = FeatureService(MemoryFeatureStore(), repository)
    await repository.add(old_snapshot(user, age_days=4000))

    assert await service.snapshots.prune(retention_days=retention_days, now=NOW) == 0
    assert len(await repository.list(user.kind, user.id)) == 1


@pytest.mark.asyncio
async def test_prune_skipped_when_snapshots_disabled(user: ContextIdentity):
    repository = MemorySnapshotRepository()
    service = FeatureService(MemoryFeatureStore(), repository, snapshots_enabled=False)
    await repository.add(old_snapshot(user, age_days=4000))

    assert await service.snapshots.prune(now=NOW) == 0


@pytest.mark.asyncio
async def test_auto_capture_on_mutation(user: ContextIdentity):
    """With auto capture on, every write leaves a labelled snapshot."""
    service = FeatureService(MemoryFeatureStore(), MemorySnapshotRepository(), auto_snapshot=True)

    await service.activate("beta", user)
    await service.deactivate("beta", user)
    await service.activate("__internal", user)

    snapshots = await service.snapshots.list(user)

    assert [s.label for s in snapshots] == ["auto-activated-beta", "auto-deactivated-beta"]
    assert snapshots[0].features == {"beta": True}
    assert snapshots[1].features == {"beta": False}
    assert snapshots[0].metadata == {"auto_created": True, "event_type": "activated", "feature": "beta"}


@pytest.mark.asyncio
async def test_no_auto_capture_by_default(service: FeatureService, user: ContextIdentity):
    await service.activate("beta", user)

    assert await service.snapshots.list(user) == []


def test_service_without_repository_has_no_snapshots():
    assert FeatureService(MemoryFeatureStore()).snapshots is None
