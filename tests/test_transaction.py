"""
Tests for transactional mutation batches.
"""

import pytest

from featurestate.core.features import (
    ContextIdentity,
    FeatureService,
    Operation,
    StorageFailure,
    TransactionState,
)


@pytest.mark.asyncio
async def test_commit_applies_operations_in_order(service: FeatureService, user: ContextIdentity):
    await service.activate("legacy", user)

    tx = (
        service.transaction()
        .activate(["a", "b"])
        .activate("theme", value="dark")
        .deactivate("legacy")
    )
    result = await tx.commit(user)

    assert result is tx
    assert tx.state == TransactionState.COMMITTED
    assert await service.stored(user) == {"legacy": False, "a": True, "b": True, "theme": "dark"}


@pytest.mark.asyncio
async def test_failed_commit_restores_previous_state(failing_service, user: ContextIdentity):
    """If op3's store write raises, state equals the state before commit."""
    service = failing_service("c")
    await service.activate("a", user)
    before = await service.stored(user)

    tx = service.transaction().activate("b").deactivate("a").activate("c")

    with pytest.raises(StorageFailure):
        await tx.commit(user)

    assert await service.stored(user) == before
    assert await service.store.get("b", user.kind, user.id) is None
    assert tx.state == TransactionState.ROLLED_BACK


@pytest.mark.asyncio
async def test_failure_handler_runs_before_reraise(failing_service, user: ContextIdentity):
    service = failing_service("b")
    calls = []

    def handler(error, context):
        calls.append((error, context))

    tx = service.transaction().activate(["a", "b"]).on_failure(handler)

    with pytest.raises(StorageFailure) as exc_info:
        await tx.commit(user)

    assert calls == [(exc_info.value, user)]


@pytest.mark.asyncio
async def test_async_failure_handler(failing_service, user: ContextIdentity):
    service = failing_service("a")
    seen = []

    async def handler(error, context):
        seen.append(await service.stored(context))

    with pytest.raises(StorageFailure):
        await service.transaction().activate("a").on_failure(handler).commit(user)

    assert seen == [{}]


@pytest.mark.asyncio
async def test_compensation_failure_keeps_original_error(failing_service, user: ContextIdentity):
    """A revert that fails is logged; the caller still sees the original error."""
    service = failing_service("c", fail_forget=True)

    with pytest.raises(StorageFailure) as exc_info:
        await service.transaction().activate(["b", "c"]).commit(user)

    assert exc_info.value.feature == "c"
    assert exc_info.value.operation == "set"


@pytest.mark.asyncio
async def test_rollback_after_commit(service: FeatureService, user: ContextIdentity):
    await service.activate("theme", user, "light")
    tx = service.transaction().activate("theme", value="dark").activate("beta")

    await tx.commit(user)
    await tx.rollback(user)

    assert await service.stored(user) == {"theme": "light"}
    assert tx.state == TransactionState.ROLLED_BACK


@pytest.mark.asyncio
async def test_rollback_before_commit_is_noop(service: FeatureService, user: ContextIdentity):
    await service.activate("a", user)
    tx = service.transaction().deactivate("a")

    await tx.rollback(user)

    assert await service.is_active("a", user)
    assert tx.state == TransactionState.BUILT
    assert tx.initial_state is None


@pytest.mark.asyncio
async def test_recommit_rebaselines(service: FeatureService, user: ContextIdentity):
    """Rollback restores relative to the most recent commit."""
    tx = service.transaction().activate("feature", value="x")

    await tx.commit(user)
    assert tx.initial_state == {"feature": False}

    await service.activate("feature", user, "manual")
    await tx.commit(user)
    assert tx.initial_state == {"feature": "manual"}

    await tx.rollback(user)
    assert await service.value("feature", user) == "manual"


@pytest.mark.asyncio
async def test_discard(service: FeatureService, user: ContextIdentity):
    tx = service.transaction().activate("a")
    await tx.commit(user)

    tx.discard()
    await tx.rollback(user)

    assert tx.state == TransactionState.DISCARDED
    assert await service.is_active("a", user)


def test_builder_is_immutable(service: FeatureService):
    """Each chain step returns a new transaction."""
    base = service.transaction()
    first = base.activate("a")
    second = base.activate("b").deactivate("a")

    assert base.operations == ()
    assert first.features() == ["a"]
    assert second.features() == ["b", "a"]
    assert second.operations[1] == Operation("deactivate", ("a",), False)


def test_on_failure_is_kept_across_steps(service: FeatureService):
    def handler(error, context):
        pass

    tx = service.transaction().on_failure(handler).activate("a")

    assert tx.failure_handler is handler


@pytest.mark.asyncio
async def test_unknown_operation_is_skipped(service: FeatureService, user: ContextIdentity):
    tx = service.transaction().then(Operation("toggle", ("a",))).activate("b")

    await tx.commit(user)

    assert await service.stored(user) == {"b": True}
