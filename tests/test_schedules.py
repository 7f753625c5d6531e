"""
Tests for time-window schedules.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from featurestate.core.features import (
    SCHEDULES_FEATURE,
    ContextIdentity,
    DatabaseFeatureStore,
    FeatureService,
    InvalidSpecification,
    MissingPrerequisites,
    NotFound,
    Schedule,
    ScheduleNotFound,
    require,
)
from featurestate.utils.timezone import UTC


START = datetime(2024, 11, 29, 0, 0, tzinfo=UTC)
END = datetime(2024, 12, 2, 0, 0, tzinfo=UTC)


def test_window_bounds():
    """The start is inclusive, the end exclusive."""
    schedule = Schedule(id="s", feature="sale", start_at=START, end_at=END)

    assert not schedule.should_be_active(START - timedelta(seconds=1))
    assert schedule.should_be_active(START)
    assert schedule.should_be_active(END - timedelta(seconds=1))
    assert not schedule.should_be_active(END)


def test_open_ended_windows():
    assert Schedule(id="s", feature="sale").should_be_active(START)
    assert Schedule(id="s", feature="sale", start_at=START).should_be_active(END + timedelta(days=365))
    assert not Schedule(id="s", feature="sale", end_at=START).should_be_active(END)


def test_naive_now_is_treated_as_utc():
    schedule = Schedule(id="s", feature="sale", start_at=START, end_at=END)

    assert schedule.should_be_active(datetime(2024, 11, 30, 12, 0))


def test_schedule_record_round_trip():
    schedule = Schedule(id="s", feature="sale", start_at=START, end_at=None, value="50%", created_at=START)
    data = schedule.to_dict()

    assert data == {
        "id": "s",
        "feature": "sale",
        "start_at": "2024-11-29T00:00:00Z",
        "end_at": None,
        "value": "50%",
        "created_at": "2024-11-29T00:00:00Z",
    }
    assert Schedule.from_dict(data) == schedule


# ============ Saving ============


@pytest.mark.asyncio
async def test_save_list_get(service: FeatureService, user: ContextIdentity, other_user: ContextIdentity):
    schedule = await service.schedules.save("sale", user, start_at=START, end_at=END)

    assert schedule.id.startswith("schedule_")
    assert [s.id for s in await service.schedules.list(user)] == [schedule.id]
    assert (await service.schedules.get(schedule.id, user)).end_at == END
    assert await service.schedules.get(schedule.id, other_user) is None
    assert await service.schedules.list(other_user) == []


@pytest.mark.asyncio
async def test_iso_strings_are_accepted(service: FeatureService, user: ContextIdentity):
    schedule = await service.schedules.save(
        "sale", user, start_at="2024-11-29T00:00:00Z", end_at="2024-12-01T19:00:00-05:00"
    )

    assert schedule.start_at == START
    assert schedule.end_at == END


@pytest.mark.asyncio
async def test_saving_does_not_change_feature_state(service: FeatureService, user: ContextIdentity):
    await service.schedules.save("sale", user, start_at=START)

    assert await service.is_inactive("sale", user)


@pytest.mark.asyncio
async def test_schedules_are_internal_and_skipped_by_snapshots(service: FeatureService, user: ContextIdentity):
    await service.activate("beta", user)
    await service.schedules.save("sale", user, start_at=START)

    assert SCHEDULES_FEATURE.startswith("__")
    assert SCHEDULES_FEATURE in await service.stored(user)

    snapshot = await service.snapshots.capture(user)

    assert snapshot.features == {"beta": True}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "feature, kwargs",
    [
        ("sale", {"start_at": END, "end_at": START}),
        ("sale", {"start_at": START, "end_at": START}),
        ("sale", {"value": False}),
        ("__audit__", {}),
    ],
)
async def test_invalid_schedules(service: FeatureService, user: ContextIdentity, feature, kwargs):
    with pytest.raises(InvalidSpecification):
        await service.schedules.save(feature, user, **kwargs)

    assert await service.stored(user) == {}


@pytest.mark.asyncio
async def test_delete(service: FeatureService, user: ContextIdentity):
    first = await service.schedules.save("sale", user, start_at=START)
    second = await service.schedules.save("banner", user, end_at=END)

    assert await service.schedules.delete(first.id, user) is True
    assert await service.schedules.delete(first.id, user) is False
    assert [s.id for s in await service.schedules.list(user)] == [second.id]

    await service.schedules.delete(second.id, user)

    assert SCHEDULES_FEATURE not in await service.stored(user)


# ============ Applying ============


@pytest.mark.asyncio
async def test_apply_follows_the_window(service: FeatureService, user: ContextIdentity):
    schedule = await service.schedules.save("sale", user, start_at=START, end_at=END, value="50%")

    assert await service.schedules.apply(schedule.id, user, now=START - timedelta(hours=1)) is False
    assert await service.is_inactive("sale", user)

    assert await service.schedules.apply(schedule.id, user, now=START + timedelta(hours=1)) is True
    assert await service.value("sale", user) == "50%"

    assert await service.schedules.apply(schedule.id, user, now=END) is False
    assert await service.value("sale", user) is False


@pytest.mark.asyncio
async def test_apply_unknown_schedule(service: FeatureService, user: ContextIdentity):
    with pytest.raises(ScheduleNotFound) as exc_info:
        await service.schedules.apply("schedule_missing", user)

    assert isinstance(exc_info.value, NotFound)
    assert exc_info.value.schedule_id == "schedule_missing"


@pytest.mark.asyncio
async def test_apply_all_counts_changes(service: FeatureService, user: ContextIdentity):
    await service.schedules.save("sale", user, start_at=START, end_at=END)
    await service.schedules.save("banner", user, start_at=START)
    await service.schedules.save("teaser", user, end_at=START)

    during = START + timedelta(days=1)

    assert await service.schedules.apply_all(user, now=during) == 2
    assert await service.schedules.apply_all(user, now=during) == 0
    assert await service.values(["sale", "banner", "teaser"], user) == {
        "sale": True,
        "banner": True,
        "teaser": False,
    }

    assert await service.schedules.apply_all(user, now=END) == 1
    assert await service.is_inactive("sale", user)


@pytest.mark.asyncio
async def test_scheduled_activation_is_gated(service: FeatureService, user: ContextIdentity):
    service.define_dependency(require("payment").before("checkout"))
    schedule = await service.schedules.save("checkout", user, start_at=START)

    with pytest.raises(MissingPrerequisites):
        await service.schedules.apply(schedule.id, user, now=END)

    assert await service.is_inactive("checkout", user)


@pytest.mark.asyncio
async def test_schedules_on_database(db: AsyncSession, user: ContextIdentity):
    service = FeatureService(DatabaseFeatureStore(db))
    schedule = await service.schedules.save("sale", user, start_at=START, end_at=END, value={"discount": 50})

    loaded = await service.schedules.get(schedule.id, user)

    assert loaded.start_at == START
    assert loaded.value == {"discount": 50}
    assert await service.schedules.apply_all(user, now=START) == 1
    assert await service.value("sale", user) == {"discount": 50}
