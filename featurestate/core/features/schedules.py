"""
Time-window activation.

A schedule keeps a feature active between ``start_at`` and ``end_at`` for
one context. Schedules are stored with the context's own values, under the
internal ``__schedules__`` feature, so snapshots never capture them.

Usage:
    schedule = await service.schedules.save(
        "black_friday", shop, start_at="2024-11-29T00:00:00Z", end_at="2024-12-02T00:00:00Z"
    )

    # Periodically, e.g. on each request or from a worker
    changed = await service.schedules.apply_all(shop)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Mapping
from uuid import uuid4

import structlog

from featurestate.utils.timezone import ensure_utc, from_iso8601, to_iso8601, utc_now

from .context import ContextIdentity
from .errors import InvalidSpecification, ScheduleNotFound
from .interfaces import INTERNAL_PREFIX, is_internal

if TYPE_CHECKING:
    from .service import FeatureService

logger = structlog.get_logger()

SCHEDULES_FEATURE = f"{INTERNAL_PREFIX}schedules__"


def generate_schedule_id() -> str:
    return f"schedule_{uuid4().hex}"


def _as_datetime(value: datetime | str | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        return from_iso8601(value)
    return ensure_utc(value)


@dataclass
class Schedule:
    """
    Activation window for one feature.

    Either bound may be None: no start means "active until end", no end
    means "active from start on", neither means always active. The end is
    exclusive.
    """
    id: str
    feature: str
    start_at: datetime | None = None
    end_at: datetime | None = None
    value: Any = True
    created_at: datetime = field(default_factory=utc_now)

    def should_be_active(self, now: datetime) -> bool:
        now = ensure_utc(now)
        if self.start_at is not None and now < self.start_at:
            return False
        if self.end_at is not None and now >= self.end_at:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "feature": self.feature,
            "start_at": to_iso8601(self.start_at) if self.start_at else None,
            "end_at": to_iso8601(self.end_at) if self.end_at else None,
            "value": self.value,
            "created_at": to_iso8601(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Schedule:
        return cls(
            id=data["id"],
            feature=data["feature"],
            start_at=_as_datetime(data.get("start_at")),
            end_at=_as_datetime(data.get("end_at")),
            value=data.get("value", True),
            created_at=_as_datetime(data.get("created_at")) or utc_now(),
        )


class ScheduleManager:
    """Saves, lists and applies a context's schedules."""

    def __init__(self, service: FeatureService):
        self._service = service

    async def _load(self, ctx: ContextIdentity) -> dict[str, dict[str, Any]]:
        stored = await self._service.store.get(SCHEDULES_FEATURE, ctx.kind, ctx.id)
        return dict(stored) if isinstance(stored, dict) else {}

    async def _save_all(self, ctx: ContextIdentity, records: dict[str, dict[str, Any]]) -> None:
        store = self._service.store
        if records:
            await store.set(SCHEDULES_FEATURE, ctx.kind, ctx.id, records)
        else:
            await store.forget(SCHEDULES_FEATURE, ctx.kind, ctx.id)

    async def save(
        self,
        feature: str,
        context: Any,
        start_at: datetime | str | None = None,
        end_at: datetime | str | None = None,
        value: Any = True,
    ) -> Schedule:
        """
        Store a schedule for a context. It takes effect on the next apply.

        Raises:
            InvalidSpecification: Internal feature, falsy value or an empty window
        """
        if is_internal(feature):
            raise InvalidSpecification(f"Cannot schedule internal feature '{feature}'")
        if not value:
            raise InvalidSpecification(f"Scheduled value for '{feature}' must be truthy")

        schedule = Schedule(
            id=generate_schedule_id(),
            feature=feature,
            start_at=_as_datetime(start_at),
            end_at=_as_datetime(end_at),
            value=value,
        )
        if schedule.start_at and schedule.end_at and schedule.end_at <= schedule.start_at:
            raise InvalidSpecification(f"Schedule for '{feature}' ends before it starts")

        ctx = self._service.resolve(context)
        records = await self._load(ctx)
        records[schedule.id] = schedule.to_dict()
        await self._save_all(ctx, records)

        logger.info("schedule.saved", schedule_id=schedule.id, feature=feature, kind=ctx.kind, id=ctx.id)
        return schedule

    async def list(self, context: Any) -> list[Schedule]:
        """Schedules for a context, in the order they were saved."""
        ctx = self._service.resolve(context)
        return [Schedule.from_dict(record) for record in (await self._load(ctx)).values()]

    async def get(self, schedule_id: str, context: Any) -> Schedule | None:
        ctx = self._service.resolve(context)
        record = (await self._load(ctx)).get(schedule_id)
        return Schedule.from_dict(record) if record else None

    async def delete(self, schedule_id: str, context: Any) -> bool:
        """Remove a schedule. The feature keeps whatever state it has."""
        ctx = self._service.resolve(context)
        records = await self._load(ctx)
        if records.pop(schedule_id, None) is None:
            return False

        await self._save_all(ctx, records)
        logger.info("schedule.deleted", schedule_id=schedule_id)
        return True

    async def _apply(self, schedule: Schedule, ctx: ContextIdentity, now: datetime) -> bool:
        """Bring the feature in line with the window. Returns True if its state changed."""
        should_be_active = schedule.should_be_active(now)
        is_active = await self._service.is_active(schedule.feature, ctx)

        if should_be_active and not is_active:
            await self._service.write(schedule.feature, ctx, schedule.value)
        elif not should_be_active and is_active:
            await self._service.write(schedule.feature, ctx, False)
        else:
            return False

        logger.info(
            "schedule.applied",
            schedule_id=schedule.id,
            feature=schedule.feature,
            active=should_be_active,
        )
        return True

    async def apply(self, schedule_id: str, context: Any, now: datetime | None = None) -> bool:
        """
        Apply one schedule. Returns whether the feature should now be active.

        Raises:
            ScheduleNotFound: No such schedule for this context
            MissingPrerequisites: Activation is gated and a prerequisite is off
        """
        ctx = self._service.resolve(context)
        schedule = await self.get(schedule_id, ctx)
        if schedule is None:
            raise ScheduleNotFound(schedule_id)

        now = now or utc_now()
        await self._apply(schedule, ctx, now)
        return schedule.should_be_active(now)

    async def apply_all(self, context: Any, now: datetime | None = None) -> int:
        """Apply every schedule of a context. Returns how many changed a feature's state."""
        ctx = self._service.resolve(context)
        now = now or utc_now()

        changed = 0
        for schedule in await self.list(ctx):
            if await self._apply(schedule, ctx, now):
                changed += 1
        return changed
