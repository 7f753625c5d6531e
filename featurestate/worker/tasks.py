"""
Scheduled/periodic maintenance tasks.
"""

import asyncio
import logging

from celery import shared_task

from featurestate.core.config import settings
from featurestate.core.features.backends.database import DatabaseFeatureStore, DatabaseSnapshotRepository
from featurestate.core.features.service import FeatureService
from featurestate.models.database import task_session

logger = logging.getLogger(__name__)


async def _prune(retention_days: int | None = None) -> int:
    async with task_session() as session:
        service = FeatureService.from_settings(
            DatabaseFeatureStore(session),
            DatabaseSnapshotRepository(session),
            settings.features,
        )
        deleted = await service.snapshots.prune(retention_days)
        await session.commit()
        return deleted


@shared_task
def prune_snapshots(retention_days: int | None = None):
    """Delete feature snapshots older than the retention window."""
    logger.info("Pruning feature snapshots...")
    deleted = asyncio.run(_prune(retention_days))
    logger.info("Pruned %d feature snapshot(s)", deleted)
    return {"status": "completed", "deleted": deleted}
