"""
Celery application configuration.
"""

from celery import Celery

from featurestate.core.config import settings

app = Celery(
    "featurestate-worker",
    broker=settings.queue.broker_url,
    backend=settings.queue.result_backend,
    include=[
        "featurestate.worker.tasks",
    ],
)

# Celery configuration
app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task routing
    task_routes={
        "featurestate.worker.tasks.*": {"queue": "maintenance"},
    },

    # Retry settings
    task_default_retry_delay=60,
    task_max_retries=3,

    # Result backend settings
    result_expires=3600,

    # Worker settings
    worker_prefetch_multiplier=1,

    # Beat schedule (periodic tasks)
    beat_schedule={
        "prune-feature-snapshots": {
            "task": "featurestate.worker.tasks.prune_snapshots",
            "schedule": settings.queue.prune_interval,  # Daily by default
        },
    },
)


if __name__ == "__main__":
    app.start()
