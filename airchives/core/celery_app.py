"""
Celery Application Configuration

Configures Celery with:
- A dedicated queue for generation jobs
- Late acknowledgment so a lost worker re-delivers its job
- Result backend for task tracking
"""

from celery import Celery
from kombu import Queue

from airchives.core.config import settings

celery_app = Celery(
    "airchives_pipeline",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
    include=[
        "airchives.pipeline.tasks",
    ]
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task tracking
    task_track_started=True,
    task_time_limit=900,  # 15 minute hard limit
    task_soft_time_limit=840,

    # Result expiration
    result_expires=86400,  # 24 hours

    # Synthesis calls are I/O bound; one prefetched job per worker process
    worker_prefetch_multiplier=1,

    # Queue definitions
    task_queues=(
        Queue("default", routing_key="default"),
        Queue("generation", routing_key="generation.#"),
    ),
    task_default_queue="default",

    # Task routing
    task_routes={
        "airchives.pipeline.tasks.run_generation": {"queue": "generation"},
    },

    # Generations are never retried; a failed run is terminal
    task_max_retries=0,

    # Late acknowledgment for reliability
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)
