"""Celery application configuration.

Features:
- Redis as broker and result backend
- Task routing by queue
- Scheduled tasks via Celery Beat
"""

from celery import Celery

from tourney.config import get_settings
from tourney.tasks.schedules import CELERY_BEAT_SCHEDULE, CELERY_TASK_ROUTES

settings = get_settings()

REDIS_BASE_URL = settings.redis_url.rsplit("/", 1)[0]

celery_app = Celery(
    "tourney_tasks",
    broker=f"{REDIS_BASE_URL}/1",  # Use DB 1 for broker
    backend=f"{REDIS_BASE_URL}/2",  # Use DB 2 for results
    include=[
        "tourney.tasks.checkin",
        "tourney.tasks.wallet",
    ],
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Tournament start times are stored in UTC
    timezone="UTC",
    enable_utc=True,

    # Task routing (from schedules.py)
    task_routes=CELERY_TASK_ROUTES,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    # Result settings
    result_expires=86400,  # 24 hours

    # Beat schedule (from schedules.py)
    beat_schedule=CELERY_BEAT_SCHEDULE,

    # Retry settings
    task_default_retry_delay=60,  # 1 minute
    task_max_retries=3,
)


if settings.app_env == "development":
    celery_app.conf.update(
        task_always_eager=False,  # Set to True to run tasks synchronously
        task_eager_propagates=True,
    )
