"""Celery application configuration."""

from celery import Celery
from celery.signals import setup_logging as celery_setup_logging

from securehls.core.config import settings

celery_app = Celery(
    "securehls",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.VIDEO_JOB_TIME_LIMIT_SECONDS + 60,
    task_soft_time_limit=settings.VIDEO_JOB_TIME_LIMIT_SECONDS,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_routes={
        "securehls.modules.transcoding.tasks.*": {"queue": settings.VIDEO_QUEUE},
    },
)


@celery_setup_logging.connect
def configure_worker_logging(**kwargs) -> None:
    """Use the application's structured logging in workers."""
    from securehls.core.logging import setup_logging

    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)


celery_app.autodiscover_tasks(["securehls.modules.transcoding"])
