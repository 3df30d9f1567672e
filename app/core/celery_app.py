from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "school_portal",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.tasks.email_tasks", "app.tasks.security_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,

    task_time_limit=60,
    task_soft_time_limit=45,

    # One reserved task per worker process, paired with task_acks_late.
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    broker_connection_retry_on_startup=True,

    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,
)

celery_app.conf.task_routes = {
    "app.tasks.email_tasks.*": {"queue": "emails"},
    "app.tasks.security_tasks.*": {"queue": "maintenance"},
}

# Revocation entries only matter until the token they name expires.
celery_app.conf.beat_schedule = {
    "cleanup-expired-revocations-hourly": {
        "task": "app.tasks.security_tasks.cleanup_expired_revocations",
        "schedule": crontab(minute=0),
    },
}
