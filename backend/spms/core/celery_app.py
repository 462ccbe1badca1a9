from celery import Celery
from celery.schedules import crontab

from spms.core.config import settings

# Create Celery app
celery_app = Celery(
    "spms",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "spms.modules.promotions.tasks",
    ]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.CELERY_TASK_TIME_LIMIT,
    task_soft_time_limit=settings.CELERY_TASK_SOFT_TIME_LIMIT,
    result_expires=settings.CELERY_RESULT_EXPIRES,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
    broker_connection_retry_on_startup=True,
)


def build_beat_schedule() -> dict:
    """One daily advance-then-reconcile pipeline per configured cohort"""
    schedule = {}
    for degree_program, semester in settings.PROMOTION_COHORTS:
        schedule[f"promote-{degree_program}-sem{semester}"] = {
            "task": "spms.promotions.promote_and_reconcile",
            "schedule": crontab(
                hour=settings.PROMOTION_SCHEDULE_HOUR,
                minute=settings.PROMOTION_SCHEDULE_MINUTE,
            ),
            "args": (degree_program, semester),
        }
    return schedule


# Celery beat schedule for periodic tasks
celery_app.conf.beat_schedule = build_beat_schedule()
