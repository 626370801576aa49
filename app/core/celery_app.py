"""
Celery application: broker and result backend from settings.
Tasks live in app.referral.tasks (loyalty point crediting).
"""
from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "app",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.referral.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=300,
    result_expires=86400,
    beat_schedule={
        "retry-pending-referral-credits": {
            "task": "app.referral.tasks.retry_pending_credits",
            "schedule": crontab(minute="*/5"),
        },
        "requeue-failed-referral-credits": {
            "task": "app.referral.tasks.requeue_failed_credits",
            "schedule": crontab(minute=30, hour="*/6"),
        },
    },
)

celery_app.conf.task_routes = {
    "app.referral.tasks.*": {"queue": "referrals"},
}
