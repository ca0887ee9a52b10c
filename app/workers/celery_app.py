from celery import Celery
from celery.schedules import crontab

from app.core.config import get_settings
from app.core.logging import configure_logging, init_sentry

settings = get_settings()
configure_logging(settings.LOG_LEVEL)
init_sentry(settings, "worker")

celery_app = Celery(
    "shortlist_market",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "notifications.*": {"queue": "notifications"},
        "payments.*": {"queue": "payments"},
    },
)

celery_app.conf.beat_schedule = {
    "expire-stale-authorizations": {
        "task": "payments.expire_stale_authorizations",
        "schedule": crontab(minute=0),
    },
}

celery_app.autodiscover_tasks([
    "app.workers.notifications",
    "app.workers.payments",
])
