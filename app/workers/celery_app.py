from celery import Celery
from app.core.config import settings

celery_app = Celery("topic_status_updates", broker=settings.REDIS_URL, backend=settings.REDIS_URL)

celery_app.conf.beat_schedule = {
    "ensure_status_update_consistency": {
        "task": "app.workers.tasks.status_updates.ensure_consistency",
        "schedule": settings.STATUS_UPDATE_SWEEP_SECONDS,
    },
}
celery_app.conf.timezone = settings.CELERY_TIMEZONE
celery_app.conf.imports = ("app.workers.tasks.status_updates",)
