from celery import Celery
from celery.schedules import crontab
from celery.signals import after_setup_logger
from app.config import settings

celery_app = Celery(
    "countdown",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["app.workers.tasks"],
)

celery_app.conf.beat_schedule = {
    # Tick interval must stay below the milestone tolerance so a skipped tick cannot miss one
    "check-milestones-every-minute": {
        "task": "app.workers.tasks.check_milestones",
        "schedule": crontab(minute="*"),
    },
}

celery_app.conf.timezone = "UTC"

@after_setup_logger.connect
def _configure_logging(**kwargs):
    from app.logging import setup_logging
    setup_logging(settings.log_level)
