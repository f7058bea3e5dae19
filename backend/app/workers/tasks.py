import asyncio
from datetime import timedelta
from app.workers.celery_app import celery_app
from app.config import settings
from app.database import SessionLocal
from app.milestones import MILESTONES, check_table_spacing
from app.notifications.push import PushConfig, build_payload, make_dispatcher
from app.services.milestone_trigger import run_scheduled_check

@celery_app.task(name="app.workers.tasks.check_milestones")
def check_milestones():
    """Scheduled once a minute by beat. Missing push config fails the task outright."""
    check_table_spacing(MILESTONES, timedelta(seconds=settings.milestone_tolerance_seconds))
    config = PushConfig.from_settings(settings)
    db = SessionLocal()
    try:
        result = asyncio.run(run_scheduled_check(db, make_dispatcher(db, config)))
        return result.to_dict()
    finally:
        db.close()

@celery_app.task(name="app.workers.tasks.broadcast_message")
def broadcast_message(message: str):
    """Push an ad-hoc message to every subscriber. Used for manual announcements."""
    config = PushConfig.from_settings(settings)
    db = SessionLocal()
    try:
        payload = build_payload(
            message,
            title=settings.countdown_title,
            icon=settings.notification_icon,
            url=settings.notification_url,
        )
        summary = asyncio.run(make_dispatcher(db, config).broadcast(payload))
        return summary.to_dict()
    finally:
        db.close()
