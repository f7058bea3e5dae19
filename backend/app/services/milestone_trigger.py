import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from sqlalchemy.orm import Session
from app.config import settings
from app.milestones import MILESTONES, NOW, MilestoneDefinition, match_milestone, remaining
from app.notifications.push import BroadcastSummary, Dispatcher, build_payload
from app.services.broadcast_ledger import BroadcastLedger

logger = logging.getLogger(__name__)

NO_MILESTONE = "no_milestone"
SUPPRESSED = "suppressed"
SENT = "sent"
FAILED = "failed"

@dataclass
class TriggerResult:
    status: str
    milestone_key: str | None = None
    summary: BroadcastSummary = field(default_factory=BroadcastSummary)
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "milestone": self.milestone_key,
            "summary": self.summary.to_dict(),
            "error": self.error,
        }

def claim_milestone(
    ledger: BroadcastLedger,
    milestone: MilestoneDefinition,
    now: datetime,
    suppress_window: timedelta,
) -> bool:
    """Gate and record in one blocking call. True means this tick owns the broadcast."""
    if milestone.terminal and ledger.last_sent_at(milestone.key) is not None:
        # Target reached and announced; nothing fires after this
        return False
    if not ledger.should_broadcast(milestone.key, now, suppress_window):
        logger.debug("Milestone %s already broadcast within %s", milestone.key, suppress_window)
        return False
    # Record before fan-out so an overlapping tick sees it
    ledger.record(milestone.key, now)
    return True

async def check_milestones(
    db: Session,
    dispatcher: Dispatcher,
    target: datetime,
    *,
    now: datetime | None = None,
    tolerance: timedelta = timedelta(minutes=1),
    suppress_window: timedelta = timedelta(hours=1),
    table: tuple[MilestoneDefinition, ...] = MILESTONES,
    now_milestone: MilestoneDefinition = NOW,
    title: str = "",
    icon: str = "",
    url: str = "/",
) -> TriggerResult:
    """One scheduler tick: push the due milestone to everyone, at most once per window.

    Never raises. Failures come back as a ``failed`` result so the next tick runs as usual.
    """
    now = now or datetime.now(timezone.utc)
    left = remaining(target, now)
    milestone = match_milestone(left, tolerance, table, now_milestone)
    if milestone is None:
        return TriggerResult(NO_MILESTONE)

    try:
        claimed = await asyncio.to_thread(claim_milestone, BroadcastLedger(db), milestone, now, suppress_window)
        if not claimed:
            return TriggerResult(SUPPRESSED, milestone.key)
        logger.info("Broadcasting milestone %s (%s left)", milestone.key, left)
        payload = build_payload(milestone.label, title=title, icon=icon, url=url, tag=milestone.key)
        summary = await dispatcher.broadcast(payload)
    except Exception as e:
        logger.exception("Milestone %s broadcast failed", milestone.key)
        return TriggerResult(FAILED, milestone.key, error=str(e))

    return TriggerResult(SENT, milestone.key, summary)

async def run_scheduled_check(db: Session, dispatcher: Dispatcher, now: datetime | None = None) -> TriggerResult:
    """``check_milestones`` with everything taken from settings. Used by beat and the cron endpoint."""
    result = await check_milestones(
        db,
        dispatcher,
        settings.countdown_target,
        now=now,
        tolerance=timedelta(seconds=settings.milestone_tolerance_seconds),
        suppress_window=timedelta(seconds=settings.broadcast_suppress_seconds),
        title=settings.countdown_title,
        icon=settings.notification_icon,
        url=settings.notification_url,
    )
    if result.status != NO_MILESTONE:
        logger.info("Milestone check: %s", result.to_dict())
    return result
