import asyncio
import json
import time
from unittest.mock import patch
from datetime import datetime, timedelta, timezone
from app.milestones import MilestoneDefinition
from app.notifications.push import BroadcastSummary, Dispatcher
from app.services.broadcast_ledger import BroadcastLedger
from app.services.milestone_trigger import (
    FAILED, NO_MILESTONE, SENT, SUPPRESSED, check_milestones, run_scheduled_check,
)
from app.services.subscriptions import SubscriptionStore

T0 = datetime(2026, 11, 19, 3, 59, tzinfo=timezone.utc)
TARGET = T0 + timedelta(minutes=61)
H1_ONLY = (MilestoneDefinition("h1", 3_600_000, "1 hour until GTA VI release!"),)

def tick(db, dispatcher, now, table=H1_ONLY, target=TARGET):
    return asyncio.run(check_milestones(
        db, dispatcher, target, now=now,
        tolerance=timedelta(minutes=1), suppress_window=timedelta(hours=1),
        table=table, title="GTA VI", icon="/icon.png",
    ))

def test_milestone_fires_once_across_consecutive_ticks(db_session, make_subscription, fake_transport):
    make_subscription("https://push.example.com/a")
    make_subscription("https://push.example.com/b")
    dispatcher = Dispatcher(SubscriptionStore(db_session), fake_transport)

    # remaining 3,660,000ms: exactly one tolerance away, not a match
    first = tick(db_session, dispatcher, T0)
    assert first.status == NO_MILESTONE

    # remaining 3,600,030ms
    now = TARGET - timedelta(milliseconds=3_600_030)
    second = tick(db_session, dispatcher, now)
    assert second.status == SENT
    assert second.milestone_key == "h1"
    assert second.summary.delivered == 2

    # 60s later still inside tolerance, but already broadcast
    third = tick(db_session, dispatcher, now + timedelta(seconds=60))
    assert third.status == SUPPRESSED
    assert len(fake_transport.sent) == 2

def test_payload_is_built_from_milestone_label(db_session, make_subscription, fake_transport):
    make_subscription("https://push.example.com/a")
    dispatcher = Dispatcher(SubscriptionStore(db_session), fake_transport)
    tick(db_session, dispatcher, TARGET - timedelta(hours=1))

    payload = json.loads(fake_transport.sent[0][1])
    assert payload["body"] == "1 hour until GTA VI release!"
    assert payload["title"] == "GTA VI"
    assert payload["tag"] == "h1"

def test_record_is_written_before_fan_out(db_session):
    seen = {}

    class CheckingDispatcher:
        async def broadcast(self, payload):
            seen["last"] = BroadcastLedger(db_session).last_sent_at("h1")
            return BroadcastSummary()

    now = TARGET - timedelta(hours=1)
    result = tick(db_session, CheckingDispatcher(), now)
    assert result.status == SENT
    assert seen["last"] == now

def test_release_fires_once_and_then_stays_quiet(db_session, make_subscription, fake_transport):
    make_subscription("https://push.example.com/a")
    dispatcher = Dispatcher(SubscriptionStore(db_session), fake_transport)

    at_release = tick(db_session, dispatcher, TARGET)
    assert at_release.status == SENT
    assert at_release.milestone_key == "now"

    # Well past the suppression window the release is still not repeated
    later = tick(db_session, dispatcher, TARGET + timedelta(hours=5))
    assert later.status == SUPPRESSED
    assert len(fake_transport.sent) == 1

def test_broadcast_failure_is_reported_not_raised(db_session):
    class ExplodingDispatcher:
        async def broadcast(self, payload):
            raise RuntimeError("transport misconfigured")

    result = tick(db_session, ExplodingDispatcher(), TARGET - timedelta(hours=1))
    assert result.status == FAILED
    assert result.error == "transport misconfigured"
    assert result.summary.attempted == 0
    assert result.to_dict()["milestone"] == "h1"

def test_no_milestone_does_not_touch_ledger(db_session, fake_transport):
    dispatcher = Dispatcher(SubscriptionStore(db_session), fake_transport)
    result = tick(db_session, dispatcher, TARGET - timedelta(hours=2))
    assert result.status == NO_MILESTONE
    assert BroadcastLedger(db_session).last_sent_at("h1") is None

def test_scheduled_check_uses_configured_target(db_session, make_subscription, fake_transport):
    from app.config import settings
    make_subscription("https://push.example.com/a")
    dispatcher = Dispatcher(SubscriptionStore(db_session), fake_transport)

    now = settings.countdown_target - timedelta(days=3, seconds=10)
    result = asyncio.run(run_scheduled_check(db_session, dispatcher, now=now))

    assert result.status == SENT
    assert result.milestone_key == "d3"

def test_slow_ledger_does_not_stall_event_loop(db_session):
    class SlowLedger(BroadcastLedger):
        def last_sent_at(self, key):
            time.sleep(0.3)
            return super().last_sent_at(key)

    class QuietDispatcher:
        async def broadcast(self, payload):
            return BroadcastSummary()

    async def run():
        gaps = []
        done = asyncio.Event()

        async def heartbeat():
            last = time.monotonic()
            while not done.is_set():
                await asyncio.sleep(0.05)
                gaps.append(time.monotonic() - last)
                last = time.monotonic()

        beat = asyncio.create_task(heartbeat())
        with patch("app.services.milestone_trigger.BroadcastLedger", SlowLedger):
            result = await check_milestones(
                db_session, QuietDispatcher(), TARGET, now=TARGET - timedelta(hours=1),
                tolerance=timedelta(minutes=1), table=H1_ONLY, title="GTA VI",
            )
        done.set()
        await beat
        return result, gaps

    result, gaps = asyncio.run(run())
    assert result.status == SENT
    assert max(gaps) < 0.2
