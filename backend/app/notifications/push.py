import asyncio
import enum
import json
import logging
from dataclasses import dataclass, asdict
from pywebpush import webpush, WebPushException
from app.config import Settings
from app.errors import ConfigError, StorageError, TransportGone, TransportTransient
from app.services.subscriptions import Subscription, SubscriptionStore

logger = logging.getLogger(__name__)

GONE_STATUS_CODES = (404, 410)

@dataclass(frozen=True)
class PushConfig:
    """Process-wide VAPID credentials, built once at startup and passed explicitly."""
    vapid_public_key: str
    vapid_private_key: str
    vapid_subject: str
    ttl: int = 86400
    max_concurrency: int = 50

    @classmethod
    def from_settings(cls, settings: Settings) -> "PushConfig":
        missing = [
            name for name in ("vapid_public_key", "vapid_private_key", "vapid_subject")
            if not getattr(settings, name)
        ]
        if missing:
            raise ConfigError(f"Push delivery needs {', '.join(n.upper() for n in missing)}")
        subject = settings.vapid_subject
        if not subject.startswith(("mailto:", "https://")):
            subject = f"mailto:{subject}"
        return cls(
            vapid_public_key=settings.vapid_public_key,
            vapid_private_key=settings.vapid_private_key,
            vapid_subject=subject,
            ttl=settings.push_ttl_seconds,
            max_concurrency=max(settings.push_max_concurrency, 1),
        )

def build_payload(body: str, title: str, icon: str, url: str = "/", tag: str | None = None) -> str:
    payload = {"title": title, "body": body, "icon": icon, "data": {"url": url}}
    if tag:
        payload["tag"] = tag
    return json.dumps(payload)

class WebPushTransport:
    """Blocking Web Push sender. Raises TransportGone or TransportTransient on failure."""

    def __init__(self, config: PushConfig):
        self.config = config

    def send(self, subscription: Subscription, payload: str) -> None:
        try:
            webpush(
                subscription_info=subscription.subscription_info(),
                data=payload,
                vapid_private_key=self.config.vapid_private_key,
                vapid_claims={"sub": self.config.vapid_subject},
                ttl=self.config.ttl,
            )
        except WebPushException as e:
            response = getattr(e, "response", None)
            status = getattr(response, "status_code", None)
            if status in GONE_STATUS_CODES:
                raise TransportGone(subscription.endpoint, status) from e
            body = getattr(response, "text", None)
            raise TransportTransient(str(e), status_code=status, body=body) from e

class DeliveryOutcome(enum.Enum):
    DELIVERED = "delivered"
    GONE = "gone"
    TRANSIENT_FAILURE = "failed"

@dataclass
class BroadcastSummary:
    attempted: int = 0
    delivered: int = 0
    gone: int = 0
    failed: int = 0

    @property
    def message(self) -> str:
        return f"Delivered to {self.delivered} of {self.attempted} subscribers"

    def tally(self, outcome: DeliveryOutcome) -> None:
        self.attempted += 1
        if outcome is DeliveryOutcome.DELIVERED:
            self.delivered += 1
        elif outcome is DeliveryOutcome.GONE:
            self.gone += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict:
        return {**asdict(self), "message": self.message}

class Dispatcher:
    """Fans a payload out to subscriptions and prunes the ones the push service rejects.

    Store calls go through ``asyncio.to_thread`` one at a time, never on the event loop.
    """

    def __init__(self, store: SubscriptionStore, transport, max_concurrency: int = 50):
        self.store = store
        self.transport = transport
        self.max_concurrency = max(max_concurrency, 1)

    async def deliver(self, subscription: Subscription, payload: str) -> DeliveryOutcome:
        """Send once and classify the result. Does not touch the store."""
        endpoint = subscription.endpoint
        try:
            await asyncio.to_thread(self.transport.send, subscription, payload)
        except TransportGone as e:
            logger.info("Push subscription gone (%s): %s", e.status_code, endpoint[:60])
            return DeliveryOutcome.GONE
        except TransportTransient as e:
            logger.warning("Web push failed for %s: %s", endpoint[:60], e)
            return DeliveryOutcome.TRANSIENT_FAILURE
        except Exception:
            logger.exception("Unexpected error sending web push to %s", endpoint[:60])
            return DeliveryOutcome.TRANSIENT_FAILURE
        return DeliveryOutcome.DELIVERED

    def remove_gone(self, endpoints: list[str]) -> None:
        for endpoint in endpoints:
            try:
                self.store.remove(endpoint)
            except StorageError:
                # Still gone; the next broadcast retries the delete
                logger.exception("Could not remove gone subscription %s", endpoint[:60])

    async def send_to_one(self, subscription: Subscription, payload: str) -> DeliveryOutcome:
        outcome = await self.deliver(subscription, payload)
        if outcome is DeliveryOutcome.GONE:
            await asyncio.to_thread(self.remove_gone, [subscription.endpoint])
        return outcome

    async def send_to_subscription(self, subscription: Subscription, payload: str) -> BroadcastSummary:
        summary = BroadcastSummary()
        summary.tally(await self.send_to_one(subscription, payload))
        return summary

    async def broadcast(self, payload: str) -> BroadcastSummary:
        subscriptions = await asyncio.to_thread(self.store.list_all)
        summary = BroadcastSummary()
        if not subscriptions:
            return summary

        limit = asyncio.Semaphore(self.max_concurrency)

        async def bounded(sub: Subscription) -> DeliveryOutcome:
            async with limit:
                return await self.deliver(sub, payload)

        outcomes = await asyncio.gather(
            *(bounded(sub) for sub in subscriptions),
            return_exceptions=True,
        )
        gone = []
        for sub, outcome in zip(subscriptions, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Delivery task crashed: %r", outcome)
                outcome = DeliveryOutcome.TRANSIENT_FAILURE
            if outcome is DeliveryOutcome.GONE:
                gone.append(sub.endpoint)
            summary.tally(outcome)

        if gone:
            await asyncio.to_thread(self.remove_gone, gone)
        logger.info(
            "Broadcast finished: attempted=%d delivered=%d gone=%d failed=%d",
            summary.attempted, summary.delivered, summary.gone, summary.failed,
        )
        return summary

def make_dispatcher(db, config: PushConfig, transport=None) -> Dispatcher:
    transport = transport or WebPushTransport(config)
    return Dispatcher(SubscriptionStore(db), transport, config.max_concurrency)
