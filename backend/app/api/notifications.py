from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, Field
from app.api.deps import get_dispatcher, get_push_config, get_store, require_cron_secret
from app.config import settings
from app.notifications.push import Dispatcher, PushConfig, build_payload
from app.services.subscriptions import Subscription, SubscriptionStore

router = APIRouter()

class SubscriptionKeys(BaseModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)

class PushSubscriptionCreate(BaseModel):
    endpoint: str = Field(min_length=1)
    keys: SubscriptionKeys
    owner_id: str | None = None

class NotifyRequest(BaseModel):
    message: str = Field(min_length=1)
    subscription: PushSubscriptionCreate | None = None

@router.get("/vapid-public-key")
def vapid_public_key(config: PushConfig = Depends(get_push_config)):
    return {"public_key": config.vapid_public_key}

@router.post("/subscribe")
def subscribe_push(data: PushSubscriptionCreate, store: SubscriptionStore = Depends(get_store)):
    store.upsert(data.endpoint, auth_secret=data.keys.auth, p256dh_key=data.keys.p256dh, owner_id=data.owner_id)
    return {"status": "subscribed"}

@router.delete("/subscribe")
def unsubscribe_push(endpoint: str, store: SubscriptionStore = Depends(get_store)):
    store.remove(endpoint)
    return {"status": "unsubscribed"}

@router.post("/notify")
async def notify(
    data: NotifyRequest,
    dispatcher: Dispatcher = Depends(get_dispatcher),
    authorization: str | None = Header(None),
):
    """Push ``message`` to one subscription, or to everyone when none is given.

    Pushing to everyone needs the cron secret.
    """
    if data.subscription is None:
        require_cron_secret(authorization)
    payload = build_payload(
        data.message,
        title=settings.countdown_title,
        icon=settings.notification_icon,
        url=settings.notification_url,
    )
    if data.subscription:
        sub = data.subscription
        summary = await dispatcher.send_to_subscription(
            Subscription(sub.endpoint, sub.keys.p256dh, sub.keys.auth, sub.owner_id), payload
        )
    else:
        summary = await dispatcher.broadcast(payload)
    return summary.to_dict()

@router.post("/announce", status_code=202, dependencies=[Depends(require_cron_secret)])
def announce(data: NotifyRequest):
    """Queue a broadcast on the worker instead of waiting for it."""
    from app.workers.tasks import broadcast_message
    broadcast_message.delay(data.message)
    return {"status": "queued"}
