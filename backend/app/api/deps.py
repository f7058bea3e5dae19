import hmac
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session
from app.config import settings
from app.database import get_db
from app.notifications.push import Dispatcher, PushConfig, make_dispatcher
from app.services.subscriptions import SubscriptionStore

def get_store(db: Session = Depends(get_db)) -> SubscriptionStore:
    return SubscriptionStore(db)

def get_push_config(request: Request) -> PushConfig:
    return request.app.state.push_config

def get_dispatcher(
    request: Request,
    db: Session = Depends(get_db),
    config: PushConfig = Depends(get_push_config),
) -> Dispatcher:
    # Tests swap in a fake transport through app.state
    transport = getattr(request.app.state, "push_transport", None)
    return make_dispatcher(db, config, transport)

def require_cron_secret(authorization: str | None = Header(None)):
    """Guards every route that pushes to all subscribers."""
    if not settings.cron_secret:
        raise HTTPException(status_code=503, detail="Cron secret not configured")
    expected = f"Bearer {settings.cron_secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
