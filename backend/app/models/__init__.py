from app.models.subscription import PushSubscription
from app.models.broadcast import BroadcastRecord

__all__ = ["PushSubscription", "BroadcastRecord"]
