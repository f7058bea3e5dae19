import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.database import dialect_insert
from app.errors import StorageError
from app.models import PushSubscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Subscription:
    """Detached copy of a stored subscription, safe to hand to worker threads."""
    endpoint: str
    p256dh_key: str
    auth_secret: str
    owner_id: str | None = None

    @classmethod
    def from_row(cls, row: PushSubscription) -> "Subscription":
        return cls(row.endpoint, row.p256dh_key, row.auth_secret, row.owner_id)

    def subscription_info(self) -> dict:
        """Shape pywebpush expects for ``subscription_info``."""
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh_key, "auth": self.auth_secret}}


class SubscriptionStore:
    """One row per push endpoint. Failures surface as StorageError, never retried here."""

    def __init__(self, db: Session):
        self.db = db

    def upsert(self, endpoint: str, auth_secret: str, p256dh_key: str, owner_id: str | None = None) -> None:
        """Insert or rotate keys in place for an existing endpoint."""
        now = datetime.now(timezone.utc)
        stmt = dialect_insert(self.db, PushSubscription.__table__).values(
            endpoint=endpoint,
            auth_secret=auth_secret,
            p256dh_key=p256dh_key,
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["endpoint"],
            set_={
                "auth_secret": stmt.excluded.auth_secret,
                "p256dh_key": stmt.excluded.p256dh_key,
                "owner_id": stmt.excluded.owner_id,
                "updated_at": now,
            },
        )
        self._run(stmt, "upsert")

    def remove(self, endpoint: str) -> None:
        self._run(delete(PushSubscription).where(PushSubscription.endpoint == endpoint), "remove")

    def get(self, endpoint: str) -> Subscription | None:
        try:
            row = self.db.get(PushSubscription, endpoint, populate_existing=True)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load subscription: {e}") from e
        return Subscription.from_row(row) if row else None

    def list_all(self) -> list[Subscription]:
        try:
            rows = self.db.scalars(select(PushSubscription)).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list subscriptions: {e}") from e
        return [Subscription.from_row(row) for row in rows]

    def _run(self, stmt, op: str) -> None:
        try:
            self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Subscription %s failed: %s", op, e)
            raise StorageError(f"Subscription {op} failed") from e
