from datetime import datetime, timedelta, timezone
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.database import dialect_insert
from app.errors import StorageError
from app.models import BroadcastRecord

def as_utc(value: datetime) -> datetime:
    # SQLite hands timezone-aware columns back naive
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

class BroadcastLedger:
    """Server-side record of when each milestone was last pushed to everyone.

    The check and the record are separate statements, so two concurrent
    triggers for the same key can both pass ``should_broadcast``. Callers
    must ``record`` before fanning out to keep that window as small as
    possible.
    """

    def __init__(self, db: Session):
        self.db = db

    def last_sent_at(self, key: str) -> datetime | None:
        try:
            record = self.db.get(BroadcastRecord, key, populate_existing=True)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read broadcast record: {e}") from e
        return as_utc(record.last_sent_at) if record else None

    def should_broadcast(self, key: str, now: datetime, suppress_window: timedelta) -> bool:
        last = self.last_sent_at(key)
        if last is None:
            return True
        return last < as_utc(now) - suppress_window

    def record(self, key: str, now: datetime) -> None:
        now = as_utc(now)
        stmt = dialect_insert(self.db, BroadcastRecord.__table__).values(milestone_key=key, last_sent_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["milestone_key"],
            set_={"last_sent_at": stmt.excluded.last_sent_at},
        )
        try:
            self.db.execute(stmt)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageError(f"Failed to record broadcast for {key}") from e
