from datetime import datetime
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base

class BroadcastRecord(Base):
    """Last time a milestone was pushed to every subscriber. One row per key."""
    __tablename__ = "milestone_broadcasts"

    milestone_key: Mapped[str] = mapped_column(String(32), primary_key=True)
    last_sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
