from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool
from app.config import settings


def _normalized_database_url(raw_url: str) -> str:
    """Accept Heroku-style postgres:// URLs, which SQLAlchemy no longer recognises."""
    raw_url = (raw_url or "").strip() or "sqlite:///./countdown.db"
    if raw_url.startswith("postgres://"):
        return "postgresql://" + raw_url[len("postgres://"):]
    return raw_url


DATABASE_URL = _normalized_database_url(settings.database_url)

# In-memory SQLite needs a single shared connection so every session sees the tables
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
_engine_kwargs = {"poolclass": StaticPool} if DATABASE_URL.startswith("sqlite") and ":memory:" in DATABASE_URL else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, **_engine_kwargs)
SessionLocal = sessionmaker(bind=engine, autoflush=False)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    from app import models  # noqa: F401
    Base.metadata.create_all(engine)


def dialect_insert(db, table):
    """``INSERT`` construct that supports ``on_conflict_do_update`` on the bound backend."""
    if db.get_bind().dialect.name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    else:
        from sqlalchemy.dialects.sqlite import insert
    return insert(table)
