"""Database configuration and session management."""
from datetime import timezone

from sqlalchemy import DateTime, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.types import TypeDecorator

from railcert.config import settings

# Use PostgreSQL in production (from DATABASE_URL env var), SQLite locally
SQLALCHEMY_DATABASE_URL = settings.database_url

# Fix for Render/Heroku: they use postgres:// but SQLAlchemy needs postgresql://
if SQLALCHEMY_DATABASE_URL.startswith("postgres://"):
    SQLALCHEMY_DATABASE_URL = SQLALCHEMY_DATABASE_URL.replace("postgres://", "postgresql://", 1)


def build_engine(url: str, **kwargs):
    """Create an engine with the per-backend options this service expects."""
    if url.startswith("sqlite"):
        # SQLite-specific config
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        return create_engine(url, connect_args=connect_args, **kwargs)
    # PostgreSQL config (production)
    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=5,
        max_overflow=10,
        **kwargs
    )


engine = build_engine(SQLALCHEMY_DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


class UTCDateTime(TypeDecorator):
    """
    Timestamps are compared in UTC only.

    Stored as naive UTC so SQLite and PostgreSQL behave the same; loaded back as
    timezone-aware UTC.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None or value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def init_db(bind=None) -> None:
    """Create all tables. Importing the model modules registers them with Base."""
    import railcert.models.domain  # noqa: F401
    import railcert.models.evidence  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def get_db():
    """Dependency for FastAPI endpoints to get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Registers the append-only interceptors on every Session and Engine
import railcert.hard_locks  # noqa: E402,F401
