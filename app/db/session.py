from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from typing import Generator

from app.config import get_settings
from app.db.monitor import StorageMonitor

settings = get_settings()

# SQLite doesn't support pool_size/max_overflow
if settings.database_url.startswith("sqlite"):
    engine = create_engine(
        settings.database_url,
        connect_args={
            "check_same_thread": False,
            # Busy timeout: concurrent writers wait this long for the lock
            "timeout": settings.store_timeout_seconds,
        },
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
else:
    engine = create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.store_timeout_seconds,
        connect_args={
            "connect_timeout": max(1, int(settings.store_timeout_seconds)),
            "options": f"-c statement_timeout={int(settings.store_timeout_seconds * 1000)}",
        },
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

storage_monitor = StorageMonitor(
    engine,
    interval=settings.reconnect_interval_seconds,
    max_backoff=settings.reconnect_backoff_max_seconds,
)


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
