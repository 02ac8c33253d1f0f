import logging
import time
from typing import Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.exc import DisconnectionError, OperationalError
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session
from sqlalchemy.pool import StaticPool

from core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Base(DeclarativeBase):
    pass


# Configure engine based on database type
if settings.DATABASE_URL.startswith("sqlite"):
    # For SQLite, use StaticPool for in-memory databases and enable foreign keys
    engine = create_engine(
        settings.DATABASE_URL,
        echo=settings.SQLALCHEMY_ECHO,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool if ":memory:" in settings.DATABASE_URL else None,
    )

    # Enable foreign key constraints for SQLite
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
else:
    # For PostgreSQL and other databases
    engine = create_engine(
        settings.DATABASE_URL,
        echo=settings.SQLALCHEMY_ECHO,
        future=True,
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def retry_on_disconnect(db: Session, fn: Callable[[], T], attempts: int | None = None, backoff: float | None = None) -> T:
    """
    Run an idempotent read, retrying transient connectivity failures with a
    fixed backoff. Never wrap writes with this: a lost connection after a
    write leaves the commit state unknown.
    """
    attempts = attempts or settings.DB_RETRY_ATTEMPTS
    backoff = settings.DB_RETRY_BACKOFF_SECONDS if backoff is None else backoff
    attempt = 1
    while True:
        try:
            return fn()
        except (OperationalError, DisconnectionError):
            db.rollback()
            if attempt >= attempts:
                raise
            logger.warning("Transient database error (attempt %s/%s), retrying in %ss", attempt, attempts, backoff)
            time.sleep(backoff)
            attempt += 1
