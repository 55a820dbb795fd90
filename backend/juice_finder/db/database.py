"""
Database connection and session management.
Pooled engine for PostgreSQL, StaticPool engine for SQLite (local/dev/tests).
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from typing import Generator
import logging
import math
import os

from juice_finder.core.config import settings
from juice_finder.db.models import Base

logger = logging.getLogger(__name__)


def _null_safe(fn):
    def wrapper(value):
        if value is None:
            return None
        return fn(value)
    return wrapper


# Functions PostgreSQL has built in: math for the distance ordering, and a
# Unicode-aware lower() (SQLite only folds ASCII) for name search
_SQLITE_FUNCTIONS = {
    "lower": str.lower,
    "sqrt": math.sqrt,
    "cos": math.cos,
    "radians": math.radians,
}

# Determine if using SQLite
_is_sqlite = settings.database_url.startswith("sqlite")

if _is_sqlite:
    # Resolve relative path to the backend directory
    db_path = settings.database_url.replace("sqlite:///", "")
    if db_path.startswith("./"):
        db_path = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), db_path[2:])
        db_url = f"sqlite:///{db_path}"
    else:
        db_url = settings.database_url

    engine = create_engine(
        db_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        for name, fn in _SQLITE_FUNCTIONS.items():
            dbapi_conn.create_function(name, 1, _null_safe(fn), deterministic=True)
else:
    # PostgreSQL: production pooling
    _connect_args = {
        "connect_timeout": 10,
        "options": "-c statement_timeout=30000",
    }

    engine = create_engine(
        settings.database_url,
        poolclass=QueuePool,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_recycle=settings.database_pool_recycle,
        pool_pre_ping=settings.database_pool_pre_ping,
        pool_timeout=30,
        echo=False,
        connect_args=_connect_args,
    )

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_conn, connection_record):
        """Configure connection-level settings."""
        cursor = dbapi_conn.cursor()
        cursor.execute("SET application_name = 'juice-finder'")
        cursor.close()

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def get_db() -> Generator[Session, None, None]:
    """Dependency injection for a request-scoped database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Initialize database tables at startup."""
    logger.info("Initializing database schema...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema initialized")
