"""
Database utilities and connection management.

WHAT: SQLite database setup with WAL mode
WHY: Store listings, buy requests, rooms and the negotiation message log
HOW: SQLAlchemy sync engine with WAL mode, session factory and scoped sessions
"""

from sqlalchemy import create_engine, text, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
from pathlib import Path

from .config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Base for models
Base = declarative_base()


def create_db_engine(url: str, echo: bool = False) -> Engine:
    """
    Create a SQLite engine with WAL mode and foreign keys enabled.

    WHAT: Engine factory shared by the app and the tests
    WHY: Tests need in-memory engines with identical pragmas
    HOW: In-memory URLs get a StaticPool so every session sees the same database

    Args:
        url: SQLAlchemy database URL
        echo: Log emitted SQL

    Returns:
        Configured Engine
    """
    in_memory = url in ("sqlite://", "sqlite:///:memory:")

    if not in_memory and url.startswith("sqlite:///"):
        data_dir = Path(url.replace("sqlite:///", "")).parent
        data_dir.mkdir(parents=True, exist_ok=True)

    kwargs = {"connect_args": {"check_same_thread": False}, "echo": echo, "future": True}
    if in_memory:
        kwargs["poolclass"] = StaticPool

    db_engine = create_engine(url, **kwargs)

    @event.listens_for(db_engine, "connect")
    def set_sqlite_pragma(dbapi_conn, connection_record):
        """Enable WAL mode and FK constraints on every new connection."""
        cursor = dbapi_conn.cursor()
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return db_engine


def create_session_factory(db_engine: Engine) -> sessionmaker:
    """Session factory bound to an engine."""
    return sessionmaker(
        bind=db_engine,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False
    )


engine = create_db_engine(settings.DATABASE_URL, echo=settings.DEBUG)
SessionLocal = create_session_factory(engine)


@contextmanager
def session_scope(factory: sessionmaker):
    """
    Transactional scope around a series of operations.

    Commits on success, rolls back and re-raises on error.

    Yields:
        Session: SQLAlchemy session
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def ping_database(db_engine: Engine | None = None) -> dict:
    """
    Check database connectivity.

    Returns:
        Dict with status and info
    """
    db_engine = db_engine or engine
    try:
        with db_engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
        return {"available": True, "url": str(db_engine.url), "error": None}
    except Exception as e:
        logger.error(f"Database ping failed: {e}")
        return {"available": False, "url": str(db_engine.url), "error": str(e)}


def init_db(db_engine: Engine | None = None):
    """Create all tables."""
    # Import models so they register on Base.metadata
    from . import models  # noqa: F401

    db_engine = db_engine or engine
    Base.metadata.create_all(bind=db_engine)
    logger.info(f"Database initialized ({db_engine.url})")


def close_db(db_engine: Engine | None = None):
    """Close database connections."""
    (db_engine or engine).dispose()
    logger.info("Database connections closed")
