"""
Database Session Management
===========================

One engine per DATABASE_URL, built lazily from settings so tests can point
the app at a fresh SQLite file. PostgreSQL in production.
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool

from ..config import get_settings
from .models import Base

logger = logging.getLogger(__name__)

_engine = None
_engine_url = None

# Bound in get_engine(); objects stay readable after commit for response models
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)


def _build_engine(settings):
    url = settings.database_url
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False}, echo=settings.sql_echo)

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        connect_args={"connect_timeout": settings.db_connect_timeout},
        echo=settings.sql_echo,
    )


def get_engine():
    """Engine for the configured DATABASE_URL; rebuilt when the URL changes."""
    global _engine, _engine_url
    settings = get_settings()
    if _engine is None or _engine_url != settings.database_url:
        if _engine is not None:
            _engine.dispose()
        _engine = _build_engine(settings)
        _engine_url = settings.database_url
        SessionLocal.configure(bind=_engine)
        logger.debug(f"Database engine bound to {_engine.url.render_as_string(hide_password=True)}")
    return _engine


def reset_engine():
    """Drop the cached engine (tests)."""
    global _engine, _engine_url
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _engine_url = None
    SessionLocal.configure(bind=None)


def init_db():
    """Create any missing tables."""
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database initialized")


def check_db() -> bool:
    """True if the database answers a trivial query (health endpoint)."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database check failed: {e}")
        return False


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency yielding a request-scoped session.

    Services commit their own work; the session is only closed here.
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Session for jobs, scripts and the WebSocket handler.

    Commits on success and rolls back if the block raises.
    """
    get_engine()
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
