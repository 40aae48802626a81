import functools
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from basecore.settings import get_settings


@functools.lru_cache()
def get_engine():
    """
    Get SQLAlchemy engine (cached).

    Lazily initialized to avoid import-time side effects.
    The engine is created using DATABASE_URL from settings.
    """
    settings = get_settings()
    return create_engine(settings.DATABASE_URL, pool_pre_ping=True, echo=False)


@functools.lru_cache()
def get_sessionmaker() -> sessionmaker:
    """Get SQLAlchemy sessionmaker (cached)."""
    engine = get_engine()
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    """
    Generator yielding a database session.

    Ensures the session is closed after use.
    """
    SessionLocal = get_sessionmaker()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory: sessionmaker | None = None) -> Iterator[Session]:
    """
    Transactional scope: commit on success, rollback on error, always close.

    Args:
        session_factory: sessionmaker to use (defaults to the cached one)
    """
    factory = session_factory or get_sessionmaker()
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
