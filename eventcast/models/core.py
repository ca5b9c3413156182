# eventcast/models/core.py

"""
Core database setup.

Provides the declarative base, engine initialization and session helpers
shared by every model and repository.
"""

import logging
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


SessionLocal = sessionmaker()
_engine = None


def init_db(database_url, echo=False, create_tables=True):
    """
    Create the engine, bind the session factory and (optionally) create tables.

    In-memory SQLite shares one connection across threads so records created
    from worker threads remain visible to the event loop's session.
    """
    global _engine
    engine_kwargs = {'echo': echo}
    if database_url.startswith('sqlite'):
        engine_kwargs['connect_args'] = {'check_same_thread': False}
        if ':memory:' in database_url:
            engine_kwargs['poolclass'] = StaticPool
    else:
        engine_kwargs['pool_pre_ping'] = True

    _engine = create_engine(database_url, **engine_kwargs)
    SessionLocal.configure(bind=_engine)

    if create_tables:
        # Import models so they register on Base.metadata
        from eventcast.models import events, scheduling  # noqa: F401
        Base.metadata.create_all(_engine)
        logger.info("Database tables ensured")

    return _engine


def get_engine():
    return _engine


def get_session():
    if _engine is None:
        raise RuntimeError("Database not initialized; call init_db() first")
    return SessionLocal()


@contextmanager
def session_scope():
    """Provide a transactional scope around a series of operations."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
