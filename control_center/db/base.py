"""
Engine, session and transaction plumbing.

Every service receives a ``Session``; nothing reaches for a global
connection. ``transaction()`` is where a composite operation commits.
"""

from contextlib import contextmanager
from typing import Dict, Generator, Iterator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..config import get_settings

# Async drivers in a configured URL are swapped for their sync equivalent
SYNC_DRIVERS: Dict[str, str] = {
    "postgresql+asyncpg": "postgresql+psycopg",
    "postgresql+psycopg_async": "postgresql+psycopg",
    "postgresql+aiopg": "postgresql+psycopg",
    "sqlite+aiosqlite": "sqlite",
}


class Base(DeclarativeBase):
    """Declarative base for the lifecycle tables."""


def get_database_url(raw_url: Optional[str] = None) -> str:
    """Resolve the database URL (settings by default) with a sync driver."""
    url = make_url(raw_url or get_settings().database_url)
    driver = SYNC_DRIVERS.get(url.drivername)
    if driver:
        url = url.set(drivername=driver)
    # str(url) masks the password
    return url.render_as_string(hide_password=False)


def build_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            # One shared connection, or every session sees an empty database
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    settings = get_settings()
    return create_engine(
        database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
    )


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Return the process engine, created on first use."""
    global _engine
    if _engine is None:
        _engine = build_engine(get_database_url())
    return _engine


def get_session_local() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autocommit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a request-scoped session."""
    with get_session_local()() as db:
        yield db


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Commit the enclosed unit of work, or roll all of it back.

    Leaf stores only ``add`` and ``flush``; this is the single boundary at
    which a composite operation becomes visible to other sessions.
    """
    try:
        yield db
        db.commit()
    except BaseException:
        db.rollback()
        raise


def init_database(engine: Optional[Engine] = None) -> None:
    """Create all tables and append-only triggers."""
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
