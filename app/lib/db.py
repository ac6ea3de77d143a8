# app/lib/db.py
"""SQLAlchemy engine singleton, declarative base and session helpers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.config import config
from app.logger import get_logger

log = get_logger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


class Base(DeclarativeBase):
    """Shared declarative base for all coloring-book models."""


def get_engine(url: Optional[str] = None) -> Engine:
    global _engine
    if _engine is None:
        url = url or config.database_url
        if url.startswith("sqlite"):
            _engine = create_engine(
                url,
                connect_args={"check_same_thread": False, "timeout": 30},
                echo=False,
            )
        else:
            _engine = create_engine(
                url,
                pool_size=10,
                max_overflow=5,
                pool_pre_ping=True,
                pool_recycle=3600,
                echo=False,
            )
        log.debug(f"database engine created for dialect {_engine.dialect.name}")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _session_factory


@contextmanager
def get_db_session() -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(url: Optional[str] = None) -> Engine:
    """Create the engine (optionally for an explicit URL) and all tables."""
    from app.lib import models  # noqa: F401  registers tables on Base.metadata

    engine = get_engine(url)
    Base.metadata.create_all(engine)
    return engine


def dispose_engine() -> None:
    """Dispose the global engine and clear the factory."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def insert_ignore(session: Session, model, values: dict) -> int:
    """
    INSERT ... ON CONFLICT DO NOTHING for the session's dialect.
    Returns the number of rows actually inserted (0 means the key already existed).
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values).on_conflict_do_nothing()
    else:
        raise RuntimeError(f"insert-or-ignore not supported for dialect {dialect}")
    return session.execute(stmt).rowcount
