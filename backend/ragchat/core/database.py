"""
Database engine, session factory and transaction scope.
"""

from contextlib import contextmanager
from typing import Iterator

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from ragchat.core.config import get_config
from ragchat.core.errors import StorageFailure

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    pass


def _unicode_lower(value):
    return value.lower() if isinstance(value, str) else value


def build_engine(url: str, echo: bool = False, **kwargs) -> Engine:
    """Create an engine, enabling foreign key enforcement on SQLite.

    SQLite connections also get a Unicode-aware lower() in place of the
    built-in, which folds ASCII letters only.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})  # needed for SQLite + FastAPI

    db_engine = create_engine(url, echo=echo, **kwargs)

    if db_engine.dialect.name == "sqlite":
        @event.listens_for(db_engine, "connect")
        def _configure_connection(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
            dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)

    return db_engine


def build_session_factory(db_engine: Engine) -> sessionmaker:
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False, expire_on_commit=False)


engine = build_engine(get_config().database.url, echo=get_config().database.echo)
SessionLocal = build_session_factory(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Run a unit of work in one transaction.

    Commits when the block exits normally and rolls back on any exception.
    Closing the session discards anything left uncommitted, so an abandoned
    mutation is never partially visible.

    Raises:
        StorageFailure: If the database rejects the work or the commit
    """
    db = session_factory()
    try:
        yield db
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Transaction rolled back", error=str(e), error_type=type(e).__name__)
        raise StorageFailure("Storage operation failed") from e
    except BaseException:
        db.rollback()
        raise
    finally:
        db.close()
