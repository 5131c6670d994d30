"""SQLAlchemy engine, session factory and transaction scope."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from docrag.config import settings
from docrag.exceptions import PersistenceError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base every ORM row inherits from."""


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # noqa: ANN001
    # SQLite ignores ON DELETE CASCADE unless this is set per connection.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(url: str | None = None, *, echo: bool | None = None) -> Engine:
    """Create the engine for *url* (defaults to ``settings.database_url``).

    In-memory SQLite URLs get a :class:`StaticPool` so every session sees
    the same database; file-backed SQLite gets its parent directory
    created.
    """
    url = url or settings.database_url
    echo = settings.database_echo if echo is None else echo
    parsed = make_url(url)
    kwargs: dict = {}

    if parsed.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if parsed.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(url, echo=echo, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session factory with explicit transaction control.

    ``expire_on_commit=False`` keeps returned rows readable after their
    session closes.
    """
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables.  Call once at startup."""
    from docrag.storage import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database initialised at %s", engine.url.render_as_string(hide_password=True))


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Run one unit of work: commit on success, roll back on error.

    SQLAlchemy failures surface as :class:`PersistenceError`; any other
    exception is re-raised unchanged after the rollback.
    """
    session: Session = session_factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Record store operation failed: %s", exc)
        raise PersistenceError(f"Record store operation failed: {exc.__class__.__name__}") from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
