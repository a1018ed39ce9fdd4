"""Engine setup and transaction scoping.

:func:`transaction` is the only way sessions are created: a top-level call
opens a database transaction that commits on success and rolls back on any
exception; passing an existing session opens a savepoint inside it instead,
so a failing sub-step can be rolled back without losing the outer unit.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

__all__ = ["Database"]


def _configure_sqlite(engine: Engine) -> None:
    """Turn on foreign keys and let SQLAlchemy own BEGIN so SAVEPOINT works.

    pysqlite's own transaction handling defers BEGIN and breaks nested
    savepoints; the recipe from the SQLAlchemy SQLite dialect docs disables
    it and emits BEGIN from the ``begin`` event.  The transaction starts
    IMMEDIATE so that concurrent writers queue on the busy timeout instead
    of failing when a read lock is upgraded; the branch-head check then
    runs against the latest committed head.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Owns an engine and hands out transactional sessions."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self._sessionmaker = sessionmaker(bind=engine, expire_on_commit=False)

    def __repr__(self) -> str:
        return f"Database({self.engine.url.render_as_string(hide_password=True)!r})"

    @classmethod
    def connect(cls, url: str, *, echo: bool = False) -> Database:
        """Create an engine for *url* and make sure the schema exists."""
        engine = create_engine(url, echo=echo)
        if engine.dialect.name == "sqlite":
            _configure_sqlite(engine)
        Base.metadata.create_all(engine)
        logger.debug("Connected to {}", make_url(url).render_as_string(hide_password=True))
        return cls(engine)

    @contextmanager
    def transaction(self, session: Session | None = None) -> Iterator[Session]:
        """Yield a session scoped to one atomic unit.

        Args:
            session: An enclosing session.  When given, the block runs in a
                savepoint of that session and nothing is committed here.
        """
        if session is not None:
            with session.begin_nested():
                yield session
            return
        with self._sessionmaker.begin() as new_session:
            yield new_session

    def dispose(self) -> None:
        self.engine.dispose()
