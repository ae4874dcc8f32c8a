import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import models  # noqa: F401  registers the tables on SQLModel.metadata
from errors import AppError, DatabaseError

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Handle to the relational store.

    Nothing touches the engine until ``open()`` is called; ``close()`` disposes
    of it. Repositories never hold the engine, they get a session from here.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self._engine: Optional[Engine] = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise DatabaseError("Database is not open")
        return self._engine

    def open(self) -> "Database":
        if self._engine is not None:
            return self
        kwargs = {"echo": self.echo}
        if self.url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if self.url in ("sqlite://", "sqlite:///:memory:"):
                # keep a single connection so the in-memory schema survives
                kwargs["poolclass"] = StaticPool
        try:
            engine = create_engine(self.url, **kwargs)
            if self.url.startswith("sqlite"):
                event.listen(engine, "connect", _enable_sqlite_foreign_keys)
            SQLModel.metadata.create_all(engine)
        except SQLAlchemyError as e:
            logger.error("Could not open database %s", self.url, exc_info=True)
            raise DatabaseError(f"Failed to open database: {e}") from e
        self._engine = engine
        logger.info("Database opened at %s", self.url)
        return self

    def close(self) -> None:
        if self._engine is None:
            return
        self._engine.dispose()
        self._engine = None
        logger.info("Database closed")

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read-only work, or work that commits on its own."""
        with Session(self.engine, expire_on_commit=False) as sess:
            yield sess

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """Everything done on the yielded session commits together or not at all."""
        with Session(self.engine, expire_on_commit=False) as sess:
            try:
                yield sess
                sess.commit()
            except AppError:
                sess.rollback()
                raise
            except SQLAlchemyError as e:
                sess.rollback()
                logger.error("Transaction failed", exc_info=True)
                raise DatabaseError(f"Database operation failed: {e}") from e
            except Exception:
                sess.rollback()
                raise

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.exec_driver_sql("SELECT 1")
            return True
        except (SQLAlchemyError, DatabaseError):
            logger.warning("Database ping failed", exc_info=True)
            return False
