"""
database.py — Process-scoped SQLAlchemy engine handle.

Each service owns exactly one `Database`, created by its resources object at
startup and disposed at shutdown. Components receive the handle explicitly and
open short transactions through it; no engine lives in module globals.

SQLite transactions are started with BEGIN IMMEDIATE, so concurrent writers
queue on the database lock (up to `busy_timeout`) instead of failing when a
reader tries to upgrade.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from .errors import UpstreamUnavailable
from .logging_config import get_logger

log = get_logger(__name__)


def utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands datetimes back naive; everything stored here is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _enable_immediate_transactions(engine: Engine, busy_timeout: float):
    @event.listens_for(engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy, not pysqlite, decide when a transaction begins.
        dbapi_connection.isolation_level = None
        dbapi_connection.execute(f"PRAGMA busy_timeout = {int(busy_timeout * 1000)}")
        dbapi_connection.execute("PRAGMA foreign_keys = ON")

    @event.listens_for(engine, "begin")
    def on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """
    Owns the SQLAlchemy engine of one service.

    Args:
        url (str): SQLAlchemy database URL, e.g. "sqlite:///cart.db".
        metadata (MetaData): Tables this service owns.
        busy_timeout (float): Seconds SQLite waits on a locked database before failing.
    """

    def __init__(self, url: str, metadata: MetaData, busy_timeout: float = 5.0):
        self.url = url
        self.metadata = metadata
        self.busy_timeout = busy_timeout
        self._engine: Optional[Engine] = None

    def connect(self):
        if self._engine is not None:
            return
        engine = create_engine(self.url, connect_args=self._connect_args())
        if engine.dialect.name == "sqlite":
            _enable_immediate_transactions(engine, self.busy_timeout)
        self._engine = engine
        log.info(f"Database engine created: {engine.url!r}")

    def close(self):
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            log.info(f"Database engine disposed: {self.url}")

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    def create_schema(self):
        try:
            self.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            log.critical(f"Could not create schema on {self.url}: {e}")
            raise UpstreamUnavailable(f"Storage unavailable: {e}") from e

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise UpstreamUnavailable(f"Database {self.url} is not open")
        return self._engine

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """
        Runs the enclosed statements as one transaction.

        Commits on success and rolls back on any exception. Database errors
        are translated into `UpstreamUnavailable`.

        Yields:
            Connection: A connection inside `engine.begin()`.
        """
        try:
            with self.engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            log.error(f"Transaction on {self.url} failed: {e}")
            raise UpstreamUnavailable(f"Storage error: {e.__class__.__name__}") from e

    def _connect_args(self) -> dict:
        if self.url.startswith("sqlite"):
            return {"check_same_thread": False, "timeout": self.busy_timeout}
        return {}
