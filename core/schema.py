"""
core/schema.py -- SQLAlchemy Core schema and engine helpers for the SQL stores.

Uses SQLAlchemy Core (not ORM) so the dataclasses in core/models.py remain the
authoritative domain representation. SQLAlchemy compiles the same Table into
each dialect's DDL and DML: swapping SQLite for PostgreSQL or MySQL is a
connection string change, not a second set of query templates.

The table builders take the table name and column widths as arguments and are
used by value from sessions/sql_store.py and auth/store.py. Neither store
inherits from the other.

Timestamps are stored as fixed-width text (see core/models.py) so the format
round-trips byte for byte on every dialect and compares correctly as a string.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import BigInteger, Boolean, Column, Integer, MetaData, String, Table, create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import SingletonThreadPool

from core.errors import BackendUnavailableError
from core.models import TIMESTAMP_LENGTH

# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------


def session_table(metadata: MetaData, name: str, key_length: int) -> Table:
    return Table(
        name,
        metadata,
        Column("session_key", String(key_length), primary_key=True),
        Column("user_id", BigInteger, nullable=False, index=True),
        Column("created", String(TIMESTAMP_LENGTH), nullable=False),
        Column("valid_until", String(TIMESTAMP_LENGTH), nullable=False),
    )


def user_table(metadata: MetaData, name: str, password_length: int) -> Table:
    return Table(
        name,
        metadata,
        # Integer (not BigInteger) so SQLite maps id to ROWID and autoincrements.
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("username", String(150), nullable=False, unique=True),
        Column("first_name", String(30), nullable=False),
        Column("last_name", String(30), nullable=False),
        Column("email", String(254)),
        Column("password", String(password_length), nullable=False),
        Column("is_active", Boolean, nullable=False, default=True),
        Column("last_login", String(TIMESTAMP_LENGTH), nullable=False),
        # Without AUTOINCREMENT SQLite may hand a deleted user's id to a new one.
        sqlite_autoincrement=True,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases ignore the request.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _is_memory_sqlite(db_url: str) -> bool:
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite":
        return False
    return url.database in (None, "", ":memory:") or url.query.get("mode") == "memory"


def make_engine(db_url: str) -> Engine:
    """Create an Engine with the SQLite adjustments the stores rely on.

    In-memory SQLite databases get SingletonThreadPool named explicitly: each
    thread keeps its connection open, and with it the database.
    """
    connect_args: dict = {}
    kwargs: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    if _is_memory_sqlite(db_url):
        kwargs["poolclass"] = SingletonThreadPool
    engine = create_engine(db_url, connect_args=connect_args, **kwargs)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Single-writer guard
# ---------------------------------------------------------------------------


class WriterGuard:
    """Serializes store calls for backends that allow only one writer.

    SQLite rejects concurrent writers, so every call (reads included) holds
    one lock for its whole duration. With locking disabled the guard is a
    no-op and the database's own concurrency control applies.
    """

    def __init__(self, enabled: bool) -> None:
        self._lock: Optional[threading.Lock] = threading.Lock() if enabled else None

    @property
    def enabled(self) -> bool:
        return self._lock is not None

    @contextmanager
    def hold(self) -> Iterator[None]:
        if self._lock is None:
            yield
            return
        with self._lock:
            yield


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


@contextmanager
def unavailable_on_operational_error() -> Iterator[None]:
    """Re-raise connection-level failures as BackendUnavailableError.

    IntegrityError passes through untouched; stores map it to their own
    duplicate errors.
    """
    try:
        yield
    except OperationalError as exc:
        raise BackendUnavailableError(f"database unavailable: {exc.orig!r}") from exc
