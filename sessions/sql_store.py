"""
sessions/sql_store.py -- SQLAlchemy Core session store (relational backend).

Pattern: Repository + Data Mapper. SQLSessionStore is the repository;
_row_to_key_data is the mapper. Callers never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Expiry:
  Rows are not removed when they expire. get_data() returns them with their
  stored valid_until and the controller decides liveness; delete_invalid_keys()
  is the sweep, run periodically by the host application. A row is invalid iff
  valid_until <= now, so the sweep deletes WHERE valid_until <= :now.

Locking:
  SQLite allows a single writer. With lock=True (default for sqlite:// URLs)
  every call holds one store-wide lock; server databases are left to their own
  concurrency control.

Usage:
    store = SQLSessionStore("sqlite:///sessions.db")
    store.init()
    data = store.create_entry(42, key, timedelta(hours=1))
    store.close()
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import MetaData, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from core.config import get_settings
from core.errors import DataCorruptionError, DuplicateKeyError, KeyNotFoundError
from core.models import SessionKeyData, format_timestamp, new_key_data, parse_timestamp, utc_now
from core.schema import WriterGuard, make_engine, session_table, unavailable_on_operational_error

logger = logging.getLogger("keyward.sessions.sql")


class SQLSessionStore:
    """SessionStore over any SQLAlchemy dialect.

    Pass either db_url (default Settings.database_url; the store owns and
    disposes the engine) or an existing engine shared with other stores (the
    caller disposes it). lock defaults to Settings.lock_database, and when that
    is unset, to whether the engine is SQLite. Stores sharing one SQLite engine
    should also share one guard; a guard passed in overrides lock.
    """

    def __init__(
        self,
        db_url: Optional[str] = None,
        *,
        engine: Optional[Engine] = None,
        table_name: Optional[str] = None,
        key_length: Optional[int] = None,
        lock: Optional[bool] = None,
        guard: Optional[WriterGuard] = None,
    ) -> None:
        settings = get_settings()
        self._owns_engine = engine is None
        self.engine: Engine = engine if engine is not None else make_engine(db_url or settings.database_url)
        if guard is None:
            if lock is None:
                lock = settings.lock_database
            if lock is None:
                lock = self.engine.dialect.name == "sqlite"
            guard = WriterGuard(lock)
        self._guard = guard
        self._metadata = MetaData()
        self._table = session_table(
            self._metadata,
            table_name or settings.session_table,
            key_length or settings.session_key_length,
        )

    @property
    def locked(self) -> bool:
        return self._guard.enabled

    @property
    def guard(self) -> WriterGuard:
        return self._guard

    def init(self) -> None:
        """Create the session table if it does not exist. Safe on every startup."""
        with self._guard.hold(), unavailable_on_operational_error():
            self._metadata.create_all(self.engine)

    def create_entry(self, user: Any, key: str, valid_duration: timedelta) -> SessionKeyData:
        data = new_key_data(user, valid_duration)
        with self._guard.hold(), unavailable_on_operational_error():
            try:
                with self.engine.begin() as conn:
                    conn.execute(
                        self._table.insert().values(
                            session_key=key,
                            user_id=user,
                            created=format_timestamp(data.creation_time),
                            valid_until=format_timestamp(data.valid_until),
                        )
                    )
            except IntegrityError as exc:
                raise DuplicateKeyError() from exc
        return data

    def get_data(self, key: str) -> SessionKeyData:
        t = self._table
        with self._guard.hold(), unavailable_on_operational_error():
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(t.c.user_id, t.c.created, t.c.valid_until).where(t.c.session_key == key)
                ).fetchone()
        if row is None:
            raise KeyNotFoundError()
        return _row_to_key_data(row)

    def delete_key(self, key: str) -> None:
        with self._guard.hold(), unavailable_on_operational_error():
            with self.engine.begin() as conn:
                conn.execute(delete(self._table).where(self._table.c.session_key == key))

    def delete_entries_for_user(self, user: Any) -> int:
        with self._guard.hold(), unavailable_on_operational_error():
            with self.engine.begin() as conn:
                result = conn.execute(delete(self._table).where(self._table.c.user_id == user))
        return result.rowcount

    def delete_invalid_keys(self) -> int:
        now = format_timestamp(utc_now())
        with self._guard.hold(), unavailable_on_operational_error():
            with self.engine.begin() as conn:
                result = conn.execute(delete(self._table).where(self._table.c.valid_until <= now))
        if result.rowcount:
            logger.info("Removed %d expired sessions", result.rowcount)
        return result.rowcount

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_key_data(row) -> SessionKeyData:
    try:
        created = parse_timestamp(row.created)
        valid_until = parse_timestamp(row.valid_until)
    except (TypeError, ValueError) as exc:
        raise DataCorruptionError(f"malformed session timestamp: {exc}") from exc
    return SessionKeyData(user=row.user_id, creation_time=created, valid_until=valid_until)
