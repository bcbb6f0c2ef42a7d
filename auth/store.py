"""
auth/store.py -- Credential store contract and its SQLAlchemy Core implementation.

Pattern: Repository + Data Mapper. SQLCredentialStore is the repository;
_row_to_base_info is the mapper. Callers never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Passwords are hashed before any write. The stored hash never leaves this
  module: profile queries return BaseUserInformation, which has no hash field.

  validate() keeps two outcomes apart on purpose:
    - unknown username  -> UserNotFoundError (so UI code can offer sign-up)
    - wrong password    -> NO_USER_ID, no exception
  Both paths run one full hash check (TimingGuard for the unknown user), so
  response time does not reveal which case occurred.

Locking:
  SQLite allows a single writer. With lock=True (default for SQLite) every call
  holds one store-wide lock. Hashing happens outside the lock. Pass guard= to
  share the lock with a session store on the same database.

Usage:
    store = SQLCredentialStore("sqlite:///users.db")
    store.init()
    uid = store.insert("alice", "Alice", "Liddell", "alice@example.org", b"secret")
    store.validate("alice", b"secret")   # -> uid
    store.close()
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from sqlalchemy import MetaData, delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.passwords import PasswordHasher, TimingGuard, default_hasher
from core.config import get_settings
from core.errors import DataCorruptionError, DuplicateUsernameError, UserNotFoundError
from core.models import NO_USER_ID, BaseUserInformation, format_timestamp, parse_timestamp, utc_now
from core.schema import WriterGuard, make_engine, unavailable_on_operational_error, user_table

logger = logging.getLogger("keyward.auth")


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    def init(self) -> None:
        """Create the underlying structures if absent. Idempotent."""

    def insert(self, username: str, first_name: str, last_name: str, email: str, plaintext: bytes) -> int:
        """Create an active user and return its new ID.

        Raises DuplicateUsernameError if username is taken.
        """

    def validate(self, username: str, plaintext: bytes) -> int:
        """Return the user's ID if plaintext matches, NO_USER_ID if not.

        Raises UserNotFoundError if username does not exist.
        """

    def update_password(self, username: str, plaintext: bytes) -> None: ...

    def list_users(self) -> dict[int, str]:
        """Map every user ID to its username. Empty dict if there are none."""

    def get_user_name(self, user_id: int) -> str: ...

    def get_user_id(self, username: str) -> int: ...

    def get_user_base_info(self, username: str) -> BaseUserInformation: ...

    def delete_user(self, username: str) -> None: ...


# ---------------------------------------------------------------------------
# SQL implementation
# ---------------------------------------------------------------------------


class SQLCredentialStore:
    """CredentialStore over any SQLAlchemy dialect.

    The password column is sized from hasher.password_hash_length(), so the
    schema stays stable for a given hasher configuration.
    """

    def __init__(
        self,
        db_url: Optional[str] = None,
        *,
        engine: Optional[Engine] = None,
        hasher: Optional[PasswordHasher] = None,
        table_name: Optional[str] = None,
        lock: Optional[bool] = None,
        guard: Optional[WriterGuard] = None,
    ) -> None:
        settings = get_settings()
        self.hasher: PasswordHasher = hasher if hasher is not None else default_hasher()
        self._timing = TimingGuard(self.hasher)
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
        self._users = user_table(
            self._metadata,
            table_name or settings.user_table,
            self.hasher.password_hash_length(),
        )

    @property
    def locked(self) -> bool:
        return self._guard.enabled

    @property
    def guard(self) -> WriterGuard:
        return self._guard

    def init(self) -> None:
        """Create the users table if it does not exist. Safe on every startup."""
        with self._guard.hold(), unavailable_on_operational_error():
            self._metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, username: str, first_name: str, last_name: str, email: str, plaintext: bytes) -> int:
        hashed = self.hasher.generate_hash(plaintext)
        with self._guard.hold(), unavailable_on_operational_error():
            try:
                with self.engine.begin() as conn:
                    result = conn.execute(
                        self._users.insert().values(
                            username=username,
                            first_name=first_name,
                            last_name=last_name,
                            email=email,
                            password=hashed.decode("utf-8"),
                            is_active=True,
                            last_login=format_timestamp(utc_now()),
                        )
                    )
                    user_id = result.inserted_primary_key[0]
            except IntegrityError as exc:
                raise DuplicateUsernameError(username) from exc
        logger.info("Created user %r (id=%d)", username, user_id)
        return user_id

    def update_password(self, username: str, plaintext: bytes) -> None:
        hashed = self.hasher.generate_hash(plaintext)
        u = self._users
        with self._guard.hold(), unavailable_on_operational_error():
            with self.engine.begin() as conn:
                result = conn.execute(update(u).where(u.c.username == username).values(password=hashed.decode("utf-8")))
        if result.rowcount == 0:
            raise UserNotFoundError()
        logger.info("Password changed for user %r", username)

    def delete_user(self, username: str) -> None:
        u = self._users
        with self._guard.hold(), unavailable_on_operational_error():
            with self.engine.begin() as conn:
                result = conn.execute(delete(u).where(u.c.username == username))
        if result.rowcount == 0:
            raise UserNotFoundError()
        logger.info("Deleted user %r", username)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def validate(self, username: str, plaintext: bytes) -> int:
        u = self._users
        with self._guard.hold(), unavailable_on_operational_error():
            with self.engine.connect() as conn:
                row = conn.execute(select(u.c.id, u.c.password).where(u.c.username == username)).fetchone()
        if row is None:
            # Equalize timing -- do NOT return before running bcrypt.
            self._timing.burn(plaintext)
            raise UserNotFoundError()
        if not self.hasher.check_password(row.password.encode("utf-8"), plaintext):
            return NO_USER_ID
        with self._guard.hold(), unavailable_on_operational_error():
            with self.engine.begin() as conn:
                conn.execute(update(u).where(u.c.id == row.id).values(last_login=format_timestamp(utc_now())))
        return row.id

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_users(self) -> dict[int, str]:
        u = self._users
        with self._guard.hold(), unavailable_on_operational_error():
            with self.engine.connect() as conn:
                rows = conn.execute(select(u.c.id, u.c.username).order_by(u.c.id)).fetchall()
        return {row.id: row.username for row in rows}

    def get_user_name(self, user_id: int) -> str:
        u = self._users
        with self._guard.hold(), unavailable_on_operational_error():
            with self.engine.connect() as conn:
                name = conn.execute(select(u.c.username).where(u.c.id == user_id)).scalar()
        if name is None:
            raise UserNotFoundError()
        return name

    def get_user_id(self, username: str) -> int:
        u = self._users
        with self._guard.hold(), unavailable_on_operational_error():
            with self.engine.connect() as conn:
                user_id = conn.execute(select(u.c.id).where(u.c.username == username)).scalar()
        if user_id is None:
            raise UserNotFoundError()
        return user_id

    def get_user_base_info(self, username: str) -> BaseUserInformation:
        u = self._users
        with self._guard.hold(), unavailable_on_operational_error():
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(
                        u.c.id,
                        u.c.username,
                        u.c.first_name,
                        u.c.last_name,
                        u.c.email,
                        u.c.is_active,
                        u.c.last_login,
                    ).where(u.c.username == username)
                ).fetchone()
        if row is None:
            raise UserNotFoundError()
        return _row_to_base_info(row)

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_base_info(row) -> BaseUserInformation:
    try:
        last_login = parse_timestamp(row.last_login)
    except (TypeError, ValueError) as exc:
        raise DataCorruptionError(f"malformed last_login for user {row.username!r}: {exc}") from exc
    return BaseUserInformation(
        id=row.id,
        username=row.username,
        first_name=row.first_name,
        last_name=row.last_name,
        email=row.email or "",
        is_active=bool(row.is_active),
        last_login=last_login,
    )
