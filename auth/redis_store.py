"""
auth/redis_store.py -- Credential store on Redis.

Key layout (prefixes configurable, defaults from Settings):
  user:<username>   hash {id, username, first_name, last_name, email,
                          is_active ("1"/"0"), last_login, password}
  userID:<id>       string -> username (reverse lookup for get_user_name)
  nxtUserid         counter; INCR hands out IDs, so an ID is never reused,
                    even after the user is deleted or an insert fails

Redis has no UNIQUE constraint. insert() WATCHes the user hash: if another
client creates the same username between the existence check and EXEC, the
transaction aborts and this insert reports DuplicateUsernameError.

Hash fields that are missing or unparsable raise DataCorruptionError; only a
missing hash is "user not found". list_users() scans hash keys only, so the
counter or reverse keys may live under the user prefix.
"""

from __future__ import annotations

import logging
from typing import Optional

import redis
from redis.exceptions import WatchError

from auth.passwords import PasswordHasher, TimingGuard, default_hasher
from core.config import get_settings
from core.errors import DataCorruptionError, DuplicateUsernameError, UserNotFoundError
from core.models import NO_USER_ID, BaseUserInformation, format_timestamp, parse_timestamp, utc_now
from core.redis_helpers import as_text, translate_redis_errors

logger = logging.getLogger("keyward.auth.redis")

_INFO_FIELDS = ("id", "first_name", "last_name", "email", "is_active", "last_login")


class RedisCredentialStore:
    """CredentialStore over a redis-py client.

    Usage:
        store = RedisCredentialStore(redis.Redis.from_url("redis://localhost:6379/0"))
        uid = store.insert("alice", "Alice", "Liddell", "alice@example.org", b"secret")
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        hasher: Optional[PasswordHasher] = None,
        user_prefix: Optional[str] = None,
        user_id_prefix: Optional[str] = None,
        next_id_key: Optional[str] = None,
    ) -> None:
        settings = get_settings()
        self.client = client
        self.hasher: PasswordHasher = hasher if hasher is not None else default_hasher()
        self._timing = TimingGuard(self.hasher)
        self.user_prefix = user_prefix if user_prefix is not None else settings.redis_user_prefix
        self.user_id_prefix = user_id_prefix if user_id_prefix is not None else settings.redis_user_id_prefix
        self.next_id_key = next_id_key if next_id_key is not None else settings.redis_next_id_key

    def _user_key(self, username: str) -> str:
        return f"{self.user_prefix}{username}"

    def _id_key(self, user_id: int) -> str:
        return f"{self.user_id_prefix}{user_id}"

    def init(self) -> None:
        """Nothing to create: Redis has no schema."""
        return None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, username: str, first_name: str, last_name: str, email: str, plaintext: bytes) -> int:
        hashed = self.hasher.generate_hash(plaintext)
        user_key = self._user_key(username)
        with translate_redis_errors():
            try:
                with self.client.pipeline() as pipe:
                    pipe.watch(user_key)
                    if pipe.exists(user_key):
                        raise DuplicateUsernameError(username)
                    # Executes immediately: the pipeline is still in WATCH mode.
                    user_id = int(pipe.incr(self.next_id_key))
                    pipe.multi()
                    pipe.hset(
                        user_key,
                        mapping={
                            "id": user_id,
                            "username": username,
                            "first_name": first_name,
                            "last_name": last_name,
                            "email": email,
                            "is_active": "1",
                            "last_login": format_timestamp(utc_now()),
                            "password": as_text(hashed),
                        },
                    )
                    pipe.set(self._id_key(user_id), username)
                    pipe.execute()
            except WatchError as exc:
                raise DuplicateUsernameError(username) from exc
        logger.info("Created user %r (id=%d)", username, user_id)
        return user_id

    def update_password(self, username: str, plaintext: bytes) -> None:
        hashed = self.hasher.generate_hash(plaintext)
        user_key = self._user_key(username)

        def _store(pipe) -> None:
            if not pipe.exists(user_key):
                raise UserNotFoundError()
            pipe.multi()
            pipe.hset(user_key, "password", as_text(hashed))

        # transaction() re-runs _store if user_key changes before EXEC.
        with translate_redis_errors():
            self.client.transaction(_store, user_key)
        logger.info("Password changed for user %r", username)

    def delete_user(self, username: str) -> None:
        user_key = self._user_key(username)
        with translate_redis_errors():
            raw_id = self.client.hget(user_key, "id")
            if raw_id is None:
                raise UserNotFoundError()
            user_id = _parse_id(raw_id, username)
            with self.client.pipeline() as pipe:
                pipe.delete(user_key)
                pipe.delete(self._id_key(user_id))
                pipe.execute()
        logger.info("Deleted user %r", username)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def validate(self, username: str, plaintext: bytes) -> int:
        user_key = self._user_key(username)
        with translate_redis_errors():
            raw_id, raw_password = self.client.hmget(user_key, ["id", "password"])
        if raw_id is None:
            # Equalize timing -- do NOT return before running bcrypt.
            self._timing.burn(plaintext)
            raise UserNotFoundError()
        if raw_password is None:
            raise DataCorruptionError(f"user {username!r} has no stored password")
        user_id = _parse_id(raw_id, username)
        if not self.hasher.check_password(as_text(raw_password).encode("utf-8"), plaintext):
            return NO_USER_ID
        self._stamp_login(user_key)
        return user_id

    def _stamp_login(self, user_key: str) -> None:
        def _stamp(pipe) -> None:
            # A user deleted meanwhile must not reappear as a bare hash.
            if not pipe.exists(user_key):
                return
            pipe.multi()
            pipe.hset(user_key, "last_login", format_timestamp(utc_now()))

        with translate_redis_errors():
            self.client.transaction(_stamp, user_key)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_users(self) -> dict[int, str]:
        users: dict[int, str] = {}
        with translate_redis_errors():
            # Only hashes are user records; the ID counter may share the prefix.
            for key in self.client.scan_iter(match=f"{self.user_prefix}*", _type="hash"):
                raw_id, raw_name = self.client.hmget(key, ["id", "username"])
                if raw_id is None and raw_name is None:
                    continue  # deleted between SCAN and HMGET
                if raw_id is None or raw_name is None:
                    raise DataCorruptionError(f"incomplete user record at {as_text(key)!r}")
                name = as_text(raw_name)
                users[_parse_id(raw_id, name)] = name
        return users

    def get_user_name(self, user_id: int) -> str:
        with translate_redis_errors():
            name = self.client.get(self._id_key(user_id))
        if name is None:
            raise UserNotFoundError()
        return as_text(name)

    def get_user_id(self, username: str) -> int:
        with translate_redis_errors():
            raw_id = self.client.hget(self._user_key(username), "id")
        if raw_id is None:
            raise UserNotFoundError()
        return _parse_id(raw_id, username)

    def get_user_base_info(self, username: str) -> BaseUserInformation:
        with translate_redis_errors():
            values = self.client.hmget(self._user_key(username), _INFO_FIELDS)
        if values[0] is None:
            raise UserNotFoundError()
        if any(v is None for v in values):
            raise DataCorruptionError(f"incomplete user record for {username!r}")
        raw_id, first_name, last_name, email, is_active, last_login = (as_text(v) for v in values)
        if is_active not in ("0", "1"):
            raise DataCorruptionError(f"malformed is_active for {username!r}: {is_active!r}")
        try:
            parsed_login = parse_timestamp(last_login)
        except ValueError as exc:
            raise DataCorruptionError(f"malformed last_login for {username!r}: {exc}") from exc
        return BaseUserInformation(
            id=_parse_id(raw_id, username),
            username=username,
            first_name=first_name,
            last_name=last_name,
            email=email,
            is_active=is_active == "1",
            last_login=parsed_login,
        )


def _parse_id(raw, username: str) -> int:
    try:
        return int(as_text(raw))
    except ValueError as exc:
        raise DataCorruptionError(f"malformed id for user {username!r}") from exc
