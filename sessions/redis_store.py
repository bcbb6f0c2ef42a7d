"""
sessions/redis_store.py -- Redis session store with a per-user session index.

Key layout (prefixes configurable, defaults from Settings):
  skey:<session key>   hash {user, creation_time, valid_until}, TTL = validity
  usessions:<user>     set of session keys issued to the user

Redis expires session hashes on its own, so delete_invalid_keys() is a no-op.
What Redis cannot do is answer "which sessions belong to user X" without a
full scan. The usessions set is that answer: a derived index, allowed to hold
stale keys whose hash is gone, never allowed to miss a live one.

Index maintenance (runs on a worker thread after create_entry returns):
  1. SADD the new key and extend the set's TTL to cover the new session.
     Both EXPIRE calls run in the same MULTI as the SADD: NX sets a TTL on a
     fresh set, GT only ever lengthens an existing one. Concurrent updates for
     one user therefore cannot shrink the TTL below a live session's lifetime.
  2. Sweep: SREM members whose skey: hash no longer exists. This bounds the
     set's growth. A failed sweep only leaves the set larger than needed.
  Failures are logged and never reach the caller: a broken index must not
  turn into a failed login. A session hash is always written before its key
  is added to the set, so the sweep never removes a live key.

delete_entries_for_user() first waits for this process's queued maintenance
for the user, then reads the set fresh, deletes every listed hash in one DEL
(absent ones are simply not counted) and SREMs exactly the members it read,
so keys added concurrently stay indexed.

Requires Redis >= 7.0 (EXPIRE ... NX / GT).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import timedelta
from functools import partial
from typing import Any, Optional

import redis
from redis.exceptions import RedisError, WatchError

from core.config import get_settings
from core.errors import DataCorruptionError, DuplicateKeyError, KeyNotFoundError, KeywardError
from core.models import SessionKeyData, format_timestamp, new_key_data, parse_timestamp
from core.redis_helpers import as_text, translate_redis_errors

logger = logging.getLogger("keyward.sessions.redis")

_FIELDS = ("user", "creation_time", "valid_until")


class RedisSessionStore:
    """SessionStore over a redis-py client.

    convert_user turns the stored string form of a user back into its
    original type; the default assumes integer IDs.

    Usage:
        store = RedisSessionStore(redis.Redis.from_url("redis://localhost:6379/0"))
        data = store.create_entry(42, key, timedelta(hours=1))
        store.delete_entries_for_user(42)
        store.close()
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        session_prefix: Optional[str] = None,
        user_prefix: Optional[str] = None,
        convert_user: Callable[[str], Any] = int,
        workers: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.client = client
        self.session_prefix = session_prefix if session_prefix is not None else settings.redis_session_prefix
        self.user_prefix = user_prefix if user_prefix is not None else settings.redis_user_sessions_prefix
        self.convert_user = convert_user
        self._executor = ThreadPoolExecutor(
            max_workers=workers or settings.index_workers,
            thread_name_prefix="keyward-session-index",
        )
        # user set key -> maintenance futures not yet finished
        self._pending: dict[str, set[Future]] = {}
        self._pending_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Key helpers
    # ------------------------------------------------------------------

    def _session_key(self, key: str) -> str:
        return f"{self.session_prefix}{key}"

    def _user_key(self, user: Any) -> str:
        return f"{self.user_prefix}{user}"

    # ------------------------------------------------------------------
    # SessionStore
    # ------------------------------------------------------------------

    def init(self) -> None:
        """Nothing to create: Redis has no schema."""
        return None

    def create_entry(self, user: Any, key: str, valid_duration: timedelta) -> SessionKeyData:
        data = new_key_data(user, valid_duration)
        ttl = int(valid_duration.total_seconds())
        redis_key = self._session_key(key)
        with translate_redis_errors():
            try:
                with self.client.pipeline() as pipe:
                    pipe.watch(redis_key)
                    if pipe.exists(redis_key):
                        raise DuplicateKeyError()
                    pipe.multi()
                    pipe.hset(
                        redis_key,
                        mapping={
                            "user": str(user),
                            "creation_time": format_timestamp(data.creation_time),
                            "valid_until": format_timestamp(data.valid_until),
                        },
                    )
                    pipe.expire(redis_key, ttl)
                    pipe.execute()
            except WatchError as exc:
                # Someone wrote the same key between WATCH and EXEC.
                raise DuplicateKeyError() from exc
        self._schedule_index_update(user, key, ttl)
        return data

    def get_data(self, key: str) -> SessionKeyData:
        with translate_redis_errors():
            values = self.client.hmget(self._session_key(key), _FIELDS)
        if all(v is None for v in values):
            raise KeyNotFoundError()
        if any(v is None for v in values):
            raise DataCorruptionError(f"session record {key[:8]}... is missing fields")
        user_raw, created_raw, valid_raw = (as_text(v) for v in values)
        try:
            user = self.convert_user(user_raw)
            created = parse_timestamp(created_raw)
            valid_until = parse_timestamp(valid_raw)
        except (TypeError, ValueError) as exc:
            raise DataCorruptionError(f"malformed session record {key[:8]}...: {exc}") from exc
        return SessionKeyData(user=user, creation_time=created, valid_until=valid_until)

    def delete_key(self, key: str) -> None:
        # The index entry goes stale and is swept on the user's next login.
        with translate_redis_errors():
            self.client.delete(self._session_key(key))

    def delete_entries_for_user(self, user: Any) -> int:
        user_key = self._user_key(user)
        self._wait_for(self._pending_for(user_key))
        with translate_redis_errors():
            members = [as_text(m) for m in self.client.smembers(user_key)]
            if not members:
                return 0
            with self.client.pipeline() as pipe:
                pipe.delete(*(self._session_key(m) for m in members))
                pipe.srem(user_key, *members)
                removed, _ = pipe.execute()
        logger.info("Revoked %d sessions for user %s", removed, user)
        return removed

    def delete_invalid_keys(self) -> int:
        """Redis expires session hashes itself; nothing to sweep."""
        return 0

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    def indexed_keys(self, user: Any) -> set[str]:
        """Session keys currently listed for user. May include stale keys."""
        with translate_redis_errors():
            return {as_text(m) for m in self.client.smembers(self._user_key(user))}

    def _schedule_index_update(self, user: Any, key: str, ttl: int) -> None:
        user_key = self._user_key(user)
        try:
            future = self._executor.submit(self._update_index, user_key, key, ttl)
        except RuntimeError:
            logger.warning("Session index for %s not updated: store is closed", user_key)
            return
        with self._pending_lock:
            self._pending.setdefault(user_key, set()).add(future)
        future.add_done_callback(partial(self._forget, user_key))

    def _update_index(self, user_key: str, key: str, ttl: int) -> None:
        try:
            with translate_redis_errors():
                with self.client.pipeline() as pipe:
                    pipe.sadd(user_key, key)
                    pipe.expire(user_key, ttl, nx=True)
                    pipe.expire(user_key, ttl, gt=True)
                    pipe.execute()
                swept = self._sweep(user_key)
        except (KeywardError, RedisError) as exc:
            logger.warning("Session index update for %s failed: %s", user_key, exc)
            return
        if swept:
            logger.debug("Swept %d stale keys from %s", swept, user_key)

    def _sweep(self, user_key: str) -> int:
        members = [as_text(m) for m in self.client.smembers(user_key)]
        if not members:
            return 0
        with self.client.pipeline(transaction=False) as pipe:
            for member in members:
                pipe.exists(self._session_key(member))
            alive = pipe.execute()
        dead = [m for m, exists in zip(members, alive) if not exists]
        if dead:
            self.client.srem(user_key, *dead)
        return len(dead)

    def _pending_for(self, user_key: Optional[str] = None) -> list[Future]:
        with self._pending_lock:
            if user_key is not None:
                return list(self._pending.get(user_key, ()))
            return [f for futures in self._pending.values() for f in futures]

    def _forget(self, user_key: str, future: Future) -> None:
        with self._pending_lock:
            futures = self._pending.get(user_key)
            if futures is None:
                return
            futures.discard(future)
            if not futures:
                del self._pending[user_key]

    @staticmethod
    def _wait_for(futures: list[Future], timeout: Optional[float] = None) -> bool:
        if not futures:
            return True
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def wait_for_index_updates(self, timeout: Optional[float] = None) -> bool:
        """Block until queued index maintenance has run. False on timeout."""
        return self._wait_for(self._pending_for(), timeout)

    def close(self) -> None:
        """Finish queued index maintenance and stop the worker threads."""
        self._executor.shutdown(wait=True)
