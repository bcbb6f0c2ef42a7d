"""
sessions/controller.py -- Key generation and validation policy over any SessionStore.

The single entry point transport layers use: they hand the returned key to
the client (cookie, header) and call validate() with whatever comes back.

Security design decisions:
  Keys: secrets.choice over [A-Za-z0-9]. 32 characters give ~190 bits of
       entropy, and the alphabet needs no escaping in SQL columns or Redis key
       names.

  Collisions: a DuplicateKeyError from the store triggers a fresh key, up to
       max_retries attempts. Running out is a KeyGenerationExhaustedError, a
       configuration fault (broken random source or tiny key space), not a
       transient error.

  Expiry: validate() reports an expired session exactly like a missing one
       (same exception type, same message). Callers cannot distinguish the two,
       so probing keys reveals nothing about which ones once existed.
"""

from __future__ import annotations

import logging
import secrets
import string
from datetime import timedelta
from typing import Any, Optional

from core.config import get_settings
from core.errors import DuplicateKeyError, KeyGenerationExhaustedError, KeyNotFoundError
from core.models import SessionKeyData, utc_now
from sessions.base import SessionStore

logger = logging.getLogger("keyward.sessions")

_KEY_ALPHABET = string.ascii_letters + string.digits


def generate_session_key(length: int) -> str:
    """Return a random alphanumeric session key of exactly length characters."""
    if length < 1:
        raise ValueError(f"session key length must be positive, got {length}")
    return "".join(secrets.choice(_KEY_ALPHABET) for _ in range(length))


class SessionController:
    """Issues, validates and revokes sessions on top of a SessionStore.

    Usage:
        controller = SessionController(SQLSessionStore())
        controller.init()
        key, data = controller.create_entry(user_id)
        data = controller.validate(key)        # KeyNotFoundError if absent/expired
        controller.revoke_all(user_id)
    """

    def __init__(
        self,
        store: SessionStore,
        *,
        key_length: Optional[int] = None,
        max_retries: Optional[int] = None,
        default_duration: Optional[timedelta] = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.key_length = key_length or settings.session_key_length
        self.max_retries = max_retries or settings.session_key_max_retries
        self.default_duration = default_duration or timedelta(seconds=settings.session_expire_seconds)

    def init(self) -> None:
        self.store.init()

    def create_entry(self, user: Any, valid_duration: Optional[timedelta] = None) -> tuple[str, SessionKeyData]:
        """Issue a new session for user and return (key, data).

        valid_duration defaults to Settings.session_expire_seconds.
        """
        duration = valid_duration if valid_duration is not None else self.default_duration
        for attempt in range(1, self.max_retries + 1):
            key = generate_session_key(self.key_length)
            try:
                data = self.store.create_entry(user, key, duration)
            except DuplicateKeyError:
                logger.warning("Session key collision (attempt %d of %d)", attempt, self.max_retries)
                continue
            return key, data
        logger.error("Gave up issuing a session after %d key collisions", self.max_retries)
        raise KeyGenerationExhaustedError(f"no unused session key after {self.max_retries} attempts")

    def validate(self, key: str) -> SessionKeyData:
        """Return the session for key if it is live.

        Raises KeyNotFoundError if the key is unknown or the session expired.
        """
        data = self.store.get_data(key)
        if not data.is_valid(utc_now()):
            raise KeyNotFoundError()
        return data

    def revoke(self, key: str) -> None:
        self.store.delete_key(key)

    def revoke_all(self, user: Any) -> int:
        """End every session of user. Returns the number of sessions removed."""
        return self.store.delete_entries_for_user(user)

    def delete_invalid_keys(self) -> int:
        return self.store.delete_invalid_keys()
