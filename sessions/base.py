"""
sessions/base.py -- The contract every session backend satisfies.

Implementations: SQLSessionStore (sessions/sql_store.py), RedisSessionStore
(sessions/redis_store.py), InMemorySessionStore (sessions/memory_store.py).
They share no base class; each one satisfies this Protocol on its own because
the backends differ in transactional guarantees, not just in query text.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Protocol

from core.models import SessionKeyData


class SessionStore(Protocol):
    def init(self) -> None:
        """Create the underlying structures if absent. Idempotent."""

    def create_entry(self, user: Any, key: str, valid_duration: timedelta) -> SessionKeyData:
        """Store a session created now and valid for valid_duration.

        Raises DuplicateKeyError if key is already stored.
        """

    def get_data(self, key: str) -> SessionKeyData:
        """Return the stored record.

        Raises KeyNotFoundError if absent. Does not check expiry: that is the
        controller's job, so "absent" and "expired" stay distinguishable here.
        """

    def delete_key(self, key: str) -> None:
        """Remove one session. Deleting an absent key is not an error."""

    def delete_entries_for_user(self, user: Any) -> int:
        """Remove every session of user and return how many were removed."""

    def delete_invalid_keys(self) -> int:
        """Remove sessions whose valid_until has passed.

        Backends with native per-key expiry return 0.
        """
