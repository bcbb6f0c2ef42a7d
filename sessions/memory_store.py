"""
sessions/memory_store.py -- Process-local session store.

For tests, single-process deployments, and as the reference behaviour the
other backends are checked against. Records live in a dict guarded by one
lock; SessionKeyData is frozen, so handing out the stored object is handing
out a copy.
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Any

from core.errors import DuplicateKeyError, KeyNotFoundError
from core.models import SessionKeyData, new_key_data, utc_now

logger = logging.getLogger("keyward.sessions")


class InMemorySessionStore:
    def __init__(self) -> None:
        self._entries: dict[str, SessionKeyData] = {}
        self._lock = threading.Lock()

    def init(self) -> None:
        return None

    def create_entry(self, user: Any, key: str, valid_duration: timedelta) -> SessionKeyData:
        data = new_key_data(user, valid_duration)
        with self._lock:
            if key in self._entries:
                raise DuplicateKeyError()
            self._entries[key] = data
        return data

    def get_data(self, key: str) -> SessionKeyData:
        with self._lock:
            data = self._entries.get(key)
        if data is None:
            raise KeyNotFoundError()
        return data

    def delete_key(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_entries_for_user(self, user: Any) -> int:
        with self._lock:
            doomed = [key for key, data in self._entries.items() if data.user == user]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def delete_invalid_keys(self) -> int:
        now = utc_now()
        with self._lock:
            doomed = [key for key, data in self._entries.items() if not data.is_valid(now)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.info("Removed %d expired sessions from memory", len(doomed))
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
