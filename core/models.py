"""
core/models.py -- Value types exchanged between stores, controller and callers.

Pattern: Data class (pure data container). Stores build these from rows or
Redis hashes and hand out copies; nothing here holds a reference to storage.

Timestamps stored as text use one fixed format everywhere (SQL columns and
Redis hash fields): "YYYY-MM-DD HH:MM:SS", UTC, second precision. The format
is fixed-width and zero-padded, so string order equals time order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Returned by validate() on a password mismatch. Real IDs start at 1 on every
# backend (SQL autoincrement, Redis INCR), so 0 never names a user.
NO_USER_ID = 0

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
TIMESTAMP_LENGTH = 19


# ---------------------------------------------------------------------------
# Time helpers
# ---------------------------------------------------------------------------


def utc_now() -> datetime:
    """Current UTC time truncated to whole seconds (the stored precision)."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime.

    Raises ValueError if value does not match TIMESTAMP_FORMAT exactly.
    """
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionKeyData:
    """One login session. The session key itself is stored alongside, not here."""

    user: Any
    creation_time: datetime
    valid_until: datetime

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        """A session is live iff valid_until is strictly in the future."""
        if now is None:
            now = utc_now()
        return self.valid_until > now


def new_key_data(user: Any, valid_duration: timedelta) -> SessionKeyData:
    """Build the record for a session created now.

    Raises ValueError if valid_duration is shorter than one second: stored
    times have second precision and Redis TTLs are whole seconds.
    """
    if valid_duration < timedelta(seconds=1):
        raise ValueError(f"valid_duration must be at least one second, got {valid_duration!r}")
    created = utc_now()
    valid_until = (created + valid_duration).replace(microsecond=0)
    return SessionKeyData(user=user, creation_time=created, valid_until=valid_until)


@dataclass(frozen=True)
class BaseUserInformation:
    """Read-only profile projection of a stored user. Never carries the hash."""

    id: int
    username: str
    first_name: str
    last_name: str
    email: str
    is_active: bool
    last_login: datetime
