"""
core/redis_helpers.py -- Helpers shared by the Redis-backed stores.

Both Redis stores use these by value: error translation into the keyward
taxonomy and decoding of raw replies, which are bytes or str depending on the
client's decode_responses flag.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from core.errors import BackendUnavailableError, DataCorruptionError


@contextmanager
def translate_redis_errors() -> Iterator[None]:
    """Map transport failures and wrong-type replies onto keyward errors.

    WRONGTYPE means a key holds a different Redis type than the code wrote
    there: a corrupted or foreign record, never "not found".
    """
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as exc:
        raise BackendUnavailableError(f"redis unavailable: {exc}") from exc
    except ResponseError as exc:
        if str(exc).startswith("WRONGTYPE"):
            raise DataCorruptionError(f"unexpected redis type: {exc}") from exc
        raise


def as_text(value: Any) -> str:
    """Decode one reply value. Anything but bytes/str is corruption."""
    if isinstance(value, bytes):
        try:
            return value.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DataCorruptionError("stored value is not valid UTF-8") from exc
    if isinstance(value, str):
        return value
    raise DataCorruptionError(f"unexpected stored value type: {type(value).__name__}")
