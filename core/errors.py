"""
core/errors.py -- Exception taxonomy shared by every store and the controller.

Stores translate backend-specific failures into these types so callers can
react to one vocabulary regardless of whether the data lives in SQL, Redis,
or process memory.

Layer rule: core/ is the kernel. This module may not import from auth/ or
sessions/.
"""

from __future__ import annotations


class KeywardError(Exception):
    """Base class for all errors raised by keyward."""


class NotFoundError(KeywardError):
    """A session key or user does not resolve."""


class KeyNotFoundError(NotFoundError):
    """No session exists for the key, or it has expired.

    The controller raises this for expired sessions too, with the same
    message, so callers cannot tell "expired" from "never existed".
    """

    def __init__(self, message: str = "session key not found") -> None:
        super().__init__(message)


class UserNotFoundError(NotFoundError):
    def __init__(self, message: str = "user not found") -> None:
        super().__init__(message)


class DuplicateKeyError(KeywardError):
    """A session key is already in use."""

    def __init__(self, message: str = "session key already exists") -> None:
        super().__init__(message)


class DuplicateUsernameError(KeywardError):
    def __init__(self, username: str) -> None:
        super().__init__(f"username already in use: {username!r}")
        self.username = username


class DataCorruptionError(KeywardError):
    """A stored value has an unexpected shape or type.

    Never coerced to "not found": it means the record was tampered with or
    written by an incompatible version.
    """


class BackendUnavailableError(KeywardError):
    """The underlying store could not be reached. Wraps the original error."""


class KeyGenerationExhaustedError(KeywardError):
    """Every generated session key collided with an existing one.

    Implies a broken random source or an exhausted key space. Not retryable.
    """
