"""
auth/passwords.py -- Password hashing capability.

Security design decisions:
  bcrypt, used directly (no passlib wrapper). Its cost factor makes brute
  force expensive, which is what low-entropy secrets like passwords need.
  The default cost comes from Settings.bcrypt_rounds.

  bcrypt only looks at the first 72 bytes of its input and recent releases
  reject longer input outright. Longer plaintexts are therefore pre-hashed
  with SHA-256 (base64, 44 bytes) before bcrypt sees them, so no password is
  rejected and no suffix is silently ignored.

  check_password() distinguishes two outcomes that must never be merged:
  a wrong password is False; a stored hash that bcrypt cannot parse raises
  DataCorruptionError. Auth decisions only ever see the boolean.

Layer rule: no imports from sessions/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import hashlib
from typing import Optional, Protocol

import bcrypt

from core.config import get_settings
from core.errors import DataCorruptionError

_BCRYPT_MAX_INPUT = 72
_BCRYPT_HASH_LENGTH = 60


class PasswordHasher(Protocol):
    """Turns plaintext into a stored hash and checks plaintext against it."""

    def generate_hash(self, plaintext: bytes) -> bytes: ...

    def check_password(self, hashed: bytes, plaintext: bytes) -> bool: ...

    def password_hash_length(self) -> int: ...


class BcryptPasswordHasher:
    """PasswordHasher backed by the bcrypt package.

    Usage:
        hasher = BcryptPasswordHasher()          # cost from Settings
        hashed = hasher.generate_hash(b"secret")
        hasher.check_password(hashed, b"secret")  # True
    """

    def __init__(self, rounds: Optional[int] = None) -> None:
        if rounds is None:
            rounds = get_settings().bcrypt_rounds
        if not 4 <= rounds <= 31:
            raise ValueError(f"bcrypt rounds must be between 4 and 31, got {rounds}")
        self.rounds = rounds

    def generate_hash(self, plaintext: bytes) -> bytes:
        return bcrypt.hashpw(_prepare(plaintext), bcrypt.gensalt(rounds=self.rounds))

    def check_password(self, hashed: bytes, plaintext: bytes) -> bool:
        """Return True on match, False on mismatch.

        Raises DataCorruptionError if hashed is not a bcrypt hash.
        """
        if isinstance(hashed, str):
            hashed = hashed.encode("utf-8")
        try:
            return bcrypt.checkpw(_prepare(plaintext), hashed)
        except ValueError as exc:
            raise DataCorruptionError(f"stored password hash is malformed: {exc}") from exc

    def password_hash_length(self) -> int:
        return _BCRYPT_HASH_LENGTH


def _prepare(plaintext: bytes) -> bytes:
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")
    if len(plaintext) > _BCRYPT_MAX_INPUT:
        return base64.b64encode(hashlib.sha256(plaintext).digest())
    return plaintext


_default: Optional[BcryptPasswordHasher] = None


def default_hasher() -> BcryptPasswordHasher:
    """Shared BcryptPasswordHasher used when a store is built without one."""
    global _default
    if _default is None:
        _default = BcryptPasswordHasher()
    return _default


class TimingGuard:
    """Equalizes the cost of "unknown user" and "wrong password".

    Credential stores call burn() when a username does not resolve, so the
    response takes one full hash check either way and timing does not reveal
    which usernames exist. The dummy hash is computed on first use.
    """

    def __init__(self, hasher: PasswordHasher) -> None:
        self._hasher = hasher
        self._hash: Optional[bytes] = None

    def burn(self, plaintext: bytes) -> None:
        if self._hash is None:
            self._hash = self._hasher.generate_hash(b"keyward_timing_dummy")
        self._hasher.check_password(self._hash, plaintext)
