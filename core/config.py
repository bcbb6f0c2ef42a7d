"""
core/config.py -- Centralized configuration via pydantic-settings.

All environment variable reads for keyward happen here. No module should call
os.getenv() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. session_key_length -> SESSION_KEY_LENGTH). Type coercion and
      validation are built in.

  @model_validator(mode="after"): range checks that must hold before any
      store or controller is built from these settings.

Layer rule: core/ is the kernel. This module may not import from auth/ or
sessions/.
"""

import logging
from functools import lru_cache
from typing import Literal, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("keyward.config")


class Settings(BaseSettings):
    """Settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in tests without
    a real .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Backends
    # ------------------------------------------------------------------

    session_backend: Literal["sql", "redis", "memory"] = "sql"
    credential_backend: Literal["sql", "redis"] = "sql"
    database_url: str = "sqlite:///keyward.db"
    redis_url: str = "redis://localhost:6379/0"
    # None means "decide from the URL": SQLite gets a lock, servers don't.
    lock_database: Optional[bool] = None

    # ------------------------------------------------------------------
    # SQL schema
    # ------------------------------------------------------------------

    session_table: str = "user_sessions"
    user_table: str = "users"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_key_length: int = 32
    session_key_max_retries: int = 10
    session_expire_seconds: int = 3600

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 13

    # ------------------------------------------------------------------
    # Redis key layout
    # ------------------------------------------------------------------

    redis_session_prefix: str = "skey:"
    redis_user_sessions_prefix: str = "usessions:"
    redis_user_prefix: str = "user:"
    redis_user_id_prefix: str = "userID:"
    redis_next_id_key: str = "nxtUserid"
    # Worker threads for the per-user session index maintenance.
    index_workers: int = 4

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_ranges(self) -> "Settings":
        """Reject values no store could honour.

        Keys shorter than 16 characters make collisions (and guessing)
        realistic. bcrypt only accepts cost factors 4..31.
        """
        if not 16 <= self.session_key_length <= 128:
            raise ValueError("SESSION_KEY_LENGTH must be between 16 and 128.")
        if self.session_key_max_retries < 1:
            raise ValueError("SESSION_KEY_MAX_RETRIES must be at least 1.")
        if self.session_expire_seconds < 1:
            raise ValueError("SESSION_EXPIRE_SECONDS must be at least 1.")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.index_workers < 1:
            raise ValueError("INDEX_WORKERS must be at least 1.")
        if self.bcrypt_rounds < 10:
            logger.warning("BCRYPT_ROUNDS=%d is below 10 -- only acceptable in tests.", self.bcrypt_rounds)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
