"""
bootstrap.py -- Build stores and the session controller from Settings.

The one place that knows every backend. Host applications call these at
startup and keep the results for the process lifetime:

    settings = get_settings()
    controller = build_session_controller(settings)
    credentials = build_credential_store(settings)
    controller.init()
    credentials.init()

Store classes never read backend URLs themselves when handed a client or
engine. SQL stores built here share one Engine and one WriterGuard per
database URL, and Redis stores share one client.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache
from typing import Optional

import redis
from sqlalchemy.engine import Engine

from auth.passwords import BcryptPasswordHasher
from auth.redis_store import RedisCredentialStore
from auth.store import CredentialStore, SQLCredentialStore
from core.config import Settings, get_settings
from core.schema import WriterGuard, make_engine
from sessions.base import SessionStore
from sessions.controller import SessionController
from sessions.memory_store import InMemorySessionStore
from sessions.redis_store import RedisSessionStore
from sessions.sql_store import SQLSessionStore

logger = logging.getLogger("keyward.bootstrap")


@lru_cache
def _engine(db_url: str) -> Engine:
    return make_engine(db_url)


@lru_cache
def _writer_guard(db_url: str, lock: Optional[bool]) -> WriterGuard:
    """One guard per database, so every store on a SQLite file shares a writer lock."""
    if lock is None:
        lock = _engine(db_url).dialect.name == "sqlite"
    return WriterGuard(lock)


@lru_cache
def _redis_client(redis_url: str) -> redis.Redis:
    return redis.Redis.from_url(redis_url)


def build_session_store(settings: Optional[Settings] = None) -> SessionStore:
    settings = settings or get_settings()
    if settings.session_backend == "memory":
        store: SessionStore = InMemorySessionStore()
    elif settings.session_backend == "redis":
        store = RedisSessionStore(
            _redis_client(settings.redis_url),
            session_prefix=settings.redis_session_prefix,
            user_prefix=settings.redis_user_sessions_prefix,
            workers=settings.index_workers,
        )
    else:
        store = SQLSessionStore(
            engine=_engine(settings.database_url),
            table_name=settings.session_table,
            key_length=settings.session_key_length,
            guard=_writer_guard(settings.database_url, settings.lock_database),
        )
    logger.info("Session backend: %s", settings.session_backend)
    return store


def build_credential_store(settings: Optional[Settings] = None) -> CredentialStore:
    settings = settings or get_settings()
    hasher = BcryptPasswordHasher(rounds=settings.bcrypt_rounds)
    if settings.credential_backend == "redis":
        store: CredentialStore = RedisCredentialStore(
            _redis_client(settings.redis_url),
            hasher=hasher,
            user_prefix=settings.redis_user_prefix,
            user_id_prefix=settings.redis_user_id_prefix,
            next_id_key=settings.redis_next_id_key,
        )
    else:
        store = SQLCredentialStore(
            engine=_engine(settings.database_url),
            hasher=hasher,
            table_name=settings.user_table,
            guard=_writer_guard(settings.database_url, settings.lock_database),
        )
    logger.info("Credential backend: %s", settings.credential_backend)
    return store


def build_session_controller(settings: Optional[Settings] = None) -> SessionController:
    settings = settings or get_settings()
    return SessionController(
        build_session_store(settings),
        key_length=settings.session_key_length,
        max_retries=settings.session_key_max_retries,
        default_duration=timedelta(seconds=settings.session_expire_seconds),
    )
