"""
tests/conftest.py -- Shared fixtures for the keyward test suite.

This module provides:
  - sql_url: a fresh named shared-memory SQLite URL per test
  - redis_client: a fakeredis client on a private FakeServer per test
  - hasher: a fast bcrypt hasher (4 rounds)
  - session_store: parametrized over every session backend
  - credential_store: parametrized over every credential backend

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because several tests drive a store from worker threads. Plain :memory: DBs
are per-connection and would present a blank schema to each thread. The named
URI format (file:name?mode=memory&cache=shared&uri=true) shares one in-memory
instance across all connections in the same process.

BCRYPT_ROUNDS must be set before any auth import so get_settings() (and the
default hasher) never pay for cost 13 in tests.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator

# CRITICAL: set before any keyward import so the cached Settings see it.
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import fakeredis
import pytest

from auth.passwords import BcryptPasswordHasher
from auth.redis_store import RedisCredentialStore
from auth.store import SQLCredentialStore
from sessions.memory_store import InMemorySessionStore
from sessions.redis_store import RedisSessionStore
from sessions.sql_store import SQLSessionStore

# ---------------------------------------------------------------------------
# Backend primitives
# ---------------------------------------------------------------------------


@pytest.fixture
def sql_url() -> str:
    """Unique shared-memory SQLite URL so tests never see each other's rows."""
    return f"sqlite:///file:keyward_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def redis_client() -> Generator[fakeredis.FakeRedis, None, None]:
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture(scope="session")
def hasher() -> BcryptPasswordHasher:
    return BcryptPasswordHasher(rounds=4)


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture(params=["memory", "sql", "redis"])
def session_store(request, sql_url, redis_client):
    """Every SessionStore implementation, initialized and closed around the test."""
    if request.param == "memory":
        store = InMemorySessionStore()
    elif request.param == "sql":
        store = SQLSessionStore(sql_url)
    else:
        store = RedisSessionStore(redis_client)
    store.init()
    yield store
    if hasattr(store, "close"):
        store.close()


@pytest.fixture(params=["sql", "redis"])
def credential_store(request, sql_url, redis_client, hasher):
    """Every CredentialStore implementation, initialized and closed around the test."""
    if request.param == "sql":
        store = SQLCredentialStore(sql_url, hasher=hasher)
    else:
        store = RedisCredentialStore(redis_client, hasher=hasher)
    store.init()
    yield store
    if hasattr(store, "close"):
        store.close()
