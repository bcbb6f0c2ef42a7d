"""Unit tests for core/schema.py -- engine factory and the single-writer guard.

Covers:
- in-memory SQLite URLs get SingletonThreadPool without deprecation warnings
- file-backed SQLite URLs keep SQLAlchemy's default pool
- WriterGuard serializes holders when enabled and is a no-op when disabled
- SQL stores handed one guard share it
"""

import threading
import time
import warnings

import pytest
from sqlalchemy.exc import SADeprecationWarning
from sqlalchemy.pool import SingletonThreadPool

from auth.store import SQLCredentialStore
from core.schema import WriterGuard, make_engine
from sessions.sql_store import SQLSessionStore

# ---------------------------------------------------------------------------
# make_engine
# ---------------------------------------------------------------------------


class TestMakeEngine:
    def test_shared_memory_url_pool(self, sql_url) -> None:
        with warnings.catch_warnings():
            warnings.simplefilter("error", SADeprecationWarning)
            engine = make_engine(sql_url)
            with engine.connect():
                pass
        try:
            assert isinstance(engine.pool, SingletonThreadPool)
        finally:
            engine.dispose()

    def test_plain_memory_url_pool(self) -> None:
        engine = make_engine("sqlite:///:memory:")
        try:
            assert isinstance(engine.pool, SingletonThreadPool)
        finally:
            engine.dispose()

    def test_file_url_keeps_default_pool(self, tmp_path) -> None:
        engine = make_engine(f"sqlite:///{tmp_path / 'keyward.db'}")
        try:
            assert not isinstance(engine.pool, SingletonThreadPool)
        finally:
            engine.dispose()


# ---------------------------------------------------------------------------
# WriterGuard
# ---------------------------------------------------------------------------


class TestWriterGuard:
    def test_disabled_guard_does_not_block(self) -> None:
        guard = WriterGuard(False)
        assert guard.enabled is False
        with guard.hold():
            with guard.hold():
                pass

    def test_enabled_guard_serializes(self) -> None:
        guard = WriterGuard(True)
        order: list[str] = []
        entered = threading.Event()

        def holder() -> None:
            with guard.hold():
                entered.set()
                time.sleep(0.05)
                order.append("first")

        t = threading.Thread(target=holder)
        t.start()
        entered.wait(timeout=5)
        with guard.hold():
            order.append("second")
        t.join()

        assert order == ["first", "second"]

    def test_stores_share_passed_guard(self, sql_url, hasher) -> None:
        guard = WriterGuard(True)
        sessions = SQLSessionStore(sql_url, guard=guard)
        credentials = SQLCredentialStore(engine=sessions.engine, hasher=hasher, guard=guard)
        try:
            assert sessions.guard is guard
            assert credentials.guard is guard
        finally:
            sessions.close()

    @pytest.mark.parametrize("lock", [True, False])
    def test_guard_overrides_lock(self, sql_url, lock: bool) -> None:
        store = SQLSessionStore(sql_url, lock=lock, guard=WriterGuard(not lock))
        try:
            assert store.locked is (not lock)
        finally:
            store.close()
