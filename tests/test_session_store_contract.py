"""Contract tests run against every SessionStore backend (memory, sql, redis).

The session_store fixture in conftest.py is parametrized over all three, so
each test here runs once per backend.

Covers:
- create_entry() stores a record get_data() returns unchanged
- duplicate keys are rejected without touching the existing record
- get_data() on an unknown key raises KeyNotFoundError
- delete_key() is idempotent
- delete_entries_for_user() removes exactly one user's sessions and counts them
- delete_invalid_keys() leaves live sessions alone
- sub-second durations are rejected before anything is stored
"""

from datetime import timedelta

import pytest

from core.errors import DuplicateKeyError, KeyNotFoundError, NotFoundError

HOUR = timedelta(hours=1)

# ---------------------------------------------------------------------------
# create / get
# ---------------------------------------------------------------------------


class TestCreateAndGet:
    def test_round_trip(self, session_store) -> None:
        created = session_store.create_entry(7, "k" * 32, HOUR)
        fetched = session_store.get_data("k" * 32)
        assert fetched == created
        assert fetched.user == 7
        assert fetched.valid_until - fetched.creation_time == HOUR

    def test_returned_times_are_utc(self, session_store) -> None:
        data = session_store.create_entry(7, "utc-key", HOUR)
        fetched = session_store.get_data("utc-key")
        assert data.creation_time.utcoffset() == timedelta(0)
        assert fetched.valid_until.utcoffset() == timedelta(0)

    def test_duplicate_key_rejected(self, session_store) -> None:
        original = session_store.create_entry(1, "dup", HOUR)
        with pytest.raises(DuplicateKeyError):
            session_store.create_entry(2, "dup", timedelta(minutes=5))
        assert session_store.get_data("dup") == original

    def test_unknown_key(self, session_store) -> None:
        with pytest.raises(KeyNotFoundError):
            session_store.get_data("never-issued")

    def test_not_found_is_catchable_generically(self, session_store) -> None:
        with pytest.raises(NotFoundError):
            session_store.get_data("never-issued")

    def test_sub_second_duration_rejected(self, session_store) -> None:
        with pytest.raises(ValueError):
            session_store.create_entry(1, "short", timedelta(milliseconds=10))
        with pytest.raises(KeyNotFoundError):
            session_store.get_data("short")

    def test_init_is_idempotent(self, session_store) -> None:
        session_store.create_entry(1, "keep", HOUR)
        session_store.init()
        assert session_store.get_data("keep").user == 1


# ---------------------------------------------------------------------------
# deletion
# ---------------------------------------------------------------------------


class TestDelete:
    def test_delete_key(self, session_store) -> None:
        session_store.create_entry(1, "gone", HOUR)
        session_store.delete_key("gone")
        with pytest.raises(KeyNotFoundError):
            session_store.get_data("gone")

    def test_delete_absent_key_is_noop(self, session_store) -> None:
        session_store.delete_key("absent")
        session_store.delete_key("absent")

    def test_deleted_key_can_be_reused(self, session_store) -> None:
        session_store.create_entry(1, "again", HOUR)
        session_store.delete_key("again")
        session_store.create_entry(2, "again", HOUR)
        assert session_store.get_data("again").user == 2

    def test_delete_entries_for_user(self, session_store) -> None:
        for i in range(3):
            session_store.create_entry(10, f"alice-{i}", HOUR)
        session_store.create_entry(11, "bob-0", HOUR)

        assert session_store.delete_entries_for_user(10) == 3

        for i in range(3):
            with pytest.raises(KeyNotFoundError):
                session_store.get_data(f"alice-{i}")
        assert session_store.get_data("bob-0").user == 11

    def test_delete_entries_for_unknown_user(self, session_store) -> None:
        assert session_store.delete_entries_for_user(999) == 0

    def test_delete_entries_twice(self, session_store) -> None:
        session_store.create_entry(5, "once", HOUR)
        assert session_store.delete_entries_for_user(5) == 1
        assert session_store.delete_entries_for_user(5) == 0

    def test_delete_invalid_keys_keeps_live_sessions(self, session_store) -> None:
        session_store.create_entry(1, "live", HOUR)
        assert session_store.delete_invalid_keys() == 0
        assert session_store.get_data("live").user == 1
