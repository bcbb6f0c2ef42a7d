"""Contract tests run against every CredentialStore backend (sql, redis).

The credential_store fixture in conftest.py is parametrized over both, so
each test here runs once per backend.

Covers:
- insert() hands out positive IDs and rejects taken usernames
- validate(): match -> ID, mismatch -> NO_USER_ID, unknown -> UserNotFoundError
- validate() stamps last_login
- update_password() replaces the old password
- list_users(), get_user_name(), get_user_id(), get_user_base_info()
- delete_user() removes every trace and IDs are never reused
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.errors import DuplicateUsernameError, UserNotFoundError
from core.models import NO_USER_ID, BaseUserInformation

STAMP = datetime(2030, 6, 1, 9, 30, 0, tzinfo=timezone.utc)


def _add(store, username: str, password: bytes = b"secret") -> int:
    return store.insert(username, username.title(), "Tester", f"{username}@example.org", password)


# ---------------------------------------------------------------------------
# insert / validate
# ---------------------------------------------------------------------------


class TestInsertAndValidate:
    def test_alice(self, credential_store) -> None:
        uid = credential_store.insert("alice", "Alice", "Liddell", "alice@example.org", b"rabbit-hole")
        assert uid >= 1
        assert credential_store.validate("alice", b"rabbit-hole") == uid
        assert credential_store.validate("alice", b"looking-glass") == NO_USER_ID

    def test_unknown_user(self, credential_store) -> None:
        with pytest.raises(UserNotFoundError):
            credential_store.validate("nobody", b"secret")

    def test_duplicate_username(self, credential_store) -> None:
        uid = _add(credential_store, "alice", b"first")
        with pytest.raises(DuplicateUsernameError) as exc_info:
            _add(credential_store, "alice", b"second")
        assert exc_info.value.username == "alice"
        assert credential_store.validate("alice", b"first") == uid
        assert credential_store.validate("alice", b"second") == NO_USER_ID

    def test_ids_are_distinct(self, credential_store) -> None:
        ids = [_add(credential_store, name) for name in ("a", "b", "c")]
        assert len(set(ids)) == 3
        assert NO_USER_ID not in ids

    def test_long_password(self, credential_store) -> None:
        pw = "pässwörd-".encode("utf-8") * 20
        uid = _add(credential_store, "long", pw)
        assert credential_store.validate("long", pw) == uid

    def test_validate_stamps_last_login(self, credential_store, monkeypatch) -> None:
        _add(credential_store, "alice")
        monkeypatch.setattr(f"{type(credential_store).__module__}.utc_now", lambda: STAMP)
        credential_store.validate("alice", b"secret")
        assert credential_store.get_user_base_info("alice").last_login == STAMP

    def test_failed_validate_keeps_last_login(self, credential_store, monkeypatch) -> None:
        _add(credential_store, "alice")
        before = credential_store.get_user_base_info("alice").last_login
        monkeypatch.setattr(f"{type(credential_store).__module__}.utc_now", lambda: STAMP)
        credential_store.validate("alice", b"wrong")
        assert credential_store.get_user_base_info("alice").last_login == before


# ---------------------------------------------------------------------------
# update_password
# ---------------------------------------------------------------------------


class TestUpdatePassword:
    def test_replaces_password(self, credential_store) -> None:
        uid = _add(credential_store, "alice", b"old")
        credential_store.update_password("alice", b"new")
        assert credential_store.validate("alice", b"old") == NO_USER_ID
        assert credential_store.validate("alice", b"new") == uid

    def test_unknown_user(self, credential_store) -> None:
        with pytest.raises(UserNotFoundError):
            credential_store.update_password("nobody", b"new")
        assert credential_store.list_users() == {}


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_list_users_empty(self, credential_store) -> None:
        assert credential_store.list_users() == {}

    def test_list_users(self, credential_store) -> None:
        a = _add(credential_store, "alice")
        b = _add(credential_store, "bob")
        assert credential_store.list_users() == {a: "alice", b: "bob"}

    def test_name_and_id_lookups(self, credential_store) -> None:
        uid = _add(credential_store, "alice")
        assert credential_store.get_user_name(uid) == "alice"
        assert credential_store.get_user_id("alice") == uid

    def test_lookups_of_unknowns(self, credential_store) -> None:
        with pytest.raises(UserNotFoundError):
            credential_store.get_user_name(12345)
        with pytest.raises(UserNotFoundError):
            credential_store.get_user_id("nobody")
        with pytest.raises(UserNotFoundError):
            credential_store.get_user_base_info("nobody")

    def test_base_info(self, credential_store) -> None:
        uid = credential_store.insert("alice", "Alice", "Liddell", "alice@example.org", b"secret")
        info = credential_store.get_user_base_info("alice")
        assert isinstance(info, BaseUserInformation)
        assert info.id == uid
        assert info.username == "alice"
        assert (info.first_name, info.last_name, info.email) == ("Alice", "Liddell", "alice@example.org")
        assert info.is_active is True
        assert info.last_login.utcoffset() == timedelta(0)
        assert not hasattr(info, "password")


# ---------------------------------------------------------------------------
# delete_user
# ---------------------------------------------------------------------------


class TestDeleteUser:
    def test_removes_every_trace(self, credential_store) -> None:
        uid = _add(credential_store, "alice")
        credential_store.delete_user("alice")

        with pytest.raises(UserNotFoundError):
            credential_store.validate("alice", b"secret")
        with pytest.raises(UserNotFoundError):
            credential_store.get_user_name(uid)
        assert credential_store.list_users() == {}

    def test_unknown_user(self, credential_store) -> None:
        with pytest.raises(UserNotFoundError):
            credential_store.delete_user("nobody")

    def test_username_free_again(self, credential_store) -> None:
        old = _add(credential_store, "alice")
        credential_store.delete_user("alice")
        new = _add(credential_store, "alice", b"other")
        assert new != old
        assert credential_store.validate("alice", b"other") == new

    def test_ids_never_reused(self, credential_store) -> None:
        _add(credential_store, "a")
        b = _add(credential_store, "b")
        credential_store.delete_user("b")
        c = _add(credential_store, "c")
        assert c > b
