from __future__ import annotations

import sqlite3

import pytest

from contentapi.errors import ConflictError, NotFoundError
from contentapi.user_store import UserStore


def test_create_user_hashes_password_and_counts(user_store: UserStore, runtime_db) -> None:
    assert user_store.count_users() == 0

    user = user_store.create_user("a@x.com", "pw")
    assert user.email == "a@x.com"
    assert user.created_at == user.updated_at
    assert "password_hash" not in user.model_dump()
    assert user_store.count_users() == 1

    with sqlite3.connect(runtime_db.storage_path) as conn:
        stored_hash = conn.execute("SELECT password_hash FROM users").fetchone()[0]
    assert stored_hash != "pw"
    assert stored_hash.startswith("$2")


def test_check_password(user_store: UserStore) -> None:
    user_store.create_user("a@x.com", "correct horse")
    stored = user_store.get_user_by_email("a@x.com")

    assert user_store.check_password(stored, "correct horse") is True
    assert user_store.check_password(stored, "battery staple") is False
    assert "password_hash" not in stored.model_dump()


def test_only_one_user_can_ever_be_created(user_store: UserStore) -> None:
    user_store.create_user("a@x.com", "pw")

    with pytest.raises(ConflictError) as other_email:
        user_store.create_user("b@x.com", "pw")
    assert other_email.value.code == "REGISTRATION_CLOSED"

    with pytest.raises(ConflictError) as same_email:
        user_store.create_user("a@x.com", "pw")
    assert same_email.value.code == "REGISTRATION_CLOSED"

    assert user_store.count_users() == 1


def test_unknown_email_is_not_found(user_store: UserStore) -> None:
    with pytest.raises(NotFoundError) as exc:
        user_store.get_user_by_email("nobody@x.com")
    assert exc.value.code == "USER_NOT_FOUND"
