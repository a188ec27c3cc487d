from __future__ import annotations

import importlib
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from contentapi.content_entry_store import ContentEntryStore
from contentapi.content_type_store import ContentTypeStore
from contentapi.dispatcher import OperationDispatcher
from contentapi.runtime_db import RuntimeDatabase
from contentapi.session_store import SessionStore
from contentapi.user_store import UserStore


contentapi_module = importlib.import_module("contentapi.app")


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def runtime_db(tmp_path) -> RuntimeDatabase:
    return RuntimeDatabase(tmp_path / "runtime.v1.sqlite3")


@pytest.fixture()
def user_store(runtime_db) -> UserStore:
    return UserStore(runtime_db, bcrypt_rounds=4)


@pytest.fixture()
def content_type_store(runtime_db) -> ContentTypeStore:
    return ContentTypeStore(runtime_db)


@pytest.fixture()
def content_entry_store(runtime_db) -> ContentEntryStore:
    return ContentEntryStore(runtime_db)


@pytest.fixture()
def session_store(clock) -> SessionStore:
    return SessionStore(clock=clock)


@pytest.fixture()
def dispatcher(user_store, content_type_store, content_entry_store, session_store) -> OperationDispatcher:
    return OperationDispatcher(
        users=user_store,
        content_types=content_type_store,
        content_entries=content_entry_store,
        sessions=session_store,
    )


@pytest.fixture()
def client(dispatcher, session_store, monkeypatch) -> TestClient:
    monkeypatch.setattr(contentapi_module, "dispatcher", dispatcher)
    monkeypatch.setattr(contentapi_module, "session_store", session_store)
    return TestClient(contentapi_module.app)


OWNER_EMAIL = "owner@example.com"
OWNER_PASSWORD = "s3cret-pass"


@pytest.fixture()
def owner_token(dispatcher) -> str:
    dispatcher.dispatch("register", {"email": OWNER_EMAIL, "password": OWNER_PASSWORD})
    return dispatcher.dispatch("login", {"email": OWNER_EMAIL, "password": OWNER_PASSWORD}).token
