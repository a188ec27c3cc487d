from __future__ import annotations

import importlib

from fastapi.testclient import TestClient


contentapi_module = importlib.import_module("contentapi.app")


def _call(client: TestClient, operation: str, arguments: dict | None = None, token: str | None = None):
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return client.post(f"/v1/operations/{operation}", json=arguments or {}, headers=headers)


def _login(client: TestClient) -> str:
    credentials = {"email": "owner@example.com", "password": "s3cret-pass"}
    assert _call(client, "register", credentials).status_code == 200
    response = _call(client, "login", credentials)
    assert response.status_code == 200
    return response.json()["data"]["token"]


def test_env_bool_and_bearer_parsing(monkeypatch) -> None:
    monkeypatch.setenv("CONTENTAPI_REQUIRE_AUTH", "off")
    assert contentapi_module._env_bool("CONTENTAPI_REQUIRE_AUTH", default=True) is False

    monkeypatch.setenv("CONTENTAPI_REQUIRE_AUTH", "")
    assert contentapi_module._env_bool("CONTENTAPI_REQUIRE_AUTH", default=True) is True

    assert contentapi_module._bearer_token("Bearer abc") == "abc"
    assert contentapi_module._bearer_token("Basic abc") is None
    assert contentapi_module._bearer_token("Bearer ") is None
    assert contentapi_module._bearer_token(None) is None


def test_healthz_and_operation_catalog(client: TestClient) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}

    operations = client.get("/v1/operations").json()["operations"]
    assert {"register", "login", "createContent", "content", "contentTypes"} <= set(operations)


def test_content_flow_over_http(client: TestClient) -> None:
    token = _login(client)

    created_type = _call(
        client,
        "createContentType",
        {"name": "Article", "slug": "article", "schema": '{"type": "object"}'},
        token,
    )
    assert created_type.status_code == 200
    type_body = created_type.json()["data"]
    assert type_body["schema"] == '{"type": "object"}'
    assert type_body["description"] == ""
    assert type_body["created_at"] == type_body["updated_at"]

    created_entry = _call(client, "createContent", {"typeSlug": "article", "data": '{"title": "Hi"}'}, token)
    assert created_entry.status_code == 200
    entry_body = created_entry.json()["data"]
    assert entry_body["status"] == "draft"
    assert entry_body["created_by"] is not None
    assert entry_body["published_at"] is None

    listed = _call(client, "content", {"typeSlug": "article"})
    assert listed.status_code == 200
    assert listed.json()["data"]["pageInfo"] == {"totalCount": 1, "hasMore": False, "limit": 10, "offset": 0}
    assert listed.json()["data"]["items"][0]["id"] == entry_body["id"]

    deleted = _call(client, "deleteContentType", {"id": type_body["id"]}, token)
    assert deleted.json() == {"data": True}
    missing = _call(client, "contentEntry", {"id": entry_body["id"]})
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "CONTENT_ENTRY_NOT_FOUND"


def test_error_mapping_per_taxonomy_kind(client: TestClient) -> None:
    anonymous = _call(client, "createContentType", {"name": "A", "slug": "a", "schema": "{}"})
    assert anonymous.status_code == 401
    assert anonymous.headers["www-authenticate"] == "Bearer"
    assert anonymous.json()["detail"]["kind"] == "Unauthorized"

    token = _login(client)

    forbidden = _call(client, "register", {"email": "other@example.com", "password": "pw"})
    assert forbidden.status_code == 403
    assert forbidden.json()["detail"]["code"] == "REGISTRATION_CLOSED"

    bad_login = _call(client, "login", {"email": "owner@example.com", "password": "wrong"})
    assert bad_login.status_code == 401
    assert bad_login.json()["detail"]["message"] == "Invalid credentials."

    invalid_json = _call(client, "createContentType", {"name": "A", "slug": "a", "schema": "{"}, token)
    assert invalid_json.status_code == 400
    assert invalid_json.json()["detail"]["code"] == "INVALID_JSON"

    assert _call(client, "createContentType", {"name": "A", "slug": "a", "schema": "{}"}, token).status_code == 200
    conflict = _call(client, "createContentType", {"name": "B", "slug": "a", "schema": "{}"}, token)
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["kind"] == "Conflict"

    unknown = _call(client, "truncate")
    assert unknown.status_code == 400
    assert unknown.json()["detail"]["code"] == "UNKNOWN_OPERATION"


def test_logout_over_http(client: TestClient) -> None:
    token = _login(client)

    assert _call(client, "logout", token=token).json() == {"data": True}
    after = _call(client, "createContentType", {"name": "A", "slug": "a", "schema": "{}"}, token)
    assert after.status_code == 401


def test_oversized_body_is_rejected(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(contentapi_module, "MAX_REQUEST_BYTES", 64)

    response = _call(client, "contentTypes", {"orderBy": "x" * 200})
    assert response.status_code == 413


def test_out_of_range_ids_and_offsets_are_bad_requests(client: TestClient) -> None:
    for operation, arguments in (
        ("contentType", {"id": 2**64}),
        ("contentTypes", {"offset": 2**64}),
        ("contentEntry", {"id": True}),
    ):
        response = _call(client, operation, arguments)
        assert response.status_code == 400
        assert response.json()["detail"]["kind"] == "InvalidInput"
        assert response.json()["detail"]["code"] == "INVALID_ARGUMENTS"


def test_lone_surrogate_escapes_are_bad_requests(client: TestClient) -> None:
    response = client.post(
        "/v1/operations/register",
        content=b'{"email": "a\\ud800@x.com", "password": "pw"}',
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_ARGUMENTS"

    # The account is still available after the rejected attempt.
    assert _login(client)
