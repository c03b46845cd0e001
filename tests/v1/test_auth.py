# tests/v1/test_auth.py
"""Tests for authentication and session endpoints."""

from fastapi import status


def _register(client, handle="newuser", fingerprint="phone-1"):
    return client.post(
        "/api/v1/auth/register",
        json={
            "handle": handle,
            "login_key": "s3cret-key",
            "display_name": "New User",
            "device_fingerprint": fingerprint,
            "device_info": {"os": "android"},
        },
    )


def _login(client, handle, fingerprint, login_key="s3cret-key"):
    return client.post(
        "/api/v1/auth/login",
        json={"handle": handle, "login_key": login_key, "device_fingerprint": fingerprint},
    )


def _headers(token, fingerprint):
    return {"Authorization": f"Bearer {token}", "X-Device-Fingerprint": fingerprint}


def test_register_returns_token(client) -> None:
    response = _register(client)
    assert response.status_code == status.HTTP_201_CREATED
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["role"] == "regular"
    assert data["session_replaced"] is False


def test_register_duplicate_handle(client) -> None:
    _register(client)
    response = _register(client)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Handle already exists"


def test_second_device_login_invalidates_first(client) -> None:
    first = _register(client, fingerprint="d1").json()
    second = _login(client, "newuser", "d2")
    assert second.status_code == status.HTTP_200_OK
    assert second.json()["session_replaced"] is True

    stale = client.get("/api/v1/auth/session", headers=_headers(first["access_token"], "d1"))
    assert stale.status_code == status.HTTP_401_UNAUTHORIZED

    fresh = client.get(
        "/api/v1/auth/session",
        headers=_headers(second.json()["access_token"], "d2"),
    )
    assert fresh.status_code == status.HTTP_200_OK
    assert fresh.json()["device_fingerprint"] == "d2"


def test_login_wrong_key(client) -> None:
    _register(client)
    response = _login(client, "newuser", "d1", login_key="nope-nope")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_session_requires_matching_device(client) -> None:
    token = _register(client, fingerprint="d1").json()["access_token"]
    response = client.get("/api/v1/auth/session", headers=_headers(token, "other"))
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Device mismatch"


def test_logout_then_reuse_fails(client) -> None:
    token = _register(client, fingerprint="d1").json()["access_token"]
    headers = _headers(token, "d1")
    assert client.post("/api/v1/auth/logout", headers=headers).status_code == status.HTTP_200_OK
    assert client.get("/api/v1/auth/session", headers=headers).status_code == status.HTTP_401_UNAUTHORIZED


def test_refresh_issues_working_token(client) -> None:
    token = _register(client, fingerprint="d1").json()["access_token"]
    response = client.post("/api/v1/auth/refresh", headers=_headers(token, "d1"))
    assert response.status_code == status.HTTP_200_OK
    new_token = response.json()["access_token"]
    check = client.get("/api/v1/auth/session", headers=_headers(new_token, "d1"))
    assert check.status_code == status.HTTP_200_OK


def test_refresh_from_other_device_refused(client) -> None:
    token = _register(client, fingerprint="d1").json()["access_token"]
    response = client.post("/api/v1/auth/refresh", headers=_headers(token, "d9"))
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_missing_bearer_rejected(client) -> None:
    response = client.get("/api/v1/auth/session")
    assert response.status_code in {status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN}
