# tests/v1/test_security.py
"""Tests for violation reporting and administrator block endpoints."""

from fastapi import status


def _report(client, headers, violation_type="screenshot_attempt"):
    return client.post(
        "/api/v1/security/violations",
        json={"type": violation_type, "device_info": {"os": "ios"}},
        headers=headers,
    )


def test_third_violation_blocks_account(client, admin_user, user_headers, broadcast_store) -> None:
    first = _report(client, user_headers)
    assert first.status_code == status.HTTP_201_CREATED
    assert first.json()["violation_count"] == 1
    assert first.json()["warning"] is None

    second = _report(client, user_headers, "copy_attempt")
    assert second.json()["warning"] is not None
    assert second.json()["is_blocked"] is False

    third = _report(client, user_headers, "forward_attempt")
    assert third.status_code == status.HTTP_201_CREATED
    assert third.json()["is_blocked"] is True

    response = client.post(
        "/api/v1/messages/direct",
        json={"recipient_id": admin_user.id, "text": "hello"},
        headers=user_headers,
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["detail"]["block_reason"] == "Multiple security violations"
    assert len(broadcast_store.get("security_alerts")) == 3


def test_unknown_violation_type_rejected(client, user_headers) -> None:
    response = _report(client, user_headers, "tampering")
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_clients_cannot_report_multiple_login(client, user_headers) -> None:
    response = _report(client, user_headers, "multiple_login_attempt")
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_alert_marks_violation_notified(client, user_headers) -> None:
    response = _report(client, user_headers)
    assert response.json()["violation"]["notified_admin"] is True


def test_admin_endpoints_require_admin(client, regular_user, user_headers) -> None:
    assert client.get("/api/v1/security/violations", headers=user_headers).status_code == (
        status.HTTP_403_FORBIDDEN
    )
    response = client.post(
        f"/api/v1/security/users/{regular_user.id}/block",
        headers=user_headers,
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_admin_lists_and_filters_violations(client, regular_user, user_headers, admin_headers) -> None:
    _report(client, user_headers, "screenshot_attempt")
    _report(client, user_headers, "copy_attempt")

    everything = client.get("/api/v1/security/violations", headers=admin_headers).json()
    assert [item["type"] for item in everything] == ["copy_attempt", "screenshot_attempt"]

    filtered = client.get(
        "/api/v1/security/violations",
        params={"user_id": regular_user.id, "type": "screenshot_attempt"},
        headers=admin_headers,
    ).json()
    assert [item["type"] for item in filtered] == ["screenshot_attempt"]


def test_admin_block_and_unblock(client, regular_user, user_headers, admin_headers) -> None:
    blocked = client.post(
        f"/api/v1/security/users/{regular_user.id}/block",
        json={"reason": "Spam"},
        headers=admin_headers,
    )
    assert blocked.status_code == status.HTTP_200_OK
    assert blocked.json()["is_blocked"] is True
    assert blocked.json()["block_reason"] == "Spam"

    refused = client.get("/api/v1/unread", headers=user_headers)
    assert refused.status_code == status.HTTP_403_FORBIDDEN
    assert refused.json()["detail"]["block_reason"] == "Spam"

    unblocked = client.post(
        f"/api/v1/security/users/{regular_user.id}/unblock",
        headers=admin_headers,
    )
    assert unblocked.json()["is_blocked"] is False
    assert unblocked.json()["block_reason"] is None

    # The manual block ended the session, so the old token stays dead.
    stale = client.get("/api/v1/unread", headers=user_headers)
    assert stale.status_code == status.HTTP_401_UNAUTHORIZED


def test_admin_cannot_block_admin(client, make_admin, admin_headers) -> None:
    other = make_admin("second")
    response = client.post(f"/api/v1/security/users/{other.id}/block", headers=admin_headers)
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_security_profile(client, regular_user, user_headers, admin_headers) -> None:
    _report(client, user_headers, "screenshot_attempt")
    response = client.get(f"/api/v1/security/users/{regular_user.id}", headers=admin_headers)
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["violation_count"] == 1
    assert data["screenshot_attempts"] == 1
    assert len(data["violations"]) == 1


def test_security_profile_unknown_user(client, admin_headers) -> None:
    response = client.get("/api/v1/security/users/missing", headers=admin_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND
