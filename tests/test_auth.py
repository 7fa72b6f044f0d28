import pytest
from datetime import timedelta

from app.core.config import settings
from app.core.security import decode_access_token

from helpers import TEST_PASSWORD, sent_code, make_token, auth_headers

AUTH = f"{settings.API_V1_STR}/auth"
PERMISSIONS = f"{settings.API_V1_STR}/permissions"


@pytest.mark.asyncio
async def test_login_and_verify_otp(client, admin_user, mock_notifier, permission_catalog):
    """Test password login followed by OTP yields a working token"""
    response = await client.post(f"{AUTH}/login", json={"identifier": "alice", "password": TEST_PASSWORD})
    assert response.status_code == 200
    assert response.json()["username"] == "alice"

    response = await client.post(
        f"{AUTH}/verify-otp",
        json={"username": "alice", "code": sent_code(mock_notifier)},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == admin_user.sid
    assert data["role"] == "ADMIN"

    response = await client.get(f"{PERMISSIONS}/me", headers=auth_headers(data["token"]))
    assert response.status_code == 200
    names = {p["name"] for p in response.json()}
    assert "pharmacy:approve" in names


@pytest.mark.asyncio
async def test_login_invalid_credentials(client, admin_user):
    response = await client.post(f"{AUTH}/login", json={"identifier": "alice", "password": "nope"})

    assert response.status_code == 401
    assert response.json() == {"detail": "Invalid credentials"}
    assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_login_validation_error(client):
    response = await client.post(f"{AUTH}/login", json={"identifier": "alice"})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_request_otp(client, admin_user, mock_notifier):
    response = await client.post(f"{AUTH}/request-otp", json={"username": "alice"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert mock_notifier.send.call_count == 2


@pytest.mark.asyncio
async def test_verify_otp_wrong_code(client, admin_user, mock_notifier):
    await client.post(f"{AUTH}/request-otp", json={"username": "alice"})

    response = await client.post(f"{AUTH}/verify-otp", json={"username": "alice", "code": "000000"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_logout_revokes_token(client, admin_user):
    """Test a logged out token is rejected by the guards"""
    token = make_token(admin_user)

    response = await client.post(f"{AUTH}/logout", headers=auth_headers(token))
    assert response.status_code == 200
    assert response.json()["success"] is True

    response = await client.get(f"{PERMISSIONS}/me", headers=auth_headers(token))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_logout_without_token(client):
    response = await client.post(f"{AUTH}/logout")

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_refresh_token(client, admin_user):
    token = make_token(admin_user)

    response = await client.post(f"{AUTH}/refresh-token", headers=auth_headers(token))
    assert response.status_code == 200
    new_token = response.json()["token"]
    assert decode_access_token(new_token)["sub"] == admin_user.sid

    response = await client.post(f"{AUTH}/refresh-token", headers=auth_headers(token))
    assert response.status_code == 401

    response = await client.post(f"{AUTH}/refresh-token")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_password_reset_endpoints(client, admin_user, mock_notifier):
    response = await client.post(
        f"{AUTH}/request-password-reset",
        json={"identifier": "nonexistent@x.com"},
    )
    generic = response.json()
    assert response.status_code == 200
    mock_notifier.send.assert_not_called()

    response = await client.post(
        f"{AUTH}/request-password-reset",
        json={"identifier": "alice@example.com"},
    )
    assert response.json() == generic
    code = sent_code(mock_notifier)

    response = await client.post(
        f"{AUTH}/verify-reset-code",
        json={"identifier": "alice@example.com", "code": code},
    )
    assert response.status_code == 200

    response = await client.post(
        f"{AUTH}/verify-password-reset",
        json={
            "identifier": "alice@example.com",
            "code": code,
            "new_password": "NewSecret42",
            "confirm_password": "Mismatch42",
        },
    )
    assert response.status_code == 400

    response = await client.post(
        f"{AUTH}/verify-password-reset",
        json={
            "identifier": "alice@example.com",
            "code": code,
            "new_password": "NewSecret42",
            "confirm_password": "NewSecret42",
        },
    )
    assert response.status_code == 200

    response = await client.post(f"{AUTH}/login", json={"identifier": "alice", "password": "NewSecret42"})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_sliding_refresh_header(client, admin_user, permission_catalog, monkeypatch):
    """Test X-New-Token is attached only for tokens close to expiry"""
    monkeypatch.setattr(settings, "TOKEN_AUTO_REFRESH_ENABLED", True)

    response = await client.get(f"{PERMISSIONS}/me", headers=auth_headers(make_token(admin_user)))
    assert response.status_code == 200
    assert "X-New-Token" not in response.headers

    expiring = make_token(admin_user, expires_delta=timedelta(minutes=5))
    response = await client.get(f"{PERMISSIONS}/me", headers=auth_headers(expiring))
    assert response.status_code == 200
    assert decode_access_token(response.headers["X-New-Token"])["sub"] == admin_user.sid


@pytest.mark.asyncio
async def test_sliding_refresh_disabled(client, admin_user, permission_catalog):
    expiring = make_token(admin_user, expires_delta=timedelta(minutes=5))

    response = await client.get(f"{PERMISSIONS}/me", headers=auth_headers(expiring))

    assert "X-New-Token" not in response.headers


@pytest.mark.asyncio
async def test_health_and_metrics(client):
    response = await client.get("/api/health")
    assert response.json() == {"status": "ok"}

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert "app_request_count" in response.text
