from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from formhub.core.security import decode_token
from formhub.db.enums import UserRole
from formhub.db.models import RefreshToken, User
from tests.factories import TEST_PASSWORD, make_user


async def _login(client, email, password=TEST_PASSWORD):
    return await client.post("/admin/auth/login", json={"email": email, "password": password})


@pytest.mark.anyio
async def test_first_login_creates_platform_admin(client: AsyncClient, test_session):
    res = await _login(client, "owner@example.com", "first-pass")
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["token_type"] == "bearer"
    assert data["user"]["role"] == "admin"
    assert data["user"]["tenant_id"] is None

    result = await test_session.execute(select(User))
    users = result.scalars().all()
    assert [u.email for u in users] == ["owner@example.com"]

    # The bootstrap happens once: a second unknown user is just rejected
    res = await _login(client, "intruder@example.com", "whatever1")
    assert res.status_code == 401


@pytest.mark.anyio
async def test_bootstrap_rejects_short_password(client: AsyncClient):
    res = await _login(client, "owner@example.com", "abc")
    assert res.status_code == 400


@pytest.mark.anyio
async def test_login_returns_token_pair(client: AsyncClient, test_session, tenant_user):
    res = await _login(client, "member@example.com")
    assert res.status_code == 200
    data = res.json()["data"]

    claims = decode_token(data["access_token"])
    assert claims["sub"] == str(tenant_user.id)
    assert claims["role"] == "user"
    assert claims["tenant_id"] == tenant_user.tenant_id
    assert data["refresh_token"]

    await test_session.refresh(tenant_user)
    assert tenant_user.last_login_at is not None


@pytest.mark.anyio
async def test_login_wrong_password_is_401(client: AsyncClient, tenant_user):
    res = await _login(client, "member@example.com", "wrong-password")
    assert res.status_code == 401
    assert res.json()["error"]["code"] == "unauthorized"


@pytest.mark.anyio
async def test_login_inactive_user_is_401(client: AsyncClient, test_session, tenant):
    await make_user(test_session, "gone@example.com", tenant=tenant, is_active=False)
    res = await _login(client, "gone@example.com")
    assert res.status_code == 401


@pytest.mark.anyio
async def test_login_purges_expired_refresh_tokens(client: AsyncClient, test_session, tenant_user):
    test_session.add(RefreshToken(
        user_id=tenant_user.id,
        token="stale-token",
        expires_at=datetime.utcnow() - timedelta(days=1),
    ))
    await test_session.commit()

    res = await _login(client, "member@example.com")
    assert res.status_code == 200

    result = await test_session.execute(
        select(RefreshToken.token).where(RefreshToken.user_id == tenant_user.id)
    )
    tokens = result.scalars().all()
    assert "stale-token" not in tokens
    assert tokens == [res.json()["data"]["refresh_token"]]


@pytest.mark.anyio
async def test_refresh_rotates_token(client: AsyncClient, tenant_user):
    login = (await _login(client, "member@example.com")).json()["data"]

    res = await client.post("/admin/auth/refresh", json={"refresh_token": login["refresh_token"]})
    assert res.status_code == 200
    rotated = res.json()["data"]
    assert rotated["refresh_token"] != login["refresh_token"]
    assert decode_token(rotated["access_token"])["sub"] == str(tenant_user.id)

    # The consumed token cannot be replayed
    res = await client.post("/admin/auth/refresh", json={"refresh_token": login["refresh_token"]})
    assert res.status_code == 401


@pytest.mark.anyio
async def test_refresh_with_expired_token_is_401(client: AsyncClient, test_session, tenant_user):
    test_session.add(RefreshToken(
        user_id=tenant_user.id,
        token="expired-token",
        expires_at=datetime.utcnow() - timedelta(minutes=1),
    ))
    await test_session.commit()

    res = await client.post("/admin/auth/refresh", json={"refresh_token": "expired-token"})
    assert res.status_code == 401


@pytest.mark.anyio
async def test_logout_revokes_refresh_token(client: AsyncClient, tenant_user):
    login = (await _login(client, "member@example.com")).json()["data"]

    res = await client.post("/admin/auth/logout", json={"refresh_token": login["refresh_token"]})
    assert res.status_code == 200

    res = await client.post("/admin/auth/refresh", json={"refresh_token": login["refresh_token"]})
    assert res.status_code == 401


@pytest.mark.anyio
async def test_current_principal(client: AsyncClient, tenant_user, user_headers):
    res = await client.get("/admin/auth/current", headers=user_headers)
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["user_id"] == tenant_user.id
    assert data["role"] == "user"
    assert data["tenant_id"] == tenant_user.tenant_id
    assert data["impersonating"] is False


@pytest.mark.anyio
async def test_current_requires_credentials(client: AsyncClient):
    res = await client.get("/admin/auth/current")
    assert res.status_code == 401

    res = await client.get("/admin/auth/current", headers={"Authorization": "Bearer not-a-jwt"})
    assert res.status_code == 401


@pytest.mark.anyio
async def test_deactivated_user_token_stops_working(client: AsyncClient, test_session, tenant_user, user_headers):
    tenant_user.is_active = False
    await test_session.commit()

    res = await client.get("/admin/auth/current", headers=user_headers)
    assert res.status_code == 401


@pytest.mark.anyio
async def test_admin_login_has_no_tenant(client: AsyncClient, test_session):
    await make_user(test_session, "root@example.com", role=UserRole.admin)
    res = await _login(client, "root@example.com")
    assert res.status_code == 200
    assert res.json()["data"]["user"]["tenant_id"] is None
