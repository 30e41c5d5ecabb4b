import pytest
from httpx import AsyncClient
from sqlalchemy import select

from formhub.core.security import verify_password
from formhub.db.models import User


@pytest.mark.anyio
async def test_create_tenant_user(client: AsyncClient, test_session, tenant, admin_headers):
    res = await client.post(
        "/admin/users",
        json={"email": "new@example.com", "name": "New", "password": "hunter22", "tenant_id": tenant.id},
        headers=admin_headers,
    )
    assert res.status_code == 201
    data = res.json()["data"]
    assert data["role"] == "user"
    assert data["tenant_id"] == tenant.id
    assert "password_hash" not in data

    # The new account can log in
    res = await client.post("/admin/auth/login", json={"email": "new@example.com", "password": "hunter22"})
    assert res.status_code == 200


@pytest.mark.anyio
async def test_non_admin_user_requires_tenant(client: AsyncClient, admin_headers):
    res = await client.post(
        "/admin/users",
        json={"email": "loose@example.com", "password": "hunter22"},
        headers=admin_headers,
    )
    assert res.status_code == 400


@pytest.mark.anyio
async def test_create_user_validation(client: AsyncClient, tenant, admin_headers):
    res = await client.post(
        "/admin/users",
        json={"email": "not-an-email", "password": "x", "tenant_id": tenant.id},
        headers=admin_headers,
    )
    assert res.status_code == 400
    fields = {d["field"] for d in res.json()["error"]["details"]}
    assert fields == {"email", "password"}


@pytest.mark.anyio
async def test_duplicate_email_is_400(client: AsyncClient, tenant, tenant_user, admin_headers):
    res = await client.post(
        "/admin/users",
        json={"email": "member@example.com", "password": "hunter22", "tenant_id": tenant.id},
        headers=admin_headers,
    )
    assert res.status_code == 400
    assert res.json()["error"]["code"] == "conflict"


@pytest.mark.anyio
async def test_list_users_filtered_by_tenant(client: AsyncClient, tenant, tenant_user, admin_user, admin_headers):
    res = await client.get("/admin/users", headers=admin_headers)
    assert sorted(u["email"] for u in res.json()["data"]) == ["admin@example.com", "member@example.com"]

    res = await client.get(f"/admin/users?tenant_id={tenant.id}", headers=admin_headers)
    assert [u["email"] for u in res.json()["data"]] == ["member@example.com"]


@pytest.mark.anyio
async def test_users_routes_are_admin_only(client: AsyncClient, user_headers):
    res = await client.get("/admin/users", headers=user_headers)
    assert res.status_code == 403


@pytest.mark.anyio
async def test_patch_user_rehashes_password(client: AsyncClient, test_session, tenant_user, admin_headers):
    res = await client.patch(
        f"/admin/users/{tenant_user.id}",
        json={"name": "Renamed", "password": "brand-new-pass"},
        headers=admin_headers,
    )
    assert res.status_code == 200
    assert res.json()["data"]["name"] == "Renamed"

    result = await test_session.execute(
        select(User).where(User.id == tenant_user.id).execution_options(populate_existing=True)
    )
    user = result.scalar_one()
    assert verify_password("brand-new-pass", user.password_hash)


@pytest.mark.anyio
async def test_patch_cannot_strip_tenant_from_user(client: AsyncClient, tenant_user, admin_headers):
    res = await client.patch(
        f"/admin/users/{tenant_user.id}", json={"tenant_id": None}, headers=admin_headers
    )
    assert res.status_code == 400


@pytest.mark.anyio
async def test_delete_user(client: AsyncClient, test_session, tenant_user, admin_headers):
    res = await client.delete(f"/admin/users/{tenant_user.id}", headers=admin_headers)
    assert res.status_code == 200

    result = await test_session.execute(select(User.id).where(User.id == tenant_user.id))
    assert result.first() is None

    res = await client.delete(f"/admin/users/{tenant_user.id}", headers=admin_headers)
    assert res.status_code == 404


@pytest.mark.anyio
async def test_cannot_delete_self(client: AsyncClient, admin_user, admin_headers):
    res = await client.delete(f"/admin/users/{admin_user.id}", headers=admin_headers)
    assert res.status_code == 400
