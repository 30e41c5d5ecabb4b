import pytest
from httpx import AsyncClient


@pytest.mark.anyio
async def test_field_template_crud(client: AsyncClient, admin_headers):
    res = await client.post(
        "/admin/field-templates",
        json={
            "name": "phone",
            "label": "Phone number",
            "description": "Digits only",
            "type": "text",
            "validation_regex": r"^\+?\d+$",
        },
        headers=admin_headers,
    )
    assert res.status_code == 201
    template = res.json()["data"]
    assert template["label"] == "Phone number"

    res = await client.patch(
        f"/admin/field-templates/{template['id']}",
        json={"required": True, "type": "number"},
        headers=admin_headers,
    )
    assert res.status_code == 200
    assert res.json()["data"]["required"] is True
    assert res.json()["data"]["type"] == "number"

    res = await client.get("/admin/field-templates", headers=admin_headers)
    assert [t["name"] for t in res.json()["data"]] == ["phone"]

    res = await client.delete(f"/admin/field-templates/{template['id']}", headers=admin_headers)
    assert res.status_code == 200

    res = await client.get("/admin/field-templates", headers=admin_headers)
    assert res.json()["data"] == []


@pytest.mark.anyio
async def test_field_templates_are_admin_only(client: AsyncClient, user_headers):
    res = await client.get("/admin/field-templates", headers=user_headers)
    assert res.status_code == 403


@pytest.mark.anyio
async def test_unknown_template_is_404(client: AsyncClient, admin_headers):
    res = await client.patch("/admin/field-templates/9999", json={"label": "x"}, headers=admin_headers)
    assert res.status_code == 404


@pytest.mark.anyio
async def test_template_rejects_unknown_type(client: AsyncClient, admin_headers):
    res = await client.post(
        "/admin/field-templates", json={"name": "x", "type": "hologram"}, headers=admin_headers
    )
    assert res.status_code == 400
    assert res.json()["error"]["details"][0]["field"] == "type"
