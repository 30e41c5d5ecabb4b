from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from formhub.db.models import Submission
from tests.factories import make_form


async def _seed(session, form, count, data=None):
    base = datetime.utcnow() - timedelta(hours=count)
    rows = []
    for i in range(count):
        row = Submission(
            form_id=form.id,
            tenant_id=form.tenant_id,
            ip="0.0.0.0",
            user_agent="-",
            data=data(i) if data else {"n": i},
            created_at=base + timedelta(minutes=i),
        )
        session.add(row)
        rows.append(row)
    await session.commit()
    return rows


@pytest.mark.anyio
async def test_paginated_newest_first(client: AsyncClient, test_session, tenant, user_headers):
    form = await make_form(test_session, tenant)
    await _seed(test_session, form, 5)

    res = await client.get(f"/admin/forms/{form.id}/submissions?page=1&page_size=2", headers=user_headers)
    assert res.status_code == 200
    page = res.json()["data"]
    assert page["total"] == 5
    assert page["pages"] == 3
    assert page["page_size"] == 2
    assert [s["data"]["n"] for s in page["items"]] == [4, 3]

    res = await client.get(f"/admin/forms/{form.id}/submissions?page=3&page_size=2", headers=user_headers)
    assert [s["data"]["n"] for s in res.json()["data"]["items"]] == [0]


@pytest.mark.anyio
async def test_default_page_size(client: AsyncClient, test_session, tenant, user_headers):
    form = await make_form(test_session, tenant)
    await _seed(test_session, form, 25)

    res = await client.get(f"/admin/forms/{form.id}/submissions", headers=user_headers)
    page = res.json()["data"]
    assert page["page_size"] == 20
    assert len(page["items"]) == 20


@pytest.mark.anyio
async def test_page_size_is_capped(client: AsyncClient, test_session, tenant, user_headers):
    form = await make_form(test_session, tenant)

    res = await client.get(f"/admin/forms/{form.id}/submissions?page_size=1000", headers=user_headers)
    assert res.status_code == 400


@pytest.mark.anyio
async def test_keyword_search(client: AsyncClient, test_session, tenant, user_headers):
    form = await make_form(test_session, tenant)
    names = ["alice", "bob", "alicia"]
    await _seed(test_session, form, 3, data=lambda i: {"name": names[i]})

    res = await client.get(f"/admin/forms/{form.id}/submissions?keyword=ali", headers=user_headers)
    page = res.json()["data"]
    assert page["total"] == 2
    assert sorted(s["data"]["name"] for s in page["items"]) == ["alice", "alicia"]


@pytest.mark.anyio
async def test_keyword_search_matches_non_ascii_text(client: AsyncClient, test_session, tenant, user_headers):
    form = await make_form(test_session, tenant)
    names = ["José", "Bob"]
    await _seed(test_session, form, 2, data=lambda i: {"name": names[i]})

    res = await client.get(f"/admin/forms/{form.id}/submissions", params={"keyword": "José"}, headers=user_headers)
    page = res.json()["data"]
    assert page["total"] == 1
    assert page["items"][0]["data"] == {"name": "José"}


@pytest.mark.anyio
async def test_keyword_wildcards_are_literal(client: AsyncClient, test_session, tenant, user_headers):
    form = await make_form(test_session, tenant)
    notes = ["50% off", "Bob", "snake_case"]
    await _seed(test_session, form, 3, data=lambda i: {"note": notes[i]})

    res = await client.get(f"/admin/forms/{form.id}/submissions", params={"keyword": "%"}, headers=user_headers)
    assert res.json()["data"]["total"] == 1

    res = await client.get(f"/admin/forms/{form.id}/submissions", params={"keyword": "_"}, headers=user_headers)
    page = res.json()["data"]
    assert page["total"] == 1
    assert page["items"][0]["data"] == {"note": "snake_case"}


@pytest.mark.anyio
async def test_submission_detail_and_delete(client: AsyncClient, test_session, tenant, user_headers):
    form = await make_form(test_session, tenant)
    [row] = await _seed(test_session, form, 1)

    res = await client.get(f"/admin/forms/{form.id}/submissions/{row.id}", headers=user_headers)
    assert res.status_code == 200
    assert res.json()["data"]["data"] == {"n": 0}

    res = await client.delete(f"/admin/forms/{form.id}/submissions/{row.id}", headers=user_headers)
    assert res.status_code == 200

    result = await test_session.execute(select(Submission.id).where(Submission.id == row.id))
    assert result.first() is None

    res = await client.get(f"/admin/forms/{form.id}/submissions/{row.id}", headers=user_headers)
    assert res.status_code == 404


@pytest.mark.anyio
async def test_submission_of_other_form_is_404(client: AsyncClient, test_session, tenant, user_headers):
    form = await make_form(test_session, tenant)
    other = await make_form(test_session, tenant, name="Other")
    [row] = await _seed(test_session, other, 1)

    res = await client.get(f"/admin/forms/{form.id}/submissions/{row.id}", headers=user_headers)
    assert res.status_code == 404
