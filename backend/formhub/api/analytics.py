"""
Submission analytics: per-value counts for one field and per-day volume for a tenant.
"""
import json
from collections import Counter

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from formhub.api.deps import Principal, get_principal, get_scoped_form
from formhub.core.errors import NotFound, success
from formhub.db.database import get_db
from formhub.db.models import Form, Submission, Tenant

router = APIRouter()


def _count_key(value) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True)


@router.get("/forms/{form_id}/value-counts")
async def value_counts(
    field: str = Query(..., min_length=1),
    form: Form = Depends(get_scoped_form),
    db: AsyncSession = Depends(get_db),
):
    """Number of submissions per distinct value of `field`; submissions without it are skipped."""
    result = await db.execute(select(Submission.data).where(Submission.form_id == form.id))

    counts = Counter()
    for data in result.scalars():
        if isinstance(data, dict) and field in data:
            counts[_count_key(data[field])] += 1

    return success({"field": field, "counts": dict(counts.most_common())})


@router.get("/tenants/{tenant_id}/daily")
async def daily_counts(
    tenant_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    if not principal.can_access(tenant_id) or not await db.get(Tenant, tenant_id):
        raise NotFound("Tenant")

    day = func.date(Submission.created_at)
    result = await db.execute(
        select(day, func.count(Submission.id))
        .where(Submission.tenant_id == tenant_id)
        .group_by(day)
        .order_by(day)
    )
    return success({"daily": [{"date": str(d), "count": c} for d, c in result.all()]})
