"""
Tenant admin API (platform admins only).

A tenant owns forms, submissions and tenant users; deleting a tenant
removes all of them. Its API key is generated server-side and can be
rotated, which immediately invalidates the old key.
"""
from typing import List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field as PydanticField
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from formhub.api.deps import Principal, require_admin
from formhub.core.errors import NotFound, success
from formhub.core.logging import api_logger
from formhub.core.security import generate_api_key
from formhub.db.database import get_db
from formhub.db.enums import UserRole
from formhub.db.models import Field, Form, RefreshToken, Submission, Tenant, User

router = APIRouter()


class TenantCreate(BaseModel):
    name: str = PydanticField(..., min_length=1, max_length=255)
    domain: Optional[str] = PydanticField(None, max_length=255)
    allowed_origins: List[str] = []
    is_active: bool = True


class TenantUpdate(BaseModel):
    name: Optional[str] = PydanticField(None, min_length=1, max_length=255)
    domain: Optional[str] = PydanticField(None, max_length=255)
    allowed_origins: Optional[List[str]] = None
    is_active: Optional[bool] = None


class TenantResponse(BaseModel):
    id: int
    name: str
    domain: Optional[str]
    allowed_origins: List[str]
    api_key: str
    is_active: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    forms_count: int = 0
    submissions_count: int = 0

    class Config:
        from_attributes = True


async def _get_tenant(db: AsyncSession, tenant_id: int) -> Tenant:
    tenant = await db.get(Tenant, tenant_id)
    if not tenant:
        raise NotFound("Tenant")
    return tenant


async def _counts(db: AsyncSession, model, tenant_ids: List[int]) -> dict:
    if not tenant_ids:
        return {}
    result = await db.execute(
        select(model.tenant_id, func.count(model.id))
        .where(model.tenant_id.in_(tenant_ids))
        .group_by(model.tenant_id)
    )
    return dict(result.all())


async def _to_response(db: AsyncSession, tenant: Tenant) -> TenantResponse:
    forms = await _counts(db, Form, [tenant.id])
    submissions = await _counts(db, Submission, [tenant.id])
    response = TenantResponse.model_validate(tenant)
    response.forms_count = forms.get(tenant.id, 0)
    response.submissions_count = submissions.get(tenant.id, 0)
    return response


def _clean_origins(origins: List[str]) -> List[str]:
    return [o.strip() for o in origins if o and o.strip()]


@router.get("")
async def list_tenants(
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    result = await db.execute(select(Tenant).order_by(Tenant.name, Tenant.id))
    tenants = result.scalars().all()

    ids = [t.id for t in tenants]
    forms = await _counts(db, Form, ids)
    submissions = await _counts(db, Submission, ids)

    items = []
    for tenant in tenants:
        response = TenantResponse.model_validate(tenant)
        response.forms_count = forms.get(tenant.id, 0)
        response.submissions_count = submissions.get(tenant.id, 0)
        items.append(response)
    return success(items)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_tenant(
    payload: TenantCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    tenant = Tenant(
        name=payload.name,
        domain=payload.domain,
        allowed_origins=_clean_origins(payload.allowed_origins),
        api_key=generate_api_key(),
        is_active=payload.is_active,
    )
    db.add(tenant)
    await db.commit()

    api_logger.info("Tenant created", tenant_id=tenant.id, by_user=principal.user_id)
    return success(TenantResponse.model_validate(tenant))


@router.get("/{tenant_id}")
async def get_tenant(
    tenant_id: int,
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    tenant = await _get_tenant(db, tenant_id)
    return success(await _to_response(db, tenant))


@router.patch("/{tenant_id}")
async def update_tenant(
    tenant_id: int,
    payload: TenantUpdate,
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    tenant = await _get_tenant(db, tenant_id)

    for key, value in payload.model_dump(exclude_unset=True).items():
        if key in ("name", "allowed_origins", "is_active") and value is None:
            continue
        if key == "allowed_origins":
            value = _clean_origins(value)
        setattr(tenant, key, value)

    await db.commit()
    return success(await _to_response(db, tenant))


@router.post("/{tenant_id}/rotate-key")
async def rotate_api_key(
    tenant_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    tenant = await _get_tenant(db, tenant_id)
    tenant.api_key = generate_api_key()
    await db.commit()

    api_logger.info("Tenant API key rotated", tenant_id=tenant.id, by_user=principal.user_id)
    return success(await _to_response(db, tenant))


@router.delete("/{tenant_id}")
async def delete_tenant(
    tenant_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    tenant = await _get_tenant(db, tenant_id)
    # Admins outlive the tenant they are attached to
    await db.execute(
        update(User)
        .where(User.tenant_id == tenant.id, User.role == UserRole.admin)
        .values(tenant_id=None)
    )

    form_ids = list((await db.scalars(select(Form.id).where(Form.tenant_id == tenant_id))).all())
    user_ids = list((await db.scalars(select(User.id).where(User.tenant_id == tenant_id))).all())
    await db.execute(delete(Submission).where(Submission.tenant_id == tenant_id))
    await db.execute(delete(Field).where(Field.form_id.in_(form_ids)))
    await db.execute(delete(Form).where(Form.tenant_id == tenant_id))
    await db.execute(delete(RefreshToken).where(RefreshToken.user_id.in_(user_ids)))
    await db.execute(delete(User).where(User.tenant_id == tenant_id))
    await db.execute(delete(Tenant).where(Tenant.id == tenant_id))
    await db.commit()

    api_logger.warning("Tenant deleted", tenant_id=tenant_id, by_user=principal.user_id)
    return success({"id": tenant_id})
