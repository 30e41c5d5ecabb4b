"""
Field template admin API (platform admins only).

Templates are reusable field definitions offered by the form editor; they
are copied into a form, never linked.
"""
from typing import Optional
from datetime import datetime

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from formhub.api.deps import Principal, require_admin
from formhub.api.schemas import FieldCreate, FieldUpdate
from formhub.core.errors import NotFound, success
from formhub.db.database import get_db
from formhub.db.models import FieldTemplate

router = APIRouter()


class FieldTemplateCreate(FieldCreate):
    description: Optional[str] = None


class FieldTemplateUpdate(FieldUpdate):
    description: Optional[str] = None


class FieldTemplateResponse(BaseModel):
    id: int
    name: str
    label: Optional[str]
    description: Optional[str]
    type: str
    required: bool
    options: list
    validation_regex: Optional[str]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True


async def _get_template(db: AsyncSession, template_id: int) -> FieldTemplate:
    template = await db.get(FieldTemplate, template_id)
    if not template:
        raise NotFound("Field template")
    return template


@router.get("")
async def list_templates(
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    result = await db.execute(select(FieldTemplate).order_by(FieldTemplate.name, FieldTemplate.id))
    return success([FieldTemplateResponse.model_validate(t) for t in result.scalars().all()])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_template(
    payload: FieldTemplateCreate,
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    template = FieldTemplate(
        name=payload.name,
        label=payload.label,
        description=payload.description,
        type=payload.type.value,
        required=payload.required,
        options=list(payload.options),
        validation_regex=payload.validation_regex,
    )
    db.add(template)
    await db.commit()
    return success(FieldTemplateResponse.model_validate(template))


@router.patch("/{template_id}")
async def update_template(
    template_id: int,
    payload: FieldTemplateUpdate,
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    template = await _get_template(db, template_id)

    for key, value in payload.model_dump(exclude_unset=True, exclude={"order_index"}).items():
        if key in ("name", "type", "required", "options") and value is None:
            continue
        if key == "type":
            value = value.value
        setattr(template, key, value)

    await db.commit()
    return success(FieldTemplateResponse.model_validate(template))


@router.delete("/{template_id}")
async def delete_template(
    template_id: int,
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    template = await _get_template(db, template_id)
    await db.delete(template)
    await db.commit()
    return success({"id": template_id})
