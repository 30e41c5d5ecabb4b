"""
Field admin API: append fields to a form, edit or remove a single field.
"""
from typing import List, Union

from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from formhub.api.deps import Principal, get_principal, get_scoped_form
from formhub.api.forms import build_fields, check_field_names
from formhub.api.schemas import FieldCreate, FieldResponse, FieldUpdate
from formhub.core.errors import Conflict, NotFound, success
from formhub.core.logging import api_logger
from formhub.db.database import get_db
from formhub.db.models import Field, Form

router = APIRouter()

# Columns that cannot be cleared with an explicit null
NOT_NULLABLE = ("name", "type", "required", "options", "order_index")


async def _get_scoped_field(db: AsyncSession, principal: Principal, field_id: int) -> Field:
    result = await db.execute(
        select(Field, Form.tenant_id).join(Form, Form.id == Field.form_id).where(Field.id == field_id)
    )
    row = result.first()
    if not row or not principal.can_access(row.tenant_id):
        raise NotFound("Field")
    return row[0]


@router.post("/forms/{form_id}/fields", status_code=status.HTTP_201_CREATED)
async def add_fields(
    payload: Union[List[FieldCreate], FieldCreate],
    form: Form = Depends(get_scoped_form),
    db: AsyncSession = Depends(get_db),
):
    """Append one field or a list of fields after the form's existing ones."""
    many = isinstance(payload, list)
    definitions = payload if many else [payload]
    check_field_names(definitions, existing=[f.name for f in form.fields])

    start = max((f.order_index for f in form.fields), default=-1) + 1
    fields = build_fields(form.id, definitions, start_index=start)
    db.add_all(fields)
    await db.commit()

    api_logger.info("Fields added", form_id=form.id, fields=[f.name for f in fields])
    created = [FieldResponse.model_validate(f) for f in fields]
    return success(created if many else created[0])


@router.patch("/fields/{field_id}")
async def update_field(
    field_id: int,
    payload: FieldUpdate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    field = await _get_scoped_field(db, principal, field_id)
    changes = payload.model_dump(exclude_unset=True)

    new_name = changes.get("name")
    if new_name and new_name != field.name:
        taken = await db.scalar(
            select(Field.id).where(Field.form_id == field.form_id, Field.name == new_name)
        )
        if taken:
            raise Conflict(f"Duplicate field name '{new_name}'")

    for key, value in changes.items():
        if key in NOT_NULLABLE and value is None:
            continue
        if key == "type":
            value = value.value
        setattr(field, key, value)

    await db.commit()
    return success(FieldResponse.model_validate(field))


@router.delete("/fields/{field_id}")
async def delete_field(
    field_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    field = await _get_scoped_field(db, principal, field_id)
    await db.delete(field)
    await db.commit()

    api_logger.info("Field deleted", field_id=field_id, form_id=field.form_id)
    return success({"id": field_id})
