"""
Form admin API.

Provides:
- Tenant-scoped CRUD for forms
- Whole-set field replacement on update

Field-level endpoints live in fields.py; submissions in submissions.py.
"""
from typing import Dict, Iterable, List, Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, EmailStr, Field as PydanticField
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from formhub.api.deps import Principal, get_principal, get_scoped_form
from formhub.api.schemas import FieldCreate, FieldResponse
from formhub.core.errors import ApiError, Conflict, NotFound, success
from formhub.core.logging import api_logger
from formhub.db.database import get_db
from formhub.db.models import Field, Form, Submission, Tenant


router = APIRouter()

SLUG_PATTERN = r'^[a-z0-9][a-z0-9_-]*$'


# ============================================================================
# Pydantic Schemas
# ============================================================================

class FormCreate(BaseModel):
    name: str = PydanticField(..., min_length=1, max_length=255)
    slug: Optional[str] = PydanticField(None, min_length=1, max_length=100, pattern=SLUG_PATTERN)
    description: Optional[str] = None
    notify_emails: List[EmailStr] = []
    allowed_origins: List[str] = []
    is_active: bool = True
    tenant_id: Optional[int] = None
    fields: Optional[List[FieldCreate]] = None


class FormUpdate(BaseModel):
    name: Optional[str] = PydanticField(None, min_length=1, max_length=255)
    slug: Optional[str] = PydanticField(None, min_length=1, max_length=100, pattern=SLUG_PATTERN)
    description: Optional[str] = None
    notify_emails: Optional[List[EmailStr]] = None
    allowed_origins: Optional[List[str]] = None
    is_active: Optional[bool] = None
    fields: Optional[List[FieldCreate]] = None


class FormResponse(BaseModel):
    id: int
    tenant_id: int
    name: str
    slug: Optional[str]
    description: Optional[str]
    notify_emails: List[str]
    allowed_origins: List[str]
    is_active: bool
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    fields: List[FieldResponse] = []
    submissions_count: Optional[int] = None


# ============================================================================
# Helper Functions
# ============================================================================

def _clean_origins(origins: Iterable[str]) -> List[str]:
    return [o.strip() for o in origins if o and o.strip()]


def form_to_response(form: Form, submissions_count: Optional[int] = None) -> FormResponse:
    return FormResponse(
        id=form.id,
        tenant_id=form.tenant_id,
        name=form.name,
        slug=form.slug,
        description=form.description,
        notify_emails=form.notify_emails or [],
        allowed_origins=form.allowed_origins or [],
        is_active=form.is_active,
        created_at=form.created_at,
        updated_at=form.updated_at,
        fields=[FieldResponse.model_validate(f) for f in form.fields],
        submissions_count=submissions_count,
    )


def check_field_names(definitions: List[FieldCreate], existing: Iterable[str] = ()) -> None:
    """Field names are unique within a form, counting fields it already has."""
    seen = set(existing)
    for definition in definitions:
        if definition.name in seen:
            raise Conflict(f"Duplicate field name '{definition.name}'")
        seen.add(definition.name)


def build_fields(form_id: int, definitions: List[FieldCreate], start_index: int = 0) -> List[Field]:
    fields = []
    for offset, definition in enumerate(definitions):
        order_index = definition.order_index if definition.order_index is not None else start_index + offset
        fields.append(Field(
            form_id=form_id,
            name=definition.name,
            label=definition.label,
            type=definition.type.value,
            required=definition.required,
            options=list(definition.options),
            validation_regex=definition.validation_regex,
            order_index=order_index,
        ))
    return fields


async def load_form(db: AsyncSession, form_id: int) -> Form:
    """Re-read a form and its fields after a write, replacing stale identity-map state."""
    result = await db.execute(
        select(Form)
        .options(selectinload(Form.fields))
        .where(Form.id == form_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def submission_counts(db: AsyncSession, form_ids: List[int]) -> Dict[int, int]:
    if not form_ids:
        return {}
    result = await db.execute(
        select(Submission.form_id, func.count(Submission.id))
        .where(Submission.form_id.in_(form_ids))
        .group_by(Submission.form_id)
    )
    return {form_id: count for form_id, count in result.all()}


async def _check_slug_free(db: AsyncSession, tenant_id: int, slug: Optional[str], form_id: Optional[int] = None):
    if not slug:
        return
    query = select(Form.id).where(Form.tenant_id == tenant_id, Form.slug == slug)
    if form_id is not None:
        query = query.where(Form.id != form_id)
    if await db.scalar(query):
        raise Conflict(f"Form with slug '{slug}' already exists")


async def _target_tenant(db: AsyncSession, principal: Principal, requested: Optional[int]) -> int:
    """Scoped principals always create in their own tenant; unscoped admins must name one."""
    tenant_id = principal.scope(requested)
    if tenant_id is None:
        raise ApiError("tenant_id is required")

    tenant = await db.get(Tenant, tenant_id)
    if not tenant:
        raise NotFound("Tenant")
    return tenant_id


# ============================================================================
# Endpoints
# ============================================================================

@router.get("")
async def list_forms(
    tenant_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    query = select(Form).options(selectinload(Form.fields))

    scope = principal.scope(tenant_id)
    if scope is not None:
        query = query.where(Form.tenant_id == scope)

    result = await db.execute(query.order_by(Form.created_at.desc(), Form.id.desc()))
    forms = result.scalars().all()
    counts = await submission_counts(db, [f.id for f in forms])

    return success([form_to_response(f, counts.get(f.id, 0)) for f in forms])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_form(
    payload: FormCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    tenant_id = await _target_tenant(db, principal, payload.tenant_id)
    await _check_slug_free(db, tenant_id, payload.slug)

    definitions = payload.fields or []
    check_field_names(definitions)

    form = Form(
        tenant_id=tenant_id,
        name=payload.name,
        slug=payload.slug,
        description=payload.description,
        notify_emails=[str(e) for e in payload.notify_emails],
        allowed_origins=_clean_origins(payload.allowed_origins),
        is_active=payload.is_active,
    )
    db.add(form)
    await db.flush()

    db.add_all(build_fields(form.id, definitions))
    await db.commit()

    form = await load_form(db, form.id)
    api_logger.info("Form created", form_id=form.id, tenant_id=tenant_id, fields=len(form.fields))
    return success(form_to_response(form, 0))


@router.get("/{form_id}")
async def get_form(
    form: Form = Depends(get_scoped_form),
    db: AsyncSession = Depends(get_db),
):
    counts = await submission_counts(db, [form.id])
    return success(form_to_response(form, counts.get(form.id, 0)))


@router.patch("/{form_id}")
async def update_form(
    payload: FormUpdate,
    form: Form = Depends(get_scoped_form),
    db: AsyncSession = Depends(get_db),
):
    """Update form attributes; a `fields` list replaces the whole field set."""
    changes = payload.model_dump(exclude_unset=True, exclude={"fields"})

    if "slug" in changes:
        await _check_slug_free(db, form.tenant_id, changes["slug"], form.id)
    if changes.get("notify_emails") is not None:
        changes["notify_emails"] = [str(e) for e in changes["notify_emails"]]
    if changes.get("allowed_origins") is not None:
        changes["allowed_origins"] = _clean_origins(changes["allowed_origins"])

    for key, value in changes.items():
        if key in ("name", "is_active", "notify_emails", "allowed_origins") and value is None:
            continue
        setattr(form, key, value)

    if payload.fields is not None:
        check_field_names(payload.fields)
        await db.execute(delete(Field).where(Field.form_id == form.id))
        db.add_all(build_fields(form.id, payload.fields))
        form.updated_at = datetime.utcnow()

    await db.commit()

    form = await load_form(db, form.id)
    counts = await submission_counts(db, [form.id])
    api_logger.info("Form updated", form_id=form.id, fields_replaced=payload.fields is not None)
    return success(form_to_response(form, counts.get(form.id, 0)))


@router.delete("/{form_id}")
async def delete_form(
    form: Form = Depends(get_scoped_form),
    db: AsyncSession = Depends(get_db),
):
    form_id = form.id
    await db.execute(delete(Submission).where(Submission.form_id == form_id))
    await db.execute(delete(Field).where(Field.form_id == form_id))
    await db.execute(delete(Form).where(Form.id == form_id))
    await db.commit()

    api_logger.info("Form deleted", form_id=form_id)
    return success({"id": form_id})
