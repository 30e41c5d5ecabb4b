"""
Submission admin API: browse, inspect and delete a form's submissions.
"""
from typing import Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import String, cast, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from formhub.api.deps import get_scoped_form
from formhub.api.schemas import Page
from formhub.core.config import settings
from formhub.core.errors import NotFound, success
from formhub.core.logging import submissions_logger
from formhub.db.database import get_db
from formhub.db.models import Form, Submission

router = APIRouter()


class SubmissionResponse(BaseModel):
    id: int
    form_id: int
    tenant_id: int
    ip: str
    user_agent: Optional[str]
    data: dict
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


async def _get_submission(db: AsyncSession, form: Form, submission_id: int) -> Submission:
    result = await db.execute(
        select(Submission).where(Submission.id == submission_id, Submission.form_id == form.id)
    )
    submission = result.scalar_one_or_none()
    if not submission:
        raise NotFound("Submission")
    return submission


@router.get("/forms/{form_id}/submissions")
async def list_submissions(
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=settings.MAX_PAGE_SIZE),
    keyword: Optional[str] = Query(None, max_length=200),
    form: Form = Depends(get_scoped_form),
    db: AsyncSession = Depends(get_db),
):
    """
    Newest-first page of a form's submissions.

    `keyword` is a literal substring match against the stored JSON text, so it
    hits both field names and values. `%` and `_` are not wildcards.
    """
    page_size = page_size or settings.DEFAULT_PAGE_SIZE

    conditions = [Submission.form_id == form.id]
    if keyword:
        conditions.append(cast(Submission.data, String).contains(keyword, autoescape=True))

    total = await db.scalar(select(func.count(Submission.id)).where(*conditions)) or 0

    result = await db.execute(
        select(Submission)
        .where(*conditions)
        .order_by(Submission.created_at.desc(), Submission.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    items = [SubmissionResponse.model_validate(s) for s in result.scalars().all()]

    return success(Page(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        pages=(total + page_size - 1) // page_size,
    ))


@router.get("/forms/{form_id}/submissions/{submission_id}")
async def get_submission(
    submission_id: int,
    form: Form = Depends(get_scoped_form),
    db: AsyncSession = Depends(get_db),
):
    submission = await _get_submission(db, form, submission_id)
    return success(SubmissionResponse.model_validate(submission))


@router.delete("/forms/{form_id}/submissions/{submission_id}")
async def delete_submission(
    submission_id: int,
    form: Form = Depends(get_scoped_form),
    db: AsyncSession = Depends(get_db),
):
    await _get_submission(db, form, submission_id)
    await db.execute(delete(Submission).where(Submission.id == submission_id))
    await db.commit()

    submissions_logger.info("Submission deleted", form_id=form.id, submission_id=submission_id)
    return success({"id": submission_id})
