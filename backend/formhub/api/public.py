"""
Public form API.

Browsers post here directly from tenant websites, so CORS is answered per
form from its allowed-origin list instead of by the admin CORS middleware.
"""
import json
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from formhub.api.deps import API_KEY_HEADER
from formhub.api.schemas import FieldResponse
from formhub.core.config import settings
from formhub.core.errors import ApiError, success
from formhub.db.database import get_db
from formhub.db.models import Form
from formhub.services.submissions import SubmissionService, get_client_ip, get_user_agent

router = APIRouter()

ALLOW_METHODS = "GET, POST, OPTIONS"
ALLOW_HEADERS = "Content-Type, Accept, X-API-Key"


def cors_headers(origin: Optional[str]) -> Dict[str, str]:
    if not origin:
        return {}
    return {
        "Access-Control-Allow-Origin": origin,
        "Vary": "Origin",
        "Access-Control-Allow-Methods": ALLOW_METHODS,
        "Access-Control-Allow-Headers": ALLOW_HEADERS,
    }


async def _resolve(request: Request, db: AsyncSession, key: str) -> Form:
    return await SubmissionService.resolve_form(db, key, request.headers.get(API_KEY_HEADER))


async def _read_payload(request: Request):
    body = await request.body()
    if not body:
        return {}
    try:
        return json.loads(body)
    except ValueError:
        raise ApiError("Request body must be valid JSON", code="invalid_json")


@router.options("/forms/{key}", status_code=status.HTTP_204_NO_CONTENT)
@router.options("/forms/{key}/submit", status_code=status.HTTP_204_NO_CONTENT)
async def preflight(key: str, request: Request, db: AsyncSession = Depends(get_db)):
    form = await _resolve(request, db, key)
    origin = SubmissionService.check_origin(form, request.headers.get("Origin"))
    headers = cors_headers(origin)
    if origin:
        headers["Access-Control-Max-Age"] = "600"
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=headers)


@router.get("/forms/{key}")
async def get_public_form(
    key: str,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Form definition for rendering: name, description and ordered fields, no owner data."""
    form = await _resolve(request, db, key)
    origin = SubmissionService.check_origin(form, request.headers.get("Origin"))
    response.headers.update(cors_headers(origin))

    return success({
        "id": form.id,
        "name": form.name,
        "slug": form.slug,
        "description": form.description,
        "fields": [
            FieldResponse.model_validate(f).model_dump(exclude={"form_id"}) for f in form.fields
        ],
    })


@router.post("/forms/{key}/submit", status_code=status.HTTP_201_CREATED)
async def submit_form(
    key: str,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    form = await _resolve(request, db, key)
    origin = SubmissionService.check_origin(form, request.headers.get("Origin"))
    headers = cors_headers(origin)

    try:
        payload = await _read_payload(request)
        submission = await SubmissionService.ingest(
            db,
            form,
            payload,
            ip=get_client_ip(request),
            user_agent=get_user_agent(request),
            unknown_fields=settings.UNKNOWN_FIELD_POLICY,
        )
    except ApiError as e:
        # The calling page can only read the error when CORS headers are present
        e.headers = {**(e.headers or {}), **headers}
        raise

    await db.commit()

    response.headers.update(headers)
    return success({"id": submission.id})
