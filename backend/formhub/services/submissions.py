"""
Submission ingestion.

A public submission goes through four steps, in order, and stops at the
first failure:

    received -> origin-checked -> shape-validated -> persisted

Nothing is written unless every step passes.
"""
from typing import Any, List, Optional

from fastapi import Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from formhub.core.errors import ApiError
from formhub.core.logging import log_operation, submissions_logger
from formhub.db.enums import FieldType, UnknownFieldPolicy
from formhub.db.models import Field, Form, Submission, Tenant
from formhub.services.validator import SubmissionValidationError, unknown_keys, validate_submission

UNKNOWN_IP = "0.0.0.0"
UNKNOWN_USER_AGENT = "-"
MAX_FIELD_NAME_LENGTH = 100


class UnknownForm(ApiError):
    def __init__(self):
        super().__init__("Unknown form", status.HTTP_404_NOT_FOUND, "unknown_form")


class OriginNotAllowed(ApiError):
    def __init__(self, origin: str):
        super().__init__(
            f"Origin '{origin}' is not allowed for this form",
            status.HTTP_403_FORBIDDEN,
            "origin_not_allowed",
        )


def get_client_ip(request: Request) -> str:
    """
    Source IP of a submission, taken verbatim from proxy headers.
    Falls back to the 0.0.0.0 sentinel when no header carries one.
    """
    ip = request.headers.get("CF-Connecting-IP")
    if ip:
        return ip.strip()

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # client, proxy1, proxy2 - first hop is the original client
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return UNKNOWN_IP


def get_user_agent(request: Request) -> str:
    return request.headers.get("User-Agent") or UNKNOWN_USER_AGENT


class SubmissionService:
    """Public-facing form lookup, origin policy and submission persistence."""

    @classmethod
    async def resolve_form(cls, db: AsyncSession, key: str, api_key: Optional[str] = None) -> Form:
        """
        Find an active form by numeric id, or by slug within the tenant owning `api_key`.

        Slugs are only unique per tenant, so a slug without an API key never resolves.
        When an API key accompanies a numeric id it must belong to the form's tenant.
        """
        query = (
            select(Form)
            .join(Tenant, Tenant.id == Form.tenant_id)
            .options(selectinload(Form.fields), selectinload(Form.tenant))
            .where(Form.is_active == True, Tenant.is_active == True)  # noqa: E712
        )

        if key.isdigit():
            query = query.where(Form.id == int(key))
            if api_key:
                query = query.where(Tenant.api_key == api_key)
        else:
            if not api_key:
                raise UnknownForm()
            query = query.where(Form.slug == key, Tenant.api_key == api_key)

        result = await db.execute(query)
        form = result.scalar_one_or_none()
        if not form:
            raise UnknownForm()
        return form

    @staticmethod
    def allowed_origins(form: Form) -> List[str]:
        """The form's own allow-list, or its tenant's when the form declares none."""
        origins = [o.strip() for o in (form.allowed_origins or []) if o and o.strip()]
        if not origins and form.tenant is not None:
            origins = [o.strip() for o in (form.tenant.allowed_origins or []) if o and o.strip()]
        return origins

    @classmethod
    def check_origin(cls, form: Form, origin: Optional[str]) -> Optional[str]:
        """
        Apply the form's origin policy.

        Returns the origin to echo in CORS headers (None when the request carries
        no Origin), raises OriginNotAllowed when the allow-list excludes it.
        An empty allow-list places no restriction.
        """
        origin = (origin or "").strip()
        if not origin:
            return None

        allowed = cls.allowed_origins(form)
        if allowed and origin not in allowed:
            submissions_logger.warning("Rejected submission origin", form_id=form.id, origin=origin)
            raise OriginNotAllowed(origin)
        return origin

    @classmethod
    @log_operation("ingest_submission", submissions_logger)
    async def ingest(
        cls,
        db: AsyncSession,
        form: Form,
        payload: Any,
        ip: str = UNKNOWN_IP,
        user_agent: str = UNKNOWN_USER_AGENT,
        unknown_fields: UnknownFieldPolicy = UnknownFieldPolicy.ignore,
    ) -> Submission:
        """Validate `payload` against the form's fields and store it as one submission."""
        policy = UnknownFieldPolicy(unknown_fields)
        data = validate_submission(form.fields, payload, policy)

        if policy == UnknownFieldPolicy.register:
            await cls._register_fields(db, form, unknown_keys(form.fields, payload))

        submission = Submission(
            form_id=form.id,
            tenant_id=form.tenant_id,
            ip=ip or UNKNOWN_IP,
            user_agent=user_agent or UNKNOWN_USER_AGENT,
            data=data,
        )
        db.add(submission)
        await db.flush()

        submissions_logger.info(
            "Submission stored",
            form_id=form.id,
            submission_id=submission.id,
            fields=len(data),
        )
        return submission

    @classmethod
    async def _register_fields(cls, db: AsyncSession, form: Form, names: List[str]) -> List[Field]:
        """Append unknown payload keys to the form as optional text fields."""
        if not names:
            return []

        bad = [n for n in names if not n.strip() or len(n) > MAX_FIELD_NAME_LENGTH]
        if bad:
            raise SubmissionValidationError([
                {"field": n, "message": "Field name cannot be registered", "type": "field_name"}
                for n in bad
            ])

        next_index = max((f.order_index for f in form.fields), default=-1) + 1
        created = []
        for offset, name in enumerate(names):
            field = Field(
                form_id=form.id,
                name=name,
                type=FieldType.text.value,
                required=False,
                options=[],
                order_index=next_index + offset,
            )
            db.add(field)
            created.append(field)

        submissions_logger.info("Registered submitted fields", form_id=form.id, fields=names)
        return created
