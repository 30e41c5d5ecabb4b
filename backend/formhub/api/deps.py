"""
Request principals and tenant scoping.

A request authenticates either with a bearer JWT (dashboard session) or with
a tenant API key. Admins may additionally act as one tenant through the
X-Impersonate-Tenant header; the resulting scope lives on the Principal for
the duration of the request only.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from formhub.core.errors import ApiError, NotFound, Unauthorized
from formhub.core.logging import auth_logger
from formhub.core.security import decode_token
from formhub.db.database import get_db
from formhub.db.enums import UserRole
from formhub.db.models import Form, Tenant, User
from formhub.permissions.exceptions import PermissionDenied

IMPERSONATE_HEADER = "X-Impersonate-Tenant"
API_KEY_HEADER = "X-API-Key"

bearer = HTTPBearer(auto_error=False)


@dataclass
class Principal:
    role: UserRole
    user: Optional[User] = None
    tenant_id: Optional[int] = None
    impersonating: bool = False
    via_api_key: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin

    @property
    def user_id(self) -> Optional[int]:
        return self.user.id if self.user else None

    def scope(self, requested_tenant_id: Optional[int] = None) -> Optional[int]:
        """
        Tenant to filter by: the principal's own scope when it has one,
        otherwise whatever an unscoped admin asked for (None = all tenants).
        """
        if self.tenant_id is not None:
            return self.tenant_id
        return requested_tenant_id

    def can_access(self, tenant_id: int) -> bool:
        return self.tenant_id is None or self.tenant_id == tenant_id

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "email": self.user.email if self.user else None,
            "role": self.role.value,
            "tenant_id": self.tenant_id,
            "impersonating": self.impersonating,
            "via_api_key": self.via_api_key,
        }


async def _principal_from_token(db: AsyncSession, request: Request, token: str) -> Principal:
    payload = decode_token(token)
    user_id = payload.get("sub")
    if user_id is None:
        raise Unauthorized()

    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise Unauthorized()

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise Unauthorized()

    if user.role != UserRole.admin:
        if user.tenant_id is None:
            raise PermissionDenied("User is not attached to a tenant")
        return Principal(role=user.role, user=user, tenant_id=user.tenant_id)

    target = request.headers.get(IMPERSONATE_HEADER)
    if not target:
        return Principal(role=user.role, user=user)

    if not target.strip().isdigit():
        raise ApiError(f"Invalid {IMPERSONATE_HEADER} header")
    result = await db.execute(select(Tenant).where(Tenant.id == int(target)))
    tenant = result.scalar_one_or_none()
    if not tenant:
        raise NotFound("Tenant")

    auth_logger.debug("Admin impersonating tenant", user_id=user.id, tenant_id=tenant.id)
    return Principal(role=user.role, user=user, tenant_id=tenant.id, impersonating=True)


async def get_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Resolve the acting principal from a bearer token or a tenant API key."""
    if credentials and credentials.credentials:
        return await _principal_from_token(db, request, credentials.credentials)

    api_key = request.headers.get(API_KEY_HEADER)
    if api_key:
        result = await db.execute(select(Tenant).where(Tenant.api_key == api_key))
        tenant = result.scalar_one_or_none()
        if not tenant or not tenant.is_active:
            raise Unauthorized("Invalid API key")
        return Principal(role=UserRole.user, tenant_id=tenant.id, via_api_key=True)

    raise Unauthorized()


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise PermissionDenied("Admin access required")
    return principal


async def get_scoped_form(
    form_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> Form:
    """Load a form (with fields) the principal may see; other tenants' forms are 404."""
    result = await db.execute(
        select(Form).options(selectinload(Form.fields)).where(Form.id == form_id)
    )
    form = result.scalar_one_or_none()
    if not form or not principal.can_access(form.tenant_id):
        raise NotFound("Form")
    return form
