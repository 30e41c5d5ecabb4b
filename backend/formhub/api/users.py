from typing import Optional
from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, EmailStr, Field as PydanticField
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from formhub.api.auth import MIN_PASSWORD_LENGTH
from formhub.api.deps import Principal, require_admin
from formhub.core.errors import ApiError, Conflict, NotFound, success
from formhub.core.logging import auth_logger
from formhub.core.security import get_password_hash
from formhub.db.database import get_db
from formhub.db.enums import UserRole
from formhub.db.models import RefreshToken, Tenant, User

router = APIRouter()


class UserCreate(BaseModel):
    email: EmailStr
    name: str = PydanticField("", max_length=255)
    password: str = PydanticField(..., min_length=MIN_PASSWORD_LENGTH)
    role: UserRole = UserRole.user
    tenant_id: Optional[int] = None
    is_active: bool = True


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = PydanticField(None, max_length=255)
    password: Optional[str] = PydanticField(None, min_length=MIN_PASSWORD_LENGTH)
    role: Optional[UserRole] = None
    tenant_id: Optional[int] = None
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    role: UserRole
    tenant_id: Optional[int]
    is_active: bool
    last_login_at: Optional[datetime]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


async def _get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFound("User")
    return user


async def _check_assignment(db: AsyncSession, role: UserRole, tenant_id: Optional[int]) -> None:
    """Non-admin users only exist inside a tenant."""
    if tenant_id is None:
        if role != UserRole.admin:
            raise ApiError("tenant_id is required for non-admin users")
        return
    if not await db.get(Tenant, tenant_id):
        raise NotFound("Tenant")


async def _check_email_free(db: AsyncSession, email: str, user_id: Optional[int] = None) -> None:
    query = select(User.id).where(User.email == email)
    if user_id is not None:
        query = query.where(User.id != user_id)
    if await db.scalar(query):
        raise Conflict(f"User with email '{email}' already exists")


@router.get("")
async def list_users(
    tenant_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    query = select(User).order_by(User.email)
    scope = principal.scope(tenant_id)
    if scope is not None:
        query = query.where(User.tenant_id == scope)

    result = await db.execute(query)
    return success([UserResponse.model_validate(u) for u in result.scalars().all()])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    await _check_email_free(db, payload.email)
    await _check_assignment(db, payload.role, payload.tenant_id)

    user = User(
        email=payload.email,
        name=payload.name,
        password_hash=get_password_hash(payload.password),
        role=payload.role,
        tenant_id=payload.tenant_id,
        is_active=payload.is_active,
    )
    db.add(user)
    await db.commit()

    auth_logger.info("User created", user_id=user.id, role=user.role.value, by_user=principal.user_id)
    return success(UserResponse.model_validate(user))


@router.patch("/{user_id}")
async def update_user(
    user_id: int,
    payload: UserUpdate,
    db: AsyncSession = Depends(get_db),
    _: Principal = Depends(require_admin),
):
    user = await _get_user(db, user_id)
    changes = payload.model_dump(exclude_unset=True)

    if changes.get("email"):
        await _check_email_free(db, changes["email"], user.id)

    role = changes.get("role") or user.role
    tenant_id = changes["tenant_id"] if "tenant_id" in changes else user.tenant_id
    await _check_assignment(db, role, tenant_id)

    password = changes.pop("password", None)
    if password:
        user.password_hash = get_password_hash(password)

    for key, value in changes.items():
        if key in ("email", "name", "role", "is_active") and value is None:
            continue
        setattr(user, key, value)

    await db.commit()
    return success(UserResponse.model_validate(user))


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    if principal.user_id == user_id:
        raise ApiError("You cannot delete your own account")

    await _get_user(db, user_id)
    await db.execute(delete(RefreshToken).where(RefreshToken.user_id == user_id))
    await db.execute(delete(User).where(User.id == user_id))
    await db.commit()

    auth_logger.info("User deleted", user_id=user_id, by_user=principal.user_id)
    return success({"id": user_id})
