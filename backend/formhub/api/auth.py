from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from formhub.api.deps import Principal, get_principal
from formhub.core.errors import ApiError, Unauthorized, success
from formhub.core.logging import auth_logger
from formhub.core.security import (
    create_access_token,
    generate_refresh_token,
    get_password_hash,
    refresh_token_expiry,
    verify_password,
)
from formhub.db.database import get_db
from formhub.db.enums import UserRole
from formhub.db.models import RefreshToken, User

router = APIRouter()

MIN_PASSWORD_LENGTH = 6


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class UserSummary(BaseModel):
    id: int
    email: str
    name: str
    role: UserRole
    tenant_id: Optional[int]
    is_active: bool
    last_login_at: Optional[datetime]

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserSummary


def _access_token_for(user: User) -> str:
    role = user.role.value if hasattr(user.role, "value") else user.role
    return create_access_token(data={"sub": str(user.id), "role": role, "tenant_id": user.tenant_id})


async def _issue_tokens(db: AsyncSession, user: User, now: datetime) -> TokenResponse:
    refresh_token = generate_refresh_token()
    db.add(RefreshToken(user_id=user.id, token=refresh_token, expires_at=refresh_token_expiry(now)))

    # Drop this user's expired refresh tokens
    await db.execute(
        delete(RefreshToken).where(RefreshToken.user_id == user.id, RefreshToken.expires_at < now)
    )
    await db.commit()

    return TokenResponse(
        access_token=_access_token_for(user),
        refresh_token=refresh_token,
        user=UserSummary.model_validate(user),
    )


async def _bootstrap_admin(db: AsyncSession, request: LoginRequest) -> Optional[User]:
    """The very first login on an empty installation creates the platform admin."""
    count = await db.scalar(select(func.count()).select_from(User))
    if count:
        return None

    if len(request.password) < MIN_PASSWORD_LENGTH:
        raise ApiError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    user = User(
        email=request.email,
        name="Admin",
        password_hash=get_password_hash(request.password),
        role=UserRole.admin,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    auth_logger.info("Created initial admin user", user_id=user.id, email=user.email)
    return user


@router.post("/login")
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(User).where(User.email == request.email))
    user = result.scalar_one_or_none()

    if not user:
        user = await _bootstrap_admin(db, request)

    if not user or not user.is_active or not verify_password(request.password, user.password_hash):
        auth_logger.warning("Failed login", email=request.email)
        raise Unauthorized("Invalid credentials")

    now = datetime.utcnow()
    user.last_login_at = now
    tokens = await _issue_tokens(db, user, now)
    auth_logger.info("User logged in", user_id=user.id)
    return success(tokens)


@router.post("/refresh")
async def refresh(request: RefreshRequest, db: AsyncSession = Depends(get_db)):
    """Rotate a refresh token: the presented token is consumed and a new pair is issued."""
    now = datetime.utcnow()
    result = await db.execute(
        select(RefreshToken).where(
            RefreshToken.token == request.refresh_token,
            RefreshToken.expires_at > now,
        )
    )
    token = result.scalar_one_or_none()
    if not token:
        raise Unauthorized("Invalid token")

    result = await db.execute(select(User).where(User.id == token.user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise Unauthorized("Invalid token")

    await db.delete(token)
    tokens = await _issue_tokens(db, user, now)
    return success(tokens)


@router.post("/logout")
async def logout(request: RefreshRequest, db: AsyncSession = Depends(get_db)):
    await db.execute(delete(RefreshToken).where(RefreshToken.token == request.refresh_token))
    await db.commit()
    return success()


@router.get("/current")
async def current(principal: Principal = Depends(get_principal)):
    return success(principal.as_dict())
