from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index, JSON, UniqueConstraint,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from formhub.db.database import Base
from formhub.db.enums import UserRole


def _utcnow() -> datetime:
    return datetime.utcnow()


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    domain = Column(String(255))
    allowed_origins = Column(JSON, nullable=False, default=list)
    api_key = Column(String(64), unique=True, index=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    forms = relationship("Form", back_populates="tenant", passive_deletes=True)
    users = relationship("User", back_populates="tenant", passive_deletes=True)


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_role", "role"),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False, default="")
    password_hash = Column(String(255), nullable=False)
    role = Column(SAEnum(UserRole, name="userrole", native_enum=False), default=UserRole.user, nullable=False)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="users")
    refresh_tokens = relationship("RefreshToken", back_populates="user", passive_deletes=True)


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"
    __table_args__ = (
        Index("ix_refresh_tokens_user_expires", "user_id", "expires_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token = Column(String(128), unique=True, index=True, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    user = relationship("User", back_populates="refresh_tokens")


class Form(Base):
    __tablename__ = "forms"
    __table_args__ = (
        UniqueConstraint("tenant_id", "slug", name="uq_forms_tenant_slug"),
        Index("ix_forms_tenant_created", "tenant_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), index=True)
    description = Column(Text)
    notify_emails = Column(JSON, nullable=False, default=list)
    allowed_origins = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    tenant = relationship("Tenant", back_populates="forms")
    fields = relationship(
        "Field",
        back_populates="form",
        order_by=lambda: [Field.order_index, Field.id],
        passive_deletes=True,
    )
    submissions = relationship("Submission", back_populates="form", passive_deletes=True)


class Field(Base):
    __tablename__ = "fields"
    __table_args__ = (
        UniqueConstraint("form_id", "name", name="uq_fields_form_name"),
    )

    id = Column(Integer, primary_key=True, index=True)
    form_id = Column(Integer, ForeignKey("forms.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    label = Column(String(255))
    # Stored as plain text: types unknown to this version are kept and accepted as "any"
    type = Column(String(32), nullable=False, default="text")
    required = Column(Boolean, default=False, nullable=False)
    options = Column(JSON, nullable=False, default=list)
    validation_regex = Column(String(500))
    order_index = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    form = relationship("Form", back_populates="fields")


class FieldTemplate(Base):
    """Reusable field definition offered by the form editor."""
    __tablename__ = "field_templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    label = Column(String(255))
    description = Column(Text)
    type = Column(String(32), nullable=False, default="text")
    required = Column(Boolean, default=False, nullable=False)
    options = Column(JSON, nullable=False, default=list)
    validation_regex = Column(String(500))
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Submission(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        Index("ix_submissions_form_created", "form_id", "created_at"),
        Index("ix_submissions_tenant_form", "tenant_id", "form_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    form_id = Column(Integer, ForeignKey("forms.id", ondelete="CASCADE"), nullable=False)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    ip = Column(String(64), nullable=False)
    user_agent = Column(Text)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    form = relationship("Form", back_populates="submissions")
