"""ORM Models for the PLS tracker — SQLAlchemy 2.0"""
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Numeric, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from app.db import Base


def gen_uuid():
    return str(uuid.uuid4())


# ── USERS ─────────────────────────────────────────────────────────────────────
class UserProfile(Base):
    """Directory entry used to resolve an e-mail to a uid when sharing projects."""
    __tablename__ = "user_profiles"
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ── PROJECTS ──────────────────────────────────────────────────────────────────
class ProjectRecord(Base):
    """
    One row per project. The full project document lives in `document`; the
    scalar columns duplicate the fields used for listing and access control.
    """
    __tablename__ = "pls_projects"
    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True, default=gen_uuid)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    members: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    cost_of_works: Mapped[float] = mapped_column(Numeric(18, 2), default=0)
    document: Mapped[dict] = mapped_column(JSONB, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_pls_projects_owner", "owner_id"),
        Index("ix_pls_projects_members", "members", postgresql_using="gin"),
    )
