"""
questfeed.database.models — SQLAlchemy 2.0 Data Models
=======================================================

Relational backing for the document store contract.

Tables:
- users                  — Account profiles with role and presence timestamp
- adventures             — Content scopes (status + public flag)
- adventure_participants — Join records user ↔ adventure (unique per pair)
- posts                  — Feed entries; ``adventures`` empty means public
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Questfeed ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Role(enum.StrEnum):
    """Account role.  Assigned at signup; only admins change it afterwards."""
    ADMIN = "admin"
    USER = "user"


class AdventureStatus(enum.StrEnum):
    """Lifecycle of an adventure.  Inactive adventures are admin-only."""
    ACTIVE = "active"
    INACTIVE = "inactive"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    # Nullable on purpose: legacy rows predate the role column.
    role: Mapped[str | None] = mapped_column(String(10), default=Role.USER.value)
    last_seen: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    posts: Mapped[list[Post]] = relationship(
        back_populates="creator", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_users_last_seen", "last_seen"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role}>"


# ---------------------------------------------------------------------------
# Adventures
# ---------------------------------------------------------------------------
class Adventure(Base):
    __tablename__ = "adventures"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[str] = mapped_column(
        String(10), nullable=False, default=AdventureStatus.ACTIVE.value
    )
    is_public: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    participants: Mapped[list[AdventureParticipant]] = relationship(
        back_populates="adventure", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_adventures_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Adventure id={self.id} title={self.title!r} "
            f"status={self.status} public={self.is_public}>"
        )


# ---------------------------------------------------------------------------
# AdventureParticipant — join record, one per (adventure, user)
# ---------------------------------------------------------------------------
class AdventureParticipant(Base):
    __tablename__ = "adventure_participants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    adventure_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("adventures.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    added_by: Mapped[str] = mapped_column(String(36), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    adventure: Mapped[Adventure] = relationship(back_populates="participants")

    __table_args__ = (
        UniqueConstraint(
            "adventure_id", "user_id", name="uq_adventure_participants_pair"
        ),
        Index("ix_adventure_participants_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<AdventureParticipant adventure={self.adventure_id} user={self.user_id}>"
        )


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------
class Post(Base):
    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    creator_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    captions: Mapped[list | None] = mapped_column(JSONB, default=list)
    tags: Mapped[list | None] = mapped_column(JSONB, default=list)
    # Adventure IDs; an empty list marks a public post.
    adventures: Mapped[list | None] = mapped_column(JSONB, default=list)
    likes: Mapped[list | None] = mapped_column(JSONB, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    creator: Mapped[User] = relationship(back_populates="posts")

    __table_args__ = (
        Index("ix_posts_created_at", "created_at"),
        Index("ix_posts_creator", "creator_id"),
    )

    def __repr__(self) -> str:
        return f"<Post id={self.id} title={self.title!r}>"
