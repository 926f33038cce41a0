"""
Tastemate — UserProfile, UserInterest and UserInsight models.

``user_profiles`` holds the denormalised interest / insight JSON that the
matching engine reads, plus the last generated taste persona;
``user_interests`` and ``user_insights`` keep one row per item for querying
and are rewritten wholesale on every save.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base


class UserProfile(Base):
    __tablename__ = "user_profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(
        String, unique=True, index=True, nullable=False,
        comment="Client-chosen identifier, e.g. user_k3j9x2m1q",
    )
    interests: Mapped[dict] = mapped_column(
        JSONB, nullable=False, default=dict,
        comment="category -> [free-text interest]",
    )
    insights: Mapped[dict] = mapped_column(
        JSONB, nullable=False, default=dict,
        comment="category -> [{entity_id, name, popularity}]",
    )
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String, nullable=True)
    contact: Mapped[str | None] = mapped_column(String, nullable=True)
    profile_completed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )

    # ── Generated taste persona ────────────────────────────────────
    taste_profile_headline: Mapped[str | None] = mapped_column(String, nullable=True)
    taste_profile_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    taste_profile_vibe: Mapped[str | None] = mapped_column(String, nullable=True)
    taste_profile_traits: Mapped[list | None] = mapped_column(
        JSONB, nullable=True, comment="[trait]"
    )
    taste_profile_compatibility: Mapped[str | None] = mapped_column(Text, nullable=True)
    taste_profile_emoji: Mapped[str | None] = mapped_column(String, nullable=True)
    taste_profile_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    interest_rows: Mapped[list["UserInterest"]] = relationship(
        "UserInterest", back_populates="profile", cascade="all, delete-orphan"
    )
    insight_rows: Mapped[list["UserInsight"]] = relationship(
        "UserInsight", back_populates="profile", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return (
            f"<UserProfile user={self.user_id!r} "
            f"completed={self.profile_completed}>"
        )


class UserInterest(Base):
    __tablename__ = "user_interests"
    __table_args__ = (
        Index("ix_user_interests_user_category", "user_id", "category"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("user_profiles.user_id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )
    category: Mapped[str] = mapped_column(String, nullable=False)
    interest_name: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    profile: Mapped["UserProfile"] = relationship(
        "UserProfile", back_populates="interest_rows"
    )

    def __repr__(self) -> str:
        return f"<UserInterest {self.user_id} {self.category}={self.interest_name!r}>"


class UserInsight(Base):
    __tablename__ = "user_insights"
    __table_args__ = (
        Index("ix_user_insights_user_category", "user_id", "category"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(
        String,
        ForeignKey("user_profiles.user_id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
    )
    category: Mapped[str] = mapped_column(String, nullable=False)
    insight_type: Mapped[str] = mapped_column(
        String, nullable=False, default="recommendation"
    )
    entity_id: Mapped[str] = mapped_column(String, nullable=False)
    entity_name: Mapped[str] = mapped_column(String, nullable=False)
    popularity_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    metadata_: Mapped[dict | None] = mapped_column(
        "metadata", JSONB, nullable=True, comment="Extra metadata (column name: metadata)"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    profile: Mapped["UserProfile"] = relationship(
        "UserProfile", back_populates="insight_rows"
    )

    def __repr__(self) -> str:
        return f"<UserInsight {self.user_id} {self.category}={self.entity_name!r}>"
