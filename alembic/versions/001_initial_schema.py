"""Initial schema — Tastemate profile tables.

Revision ID: 001_initial
Revises:
Create Date: 2025-07-20 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. user_profiles ────────────────────────────────────────────
    op.create_table(
        "user_profiles",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.String,
            nullable=False,
            comment="Client-chosen identifier, e.g. user_k3j9x2m1q",
        ),
        sa.Column(
            "interests",
            postgresql.JSONB,
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
            comment="category -> [free-text interest]",
        ),
        sa.Column(
            "insights",
            postgresql.JSONB,
            server_default=sa.text("'{}'::jsonb"),
            nullable=False,
            comment="category -> [{entity_id, name, popularity}]",
        ),
        sa.Column("display_name", sa.String, nullable=True),
        sa.Column("bio", sa.Text, nullable=True),
        sa.Column("location", sa.String, nullable=True),
        sa.Column("contact", sa.String, nullable=True),
        sa.Column(
            "profile_completed",
            sa.Boolean,
            server_default="false",
            nullable=False,
        ),
        sa.Column("taste_profile_headline", sa.String, nullable=True),
        sa.Column("taste_profile_description", sa.Text, nullable=True),
        sa.Column("taste_profile_vibe", sa.String, nullable=True),
        sa.Column(
            "taste_profile_traits",
            postgresql.JSONB,
            nullable=True,
            comment="[trait]",
        ),
        sa.Column("taste_profile_compatibility", sa.Text, nullable=True),
        sa.Column("taste_profile_emoji", sa.String, nullable=True),
        sa.Column(
            "taste_profile_generated_at", sa.DateTime(timezone=True), nullable=True
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_user_profiles_user_id", "user_profiles", ["user_id"], unique=True
    )

    # ── 2. user_interests ───────────────────────────────────────────
    op.create_table(
        "user_interests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.String,
            sa.ForeignKey(
                "user_profiles.user_id", ondelete="CASCADE", onupdate="CASCADE"
            ),
            nullable=False,
        ),
        sa.Column("category", sa.String, nullable=False),
        sa.Column("interest_name", sa.String, nullable=False),
        sa.Column("entity_id", sa.String, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_user_interests_user_category",
        "user_interests",
        ["user_id", "category"],
    )

    # ── 3. user_insights ────────────────────────────────────────────
    op.create_table(
        "user_insights",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "user_id",
            sa.String,
            sa.ForeignKey(
                "user_profiles.user_id", ondelete="CASCADE", onupdate="CASCADE"
            ),
            nullable=False,
        ),
        sa.Column("category", sa.String, nullable=False),
        sa.Column(
            "insight_type",
            sa.String,
            server_default="recommendation",
            nullable=False,
        ),
        sa.Column("entity_id", sa.String, nullable=False),
        sa.Column("entity_name", sa.String, nullable=False),
        sa.Column(
            "popularity_score", sa.Float, server_default="0", nullable=False
        ),
        sa.Column(
            "metadata",
            postgresql.JSONB,
            nullable=True,
            comment="Extra metadata (column name: metadata)",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index(
        "ix_user_insights_user_category",
        "user_insights",
        ["user_id", "category"],
    )


def downgrade() -> None:
    # Children first.
    op.drop_index("ix_user_insights_user_category", table_name="user_insights")
    op.drop_table("user_insights")

    op.drop_index("ix_user_interests_user_category", table_name="user_interests")
    op.drop_table("user_interests")

    op.drop_index("ix_user_profiles_user_id", table_name="user_profiles")
    op.drop_table("user_profiles")
