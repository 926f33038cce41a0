"""
Tastemate — Profile storage.

Reads and writes user profiles on behalf of the matching engine and the
profile API.  Saving follows a "profile upsert, items replace" pattern:

  1. Upsert the ``user_profiles`` row (interests / insights JSON, display
     fields, ``profile_completed = true``).
  2. Delete and re-insert the user's ``user_interests`` rows.
  3. Delete and re-insert the user's ``user_insights`` rows.

Database errors are not caught here; callers decide how a storage failure
is surfaced.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.profile import UserInsight, UserInterest, UserProfile

logger = structlog.get_logger("tastemate.profile_repository")


def default_display_name(user_id: str) -> str:
    """Placeholder name shown for users who never set one."""
    return f"User {user_id[-4:]}"


class ProfileRepository:
    """Async storage collaborator bound to one ``AsyncSession``."""

    def __init__(self, db_session: AsyncSession) -> None:
        self.db = db_session

    # ── Matching reads ────────────────────────────────────────────────────

    async def load_user_taste(self, user_id: str) -> dict | None:
        """Return ``{"interests", "enrichment"}`` for ``user_id`` or ``None``
        when no profile exists."""
        stmt = select(UserProfile).where(UserProfile.user_id == user_id)
        result = await self.db.execute(stmt)
        profile = result.scalar_one_or_none()

        if profile is None:
            logger.debug("user_taste_not_found", user_id=user_id)
            return None

        return {
            "interests": profile.interests or {},
            "enrichment": profile.insights or {},
        }

    async def load_candidate_pool(self, excluding_user_id: str) -> list[dict]:
        """Return every completed profile other than ``excluding_user_id``,
        ordered by ``user_id``."""
        stmt = (
            select(UserProfile)
            .where(
                UserProfile.user_id != excluding_user_id,
                UserProfile.profile_completed.is_(True),
            )
            .order_by(UserProfile.user_id)
        )
        result = await self.db.execute(stmt)
        profiles = result.scalars().all()

        logger.debug(
            "candidate_pool_loaded",
            excluding_user_id=excluding_user_id,
            size=len(profiles),
        )

        return [
            {
                "user_id": p.user_id,
                "interests": p.interests or {},
                "enrichment": p.insights or {},
                "display_profile": self._display_profile(p),
            }
            for p in profiles
        ]

    # ── Profile CRUD ──────────────────────────────────────────────────────

    async def user_id_exists(self, user_id: str) -> bool:
        stmt = select(UserProfile.user_id).where(UserProfile.user_id == user_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get_profile(self, user_id: str) -> dict | None:
        """Return the profile row plus its interest and insight rows."""
        stmt = select(UserProfile).where(UserProfile.user_id == user_id)
        result = await self.db.execute(stmt)
        profile = result.scalar_one_or_none()
        if profile is None:
            return None

        interest_rows = (
            await self.db.execute(
                select(UserInterest)
                .where(UserInterest.user_id == user_id)
                .order_by(UserInterest.category, UserInterest.interest_name)
            )
        ).scalars().all()
        insight_rows = (
            await self.db.execute(
                select(UserInsight)
                .where(UserInsight.user_id == user_id)
                .order_by(UserInsight.category, UserInsight.entity_name)
            )
        ).scalars().all()

        return {
            "user_id": profile.user_id,
            "interests": profile.interests or {},
            "insights": profile.insights or {},
            "display_profile": self._display_profile(profile),
            "contact": profile.contact,
            "profile_completed": profile.profile_completed,
            "created_at": profile.created_at,
            "updated_at": profile.updated_at,
            "interest_rows": [
                {
                    "category": row.category,
                    "interest_name": row.interest_name,
                    "entity_id": row.entity_id,
                }
                for row in interest_rows
            ],
            "insight_rows": [
                {
                    "category": row.category,
                    "insight_type": row.insight_type,
                    "entity_id": row.entity_id,
                    "entity_name": row.entity_name,
                    "popularity_score": row.popularity_score,
                }
                for row in insight_rows
            ],
        }

    async def save_profile(
        self,
        user_id: str,
        interests: dict[str, list[str]],
        insights: dict[str, list[dict]],
        display_name: str | None = None,
        bio: str | None = None,
        location: str | None = None,
        contact: str | None = None,
    ) -> dict:
        """Upsert the profile and replace its per-item rows.

        Returns
        -------
        dict
            ``user_id`` plus the number of interest and insight rows written.
        """
        log = logger.bind(user_id=user_id)
        log.info("save_profile_start")

        values = {
            "user_id": user_id,
            "interests": interests,
            "insights": insights,
            "display_name": display_name,
            "bio": bio,
            "location": location,
            "contact": contact,
            "profile_completed": True,
        }
        update_values = {k: v for k, v in values.items() if k != "user_id"}
        # Keep display fields the client did not resend.
        for optional in ("display_name", "bio", "location", "contact"):
            if update_values[optional] is None:
                del update_values[optional]
        update_values["updated_at"] = func.now()

        upsert = (
            pg_insert(UserProfile)
            .values(**values)
            .on_conflict_do_update(
                index_elements=[UserProfile.user_id],
                set_=update_values,
            )
        )
        await self.db.execute(upsert)

        interest_records = [
            UserInterest(user_id=user_id, category=category, interest_name=name)
            for category, names in interests.items()
            for name in names
        ]
        insight_records = [
            UserInsight(
                user_id=user_id,
                category=category,
                insight_type="recommendation",
                entity_id=item["entity_id"],
                entity_name=item["name"],
                popularity_score=float(item.get("popularity") or 0.0),
                metadata_={"source": "qloo"},
            )
            for category, items in insights.items()
            for item in items
        ]

        if interest_records:
            await self.db.execute(
                delete(UserInterest).where(UserInterest.user_id == user_id)
            )
            self.db.add_all(interest_records)

        if insight_records:
            await self.db.execute(
                delete(UserInsight).where(UserInsight.user_id == user_id)
            )
            self.db.add_all(insight_records)

        await self.db.flush()

        log.info(
            "save_profile_complete",
            interest_count=len(interest_records),
            insight_count=len(insight_records),
        )

        return {
            "user_id": user_id,
            "interest_count": len(interest_records),
            "insight_count": len(insight_records),
        }

    # ── Taste persona ─────────────────────────────────────────────────────

    async def save_taste_profile(self, user_id: str, taste_profile: dict) -> datetime:
        """Overwrite the stored persona and return its ``generated_at``."""
        generated_at = datetime.now(timezone.utc)
        stmt = (
            update(UserProfile)
            .where(UserProfile.user_id == user_id)
            .values(
                taste_profile_headline=taste_profile["headline"],
                taste_profile_description=taste_profile["description"],
                taste_profile_vibe=taste_profile.get("vibe") or None,
                taste_profile_traits=list(taste_profile.get("traits") or []),
                taste_profile_compatibility=taste_profile.get("compatibility") or None,
                taste_profile_emoji=taste_profile.get("emoji") or None,
                taste_profile_generated_at=generated_at,
                updated_at=func.now(),
            )
        )
        await self.db.execute(stmt)
        await self.db.flush()
        logger.info("taste_profile_saved", user_id=user_id)
        return generated_at

    async def get_taste_profile(self, user_id: str) -> dict | None:
        """Return ``{"user_id", "taste_profile"}``, or ``None`` when the user
        does not exist.  ``taste_profile`` is ``None`` until one is generated."""
        stmt = select(UserProfile).where(UserProfile.user_id == user_id)
        result = await self.db.execute(stmt)
        profile = result.scalar_one_or_none()
        if profile is None:
            return None

        taste_profile = None
        if profile.taste_profile_headline:
            taste_profile = {
                "headline": profile.taste_profile_headline,
                "description": profile.taste_profile_description or "",
                "vibe": profile.taste_profile_vibe or "",
                "traits": profile.taste_profile_traits or [],
                "compatibility": profile.taste_profile_compatibility or "",
                "emoji": profile.taste_profile_emoji or "",
                "generated_at": profile.taste_profile_generated_at,
            }
        return {"user_id": profile.user_id, "taste_profile": taste_profile}

    # ── Private helpers ───────────────────────────────────────────────────

    @staticmethod
    def _display_profile(profile: Any) -> dict:
        return {
            "user_id": profile.user_id,
            "name": profile.display_name or default_display_name(profile.user_id),
            "bio": profile.bio or "",
            "location": profile.location or "",
        }
