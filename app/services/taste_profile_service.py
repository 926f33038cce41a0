"""
Tastemate — Taste persona generation.

Builds the "taste profile" shown on a user's own page: a headline, a short
description, a one-word vibe, a few traits and a line on who they would get
on with.  Generation goes through :class:`GeminiService`; when every model
fails the user still gets a stored, generic persona instead of an error.
"""

from __future__ import annotations

from types import MappingProxyType

import structlog

from app.services.gemini_service import GeminiService
from app.services.profile_repository import ProfileRepository

logger = structlog.get_logger("tastemate.taste_profile_service")

SOURCE_GENERATED = "generated"
SOURCE_FALLBACK = "fallback"

FALLBACK_TASTE_PROFILE = MappingProxyType({
    "headline": "The Taste Explorer",
    "description": (
        "Someone with unique and diverse interests who loves discovering new "
        "experiences across different categories."
    ),
    "vibe": "Eclectic",
    "traits": ("Curious", "Open-minded", "Adventurous", "Creative"),
    "compatibility": (
        "You'd connect well with fellow explorers who appreciate diversity in "
        "culture, art, and experiences."
    ),
    "emoji": "🌟",
})


def fallback_taste_profile() -> dict:
    profile = dict(FALLBACK_TASTE_PROFILE)
    profile["traits"] = list(profile["traits"])
    return profile


class TasteProfileService:
    """Generates, stores and reads back taste personas."""

    def __init__(self, gemini_service: GeminiService) -> None:
        self.gemini_service = gemini_service

    async def generate(self, user_id: str, repository: ProfileRepository) -> dict:
        """Generate and persist a persona for ``user_id``.

        Returns
        -------
        dict
            ``{"user_id", "taste_profile", "source"}``, or an ``error`` dict
            (``user_not_found`` / ``no_interests``) for expected misses.
            Storage errors propagate.
        """
        log = logger.bind(user_id=user_id)

        taste = await repository.load_user_taste(user_id)
        if taste is None:
            log.warning("taste_profile_user_not_found")
            return {"error": "user_not_found", "user_id": user_id}

        interests = {
            category: values
            for category, values in taste["interests"].items()
            if isinstance(values, list) and values
        }
        if not interests:
            log.info("taste_profile_no_interests")
            return {"error": "no_interests", "user_id": user_id}

        outcome = await self.gemini_service.generate_taste_profile(
            interests, taste.get("enrichment") or {}
        )
        if outcome.ok:
            profile, source = outcome.payload, SOURCE_GENERATED
        else:
            log.warning("taste_profile_fallback", status=outcome.status, error=outcome.error)
            profile, source = fallback_taste_profile(), SOURCE_FALLBACK

        generated_at = await repository.save_taste_profile(user_id, profile)
        log.info("taste_profile_stored", source=source)

        return {
            "user_id": user_id,
            "taste_profile": {**profile, "generated_at": generated_at},
            "source": source,
        }
