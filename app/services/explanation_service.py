"""
Tastemate — Match explanations.

Annotates ranked matches with a human-readable compatibility blurb and a
few short tags.  For each match:

  1. Cache lookup on the unordered user pair (if a cache is configured).
  2. Otherwise ask the text generator, passing the shared entities, the
     candidate's display profile and the score.
  3. On any generator failure substitute a fixed fallback so the caller
     always gets usable content.

Batches fan out concurrently; each task is isolated and results come back
in input order.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Sequence

import structlog

from app.services.similarity_service import MatchResult

logger = structlog.get_logger("tastemate.explanation_service")

FALLBACK_EXPLANATION = (
    "You both share similar taste preferences that create a strong "
    "compatibility foundation."
)
FALLBACK_TAGS: tuple[str, ...] = ("Similar Tastes", "Good Match")

SOURCE_CACHE = "cache"
SOURCE_GENERATED = "generated"
SOURCE_FALLBACK = "fallback"


def fallback_explanation(candidate_user_id: str) -> dict:
    return {
        "candidate_user_id": candidate_user_id,
        "explanation": FALLBACK_EXPLANATION,
        "tags": list(FALLBACK_TAGS),
        "source": SOURCE_FALLBACK,
    }


class ExplanationService:
    """Match explainer backed by a text generator and an optional cache."""

    def __init__(self, gemini_service: Any, cache: Any | None = None) -> None:
        """
        Parameters
        ----------
        gemini_service:
            Object with an async ``generate_explanation`` returning a
            ``GenerationOutcome``.
        cache:
            Optional ``ExplanationCache``-like object with async ``get`` and
            ``put``.
        """
        self.gemini_service = gemini_service
        self.cache = cache

    async def explain(
        self,
        user_id: str,
        match: MatchResult,
        candidate_profile: Mapping[str, Any],
        current_interests: Mapping[str, Any] | None = None,
    ) -> dict:
        """Explain one match.

        Returns
        -------
        dict
            ``candidate_user_id``, ``explanation``, ``tags`` and ``source``
            (``cache`` / ``generated`` / ``fallback``).
        """
        candidate_id = match.candidate_user_id
        log = logger.bind(user_id=user_id, candidate_user_id=candidate_id)

        if self.cache is not None:
            cached = await self.cache.get(user_id, candidate_id)
            if cached is not None:
                log.info("explanation_from_cache")
                return {
                    "candidate_user_id": candidate_id,
                    "explanation": cached["explanation"],
                    "tags": list(cached.get("tags") or FALLBACK_TAGS),
                    "source": SOURCE_CACHE,
                }

        try:
            outcome = await self.gemini_service.generate_explanation(
                shared_entities=match.shared_entities,
                candidate_profile=candidate_profile,
                score=match.match_score,
                current_interests=current_interests,
            )
        except Exception as exc:
            log.exception("explanation_generation_raised", error=str(exc))
            return fallback_explanation(candidate_id)

        if not outcome.ok:
            log.warning(
                "explanation_fallback_used",
                status=outcome.status,
                error=outcome.error,
            )
            return fallback_explanation(candidate_id)

        tags = list(outcome.tags) or list(FALLBACK_TAGS)
        result = {
            "candidate_user_id": candidate_id,
            "explanation": outcome.explanation,
            "tags": tags,
            "source": SOURCE_GENERATED,
        }

        if self.cache is not None:
            stored = await self.cache.put(
                user_id,
                candidate_id,
                {"explanation": outcome.explanation, "tags": tags},
            )
            if not stored:
                log.info("explanation_not_cached")

        log.info("explanation_generated", tag_count=len(tags))
        return result

    async def explain_batch(
        self,
        user_id: str,
        matches: Sequence[MatchResult],
        display_profiles: Mapping[str, Mapping[str, Any]],
        current_interests: Mapping[str, Any] | None = None,
    ) -> list[dict]:
        """Explain every match concurrently.

        A failing task never cancels its siblings; its slot is filled with
        the fallback explanation.  Output order matches ``matches``.
        """
        tasks = [
            self.explain(
                user_id,
                match,
                display_profiles.get(match.candidate_user_id) or {},
                current_interests,
            )
            for match in matches
        ]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        explanations: list[dict] = []
        for match, outcome in zip(matches, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "explanation_task_failed",
                    user_id=user_id,
                    candidate_user_id=match.candidate_user_id,
                    error=str(outcome),
                )
                explanations.append(fallback_explanation(match.candidate_user_id))
            else:
                explanations.append(outcome)

        logger.info(
            "explanation_batch_complete",
            user_id=user_id,
            count=len(explanations),
            fallbacks=sum(1 for e in explanations if e["source"] == SOURCE_FALLBACK),
        )
        return explanations
