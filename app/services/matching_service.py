"""
Tastemate — Matching engine: candidate scoring and ranking.

Orchestrates one ``find_matches`` request:

  1. Load the querying user's interests + enrichment (storage).
  2. Load every completed profile except the user's own (storage).
  3. Build a taste vector for each side and score every candidate with
     :class:`SimilarityService`; candidates without overlap are dropped.
  4. Rank: score descending, near-ties (|Δ| < 0.05) broken by the number
     of shared items, then truncate to the top 10.

Everything after the two storage reads is synchronous and pure; the engine
never caches vectors or results between requests.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

import structlog

from app.config import get_settings
from app.services.similarity_service import MatchResult, SimilarityService
from app.services.taste_vector import TasteVector, build_from_record

logger = structlog.get_logger("tastemate.matching_service")


class MatchingService:
    """Taste-based matching engine.

    Dependencies are injected at construction so that the service can be
    tested with mocks and swapped in FastAPI's dependency-injection graph.
    """

    def __init__(
        self,
        similarity_service: SimilarityService | None = None,
        max_matches: int | None = None,
        near_tie_epsilon: float | None = None,
    ) -> None:
        """Initialise the matching service.

        Parameters
        ----------
        similarity_service:
            Scorer used per candidate.  A default instance is created when
            omitted.
        max_matches:
            Result budget.  Defaults to ``MAX_MATCHES`` from config.
        near_tie_epsilon:
            Score gap under which two results count as tied.  Defaults to
            ``NEAR_TIE_EPSILON`` from config.
        """
        self.similarity_service = similarity_service or SimilarityService()

        settings = get_settings()
        self.max_matches: int = (
            max_matches if max_matches is not None else settings.MAX_MATCHES
        )
        self.near_tie_epsilon: float = (
            near_tie_epsilon
            if near_tie_epsilon is not None
            else settings.NEAR_TIE_EPSILON
        )

        logger.info(
            "matching_service_initialised",
            max_matches=self.max_matches,
            near_tie_epsilon=self.near_tie_epsilon,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def find_matches(self, user_id: str, repository: Any) -> dict:
        """Find the most compatible users for ``user_id``.

        Parameters
        ----------
        user_id:
            Identifier of the querying user.  Trusted as given.
        repository:
            Storage collaborator exposing ``load_user_taste`` and
            ``load_candidate_pool`` (see ``ProfileRepository``).

        Returns
        -------
        dict
            ``matches`` (ranked ``MatchResult`` list), ``total_candidates``
            (size of the pool before filtering), ``display_profiles`` for
            the returned candidates and the querying user's raw
            ``user_interests``.  Returns ``{"error": "user_not_found"}``
            when the user has no stored profile.

        Raises
        ------
        Exception
            Storage failures propagate unchanged; no partial result is
            returned.
        """
        log = logger.bind(user_id=user_id)
        log.info("find_matches_start")

        user_record = await repository.load_user_taste(user_id)
        if user_record is None:
            log.warning("find_matches_user_not_found")
            return {"error": "user_not_found", "user_id": user_id}

        candidates = await repository.load_candidate_pool(user_id)

        user_vector = build_from_record(user_record)
        matches = self.rank(self.score_candidates(user_vector, candidates))

        matched_ids = {m.candidate_user_id for m in matches}
        display_profiles = {
            c["user_id"]: c.get("display_profile") or {}
            for c in candidates
            if c.get("user_id") in matched_ids
        }

        log.info(
            "find_matches_complete",
            total_candidates=len(candidates),
            returned=len(matches),
            top_score=round(matches[0].match_score, 4) if matches else None,
        )

        return {
            "matches": matches,
            "total_candidates": len(candidates),
            "display_profiles": display_profiles,
            "user_interests": user_record.get("interests") or {},
        }

    def score_candidates(
        self,
        user_vector: TasteVector,
        candidates: Iterable[Mapping[str, Any]],
    ) -> list[MatchResult]:
        """Score every candidate record and drop those with no overlap."""
        results: list[MatchResult] = []
        for candidate in candidates:
            candidate_id = candidate.get("user_id")
            if not candidate_id:
                logger.warning("candidate_without_user_id_skipped")
                continue

            result = self.similarity_service.compare(
                user_vector,
                build_from_record(candidate),
                str(candidate_id),
            )
            if result is not None:
                results.append(result)

        return results

    def rank(self, results: Sequence[MatchResult]) -> list[MatchResult]:
        """Order results and truncate to the result budget.

        Results are first fully ordered by (score desc, shared items desc,
        candidate id) so input order never matters.  Adjacent pairs whose
        scores differ by less than ``near_tie_epsilon`` are then swapped
        until the one with more shared items comes first.  Each swap removes
        one shared-items inversion, so the loop terminates, and pairs further
        apart than epsilon never change relative order.

        Settling runs over the whole scored pool, not just the top
        ``max_matches``, since a near-tie just below the cut can still move
        into it.  Swaps are bounded by the number of shared-items inversions
        (at most n(n-1)/2), so the worst case is quadratic: a pool where
        every score sits within epsilon of its neighbour and shared items
        ascend.  After the initial sort most adjacent pairs are already in
        order and a pass costs O(n).
        """
        ordered = sorted(
            results,
            key=lambda r: (-r.match_score, -r.total_shared_items, r.candidate_user_id),
        )

        swapped = True
        while swapped:
            swapped = False
            for i in range(len(ordered) - 1):
                current, following = ordered[i], ordered[i + 1]
                if (
                    abs(current.match_score - following.match_score) < self.near_tie_epsilon
                    and current.total_shared_items < following.total_shared_items
                ):
                    ordered[i], ordered[i + 1] = following, current
                    swapped = True

        return ordered[: self.max_matches]
