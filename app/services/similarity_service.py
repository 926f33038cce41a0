"""
Tastemate — Category similarity and weighted aggregation.

Scores one candidate against the querying user, category by category:

  1. Gate: a category counts only when BOTH vectors hold tokens for it.
  2. Category similarity:  Jaccard = |A ∩ B| / |A ∪ B|
  3. Accumulate:  total_score += similarity × weight
                  total_weight += weight   (zero-overlap categories included)
  4. Exclude the candidate when nothing was shared.
  5. Base score:  total_score / total_weight
  6. Bonus:  +0.1 per shared high-signal category (artist, movie, book,
     brand), final score clamped to 1.0.

``total_shared_items`` is the number of *sampled* shared tokens (at most
five per category), so it is a lower bound on the true overlap.  The ranker
breaks near-ties on this value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

import structlog

from app.services.taste_vector import TasteVector

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class MatchResult:
    """Outcome of comparing the querying user with one candidate."""

    candidate_user_id: str
    base_score: float
    match_score: float
    shared_fields: list[str] = field(default_factory=list)
    shared_entities: dict[str, list[str]] = field(default_factory=dict)

    @property
    def total_shared_items(self) -> int:
        """Sum of the capped per-category samples (lower bound on overlap)."""
        return sum(len(items) for items in self.shared_entities.values())

    def as_dict(self) -> dict:
        return {
            "candidate_user_id": self.candidate_user_id,
            "base_score": self.base_score,
            "match_score": self.match_score,
            "shared_fields": list(self.shared_fields),
            "shared_entities": {
                category: list(items)
                for category, items in self.shared_entities.items()
            },
            "total_shared_items": self.total_shared_items,
        }


class SimilarityService:
    """Weighted multi-set similarity between two taste vectors.

    Stateless; every public method is a pure function of its arguments and
    the class-level tables below.
    """

    # ── Category weight table (cultural salience) ─────────────────────
    CATEGORY_WEIGHTS: Mapping[str, float] = MappingProxyType({
        "artist": 1.5,
        "movie": 1.4,
        "book": 1.3,
        "album": 1.3,
        "tv_show": 1.2,
        "brand": 1.1,
        "videogame": 1.0,
        "podcast": 1.0,
        "actor": 0.9,
        "director": 0.9,
        "author": 0.9,
        "person": 0.8,
        "destination": 0.8,
        "place": 0.7,
        "locality": 0.7,
        "tag": 0.6,
        "demographics": 0.5,
    })

    HIGH_SIGNAL_CATEGORIES: tuple[str, ...] = ("artist", "movie", "book", "brand")
    HIGH_SIGNAL_BONUS: float = 0.1
    MAX_SCORE: float = 1.0
    SHARED_SAMPLE_SIZE: int = 5

    # ── Public API ──────────────────────────────────────────────────

    @staticmethod
    def jaccard(set_a: frozenset[str] | set[str], set_b: frozenset[str] | set[str]) -> float:
        """Jaccard index of two token sets.

        Both empty -> 1.0 (vacuous agreement).  Exactly one empty -> 0.0.
        :pymeth:`compare` never reaches the both-empty branch because it
        gates on both sides being non-empty.
        """
        if not set_a and not set_b:
            return 1.0
        if not set_a or not set_b:
            return 0.0
        return len(set_a & set_b) / len(set_a | set_b)

    def compare(
        self,
        user_vector: TasteVector,
        candidate_vector: TasteVector,
        candidate_user_id: str,
    ) -> MatchResult | None:
        """Score ``candidate_vector`` against ``user_vector``.

        Parameters
        ----------
        user_vector:
            Taste vector of the user asking for matches.
        candidate_vector:
            Taste vector of one candidate from the pool.
        candidate_user_id:
            Identifier copied onto the result.

        Returns
        -------
        MatchResult or None
            ``None`` when no category has a non-zero overlap.
        """
        total_score = 0.0
        total_weight = 0.0
        shared_fields: list[str] = []
        shared_entities: dict[str, list[str]] = {}

        for category, weight in self.CATEGORY_WEIGHTS.items():
            mine = user_vector.get(category)
            theirs = candidate_vector.get(category)
            if not mine or not theirs:
                continue

            similarity = self.jaccard(mine, theirs)
            if similarity > 0:
                shared_fields.append(category)
                shared_entities[category] = sorted(mine & theirs)[: self.SHARED_SAMPLE_SIZE]

            total_score += similarity * weight
            total_weight += weight

        if total_weight == 0 or not shared_fields:
            logger.debug(
                "similarity.no_overlap",
                candidate_user_id=candidate_user_id,
                compared_weight=total_weight,
            )
            return None

        base_score = total_score / total_weight
        bonus = self.HIGH_SIGNAL_BONUS * sum(
            1 for category in self.HIGH_SIGNAL_CATEGORIES if category in shared_fields
        )
        match_score = min(base_score + bonus, self.MAX_SCORE)

        logger.debug(
            "similarity.compared",
            candidate_user_id=candidate_user_id,
            base_score=round(base_score, 4),
            bonus=round(bonus, 4),
            match_score=round(match_score, 4),
            shared_fields=shared_fields,
        )

        return MatchResult(
            candidate_user_id=candidate_user_id,
            base_score=base_score,
            match_score=match_score,
            shared_fields=shared_fields,
            shared_entities=shared_entities,
        )
