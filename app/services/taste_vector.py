"""
Tastemate — Taste Vector construction.

Converts a user's stored interests (free text typed into the profile form)
and Qloo enrichment entities into a per-category token multiset:

  interests:  {"artist": ["Drake"]}                      -> {"drake"}
  enrichment: {"artist": [{"entity_id": "E1", "name": "Drake"}]}
                                                         -> {"E1", "drake"}

Both the entity id and its case-folded name are inserted so a match can be
found through either the literal text a user typed or the taste graph's
canonical identity.

Categories are a closed set.  Anything outside it is dropped at this
boundary, and a category with no usable tokens is absent from the vector
rather than present with an empty set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterator, Mapping

import structlog

logger = structlog.get_logger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# Constants
# ──────────────────────────────────────────────────────────────────────────────

TASTE_CATEGORIES: tuple[str, ...] = (
    "artist",
    "movie",
    "book",
    "album",
    "tv_show",
    "brand",
    "videogame",
    "podcast",
    "actor",
    "director",
    "author",
    "person",
    "destination",
    "place",
    "locality",
    "tag",
    "demographics",
)

_KNOWN_CATEGORIES = frozenset(TASTE_CATEGORIES)

_EMPTY: frozenset[str] = frozenset()


@dataclass(frozen=True)
class TasteVector:
    """Immutable mapping of category -> frozenset of normalised tokens.

    Only categories with at least one token are stored, so
    ``"movie" in vector`` is the single test for "this user has movie
    taste".  :pymeth:`get` returns an empty frozenset for absent categories.
    """

    categories: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        cleaned = {
            category: frozenset(tokens)
            for category, tokens in self.categories.items()
            if tokens
        }
        object.__setattr__(self, "categories", MappingProxyType(cleaned))

    def get(self, category: str) -> frozenset[str]:
        return self.categories.get(category, _EMPTY)

    def __contains__(self, category: object) -> bool:
        return category in self.categories

    def __iter__(self) -> Iterator[str]:
        return iter(self.categories)

    def __len__(self) -> int:
        return len(self.categories)

    @property
    def is_empty(self) -> bool:
        return not self.categories

    def as_dict(self) -> dict[str, list[str]]:
        """Return a JSON-friendly copy with sorted token lists."""
        return {
            category: sorted(tokens)
            for category, tokens in self.categories.items()
        }


# ──────────────────────────────────────────────────────────────────────────────
# Builder
# ──────────────────────────────────────────────────────────────────────────────

def build_taste_vector(
    interests: Any,
    enrichment: Any = None,
) -> TasteVector:
    """Build a :class:`TasteVector` from raw stored data.

    Parameters
    ----------
    interests:
        Mapping of category -> list of free-text interest strings.
    enrichment:
        Mapping of category -> list of entity dicts carrying ``entity_id``
        (or ``id``) and ``name``.  ``popularity`` is accepted and ignored.

    Returns
    -------
    TasteVector
        Never raises.  Non-mapping inputs, non-list category values,
        non-string items and entities without usable fields are skipped.
    """
    tokens: dict[str, set[str]] = {}
    skipped_categories: set[str] = set()

    for category, values in _iter_categories(interests, skipped_categories):
        for value in values:
            token = _fold(value)
            if token:
                tokens.setdefault(category, set()).add(token)

    for category, entities in _iter_categories(enrichment, skipped_categories):
        for entity in entities:
            if not isinstance(entity, Mapping):
                continue
            entity_id = entity.get("entity_id", entity.get("id"))
            if isinstance(entity_id, str) and entity_id.strip():
                tokens.setdefault(category, set()).add(entity_id.strip())
            name = _fold(entity.get("name"))
            if name:
                tokens.setdefault(category, set()).add(name)

    if skipped_categories:
        logger.debug(
            "taste_vector.unknown_categories_ignored",
            categories=sorted(skipped_categories),
        )

    return TasteVector(tokens)


def build_from_record(record: Mapping[str, Any] | None) -> TasteVector:
    """Build a vector from a storage record with ``interests`` and
    ``enrichment`` keys (the shape returned by ``ProfileRepository``)."""
    if not isinstance(record, Mapping):
        return TasteVector()
    return build_taste_vector(record.get("interests"), record.get("enrichment"))


# ── Internal helpers ─────────────────────────────────────────────────────────

def _iter_categories(
    source: Any,
    skipped: set[str],
) -> Iterator[tuple[str, list]]:
    if not isinstance(source, Mapping):
        return
    for category, values in source.items():
        if category not in _KNOWN_CATEGORIES:
            skipped.add(str(category))
            continue
        if not isinstance(values, (list, tuple)):
            continue
        yield category, list(values)


def _fold(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().casefold()
