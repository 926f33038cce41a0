"""
Tastemate — Qloo taste-graph client.

Resolves free-text interests to Qloo entities and pulls related entities
("insights") that widen a user's taste fingerprint:

  interest "Drake" --/search--> entity E1 --/v2/insights--> [E7, E9, ...]

The enrichment stored on a profile is ``category -> [{entity_id, name,
popularity}]``.  Transient HTTP failures (429, 5xx, transport errors) are
retried with exponential backoff; anything else is raised to the caller.
"""

from __future__ import annotations

from typing import Any, Mapping

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.config import get_settings
from app.services.taste_vector import TASTE_CATEGORIES

logger = structlog.get_logger("tastemate.qloo_service")

_SEARCH_TAKE = 20
_MAX_ATTEMPTS = 3


def _is_retryable_http_error(exc: BaseException) -> bool:
    """Retry on rate limits, server errors and connection problems."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status == 429 or status >= 500
    return isinstance(exc, httpx.TransportError)


def _normalise_entity(raw: Any) -> dict | None:
    if not isinstance(raw, Mapping):
        return None
    entity_id = raw.get("entity_id")
    name = raw.get("name")
    if not isinstance(entity_id, str) or not entity_id:
        return None
    if not isinstance(name, str) or not name:
        return None
    popularity = raw.get("popularity")
    return {
        "entity_id": entity_id,
        "name": name,
        "popularity": float(popularity) if isinstance(popularity, (int, float)) else 0.0,
    }


def _top_search_hit(payload: Mapping[str, Any]) -> dict | None:
    """First usable entity of a ``/search`` payload, ``None`` when empty."""
    results = payload.get("results")
    if results is None:
        return None
    if not isinstance(results, list):
        raise ValueError(f"search results is {type(results).__name__}, expected a list")
    return _normalise_entity(results[0]) if results else None


def _related_entities(payload: Mapping[str, Any]) -> list[dict]:
    """Entities of a ``/v2/insights`` payload (``results.entities``)."""
    results = payload.get("results")
    if results is None:
        return []
    if not isinstance(results, Mapping):
        raise ValueError(f"insights results is {type(results).__name__}, expected an object")
    entities = results.get("entities") or []
    if not isinstance(entities, list):
        raise ValueError(f"insights entities is {type(entities).__name__}, expected a list")
    return [e for e in map(_normalise_entity, entities) if e is not None]


class QlooService:
    """Async client for the Qloo search and insights endpoints."""

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        settings = get_settings()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.QLOO_BASE_URL,
            timeout=settings.QLOO_TIMEOUT_SECONDS,
            headers={
                "X-Api-Key": settings.QLOO_API_KEY,
                "accept": "application/json",
            },
        )
        self._default_filter_type = settings.QLOO_INSIGHT_FILTER_TYPE
        self._default_insight_take = settings.QLOO_INSIGHT_TAKE
        self._retry_wait = wait_exponential(multiplier=1, min=1, max=10, exp_base=2)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── Raw endpoints ─────────────────────────────────────────────────────

    async def search(
        self,
        query: str,
        entity_type: str | None = None,
        take: int = _SEARCH_TAKE,
    ) -> dict:
        """Full-text entity search.  Returns the decoded Qloo payload."""
        params: dict[str, Any] = {
            "query": query,
            "take": take,
            "page": 1,
            "sort_by": "match",
        }
        if entity_type:
            params["types"] = f"urn:entity:{entity_type}"
        return await self._get("/search", params)

    async def insights(
        self,
        entity_id: str,
        filter_type: str | None = None,
        take: int | None = None,
    ) -> dict:
        """Entities related to ``entity_id``, restricted to ``filter_type``."""
        params = {
            "filter.type": f"urn:entity:{filter_type or self._default_filter_type}",
            "signal.interests.entities": entity_id,
            "take": take or self._default_insight_take,
        }
        return await self._get("/v2/insights", params)

    # ── Enrichment ────────────────────────────────────────────────────────

    async def enrich_interests(
        self,
        interests: Mapping[str, list[str]],
        filter_type: str | None = None,
        take: int | None = None,
    ) -> dict[str, list[dict]]:
        """Build the enrichment map for a profile.

        For every known category and every interest in it, the top search
        hit is resolved and its related entities are appended to that
        category.  A failing lookup skips that single interest.  Categories
        that resolve to nothing are omitted.
        """
        enrichment: dict[str, list[dict]] = {}

        for category in TASTE_CATEGORIES:
            values = interests.get(category) or []
            resolved_any = False
            category_insights: list[dict] = []

            for value in values:
                log = logger.bind(category=category, interest=value)
                try:
                    # Untyped search: tag and demographics have no urn:entity type.
                    entity = _top_search_hit(await self.search(value))
                    if entity is None:
                        log.debug("qloo_no_entity_for_interest")
                        continue
                    resolved_any = True

                    related = await self.insights(entity["entity_id"], filter_type, take)
                    category_insights.extend(_related_entities(related))
                except (httpx.HTTPError, ValueError) as exc:
                    log.warning("qloo_enrichment_failed", error=str(exc))
                    continue

            if resolved_any:
                enrichment[category] = category_insights

        logger.info(
            "qloo_enrichment_complete",
            categories=sorted(enrichment),
            entity_count=sum(len(v) for v in enrichment.values()),
        )
        return enrichment

    # ── Internal helpers ──────────────────────────────────────────────────

    async def _get(self, path: str, params: Mapping[str, Any]) -> dict:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_retryable_http_error),
            stop=stop_after_attempt(_MAX_ATTEMPTS),
            wait=self._retry_wait,
            reraise=True,
        ):
            with attempt:
                logger.debug(
                    "qloo_request",
                    path=path,
                    attempt_number=attempt.retry_state.attempt_number,
                )
                response = await self._client.get(path, params=params)
                response.raise_for_status()
                payload = response.json()
                return payload if isinstance(payload, dict) else {"data": payload}
        return {}
