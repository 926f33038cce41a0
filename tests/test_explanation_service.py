"""Unit tests for ExplanationService — cache, generation and fallback."""
import pytest
from unittest.mock import AsyncMock

from app.services.explanation_service import (
    FALLBACK_EXPLANATION,
    ExplanationService,
    fallback_explanation,
)
from app.services.gemini_service import (
    OUTCOME_EXHAUSTED,
    OUTCOME_OK,
    OUTCOME_UNPARSABLE,
    GenerationOutcome,
)


@pytest.fixture
def gemini():
    service = AsyncMock()
    service.generate_explanation.return_value = GenerationOutcome(
        status=OUTCOME_OK,
        explanation="You both can't stop replaying Drake.",
        tags=["Hip-Hop Fans", "Night Owls"],
        model="gemini-2.5-pro",
    )
    return service


@pytest.fixture
def cache():
    cache = AsyncMock()
    cache.get.return_value = None
    cache.put.return_value = True
    return cache


@pytest.fixture
def profile():
    return {"user_id": "user_y", "name": "Yara", "bio": "", "location": "Toronto"}


class TestExplain:
    @pytest.mark.asyncio
    async def test_generated_and_cached(self, gemini, cache, profile, match_factory):
        service = ExplanationService(gemini, cache)
        result = await service.explain("user_x", match_factory("user_y", 0.62), profile)

        assert result == {
            "candidate_user_id": "user_y",
            "explanation": "You both can't stop replaying Drake.",
            "tags": ["Hip-Hop Fans", "Night Owls"],
            "source": "generated",
        }
        cache.put.assert_awaited_once_with(
            "user_x",
            "user_y",
            {"explanation": "You both can't stop replaying Drake.", "tags": ["Hip-Hop Fans", "Night Owls"]},
        )

    @pytest.mark.asyncio
    async def test_passes_match_context_to_generator(self, gemini, profile, match_factory):
        service = ExplanationService(gemini)
        match = match_factory("user_y", 0.62, shared_items=2)
        await service.explain("user_x", match, profile, {"artist": ["Drake"]})

        gemini.generate_explanation.assert_awaited_once_with(
            shared_entities=match.shared_entities,
            candidate_profile=profile,
            score=0.62,
            current_interests={"artist": ["Drake"]},
        )

    @pytest.mark.asyncio
    async def test_cache_hit_skips_generator(self, gemini, cache, profile, match_factory):
        cache.get.return_value = {"explanation": "Cached blurb.", "tags": ["Cached"]}
        service = ExplanationService(gemini, cache)

        result = await service.explain("user_x", match_factory("user_y", 0.62), profile)

        assert result["source"] == "cache"
        assert result["explanation"] == "Cached blurb."
        gemini.generate_explanation.assert_not_awaited()
        cache.put.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [OUTCOME_EXHAUSTED, OUTCOME_UNPARSABLE])
    async def test_failed_outcome_uses_fallback(self, gemini, cache, profile, match_factory, status):
        gemini.generate_explanation.return_value = GenerationOutcome(status=status, error="boom")
        service = ExplanationService(gemini, cache)

        result = await service.explain("user_x", match_factory("user_y", 0.62), profile)

        assert result["explanation"] == FALLBACK_EXPLANATION
        assert result["tags"] == ["Similar Tastes", "Good Match"]
        assert result["source"] == "fallback"
        cache.put.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_generator_exception_uses_fallback(self, gemini, profile, match_factory):
        gemini.generate_explanation.side_effect = RuntimeError("sdk exploded")
        service = ExplanationService(gemini)

        result = await service.explain("user_x", match_factory("user_y", 0.62), profile)

        assert result == fallback_explanation("user_y")

    @pytest.mark.asyncio
    async def test_empty_generated_tags_replaced(self, gemini, profile, match_factory):
        gemini.generate_explanation.return_value = GenerationOutcome(
            status=OUTCOME_OK, explanation="Nice.", tags=[]
        )
        result = await ExplanationService(gemini).explain(
            "user_x", match_factory("user_y", 0.5), profile
        )
        assert result["tags"] == ["Similar Tastes", "Good Match"]

    @pytest.mark.asyncio
    async def test_cache_write_failure_still_returns_generated(self, gemini, cache, profile, match_factory):
        cache.put.return_value = False
        result = await ExplanationService(gemini, cache).explain(
            "user_x", match_factory("user_y", 0.5), profile
        )
        assert result["source"] == "generated"


class TestExplainBatch:
    @pytest.mark.asyncio
    async def test_order_preserved_and_failures_isolated(self, gemini, match_factory):
        ok = GenerationOutcome(status=OUTCOME_OK, explanation="Good.", tags=["A"])

        async def generate(shared_entities, candidate_profile, score, current_interests=None):
            if candidate_profile.get("user_id") == "u2":
                raise RuntimeError("only this one fails")
            return ok

        gemini.generate_explanation.side_effect = generate
        matches = [match_factory("u1", 0.9), match_factory("u2", 0.8), match_factory("u3", 0.7)]
        profiles = {m.candidate_user_id: {"user_id": m.candidate_user_id} for m in matches}

        results = await ExplanationService(gemini).explain_batch("user_x", matches, profiles)

        assert [r["candidate_user_id"] for r in results] == ["u1", "u2", "u3"]
        assert [r["source"] for r in results] == ["generated", "fallback", "generated"]

    @pytest.mark.asyncio
    async def test_unexpected_task_error_becomes_fallback(self, gemini, match_factory):
        service = ExplanationService(gemini)
        service.explain = AsyncMock(side_effect=[
            {"candidate_user_id": "u1", "explanation": "x", "tags": ["A"], "source": "generated"},
            KeyError("boom"),
        ])
        matches = [match_factory("u1", 0.9), match_factory("u2", 0.8)]

        results = await service.explain_batch("user_x", matches, {})

        assert results[0]["source"] == "generated"
        assert results[1] == fallback_explanation("u2")

    @pytest.mark.asyncio
    async def test_all_generations_failing_keeps_every_match(self, gemini, match_factory):
        gemini.generate_explanation.return_value = GenerationOutcome(status=OUTCOME_EXHAUSTED)
        matches = [match_factory(f"u{i}", 0.9 - i / 10) for i in range(3)]

        results = await ExplanationService(gemini).explain_batch("user_x", matches, {})

        assert len(results) == 3
        assert all(r["explanation"] == FALLBACK_EXPLANATION for r in results)

    @pytest.mark.asyncio
    async def test_empty_batch(self, gemini):
        assert await ExplanationService(gemini).explain_batch("user_x", [], {}) == []
