"""
Tastemate — GeminiService: compatibility blurbs and taste personas.

Turns a match (shared entities, the candidate's display profile and the
numeric score) into a short natural-language explanation plus a handful of
descriptive tags, and a user's whole interest map into a one-paragraph
"taste profile" persona.

- Multi-model fallback chain (primary -> fallback -> stable)
- Per-model exponential-backoff retry on rate-limit and transient errors
- Robust JSON response parsing with multiple fallback strategies
- A typed :class:`GenerationOutcome` instead of exceptions: callers branch
  on ``outcome.ok`` and never need a try/except around generation
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

import google.generativeai as genai
import structlog
from json_repair import repair_json
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.config import get_settings

logger = structlog.get_logger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# Constants
# ──────────────────────────────────────────────────────────────────────────────

OUTCOME_OK = "ok"
OUTCOME_EXHAUSTED = "exhausted"
OUTCOME_UNPARSABLE = "unparsable"

_MAX_TAGS = 4
_MAX_TAG_LENGTH = 40
_MAX_TRAITS = 5
_MAX_HEADLINE_LENGTH = 80
_MAX_PROFILE_TEXT_LENGTH = 600

_SYSTEM_INSTRUCTION = (
    "You are a matchmaking expert who writes engaging, personalized copy "
    "about people's tastes and why they would connect."
)


def _is_retryable_api_error(exc: BaseException) -> bool:
    """Return True if the exception signals a retryable Gemini API error.

    We retry on HTTP 429 (rate limit) and 500/503 (server-side transient)
    errors.  The google-generativeai SDK wraps these as various exception
    types, so we inspect both the type name and string representation.
    """
    exc_str = str(exc).lower()
    exc_type = type(exc).__name__.lower()

    # Rate limit
    if "429" in exc_str or "resource_exhausted" in exc_str:
        return True
    # Server errors
    if "500" in exc_str or "503" in exc_str or "internal" in exc_str:
        return True
    # Google API-specific classes
    if "resourceexhausted" in exc_type or "serviceunavailable" in exc_type:
        return True

    return False


@dataclass(frozen=True)
class GenerationOutcome:
    """Result of one generation request.

    ``status`` is ``ok`` when the answer is usable, ``exhausted`` when every
    model failed or ran out of retries, and ``unparsable`` when a model
    answered but no usable JSON could be extracted from any answer.
    Explanations fill ``explanation`` and ``tags``; ``payload`` holds the
    parsed JSON object (the normalised persona for taste profiles).
    """

    status: str
    explanation: str = ""
    tags: list[str] = field(default_factory=list)
    model: str | None = None
    error: str | None = None
    payload: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == OUTCOME_OK


class GeminiService:
    """Text-generation collaborator for match explanations and taste profiles."""

    def __init__(self, max_attempts: int | None = None) -> None:
        """Configure the Gemini client and model fallback chain.

        Parameters
        ----------
        max_attempts:
            Attempts per model before moving down the chain.  Defaults to
            ``GEMINI_MAX_ATTEMPTS`` from config.
        """
        settings = get_settings()

        genai.configure(api_key=settings.GEMINI_API_KEY)

        self._model_chain: list[str] = settings.gemini_model_chain
        self._models: dict[str, Any] = {
            name: genai.GenerativeModel(name, system_instruction=_SYSTEM_INSTRUCTION)
            for name in self._model_chain
        }

        self._generation_config = genai.GenerationConfig(
            max_output_tokens=400,
            temperature=0.7,
            response_mime_type="application/json",
        )

        self._max_attempts: int = max_attempts or settings.GEMINI_MAX_ATTEMPTS
        self._retry_wait = wait_exponential(multiplier=1, min=1, max=60, exp_base=2)

        logger.info(
            "gemini_service_initialised",
            model_chain=self._model_chain,
            max_attempts=self._max_attempts,
        )

    # ══════════════════════════════════════════════════════════════════
    # Public API
    # ══════════════════════════════════════════════════════════════════

    async def generate_explanation(
        self,
        shared_entities: Mapping[str, list[str]],
        candidate_profile: Mapping[str, Any],
        score: float,
        current_interests: Mapping[str, Any] | None = None,
    ) -> GenerationOutcome:
        """Generate a compatibility blurb and tags for one match.

        Walks the model chain; each model gets its own bounded retry loop.
        The first model whose answer parses wins.

        Returns
        -------
        GenerationOutcome
            Never raises for API or parsing failures.
        """
        prompt = self._build_explanation_prompt(
            shared_entities, candidate_profile, score, current_interests
        )
        log = logger.bind(candidate=candidate_profile.get("user_id"), kind="explanation")

        outcome = await self._run_model_chain(prompt, ("explanation",), log)
        if not outcome.ok:
            return outcome

        tags = self._normalise_strings(outcome.payload.get("tags"), _MAX_TAGS)
        log.info("gemini_explanation_generated", model=outcome.model, tag_count=len(tags))
        return GenerationOutcome(
            status=OUTCOME_OK,
            explanation=str(outcome.payload["explanation"]).strip(),
            tags=tags,
            model=outcome.model,
            payload=outcome.payload,
        )

    async def generate_taste_profile(
        self,
        interests: Mapping[str, list[str]],
        insights: Mapping[str, list[Mapping[str, Any]]] | None = None,
    ) -> GenerationOutcome:
        """Describe a user's overall taste as a short persona.

        On success ``outcome.payload`` holds the normalised profile:
        ``headline``, ``description``, ``vibe``, ``traits`` (up to five),
        ``compatibility`` and ``emoji``.  Headline and description are
        required; an answer missing either counts as unparsable.
        """
        prompt = self._build_taste_profile_prompt(interests, insights or {})
        log = logger.bind(kind="taste_profile", category_count=len(interests))

        outcome = await self._run_model_chain(prompt, ("headline", "description"), log)
        if not outcome.ok:
            return outcome

        profile = self._normalise_taste_profile(outcome.payload)
        log.info("gemini_taste_profile_generated", model=outcome.model, vibe=profile["vibe"])
        return GenerationOutcome(status=OUTCOME_OK, model=outcome.model, payload=profile)

    async def _run_model_chain(
        self,
        prompt: str,
        required_fields: tuple[str, ...],
        log: Any,
    ) -> GenerationOutcome:
        """Try each model in turn until one returns JSON with every
        ``required_fields`` key non-blank.  ``payload`` is the raw object."""
        status = OUTCOME_EXHAUSTED
        last_error: str | None = None

        for model_name in self._model_chain:
            text = await self._call_gemini_with_retry(model_name, prompt)
            if text is None:
                last_error = f"{model_name}: no response"
                continue

            try:
                parsed = self._parse_json_response(text)
            except ValueError as exc:
                log.warning("gemini_response_unparsable", model=model_name, error=str(exc))
                status = OUTCOME_UNPARSABLE
                last_error = str(exc)
                continue

            missing = [f for f in required_fields if not str(parsed.get(f) or "").strip()]
            if missing:
                log.warning("gemini_response_incomplete", model=model_name, missing=missing)
                status = OUTCOME_UNPARSABLE
                last_error = f"response JSON has no {', '.join(missing)}"
                continue

            return GenerationOutcome(status=OUTCOME_OK, model=model_name, payload=parsed)

        log.error("gemini_generation_failed", status=status, last_error=last_error)
        return GenerationOutcome(status=status, error=last_error)

    # ══════════════════════════════════════════════════════════════════
    # Gemini calls
    # ══════════════════════════════════════════════════════════════════

    async def _call_gemini_with_retry(
        self,
        model_name: str,
        prompt: str,
    ) -> str | None:
        """Call one model with tenacity retry on transient errors.

        Uses exponential backoff: 1s initial wait, 2x multiplier, 60s
        max wait, up to ``max_attempts`` attempts.

        Returns
        -------
        str or None
            The raw response text, or ``None`` once retries are exhausted
            or a non-retryable error occurs.
        """
        model = self._models[model_name]

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_retryable_api_error),
                stop=stop_after_attempt(self._max_attempts),
                wait=self._retry_wait,
            ):
                with attempt:
                    logger.debug(
                        "gemini_call_attempt",
                        model=model_name,
                        attempt_number=attempt.retry_state.attempt_number,
                    )
                    response = await model.generate_content_async(
                        prompt,
                        generation_config=self._generation_config,
                    )

                    if not response.candidates:
                        raise ValueError(
                            f"Gemini returned no candidates for model "
                            f"{model_name}. Prompt feedback: "
                            f"{response.prompt_feedback}"
                        )

                    text = response.text
                    if not text or not text.strip():
                        raise ValueError(
                            f"Gemini returned empty text for model {model_name}"
                        )

                    return text

        except RetryError as retry_err:
            logger.error(
                "gemini_retry_exhausted",
                model=model_name,
                attempts=self._max_attempts,
                last_error=str(retry_err.last_attempt.exception()),
            )
            return None
        except Exception as exc:
            logger.warning(
                "gemini_call_failed",
                model=model_name,
                error=str(exc),
            )
            return None

        return None

    # ══════════════════════════════════════════════════════════════════
    # Prompt construction
    # ══════════════════════════════════════════════════════════════════

    def _build_explanation_prompt(
        self,
        shared_entities: Mapping[str, list[str]],
        candidate_profile: Mapping[str, Any],
        score: float,
        current_interests: Mapping[str, Any] | None = None,
    ) -> str:
        shared_text = "\n".join(
            f"{category}: {', '.join(items)}"
            for category, items in shared_entities.items()
            if items
        ) or "(none listed)"

        interest_lines = []
        for category, values in (current_interests or {}).items():
            if isinstance(values, list) and values:
                interest_lines.append(
                    f"{category}: {', '.join(str(v) for v in values)}"
                )
        interests_text = "\n".join(interest_lines) or "(not provided)"

        return f"""
Generate a brief, engaging compatibility blurb (2-3 sentences) explaining why
these two users seem like a good fit based on their shared interests.

CURRENT USER'S INTERESTS:
{interests_text}

MATCH USER'S PROFILE:
Name: {candidate_profile.get("name", "")}
Bio: {candidate_profile.get("bio", "")}
Location: {candidate_profile.get("location", "")}

SHARED INTERESTS:
{shared_text}

MATCH SCORE: {score * 100:.0f}%

Highlight the most interesting shared interests and why these two people
would connect.  Keep it warm and conversational, focus on the strongest
connections and avoid being generic.

Return ONLY valid JSON in this exact format:
{{"explanation": "<2-3 sentences>", "tags": ["<2-4 short tags>"]}}
""".strip()

    def _build_taste_profile_prompt(
        self,
        interests: Mapping[str, list[str]],
        insights: Mapping[str, list[Mapping[str, Any]]],
    ) -> str:
        filled = {
            category: [str(v) for v in values]
            for category, values in interests.items()
            if isinstance(values, list) and values
        }
        breakdown = "\n".join(
            f"{category.upper()} ({len(values)} items): {', '.join(values[:3])}"
            for category, values in filled.items()
        ) or "(none)"

        insight_lines = []
        for category, items in insights.items():
            names = [
                str(item.get("name"))
                for item in (items if isinstance(items, list) else [])
                if isinstance(item, Mapping) and item.get("name")
            ][:3]
            if names:
                insight_lines.append(f"{category}: {', '.join(names)}")
        insights_text = "\n".join(insight_lines) or "(none)"

        dominant = sorted(filled, key=lambda c: len(filled[c]), reverse=True)[:3]
        combination = [v for values in filled.values() for v in values][:8]

        return f"""
Create a unique, personalised taste profile for this user from their
interests.  It should feel specific to them, not a generic personality.

DETAILED INTEREST BREAKDOWN:
{breakdown}

RELATED TASTE-GRAPH ENTITIES:
{insights_text}

UNIQUENESS FACTORS:
- Total interests: {sum(len(v) for v in filled.values())}
- Categories: {len(filled)}
- Dominant categories: {', '.join(dominant) or '(none)'}
- Unique combination: {', '.join(combination) or '(none)'}

Return ONLY valid JSON in this exact format:
{{"headline": "<4-8 word creative title>",
  "description": "<2-3 sentences on their taste and personality>",
  "vibe": "<one word>",
  "traits": ["<4-5 personality traits>"],
  "compatibility": "<one sentence on who they would connect with>",
  "emoji": "<one emoji>"}}
""".strip()

    # ══════════════════════════════════════════════════════════════════
    # JSON response parsing
    # ══════════════════════════════════════════════════════════════════

    def _parse_json_response(self, text: str) -> dict:
        """Parse a JSON response from Gemini using multiple fallback
        strategies.

        Pipeline:
        1. Direct ``json.loads`` on the raw text
        2. Markdown code-fence extraction (triple-backtick json ... triple-backtick)
        3. Prefix/suffix stripping (remove leading/trailing non-JSON)
        4. ``json_repair`` as a last resort

        Raises
        ------
        ValueError
            If no strategy can extract a JSON object.
        """
        if not text or not text.strip():
            raise ValueError("Empty response text, cannot parse JSON")

        cleaned = text.strip()

        # Strategy 1: Direct parse
        try:
            result = json.loads(cleaned)
            if isinstance(result, dict):
                return result
        except (json.JSONDecodeError, TypeError):
            pass

        # Strategy 2: Markdown code-fence extraction
        md_match = re.search(r"```(?:json)?\s*\n?(.*?)\n?\s*```", cleaned, re.DOTALL)
        if md_match:
            try:
                result = json.loads(md_match.group(1).strip())
                if isinstance(result, dict):
                    return result
            except (json.JSONDecodeError, TypeError):
                pass

        # Strategy 3: first '{' to last '}'
        first_brace = cleaned.find("{")
        last_brace = cleaned.rfind("}")
        candidate = None
        if first_brace >= 0 and last_brace > first_brace:
            candidate = cleaned[first_brace : last_brace + 1]
            try:
                result = json.loads(candidate)
                if isinstance(result, dict):
                    return result
            except (json.JSONDecodeError, TypeError):
                pass

        # Strategy 4: json_repair on the brace-extracted candidate
        if candidate is not None:
            try:
                result = json.loads(repair_json(candidate))
                if isinstance(result, dict) and result:
                    logger.info(
                        "json_parsed_via_json_repair",
                        original_preview=cleaned[:80],
                    )
                    return result
            except (json.JSONDecodeError, TypeError, ValueError) as exc:
                logger.debug("json_repair_failed", error=str(exc))

        raise ValueError(
            f"Failed to parse JSON from Gemini response. Preview: {cleaned[:200]}"
        )

    @staticmethod
    def _normalise_strings(raw: Any, max_items: int, max_length: int = _MAX_TAG_LENGTH) -> list[str]:
        """Distinct, stripped, length-capped strings from a JSON list."""
        if not isinstance(raw, list):
            return []
        items: list[str] = []
        for item in raw:
            if not isinstance(item, str):
                continue
            item = item.strip()[:max_length]
            if item and item not in items:
                items.append(item)
        return items[:max_items]

    @classmethod
    def _normalise_taste_profile(cls, raw: Mapping[str, Any]) -> dict:
        def text(key: str, limit: int) -> str:
            value = raw.get(key)
            return value.strip()[:limit] if isinstance(value, str) else ""

        return {
            "headline": text("headline", _MAX_HEADLINE_LENGTH),
            "description": text("description", _MAX_PROFILE_TEXT_LENGTH),
            "vibe": text("vibe", _MAX_TAG_LENGTH),
            "traits": cls._normalise_strings(raw.get("traits"), _MAX_TRAITS),
            "compatibility": text("compatibility", _MAX_PROFILE_TEXT_LENGTH),
            "emoji": text("emoji", 8),
        }
