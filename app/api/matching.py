"""
Tastemate — Matching API

Endpoints for finding compatible users, with or without generated
compatibility explanations, and for explaining a single match.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import (
    get_explanation_service,
    get_matching_service,
    get_profile_repository,
)
from app.schemas.match import (
    CompatibilityRequest,
    CompatibilityResponse,
    DisplayProfile,
    ExplainedMatch,
    ExplainedMatchesResponse,
    FindMatchesRequest,
    FindMatchesResponse,
    MatchResultSchema,
)
from app.services.explanation_service import ExplanationService
from app.services.matching_service import MatchingService
from app.services.profile_repository import ProfileRepository
from app.services.similarity_service import MatchResult

logger = structlog.get_logger("tastemate.api.matching")

router = APIRouter()


async def _run_find_matches(
    user_id: str,
    repository: ProfileRepository,
    matching: MatchingService,
) -> dict:
    """Shared body of the two find endpoints: validation, error mapping."""
    user_id = user_id.strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User ID is required.",
        )

    log = logger.bind(user_id=user_id)

    try:
        result = await matching.find_matches(user_id, repository)
    except SQLAlchemyError:
        log.exception("find_matches_storage_failure")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Profile storage is unavailable; please retry.",
        )

    if result.get("error") == "user_not_found":
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"User {user_id} not found.",
        )

    return result


# ──────────────────────────────────────────────────────────────────────────────
# POST /find — Ranked matches (numeric only)
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/find",
    response_model=FindMatchesResponse,
    summary="Find the most compatible users",
)
async def find_matches(
    payload: FindMatchesRequest,
    repository: ProfileRepository = Depends(get_profile_repository),
    matching: MatchingService = Depends(get_matching_service),
) -> FindMatchesResponse:
    """Return up to ten users ranked by taste compatibility.

    ``totalSharedItems`` counts the shared-entity samples (at most five per
    category), so it is a lower bound on the real overlap.
    """
    result = await _run_find_matches(payload.user_id, repository, matching)

    return FindMatchesResponse(
        matches=[MatchResultSchema(**m.as_dict()) for m in result["matches"]],
        total_candidates=result["total_candidates"],
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST /explained — Ranked matches with compatibility blurbs
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/explained",
    response_model=ExplainedMatchesResponse,
    summary="Find matches and explain each one",
)
async def find_explained_matches(
    payload: FindMatchesRequest,
    repository: ProfileRepository = Depends(get_profile_repository),
    matching: MatchingService = Depends(get_matching_service),
    explainer: ExplanationService = Depends(get_explanation_service),
) -> ExplainedMatchesResponse:
    """Same ranking as ``/find``; every match also carries an explanation,
    tags and the explanation source.  Explanation failures degrade to a
    fixed fallback and never fail the request."""
    result = await _run_find_matches(payload.user_id, repository, matching)
    matches: list[MatchResult] = result["matches"]
    display_profiles: dict = result["display_profiles"]

    explanations = await explainer.explain_batch(
        user_id=payload.user_id.strip(),
        matches=matches,
        display_profiles=display_profiles,
        current_interests=result["user_interests"],
    )

    items = [
        ExplainedMatch(
            **match.as_dict(),
            user=DisplayProfile(**display_profiles.get(match.candidate_user_id, {})),
            explanation=explained["explanation"],
            tags=explained["tags"],
            explanation_source=explained["source"],
        )
        for match, explained in zip(matches, explanations)
    ]

    return ExplainedMatchesResponse(
        matches=items,
        total_candidates=result["total_candidates"],
    )


# ──────────────────────────────────────────────────────────────────────────────
# POST /compatibility — Explain one match
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/compatibility",
    response_model=CompatibilityResponse,
    summary="Generate a compatibility explanation for one match",
)
async def generate_compatibility(
    payload: CompatibilityRequest,
    explainer: ExplanationService = Depends(get_explanation_service),
) -> CompatibilityResponse:
    match = MatchResult(
        candidate_user_id=payload.match.candidate_user_id,
        base_score=payload.match.match_score,
        match_score=payload.match.match_score,
        shared_fields=payload.match.shared_fields,
        shared_entities=payload.match.shared_entities,
    )
    explained = await explainer.explain(
        user_id=payload.user_id,
        match=match,
        candidate_profile=payload.match_user_profile.model_dump(),
        current_interests=payload.current_user_interests,
    )
    return CompatibilityResponse(**explained)
