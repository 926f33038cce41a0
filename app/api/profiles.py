"""
Tastemate — Profile API

Create / update a user's taste profile (optionally enriching it through the
Qloo taste graph), read it back, and generate the user's taste persona.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import get_profile_repository, get_qloo_service, get_taste_profile_service
from app.schemas.match import DisplayProfile
from app.schemas.profile import (
    ProfileResponse,
    ProfileSaveRequest,
    ProfileSaveResponse,
    TasteProfileResponse,
    UserIdExistsResponse,
)
from app.services.profile_repository import ProfileRepository
from app.services.qloo_service import QlooService
from app.services.taste_profile_service import TasteProfileService
from app.utils.identifiers import generate_user_id

logger = structlog.get_logger("tastemate.api.profiles")

router = APIRouter()


def _storage_unavailable(event: str, user_id: str) -> HTTPException:
    """Log the active storage exception and build the 503 to raise."""
    logger.exception(event, user_id=user_id)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Profile storage is unavailable; please retry.",
    )


def _user_not_found(user_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"User {user_id} not found.",
    )


# ──────────────────────────────────────────────────────────────────────────────
# Profiles
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "",
    response_model=ProfileSaveResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create or update a taste profile",
)
async def save_profile(
    payload: ProfileSaveRequest,
    repository: ProfileRepository = Depends(get_profile_repository),
    qloo: QlooService = Depends(get_qloo_service),
) -> ProfileSaveResponse:
    """Upsert a profile.

    A fresh ``user_<9 chars>`` identifier is issued when none is supplied.
    With ``enrich`` set and no insights in the payload, the interests are
    resolved against Qloo first; enrichment failures leave the profile
    un-enriched rather than failing the save.
    """
    user_id = (payload.user_id or "").strip() or generate_user_id()
    log = logger.bind(user_id=user_id)

    insights = {
        category: [item.model_dump() for item in items]
        for category, items in payload.insights.items()
    }

    enriched = False
    if payload.enrich and not insights and payload.interests:
        insights = await qloo.enrich_interests(payload.interests)
        enriched = bool(insights)
        log.info("profile_enriched", categories=sorted(insights))

    try:
        saved = await repository.save_profile(
            user_id=user_id,
            interests=payload.interests,
            insights=insights,
            display_name=payload.display_name,
            bio=payload.bio,
            location=payload.location,
            contact=payload.contact,
        )
    except SQLAlchemyError:
        raise _storage_unavailable("save_profile_storage_failure", user_id)

    return ProfileSaveResponse(**saved, enriched=enriched)


@router.get(
    "/{user_id}",
    response_model=ProfileResponse,
    summary="Fetch a stored profile",
)
async def get_profile(
    user_id: str,
    repository: ProfileRepository = Depends(get_profile_repository),
) -> ProfileResponse:
    try:
        profile = await repository.get_profile(user_id)
    except SQLAlchemyError:
        raise _storage_unavailable("get_profile_storage_failure", user_id)

    if profile is None:
        raise _user_not_found(user_id)

    return ProfileResponse(
        **{k: v for k, v in profile.items() if k != "display_profile"},
        display_profile=DisplayProfile(**profile["display_profile"]),
    )


@router.get(
    "/{user_id}/exists",
    response_model=UserIdExistsResponse,
    summary="Check whether a user id is taken",
)
async def user_id_exists(
    user_id: str,
    repository: ProfileRepository = Depends(get_profile_repository),
) -> UserIdExistsResponse:
    try:
        exists = await repository.user_id_exists(user_id)
    except SQLAlchemyError:
        raise _storage_unavailable("user_id_exists_storage_failure", user_id)
    return UserIdExistsResponse(user_id=user_id, exists=exists)


# ──────────────────────────────────────────────────────────────────────────────
# Taste persona
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/{user_id}/taste-profile",
    response_model=TasteProfileResponse,
    summary="Generate and store the user's taste persona",
)
async def generate_taste_profile(
    user_id: str,
    repository: ProfileRepository = Depends(get_profile_repository),
    service: TasteProfileService = Depends(get_taste_profile_service),
) -> TasteProfileResponse:
    """Regenerate the persona from the stored interests and insights.

    Generator failures never surface here: the response carries the
    generic persona with ``source = "fallback"`` instead.
    """
    try:
        result = await service.generate(user_id, repository)
    except SQLAlchemyError:
        raise _storage_unavailable("taste_profile_storage_failure", user_id)

    if result.get("error") == "user_not_found":
        raise _user_not_found(user_id)
    if result.get("error") == "no_interests":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Add some interests before generating a taste profile.",
        )

    return TasteProfileResponse(**result)


@router.get(
    "/{user_id}/taste-profile",
    response_model=TasteProfileResponse,
    summary="Fetch the stored taste persona",
)
async def get_taste_profile(
    user_id: str,
    repository: ProfileRepository = Depends(get_profile_repository),
) -> TasteProfileResponse:
    try:
        stored = await repository.get_taste_profile(user_id)
    except SQLAlchemyError:
        raise _storage_unavailable("get_taste_profile_storage_failure", user_id)

    if stored is None:
        raise _user_not_found(user_id)
    return TasteProfileResponse(**stored)
