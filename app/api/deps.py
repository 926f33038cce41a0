"""
Tastemate — Shared FastAPI dependencies.

Long-lived collaborators (Gemini client, Redis cache, Qloo HTTP client) are
process singletons created on first use; the storage repository is built
per request around the request's ``AsyncSession``.
"""

from __future__ import annotations

import structlog
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.explanation_cache import ExplanationCache
from app.services.explanation_service import ExplanationService
from app.services.gemini_service import GeminiService
from app.services.matching_service import MatchingService
from app.services.profile_repository import ProfileRepository
from app.services.qloo_service import QlooService
from app.services.taste_profile_service import TasteProfileService

logger = structlog.get_logger("tastemate.api.deps")

# ── Service singletons ────────────────────────────────────────────────────────

_matching_service: MatchingService | None = None
_gemini_service: GeminiService | None = None
_explanation_cache: ExplanationCache | None = None
_qloo_service: QlooService | None = None


def get_profile_repository(db: AsyncSession = Depends(get_db)) -> ProfileRepository:
    return ProfileRepository(db)


def get_matching_service() -> MatchingService:
    global _matching_service
    if _matching_service is None:
        _matching_service = MatchingService()
    return _matching_service


def get_explanation_cache() -> ExplanationCache:
    global _explanation_cache
    if _explanation_cache is None:
        _explanation_cache = ExplanationCache()
    return _explanation_cache


def _get_gemini_service() -> GeminiService:
    global _gemini_service
    if _gemini_service is None:
        _gemini_service = GeminiService()
    return _gemini_service


def get_explanation_service() -> ExplanationService:
    return ExplanationService(
        gemini_service=_get_gemini_service(),
        cache=get_explanation_cache(),
    )


def get_taste_profile_service() -> TasteProfileService:
    return TasteProfileService(gemini_service=_get_gemini_service())


def get_qloo_service() -> QlooService:
    global _qloo_service
    if _qloo_service is None:
        _qloo_service = QlooService()
    return _qloo_service


async def shutdown_services() -> None:
    """Close network clients held by the singletons."""
    global _explanation_cache, _qloo_service
    if _explanation_cache is not None:
        await _explanation_cache.close()
        _explanation_cache = None
    if _qloo_service is not None:
        await _qloo_service.aclose()
        _qloo_service = None
    logger.info("services_shutdown")
