"""
Tastemate — Taste-graph passthrough API

Thin proxies over the Qloo search and insights endpoints, used by clients
while a user builds their profile.
"""

from __future__ import annotations

import httpx
import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_qloo_service
from app.schemas.taste_graph import (
    TasteGraphResponse,
    TasteInsightsRequest,
    TasteSearchRequest,
)
from app.services.qloo_service import QlooService

logger = structlog.get_logger("tastemate.api.taste_graph")

router = APIRouter()


def _upstream_error(operation: str, exc: Exception) -> HTTPException:
    logger.error("taste_graph_upstream_failure", operation=operation, error=str(exc))
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Taste graph {operation} failed.",
    )


@router.post("/search", response_model=TasteGraphResponse)
async def search_entities(
    payload: TasteSearchRequest,
    qloo: QlooService = Depends(get_qloo_service),
) -> TasteGraphResponse:
    try:
        data = await qloo.search(payload.query, entity_type=payload.type, take=payload.take)
    except (httpx.HTTPError, ValueError) as exc:
        raise _upstream_error("search", exc)
    return TasteGraphResponse(data=data)


@router.post("/insights", response_model=TasteGraphResponse)
async def entity_insights(
    payload: TasteInsightsRequest,
    qloo: QlooService = Depends(get_qloo_service),
) -> TasteGraphResponse:
    try:
        data = await qloo.insights(
            payload.entity_id,
            filter_type=payload.filter_type,
            take=payload.take,
        )
    except (httpx.HTTPError, ValueError) as exc:
        raise _upstream_error("insights", exc)
    return TasteGraphResponse(data=data)
