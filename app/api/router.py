"""
Tastemate — Main API Router

Aggregates all sub-routers under a single prefix so that ``app.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from app.api import matching, profiles, taste_graph

router = APIRouter()

router.include_router(matching.router, prefix="/match", tags=["Matching"])
router.include_router(profiles.router, prefix="/profiles", tags=["Profiles"])
router.include_router(taste_graph.router, prefix="/taste", tags=["Taste Graph"])
